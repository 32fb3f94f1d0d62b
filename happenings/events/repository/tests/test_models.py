from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy import func, select

from happenings.events.dtos import EventNotFoundError, ParticipantDTO
from happenings.events.features.occurrence_overrides.write_model import SqlOverrideWriteModel
from happenings.events.features.signups.write_model import (
    OccurrenceLockRegistry,
    SqlCapacityController,
)
from happenings.events.repository.orm_models import OccurrenceLock, OccurrenceOverride, Signup
from happenings.events.repository.read_models import SqlHappeningsReadModel
from happenings.events.repository.write_models import SqlEventWriteModel
from happenings.occurrences.errors import InvalidRecurrenceDescriptor
from happenings.occurrences.expander import EventDefinition, ExpansionCaps
from happenings.occurrences.overrides import OverrideStatus


@pytest_asyncio.fixture
async def read_model(session_maker):
    return SqlHappeningsReadModel(session_maker=session_maker)


@pytest.mark.asyncio
async def test_timeline_only_includes_published_events(create_event, read_model):
    await create_event(title="Board Games", event_date="2026-02-10")
    await create_event(title="Draft Meetup", event_date="2026-02-11", is_published=False)
    await create_event(title="Last Year", event_date="2025-02-10")

    timeline = await read_model.get_timeline("2026-02-06", "2026-02-20")

    assert [e.effective.title for e in timeline.entries()] == ["Board Games"]
    assert timeline.unknown_events == []


@pytest.mark.asyncio
async def test_override_just_outside_window_is_still_applied(
    create_event, read_model, session_maker, clock
):
    event = await create_event(
        title="Song Circle", event_date="2026-01-01", day_of_week=4, recurrence_rule="weekly"
    )
    overrides = SqlOverrideWriteModel(session_maker=session_maker, clock=clock)
    # the 26th falls after the window but is moved into it
    await overrides.upsert_override(event.id, "2026-02-26", patch={"event_date": "2026-02-21"})

    timeline = await read_model.get_timeline("2026-02-14", "2026-02-22")

    assert [(e.date_key, e.display_date) for e in timeline.entries()] == [
        ("2026-02-19", "2026-02-19"),
        ("2026-02-26", "2026-02-21"),
    ]


@pytest.mark.asyncio
async def test_caps_are_reported(create_event, session_maker):
    for title in ("Alpha", "Beta", "Gamma"):
        await create_event(title=title, event_date="2026-01-01", day_of_week=4, recurrence_rule="weekly")
    read_model = SqlHappeningsReadModel(
        session_maker=session_maker,
        caps=ExpansionCaps(max_events=2, max_total_occurrences=500, max_occurrences_per_event=40),
    )

    timeline = await read_model.get_timeline("2026-02-06", "2026-02-20")

    assert timeline.metrics.was_capped is True
    assert timeline.metrics.events_skipped == 1


@pytest.mark.asyncio
async def test_create_event_rejects_unreadable_rules(session_maker):
    write_model = SqlEventWriteModel(session_maker=session_maker)
    with pytest.raises(InvalidRecurrenceDescriptor):
        await write_model.create_event(
            EventDefinition(id=None, title="Odd", recurrence_rule="third", day_of_week=None)
        )


@pytest.mark.asyncio
async def test_delete_event_removes_dependent_rows(create_event, session_maker, clock, read_model):
    event = await create_event(
        title="Song Circle", event_date="2026-01-01", day_of_week=4, recurrence_rule="weekly"
    )
    controller = SqlCapacityController(
        session_maker=session_maker, clock=clock, lock_registry=OccurrenceLockRegistry()
    )
    await controller.signup(event.id, "2026-02-12", ParticipantDTO(guest_name="Ana"))
    await SqlOverrideWriteModel(session_maker=session_maker, clock=clock).upsert_override(
        event.id, "2026-02-19", status=OverrideStatus.CANCELLED
    )

    await SqlEventWriteModel(session_maker=session_maker).delete_event(event.id)

    async with session_maker() as session:
        for model in (Signup, OccurrenceOverride, OccurrenceLock):
            count = await session.scalar(select(func.count()).select_from(model))
            assert count == 0, model.__name__
    with pytest.raises(EventNotFoundError):
        await read_model.get_event(event.id)
    with pytest.raises(EventNotFoundError):
        await SqlEventWriteModel(session_maker=session_maker).delete_event(uuid4())
