from datetime import time
from uuid import uuid4

import pytest

from happenings.events.features.get_happenings.router import get_clock, get_happenings_read_model
from happenings.events.repository.read_models import HappeningsReadModel
from happenings.events.urls import HAPPENINGS_URL
from happenings.occurrences.dates import FixedClock
from happenings.occurrences.expander import EventDefinition
from happenings.occurrences.overrides import OccurrenceOverride, OverridePatch, OverrideStatus
from happenings.occurrences.pipeline import build_timeline

TODAY = "2026-02-06"


class InMemoryHappeningsReadModel(HappeningsReadModel):
    def __init__(self, events, overrides=()):
        self.events = list(events)
        self.overrides = list(overrides)
        self.requested = []

    async def get_timeline(self, start_key, end_key):
        self.requested.append((start_key, end_key))
        return build_timeline(self.events, self.overrides, start_key, end_key)

    async def get_event(self, event_id):
        return next(e for e in self.events if e.id == event_id)

    async def get_overrides(self, event_id):
        return [o for o in self.overrides if o.event_id == event_id]


song_circle = EventDefinition(
    id=uuid4(),
    title="Song Circle",
    event_date="2026-01-01",
    day_of_week=4,
    recurrence_rule="weekly",
    start_time=time(19, 0),
    capacity=12,
)
potluck = EventDefinition(
    id=uuid4(),
    title="Potluck",
    event_date="2026-02-12",
    start_time=time(18, 0),
)
broken = EventDefinition(id=uuid4(), title="Mystery Night", recurrence_rule="fortnightly-ish")


def overrides_for(model):
    return {
        get_happenings_read_model: lambda: model,
        get_clock: lambda: FixedClock(TODAY),
    }


@pytest.mark.asyncio
async def test_groups_sorted_by_date_then_start_time(client_factory):
    model = InMemoryHappeningsReadModel([song_circle, potluck])

    async with client_factory(overrides_for(model)) as client:
        response = await client.get(HAPPENINGS_URL, params={"end": "2026-02-19"})

    assert response.status_code == 200
    data = response.json()
    assert data["start"] == TODAY
    assert [g["date_key"] for g in data["groups"]] == ["2026-02-12", "2026-02-19"]
    thursday = data["groups"][0]
    assert [o["title"] for o in thursday["occurrences"]] == ["Potluck", "Song Circle"]
    assert thursday["occurrences"][1]["recurrence_label"] == "Every Thursday"
    assert thursday["occurrences"][1]["capacity"] == 12
    assert data["metrics"]["was_capped"] is False


@pytest.mark.asyncio
async def test_cancelled_occurrences_are_counted_but_hidden(client_factory):
    cancelled = OccurrenceOverride(
        event_id=song_circle.id, date_key="2026-02-19", status=OverrideStatus.CANCELLED
    )
    model = InMemoryHappeningsReadModel([song_circle], [cancelled])

    async with client_factory(overrides_for(model)) as client:
        hidden = await client.get(HAPPENINGS_URL, params={"end": "2026-02-26"})
        shown = await client.get(
            HAPPENINGS_URL, params={"end": "2026-02-26", "show_cancelled": "true"}
        )

    assert [g["date_key"] for g in hidden.json()["groups"]] == ["2026-02-12", "2026-02-26"]
    assert hidden.json()["cancelled_count"] == 1
    shown_groups = shown.json()["groups"]
    assert [g["date_key"] for g in shown_groups] == ["2026-02-12", "2026-02-19", "2026-02-26"]
    assert shown_groups[1]["occurrences"][0]["is_cancelled"] is True


@pytest.mark.asyncio
async def test_rescheduled_occurrence_shows_under_new_date(client_factory):
    moved = OccurrenceOverride(
        event_id=song_circle.id,
        date_key="2026-02-12",
        patch=OverridePatch(event_date="2026-02-14", title="Song Circle (Saturday)"),
    )
    model = InMemoryHappeningsReadModel([song_circle], [moved])

    async with client_factory(overrides_for(model)) as client:
        response = await client.get(
            HAPPENINGS_URL, params={"start": "2026-02-10", "end": "2026-02-16"}
        )

    groups = response.json()["groups"]
    assert [g["date_key"] for g in groups] == ["2026-02-14"]
    occurrence = groups[0]["occurrences"][0]
    assert occurrence["date_key"] == "2026-02-12"
    assert occurrence["display_date"] == "2026-02-14"
    assert occurrence["is_rescheduled"] is True
    assert occurrence["title"] == "Song Circle (Saturday)"


@pytest.mark.asyncio
async def test_unreadable_events_are_reported(client_factory):
    model = InMemoryHappeningsReadModel([song_circle, broken])

    async with client_factory(overrides_for(model)) as client:
        response = await client.get(HAPPENINGS_URL, params={"end": "2026-02-12"})

    data = response.json()
    assert response.status_code == 200
    assert [e["title"] for e in data["unknown_events"]] == ["Mystery Night"]
    assert [g["date_key"] for g in data["groups"]] == ["2026-02-12"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "params",
    [
        {"start": "2026-02-30"},
        {"start": "02/06/2026"},
        {"start": "2026-03-01", "end": "2026-02-01"},
        {"start": "2026-01-01", "end": "2027-06-01"},
    ],
)
async def test_bad_windows_are_rejected(client_factory, params):
    model = InMemoryHappeningsReadModel([song_circle])

    async with client_factory(overrides_for(model)) as client:
        response = await client.get(HAPPENINGS_URL, params=params)

    assert response.status_code == 400
    assert model.requested == []
