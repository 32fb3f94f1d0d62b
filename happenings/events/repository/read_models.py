"""Read models - load event and override rows and hand back engine types, never ORM models."""

import abc
from functools import partial
from uuid import UUID

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from happenings.config.database import async_session_manager
from happenings.config.settings import settings
from happenings.events.dtos import EventNotFoundError
from happenings.events.repository.orm_models import Event, OccurrenceOverride
from happenings.occurrences import overrides as engine_overrides
from happenings.occurrences.dates import parse_date_key, to_date_key
from happenings.occurrences.expander import EventDefinition, ExpansionCaps
from happenings.occurrences.overrides import OverridePatch, OverrideStatus, Timeline
from happenings.occurrences.pipeline import buffered_window, build_timeline


def to_event_definition(event: Event) -> EventDefinition:
    return EventDefinition(
        id=event.uuid,
        title=event.title,
        event_date=to_date_key(event.event_date) if event.event_date else None,
        day_of_week=event.day_of_week,
        recurrence_rule=event.recurrence_rule,
        recurrence_end_date=(
            to_date_key(event.recurrence_end_date) if event.recurrence_end_date else None
        ),
        max_occurrences=event.max_occurrences,
        capacity=event.capacity,
        has_timeslots=event.has_timeslots,
        start_time=event.start_time,
        end_time=event.end_time,
        venue_name=event.venue_name,
        venue_address=event.venue_address,
        cover_image_url=event.cover_image_url,
        host_notes=event.host_notes,
        is_published=event.is_published,
    )


def to_occurrence_override(row: OccurrenceOverride) -> engine_overrides.OccurrenceOverride:
    return engine_overrides.OccurrenceOverride(
        event_id=row.event_id,
        date_key=row.date_key,
        status=OverrideStatus(row.status),
        override_start_time=row.override_start_time,
        override_cover_image_url=row.override_cover_image_url,
        override_notes=row.override_notes,
        patch=OverridePatch.from_mapping(row.override_patch),
    )


def expansion_caps() -> ExpansionCaps:
    return ExpansionCaps(
        max_events=settings.max_events,
        max_total_occurrences=settings.max_total_occurrences,
        max_occurrences_per_event=settings.max_occurrences_per_event,
    )


async def fetch_event(session: AsyncSession, event_id: UUID) -> Event:
    event = await session.get(Event, event_id)
    if event is None:
        raise EventNotFoundError(event_id)
    return event


async def fetch_event_overrides(
    session: AsyncSession, event_id: UUID
) -> list[engine_overrides.OccurrenceOverride]:
    result = await session.execute(
        select(OccurrenceOverride).where(OccurrenceOverride.event_id == event_id)
    )
    return [to_occurrence_override(row) for row in result.scalars().all()]


class HappeningsReadModel(abc.ABC):
    @abc.abstractmethod
    async def get_timeline(self, start_key: str, end_key: str) -> Timeline:
        """Date-grouped occurrences of all published events in the window."""
        raise NotImplementedError

    @abc.abstractmethod
    async def get_event(self, event_id: UUID) -> EventDefinition:
        raise NotImplementedError

    @abc.abstractmethod
    async def get_overrides(self, event_id: UUID) -> list[engine_overrides.OccurrenceOverride]:
        raise NotImplementedError


class SqlHappeningsReadModel(HappeningsReadModel):
    """SQL implementation of the happenings read model."""

    async_session_manager = staticmethod(partial(async_session_manager))

    def __init__(
        self,
        session_overwrite: AsyncSession | None = None,
        session_maker: async_sessionmaker | None = None,
        caps: ExpansionCaps | None = None,
        buffer_days: int | None = None,
    ) -> None:
        self.session_overwrite = session_overwrite
        self.session_maker = session_maker
        self.caps = caps or expansion_caps()
        self.buffer_days = settings.override_buffer_days if buffer_days is None else buffer_days

    def _session(self):
        return self.async_session_manager(
            auto_commit=False,
            session_overwrite=self.session_overwrite,
            session_maker=self.session_maker,
        )

    async def get_timeline(self, start_key: str, end_key: str) -> Timeline:
        buffered_start, buffered_end = buffered_window(start_key, end_key, self.buffer_days)

        async with self._session() as session:
            events_result = await session.execute(
                select(Event)
                .where(
                    Event.is_published.is_(True),
                    or_(
                        Event.recurrence_rule.is_not(None),
                        Event.day_of_week.is_not(None),
                        and_(
                            Event.event_date >= parse_date_key(buffered_start),
                            Event.event_date <= parse_date_key(buffered_end),
                        ),
                    ),
                )
                .order_by(Event.event_date, Event.title, Event.uuid)
            )
            events = [to_event_definition(e) for e in events_result.scalars().all()]

            # date keys are ISO strings, so string comparison is date order
            overrides_result = await session.execute(
                select(OccurrenceOverride).where(
                    OccurrenceOverride.date_key >= buffered_start,
                    OccurrenceOverride.date_key <= buffered_end,
                )
            )
            overrides = [to_occurrence_override(o) for o in overrides_result.scalars().all()]

        return build_timeline(
            events, overrides, start_key, end_key, caps=self.caps, buffer_days=self.buffer_days
        )

    async def get_event(self, event_id: UUID) -> EventDefinition:
        async with self._session() as session:
            return to_event_definition(await fetch_event(session, event_id))

    async def get_overrides(self, event_id: UUID) -> list[engine_overrides.OccurrenceOverride]:
        async with self._session() as session:
            return await fetch_event_overrides(session, event_id)
