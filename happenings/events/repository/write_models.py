"""Event write models - return engine types, never ORM models."""

from abc import ABC, abstractmethod
from functools import partial
from uuid import UUID

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from happenings.config.database import async_session_manager
from happenings.events.repository.orm_models import Event, OccurrenceLock, OccurrenceOverride, Signup
from happenings.events.repository.read_models import fetch_event, to_event_definition
from happenings.occurrences.dates import parse_date_key
from happenings.occurrences.expander import EventDefinition
from happenings.occurrences.recurrence import parse_recurrence


class EventWriteModel(ABC):
    @abstractmethod
    async def create_event(self, event: EventDefinition) -> EventDefinition:
        raise NotImplementedError

    @abstractmethod
    async def delete_event(self, event_id: UUID) -> None:
        """Delete an event together with its overrides, signups and lock markers."""
        raise NotImplementedError


class SqlEventWriteModel(EventWriteModel):
    async_session_manager = staticmethod(partial(async_session_manager))

    def __init__(
        self,
        session_overwrite: AsyncSession | None = None,
        session_maker: async_sessionmaker | None = None,
    ) -> None:
        self.session_overwrite = session_overwrite
        self.session_maker = session_maker

    async def create_event(self, event: EventDefinition) -> EventDefinition:
        """Store a new event definition.

        The recurrence fields are parsed up front so a rule the engine can
        not read never gets stored.
        """
        parse_recurrence(event.recurrence_rule, event.day_of_week, event.event_date)

        async with self.async_session_manager(
            session_overwrite=self.session_overwrite, session_maker=self.session_maker
        ) as session:
            row = Event(
                title=event.title,
                event_date=parse_date_key(event.event_date) if event.event_date else None,
                day_of_week=event.day_of_week,
                recurrence_rule=event.recurrence_rule,
                recurrence_end_date=(
                    parse_date_key(event.recurrence_end_date)
                    if event.recurrence_end_date
                    else None
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
            if event.id is not None:
                row.uuid = event.id
            session.add(row)
            await session.flush()
            return to_event_definition(row)

    async def delete_event(self, event_id: UUID) -> None:
        async with self.async_session_manager(
            session_overwrite=self.session_overwrite, session_maker=self.session_maker
        ) as session:
            event = await fetch_event(session, event_id)
            # explicit deletes keep the cascade on backends without FK enforcement
            for model in (Signup, OccurrenceOverride, OccurrenceLock):
                await session.execute(delete(model).where(model.event_id == event_id))
            await session.delete(event)
