"""Write model for per-occurrence overrides (cancel, edit, reschedule, revert)."""

import logging
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import time
from functools import partial
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from happenings.config.database import async_session_manager
from happenings.config.settings import settings
from happenings.events.dtos import InvalidOverrideError, LockTimeout, OverrideDTO
from happenings.events.features.signups.write_model import (
    CapacityController,
    SqlCapacityController,
)
from happenings.events.repository.orm_models import OccurrenceOverride
from happenings.events.repository.read_models import fetch_event, to_event_definition
from happenings.occurrences.dates import RegionClock, parse_date_key
from happenings.occurrences.errors import InvalidOverridePatch, UnknownOccurrenceError
from happenings.occurrences.keys import occurs_on
from happenings.occurrences.overrides import OverridePatch, OverrideStatus, get_display_date
from happenings.occurrences.overrides import OccurrenceOverride as ResolvedOverride

logger = logging.getLogger(__name__)


def _patch_capacity(row: OccurrenceOverride | None) -> int | None:
    if row is None or not row.override_patch:
        return None
    return row.override_patch.get("capacity")


class OverrideWriteModel(ABC):
    @abstractmethod
    async def upsert_override(
        self,
        event_id: UUID,
        date_key: str,
        status: OverrideStatus = OverrideStatus.NORMAL,
        patch: dict | None = None,
        override_start_time: time | None = None,
        override_cover_image_url: str | None = None,
        override_notes: str | None = None,
    ) -> OverrideDTO:
        """Create or replace the override for one occurrence.

        ``date_key`` is the natural occurrence date. A ``patch.event_date``
        different from it reschedules the occurrence.
        """
        raise NotImplementedError

    @abstractmethod
    async def delete_override(self, event_id: UUID, date_key: str) -> bool:
        """Revert an occurrence to the series defaults. Returns False if nothing was stored."""
        raise NotImplementedError


class SqlOverrideWriteModel(OverrideWriteModel):
    async_session_manager = staticmethod(partial(async_session_manager))

    def __init__(
        self,
        session_overwrite: AsyncSession | None = None,
        session_maker: async_sessionmaker | None = None,
        clock: RegionClock | None = None,
        capacity_controller: CapacityController | None = None,
    ) -> None:
        self.session_overwrite = session_overwrite
        self.session_maker = session_maker
        self.clock = clock or RegionClock(settings.region_timezone)
        self.capacity_controller = capacity_controller or SqlCapacityController(
            session_overwrite=session_overwrite, session_maker=session_maker, clock=self.clock
        )

    def _session(self):
        return self.async_session_manager(
            session_overwrite=self.session_overwrite, session_maker=self.session_maker
        )

    async def _rebalance(self, event_id: UUID, date_key: str) -> None:
        """Fill seats a capacity change opened up from the waitlist."""
        try:
            await self.capacity_controller.rebalance(event_id, date_key)
        except LockTimeout:
            logger.warning(
                "Could not promote the waitlist of %s on %s now, the next signup or cancel will",
                event_id,
                date_key,
            )

    def _validated_patch(self, event, date_key: str, patch: dict | None) -> OverridePatch:
        try:
            parsed = OverridePatch.from_mapping(patch, strict=True)
        except InvalidOverridePatch as e:
            raise InvalidOverrideError(str(e)) from e

        target = parsed.event_date
        if target == date_key:
            return replace(parsed, event_date=None)
        if target is not None:
            if parse_date_key(target) < parse_date_key(self.clock.today()):
                raise InvalidOverrideError(f"Cannot reschedule to {target}, it is in the past")
            if occurs_on(event, target):
                logger.warning(
                    "Occurrence %s of event %s rescheduled onto %s, which is also a regular date",
                    date_key,
                    event.id,
                    target,
                )
        return parsed

    async def upsert_override(
        self,
        event_id: UUID,
        date_key: str,
        status: OverrideStatus = OverrideStatus.NORMAL,
        patch: dict | None = None,
        override_start_time: time | None = None,
        override_cover_image_url: str | None = None,
        override_notes: str | None = None,
    ) -> OverrideDTO:
        parse_date_key(date_key)

        async with self._session() as session:
            event = to_event_definition(await fetch_event(session, event_id))
            if not occurs_on(event, date_key):
                raise UnknownOccurrenceError(event_id, date_key)
            parsed = self._validated_patch(event, date_key, patch)

            result = await session.execute(
                select(OccurrenceOverride).where(
                    OccurrenceOverride.event_id == event_id,
                    OccurrenceOverride.date_key == date_key,
                )
            )
            row = result.scalar_one_or_none()
            previous_capacity = _patch_capacity(row)
            if row is None:
                row = OccurrenceOverride(event_id=event_id, date_key=date_key)
                session.add(row)

            row.status = status
            row.override_patch = parsed.to_mapping() or None
            row.override_start_time = override_start_time
            row.override_cover_image_url = override_cover_image_url
            row.override_notes = override_notes
            await session.flush()

        resolved = ResolvedOverride(event_id=event_id, date_key=date_key, status=status, patch=parsed)
        logger.info(
            "Override saved for event %s on %s: status=%s patch=%s",
            event_id,
            date_key,
            status.value,
            parsed.to_mapping(),
        )
        if status != OverrideStatus.CANCELLED and parsed.capacity != previous_capacity:
            await self._rebalance(event_id, date_key)
        return OverrideDTO(
            event_id=event_id,
            date_key=date_key,
            status=status,
            override_patch=parsed.to_mapping(),
            display_date=get_display_date(date_key, resolved),
        )

    async def delete_override(self, event_id: UUID, date_key: str) -> bool:
        parse_date_key(date_key)
        async with self._session() as session:
            await fetch_event(session, event_id)
            result = await session.execute(
                select(OccurrenceOverride).where(
                    OccurrenceOverride.event_id == event_id,
                    OccurrenceOverride.date_key == date_key,
                )
            )
            row = result.scalar_one_or_none()
            if row is None:
                return False
            previous_capacity = _patch_capacity(row)
            await session.delete(row)
            await session.flush()

        logger.info("Override reverted for event %s on %s", event_id, date_key)
        if previous_capacity is not None:
            await self._rebalance(event_id, date_key)
        return True
