"""Capacity and waitlist controller for per-occurrence signups.

Signup, cancel and rebalance are the only operations that change how many
seats an occurrence has left. All three run under an exclusive lock scoped to the
occurrence key: an in-process ``asyncio.Lock`` for writers sharing this
process, plus ``SELECT ... FOR UPDATE`` on the occurrence's marker row for
writers in other processes. Different occurrences never contend.
"""

import asyncio
import contextlib
import logging
import weakref
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from functools import partial
from uuid import UUID, uuid4

from sqlalchemy import func, select, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from happenings.config.database import async_session_manager
from happenings.config.settings import settings
from happenings.events.dtos import (
    ALLOWED_TRANSITIONS,
    CancelResultDTO,
    DuplicateSignupError,
    InvalidParticipantError,
    InvalidTransitionError,
    LockTimeout,
    OccurrenceCountDTO,
    ParticipantDTO,
    SignupDTO,
    SignupKind,
    SignupNotFoundError,
    SignupResultDTO,
    SignupStatus,
)
from happenings.events.repository.orm_models import OccurrenceLock, Signup
from happenings.events.repository.read_models import (
    fetch_event,
    fetch_event_overrides,
    to_event_definition,
)
from happenings.occurrences.dates import RegionClock
from happenings.occurrences.expander import EventDefinition
from happenings.occurrences.keys import DateKind, OccurrenceKey, resolve_occurrence_key
from happenings.occurrences.overrides import OccurrenceOverride, apply_occurrence_override

logger = logging.getLogger(__name__)

# Postgres "lock_not_available", raised when SET LOCAL lock_timeout expires
LOCK_NOT_AVAILABLE = "55P03"


class OccurrenceLockRegistry:
    """One asyncio.Lock per occurrence key, dropped once nobody holds it."""

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[tuple[str, str], asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def lock_for(self, key: OccurrenceKey) -> asyncio.Lock:
        name = (str(key.event_id), key.date_key)
        lock = self._locks.get(name)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[name] = lock
        return lock

    @contextlib.asynccontextmanager
    async def hold(self, key: OccurrenceKey, timeout: float) -> AsyncIterator[None]:
        lock = self.lock_for(key)
        try:
            await asyncio.wait_for(lock.acquire(), timeout)
        except asyncio.TimeoutError as e:
            logger.warning("Timed out waiting for occurrence lock %s", key)
            raise LockTimeout(key.event_id, key.date_key, timeout) from e
        try:
            yield
        finally:
            lock.release()


occurrence_locks = OccurrenceLockRegistry()


def effective_capacity(event: EventDefinition, override: OccurrenceOverride | None) -> int | None:
    return apply_occurrence_override(event, override).capacity


def to_signup_dto(signup: Signup) -> SignupDTO:
    return SignupDTO(
        uuid=signup.uuid,
        event_id=signup.event_id,
        date_key=signup.date_key,
        kind=SignupKind(signup.kind),
        status=SignupStatus(signup.status),
        member_id=signup.member_id,
        guest_name=signup.guest_name,
        guest_email=signup.guest_email,
        waitlist_position=signup.waitlist_position,
        slot_index=signup.slot_index,
        created_at=signup.created_at,
    )


class CapacityController(ABC):
    @abstractmethod
    async def signup(
        self,
        event_id: UUID,
        date_key: str | None,
        participant: ParticipantDTO,
        by: DateKind = DateKind.NATURAL,
    ) -> SignupResultDTO:
        """Admit a participant to an occurrence, or put them on its waitlist.

        A full occurrence is not an error: the signup lands on the waitlist.
        So does a signup while others are still waiting. With
        ``by=DateKind.DISPLAY`` the date is the one the occurrence is shown on.
        """
        raise NotImplementedError

    @abstractmethod
    async def cancel(self, signup_id: UUID) -> CancelResultDTO:
        """Cancel a signup, promoting the next waitlisted participant if a seat frees up."""
        raise NotImplementedError

    @abstractmethod
    async def rebalance(self, event_id: UUID, date_key: str) -> list[UUID]:
        """Promote waitlisted participants into any free seats, returning their signup ids."""
        raise NotImplementedError

    @abstractmethod
    async def count(self, event_id: UUID, date_key: str) -> OccurrenceCountDTO:
        raise NotImplementedError

    @abstractmethod
    async def list_signups(self, event_id: UUID, date_key: str) -> list[SignupDTO]:
        raise NotImplementedError


class SqlCapacityController(CapacityController):
    """SQL implementation of the capacity controller."""

    async_session_manager = staticmethod(partial(async_session_manager))

    def __init__(
        self,
        session_overwrite: AsyncSession | None = None,
        session_maker: async_sessionmaker | None = None,
        clock: RegionClock | None = None,
        lock_registry: OccurrenceLockRegistry | None = None,
        lock_timeout: float | None = None,
    ) -> None:
        self.session_overwrite = session_overwrite
        self.session_maker = session_maker
        self.clock = clock or RegionClock(settings.region_timezone)
        self.lock_registry = lock_registry or occurrence_locks
        self.lock_timeout = (
            settings.occurrence_lock_timeout_seconds if lock_timeout is None else lock_timeout
        )

    def _session(self, auto_commit: bool = True):
        return self.async_session_manager(
            auto_commit=auto_commit,
            session_overwrite=self.session_overwrite,
            session_maker=self.session_maker,
        )

    async def _load_occurrence(
        self, session: AsyncSession, event_id: UUID
    ) -> tuple[EventDefinition, list[OccurrenceOverride]]:
        event = to_event_definition(await fetch_event(session, event_id))
        return event, await fetch_event_overrides(session, event_id)

    async def _resolve(
        self,
        event_id: UUID,
        date_key: str | None,
        allow_cancelled: bool = False,
        by: DateKind = DateKind.NATURAL,
    ) -> OccurrenceKey:
        async with self._session(auto_commit=False) as session:
            event, overrides = await self._load_occurrence(session, event_id)
        return resolve_occurrence_key(
            event,
            date_key,
            overrides,
            self.clock,
            window_days=settings.default_window_days,
            allow_cancelled=allow_cancelled,
            by=by,
        )

    async def _lock_occurrence(self, session: AsyncSession, key: OccurrenceKey) -> None:
        """Create the occurrence's marker row if needed and lock it for this transaction."""
        dialect = session.get_bind().dialect.name
        if dialect == "postgresql":
            timeout_ms = int(self.lock_timeout * 1000)
            await session.execute(text(f"SET LOCAL lock_timeout = '{timeout_ms}ms'"))
            insert = pg_insert
        else:
            insert = sqlite_insert

        try:
            await session.execute(
                insert(OccurrenceLock)
                .values(event_id=key.event_id, date_key=key.date_key)
                .on_conflict_do_nothing()
            )
            await session.execute(
                select(OccurrenceLock)
                .where(
                    OccurrenceLock.event_id == key.event_id,
                    OccurrenceLock.date_key == key.date_key,
                )
                .with_for_update()
            )
        except DBAPIError as e:
            if getattr(e.orig, "sqlstate", None) == LOCK_NOT_AVAILABLE:
                logger.warning("Timed out waiting for occurrence row lock %s", key)
                raise LockTimeout(key.event_id, key.date_key, self.lock_timeout) from e
            raise

    async def _occurrence_signups(
        self, session: AsyncSession, key: OccurrenceKey, status: SignupStatus
    ) -> list[Signup]:
        order = (
            (Signup.waitlist_position, Signup.created_at, Signup.uuid)
            if status == SignupStatus.WAITLIST
            else (Signup.created_at, Signup.uuid)
        )
        result = await session.execute(
            select(Signup)
            .where(
                Signup.event_id == key.event_id,
                Signup.date_key == key.date_key,
                Signup.status == status,
            )
            .order_by(*order)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def _find_active_signup(
        self, session: AsyncSession, key: OccurrenceKey, participant: ParticipantDTO
    ) -> Signup | None:
        stmt = select(Signup).where(
            Signup.event_id == key.event_id,
            Signup.date_key == key.date_key,
            Signup.status != SignupStatus.CANCELLED,
        )
        if participant.member_id is not None:
            stmt = stmt.where(Signup.member_id == participant.member_id)
        elif participant.guest_email:
            stmt = stmt.where(func.lower(Signup.guest_email) == participant.guest_email.lower())
        else:
            stmt = stmt.where(
                Signup.member_id.is_(None),
                func.lower(Signup.guest_name) == participant.guest_name.lower(),
            )
        result = await session.execute(stmt.limit(1))
        return result.scalar_one_or_none()

    @staticmethod
    def _lowest_free_slot(confirmed: list[Signup]) -> int:
        taken = {s.slot_index for s in confirmed if s.slot_index is not None}
        slot = 0
        while slot in taken:
            slot += 1
        return slot

    @staticmethod
    def _compact_waitlist(waitlist: list[Signup]) -> None:
        for position, signup in enumerate(waitlist, start=1):
            signup.waitlist_position = position

    @staticmethod
    def _transition(signup: Signup, target: SignupStatus) -> None:
        current = SignupStatus(signup.status)
        if target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransitionError(signup.uuid, current, target)
        signup.status = target

    async def _promote_waitlisted(
        self,
        session: AsyncSession,
        key: OccurrenceKey,
        event: EventDefinition,
        capacity: int | None,
        freed_slot: int | None = None,
    ) -> tuple[list[Signup], list[Signup], list[Signup]]:
        """Move waitlisted signups into free seats in waitlist order.

        Returns the confirmed signups, the remaining waitlist and the promoted
        signups. Must run under the occurrence lock.
        """
        confirmed = await self._occurrence_signups(session, key, SignupStatus.CONFIRMED)
        waitlist = await self._occurrence_signups(session, key, SignupStatus.WAITLIST)

        promoted = []
        while waitlist and (capacity is None or len(confirmed) < capacity):
            signup = waitlist.pop(0)
            self._transition(signup, SignupStatus.CONFIRMED)
            signup.waitlist_position = None
            if event.has_timeslots:
                signup.slot_index = (
                    freed_slot if freed_slot is not None else self._lowest_free_slot(confirmed)
                )
                freed_slot = None
            confirmed.append(signup)
            promoted.append(signup)

        self._compact_waitlist(waitlist)
        await session.flush()
        return confirmed, waitlist, promoted

    async def signup(
        self,
        event_id: UUID,
        date_key: str | None,
        participant: ParticipantDTO,
        by: DateKind = DateKind.NATURAL,
    ) -> SignupResultDTO:
        if participant.member_id is None and not (participant.guest_name or "").strip():
            raise InvalidParticipantError()

        key = await self._resolve(event_id, date_key, by=by)

        async with self.lock_registry.hold(key, self.lock_timeout):
            async with self._session() as session:
                await self._lock_occurrence(session, key)

                # re-read under the lock, the occurrence may have been cancelled meanwhile.
                # The locked natural key stays the identity, wherever it is displayed now.
                event, overrides = await self._load_occurrence(session, event_id)
                resolve_occurrence_key(event, key.date_key, overrides, self.clock)
                override = next(
                    (o for o in overrides if o.date_key == key.date_key), None
                )
                capacity = effective_capacity(event, override)

                existing = await self._find_active_signup(session, key, participant)
                if existing is not None:
                    raise DuplicateSignupError(event_id, key.date_key, existing.uuid)

                confirmed, waitlist, promoted = await self._promote_waitlisted(
                    session, key, event, capacity
                )
                signup = Signup(
                    uuid=uuid4(),
                    event_id=event_id,
                    date_key=key.date_key,
                    kind=SignupKind.TIMESLOT if event.has_timeslots else SignupKind.RSVP,
                    member_id=participant.member_id,
                    guest_name=participant.guest_name,
                    guest_email=participant.guest_email,
                )

                # nobody jumps the queue: seats left after promotion mean an empty waitlist
                if not waitlist and (capacity is None or len(confirmed) < capacity):
                    signup.status = SignupStatus.CONFIRMED
                    if event.has_timeslots:
                        signup.slot_index = self._lowest_free_slot(confirmed)
                else:
                    signup.status = SignupStatus.WAITLIST
                    signup.waitlist_position = (
                        max((s.waitlist_position or 0 for s in waitlist), default=0) + 1
                    )

                session.add(signup)
                await session.flush()

                result = SignupResultDTO(
                    signup_id=signup.uuid,
                    event_id=event_id,
                    date_key=key.date_key,
                    status=signup.status,
                    waitlist_position=signup.waitlist_position,
                    slot_index=signup.slot_index,
                )

        for signup in promoted:
            logger.info("Promoted signup %s from the waitlist for %s", signup.uuid, key)
        logger.info(
            "Signup %s for %s: %s (waitlist position %s)",
            result.signup_id,
            key,
            result.status.value,
            result.waitlist_position,
        )
        return result

    async def cancel(self, signup_id: UUID) -> CancelResultDTO:
        async with self._session(auto_commit=False) as session:
            signup = await session.get(Signup, signup_id)
            if signup is None:
                raise SignupNotFoundError(signup_id)
            key = OccurrenceKey(signup.event_id, signup.date_key)

        async with self.lock_registry.hold(key, self.lock_timeout):
            async with self._session() as session:
                await self._lock_occurrence(session, key)
                signup = await session.get(Signup, signup_id, populate_existing=True)
                previous = SignupStatus(signup.status)
                self._transition(signup, SignupStatus.CANCELLED)
                signup.cancelled_at = self.clock.now()
                freed_slot = signup.slot_index
                signup.waitlist_position = None
                signup.slot_index = None
                await session.flush()

                event, overrides = await self._load_occurrence(session, key.event_id)
                override = next((o for o in overrides if o.date_key == key.date_key), None)
                _, _, promoted = await self._promote_waitlisted(
                    session, key, event, effective_capacity(event, override), freed_slot
                )

                first = promoted[0] if promoted else None
                result = CancelResultDTO(
                    signup_id=signup.uuid,
                    date_key=key.date_key,
                    promoted_signup_id=first.uuid if first else None,
                    promoted_member_id=first.member_id if first else None,
                    promoted_guest_name=first.guest_name if first else None,
                )

        logger.info("Signup %s for %s cancelled (was %s)", signup_id, key, previous.value)
        for promoted_signup in promoted:
            logger.info("Promoted signup %s from the waitlist for %s", promoted_signup.uuid, key)
        return result

    async def rebalance(self, event_id: UUID, date_key: str) -> list[UUID]:
        key = OccurrenceKey(event_id, date_key)
        async with self.lock_registry.hold(key, self.lock_timeout):
            async with self._session() as session:
                await self._lock_occurrence(session, key)
                event, overrides = await self._load_occurrence(session, event_id)
                override = next((o for o in overrides if o.date_key == date_key), None)
                _, _, promoted = await self._promote_waitlisted(
                    session, key, event, effective_capacity(event, override)
                )
                promoted_ids = [s.uuid for s in promoted]

        if promoted_ids:
            logger.info(
                "Capacity change on %s promoted %s waitlisted signups", key, len(promoted_ids)
            )
        return promoted_ids

    async def count(self, event_id: UUID, date_key: str) -> OccurrenceCountDTO:
        async with self._session(auto_commit=False) as session:
            event, overrides = await self._load_occurrence(session, event_id)
            key = resolve_occurrence_key(
                event, date_key, overrides, self.clock, allow_cancelled=True
            )
            override = next((o for o in overrides if o.date_key == key.date_key), None)

            # both halves of the key, never the event alone
            result = await session.execute(
                select(Signup.status, func.count())
                .where(Signup.event_id == key.event_id, Signup.date_key == key.date_key)
                .group_by(Signup.status)
            )
            counts = {SignupStatus(status): total for status, total in result.all()}

        return OccurrenceCountDTO(
            event_id=event_id,
            date_key=key.date_key,
            confirmed=counts.get(SignupStatus.CONFIRMED, 0),
            waitlist_length=counts.get(SignupStatus.WAITLIST, 0),
            capacity=effective_capacity(event, override),
        )

    async def list_signups(self, event_id: UUID, date_key: str) -> list[SignupDTO]:
        async with self._session(auto_commit=False) as session:
            event, overrides = await self._load_occurrence(session, event_id)
            key = resolve_occurrence_key(
                event, date_key, overrides, self.clock, allow_cancelled=True
            )
            confirmed = await self._occurrence_signups(session, key, SignupStatus.CONFIRMED)
            waitlist = await self._occurrence_signups(session, key, SignupStatus.WAITLIST)

        confirmed.sort(key=lambda s: (s.slot_index is None, s.slot_index or 0))
        return [to_signup_dto(s) for s in confirmed + waitlist]
