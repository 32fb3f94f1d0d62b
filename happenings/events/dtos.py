from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from uuid import UUID

from happenings.occurrences.overrides import OverrideStatus


class EventNotFoundError(Exception):
    """Raised when an event id does not match a stored event."""

    def __init__(self, event_id: UUID) -> None:
        self.event_id = event_id
        super().__init__(f"Event '{event_id}' not found")


class SignupNotFoundError(Exception):
    """Raised when a signup id does not match a stored signup."""

    def __init__(self, signup_id: UUID) -> None:
        self.signup_id = signup_id
        super().__init__(f"Signup '{signup_id}' not found")


class DuplicateSignupError(Exception):
    """Raised when the participant already holds an active signup for the occurrence."""

    def __init__(self, event_id: UUID, date_key: str, signup_id: UUID) -> None:
        self.event_id = event_id
        self.date_key = date_key
        self.signup_id = signup_id
        super().__init__(f"Already signed up for {date_key} (signup '{signup_id}')")


class InvalidParticipantError(ValueError):
    """Raised when a signup names neither a member nor a guest."""

    def __init__(self) -> None:
        super().__init__("A signup needs a member_id or a guest_name")


class InvalidTransitionError(Exception):
    """Raised when a signup status change is not allowed."""

    def __init__(self, signup_id: UUID, current: "SignupStatus", target: "SignupStatus") -> None:
        self.signup_id = signup_id
        self.current = current
        self.target = target
        super().__init__(f"Signup '{signup_id}' cannot go from {current.value} to {target.value}")


class InvalidOverrideError(ValueError):
    """Raised when an override edit is rejected."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class LockTimeout(Exception):
    """Raised when the occurrence lock could not be taken in time. Safe to retry."""

    def __init__(self, event_id: UUID, date_key: str, timeout: float) -> None:
        self.event_id = event_id
        self.date_key = date_key
        self.timeout = timeout
        super().__init__(f"Occurrence {event_id}:{date_key} is busy, try again")


class SignupStatus(str, Enum):
    CONFIRMED = "confirmed"
    WAITLIST = "waitlist"
    CANCELLED = "cancelled"


class SignupKind(str, Enum):
    RSVP = "rsvp"
    TIMESLOT = "timeslot"


ALLOWED_TRANSITIONS = {
    SignupStatus.CONFIRMED: {SignupStatus.CANCELLED},
    SignupStatus.WAITLIST: {SignupStatus.CONFIRMED, SignupStatus.CANCELLED},
    SignupStatus.CANCELLED: set(),
}


@dataclass(frozen=True)
class ParticipantDTO:
    member_id: UUID | None = None
    guest_name: str | None = None
    guest_email: str | None = None


@dataclass(frozen=True)
class SignupResultDTO:
    signup_id: UUID
    event_id: UUID
    date_key: str
    status: SignupStatus
    waitlist_position: int | None = None
    slot_index: int | None = None


@dataclass(frozen=True)
class CancelResultDTO:
    signup_id: UUID
    date_key: str
    promoted_signup_id: UUID | None = None
    promoted_member_id: UUID | None = None
    promoted_guest_name: str | None = None


@dataclass(frozen=True)
class OccurrenceCountDTO:
    event_id: UUID
    date_key: str
    confirmed: int
    waitlist_length: int
    capacity: int | None = None

    @property
    def remaining(self) -> int | None:
        if self.capacity is None:
            return None
        return max(self.capacity - self.confirmed, 0)


@dataclass(frozen=True)
class SignupDTO:
    uuid: UUID
    event_id: UUID
    date_key: str
    kind: SignupKind
    status: SignupStatus
    member_id: UUID | None = None
    guest_name: str | None = None
    guest_email: str | None = None
    waitlist_position: int | None = None
    slot_index: int | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class OverrideDTO:
    event_id: UUID
    date_key: str
    status: OverrideStatus
    override_patch: dict = field(default_factory=dict)
    display_date: str | None = None
