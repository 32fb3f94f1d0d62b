from uuid import UUID, uuid4

import pytest

from happenings.events.dtos import (
    CancelResultDTO,
    InvalidTransitionError,
    LockTimeout,
    OccurrenceCountDTO,
    ParticipantDTO,
    SignupDTO,
    SignupKind,
    SignupResultDTO,
    SignupStatus,
)
from happenings.events.features.signups.router import get_capacity_controller
from happenings.events.features.signups.write_model import CapacityController
from happenings.events.urls import (
    CANCEL_SIGNUP_URL,
    EVENT_SIGNUPS_URL,
    OCCURRENCE_COUNT_URL,
    OCCURRENCE_SIGNUPS_URL,
)
from happenings.occurrences.errors import OccurrenceCancelledError
from happenings.occurrences.keys import DateKind


class InMemoryCapacityController(CapacityController):
    """In-memory capacity controller for testing."""

    def __init__(self, capacity: int | None, error: Exception | None = None):
        self.capacity = capacity
        self.error = error
        self.signups: dict[UUID, SignupDTO] = {}
        self.dates_by: list[DateKind] = []

    def _occurrence(self, event_id, date_key, status):
        return [
            s
            for s in self.signups.values()
            if s.event_id == event_id and s.date_key == date_key and s.status == status
        ]

    async def signup(
        self, event_id, date_key, participant: ParticipantDTO, by=DateKind.NATURAL
    ) -> SignupResultDTO:
        if self.error:
            raise self.error
        self.dates_by.append(by)
        date_key = date_key or "2026-02-12"
        confirmed = self._occurrence(event_id, date_key, SignupStatus.CONFIRMED)
        waitlist = self._occurrence(event_id, date_key, SignupStatus.WAITLIST)
        full = self.capacity is not None and len(confirmed) >= self.capacity
        signup = SignupDTO(
            uuid=uuid4(),
            event_id=event_id,
            date_key=date_key,
            kind=SignupKind.RSVP,
            status=SignupStatus.WAITLIST if full else SignupStatus.CONFIRMED,
            guest_name=participant.guest_name,
            waitlist_position=len(waitlist) + 1 if full else None,
        )
        self.signups[signup.uuid] = signup
        return SignupResultDTO(
            signup_id=signup.uuid,
            event_id=event_id,
            date_key=date_key,
            status=signup.status,
            waitlist_position=signup.waitlist_position,
        )

    async def cancel(self, signup_id) -> CancelResultDTO:
        if self.error:
            raise self.error
        signup = self.signups[signup_id]
        return CancelResultDTO(signup_id=signup_id, date_key=signup.date_key)

    async def rebalance(self, event_id, date_key) -> list[UUID]:
        return []

    async def count(self, event_id, date_key) -> OccurrenceCountDTO:
        if self.error:
            raise self.error
        return OccurrenceCountDTO(
            event_id=event_id,
            date_key=date_key,
            confirmed=len(self._occurrence(event_id, date_key, SignupStatus.CONFIRMED)),
            waitlist_length=len(self._occurrence(event_id, date_key, SignupStatus.WAITLIST)),
            capacity=self.capacity,
        )

    async def list_signups(self, event_id, date_key) -> list[SignupDTO]:
        return self._occurrence(event_id, date_key, SignupStatus.CONFIRMED) + self._occurrence(
            event_id, date_key, SignupStatus.WAITLIST
        )


@pytest.mark.asyncio
async def test_signup_confirmed_then_waitlisted(client_factory):
    controller = InMemoryCapacityController(capacity=1)
    event_id = uuid4()
    overrides = {get_capacity_controller: lambda: controller}

    async with client_factory(overrides) as client:
        first = await client.post(
            url=EVENT_SIGNUPS_URL.format(event_id=event_id),
            json={"date_key": "2026-02-12", "guest_name": "Ana"},
        )
        second = await client.post(
            url=EVENT_SIGNUPS_URL.format(event_id=event_id),
            json={"date_key": "2026-02-12", "guest_name": "Ben", "guest_email": "ben@example.com"},
        )
        count = await client.get(
            url=OCCURRENCE_COUNT_URL.format(event_id=event_id, date_key="2026-02-12")
        )
        listed = await client.get(
            url=OCCURRENCE_SIGNUPS_URL.format(event_id=event_id, date_key="2026-02-12")
        )

    assert first.status_code == 201
    assert first.json()["status"] == "confirmed"
    assert second.status_code == 201
    data = second.json()
    assert data["status"] == "waitlist"
    assert data["waitlist_position"] == 1
    assert "#1 on the waitlist" in data["message"]

    assert count.json() == {
        "event_id": str(event_id),
        "date_key": "2026-02-12",
        "confirmed": 1,
        "waitlist_length": 1,
        "capacity": 1,
        "remaining": 0,
    }
    assert [s["guest_name"] for s in listed.json()] == ["Ana", "Ben"]


@pytest.mark.asyncio
async def test_cancel_signup(client_factory):
    controller = InMemoryCapacityController(capacity=None)
    overrides = {get_capacity_controller: lambda: controller}

    async with client_factory(overrides) as client:
        created = await client.post(
            url=EVENT_SIGNUPS_URL.format(event_id=uuid4()), json={"guest_name": "Ana"}
        )
        signup_id = created.json()["signup_id"]
        response = await client.post(url=CANCEL_SIGNUP_URL.format(signup_id=signup_id))

    assert response.status_code == 200
    assert response.json()["signup_id"] == signup_id
    assert response.json()["promoted_signup_id"] is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error, status_code",
    [
        (OccurrenceCancelledError(uuid4(), "2026-02-12"), 409),
        (InvalidTransitionError(uuid4(), SignupStatus.CANCELLED, SignupStatus.CANCELLED), 409),
        (LockTimeout(uuid4(), "2026-02-12", 5.0), 503),
    ],
)
async def test_domain_errors_map_to_http(client_factory, error, status_code):
    controller = InMemoryCapacityController(capacity=1, error=error)
    overrides = {get_capacity_controller: lambda: controller}

    async with client_factory(overrides) as client:
        response = await client.post(
            url=EVENT_SIGNUPS_URL.format(event_id=uuid4()), json={"guest_name": "Ana"}
        )

    assert response.status_code == status_code
    if status_code == 503:
        assert response.headers["retry-after"] == "1"


@pytest.mark.asyncio
async def test_invalid_guest_email_is_rejected(client_factory):
    controller = InMemoryCapacityController(capacity=1)
    overrides = {get_capacity_controller: lambda: controller}

    async with client_factory(overrides) as client:
        response = await client.post(
            url=EVENT_SIGNUPS_URL.format(event_id=uuid4()),
            json={"guest_name": "Ana", "guest_email": "not-an-email"},
        )

    assert response.status_code == 422
    assert controller.signups == {}


@pytest.mark.asyncio
async def test_signup_by_display_date(client_factory):
    controller = InMemoryCapacityController(capacity=None)
    overrides = {get_capacity_controller: lambda: controller}

    async with client_factory(overrides) as client:
        by_display = await client.post(
            url=EVENT_SIGNUPS_URL.format(event_id=uuid4()),
            json={"display_date": "2026-02-14", "guest_name": "Ana"},
        )
        by_key = await client.post(
            url=EVENT_SIGNUPS_URL.format(event_id=uuid4()),
            json={"date_key": "2026-02-12", "display_date": "2026-02-14", "guest_name": "Ben"},
        )

    assert by_display.status_code == 201
    assert by_display.json()["date_key"] == "2026-02-14"
    assert by_key.json()["date_key"] == "2026-02-12"
    assert controller.dates_by == [DateKind.DISPLAY, DateKind.NATURAL]
