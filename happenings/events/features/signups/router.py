from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, EmailStr

from happenings.events.dtos import ParticipantDTO, SignupKind, SignupStatus
from happenings.events.http_errors import DOMAIN_ERRORS, to_http_exception
from happenings.events.features.signups.write_model import (
    CapacityController,
    SqlCapacityController,
)
from happenings.events.urls import (
    CANCEL_SIGNUP_URL,
    EVENT_SIGNUPS_URL,
    OCCURRENCE_COUNT_URL,
    OCCURRENCE_SIGNUPS_URL,
)
from happenings.occurrences.keys import DateKind

router = APIRouter()


class SignupSubmit(BaseModel):
    """Signup request.

    ``date_key`` is the occurrence's own date. ``display_date`` is the date it
    is shown on, used only without a date_key. With neither the next
    occurrence is used.
    """

    date_key: str | None = None
    display_date: str | None = None
    member_id: UUID | None = None
    guest_name: str | None = None
    guest_email: EmailStr | None = None


class SignupResponse(BaseModel):
    signup_id: UUID
    event_id: UUID
    date_key: str
    status: SignupStatus
    waitlist_position: int | None = None
    slot_index: int | None = None
    message: str


class CancelResponse(BaseModel):
    signup_id: UUID
    date_key: str
    promoted_signup_id: UUID | None = None
    promoted_member_id: UUID | None = None
    promoted_guest_name: str | None = None


class CountResponse(BaseModel):
    event_id: UUID
    date_key: str
    confirmed: int
    waitlist_length: int
    capacity: int | None = None
    remaining: int | None = None


class SignupEntryResponse(BaseModel):
    uuid: UUID
    kind: SignupKind
    status: SignupStatus
    member_id: UUID | None = None
    guest_name: str | None = None
    waitlist_position: int | None = None
    slot_index: int | None = None


def get_capacity_controller() -> CapacityController:
    """Dependency to get the capacity controller instance."""
    return SqlCapacityController()


@router.post(EVENT_SIGNUPS_URL, response_model=SignupResponse, status_code=201)
async def create_signup(
    event_id: UUID,
    request: SignupSubmit,
    controller: CapacityController = Depends(get_capacity_controller),
) -> SignupResponse:
    """
    Sign up for one occurrence of an event.
    A full occurrence puts the participant on the waitlist, which is still a success.
    """
    participant = ParticipantDTO(
        member_id=request.member_id,
        guest_name=request.guest_name,
        guest_email=request.guest_email,
    )
    if request.date_key is None and request.display_date is not None:
        date_key, by = request.display_date, DateKind.DISPLAY
    else:
        date_key, by = request.date_key, DateKind.NATURAL
    try:
        result = await controller.signup(event_id, date_key, participant, by=by)
    except DOMAIN_ERRORS as e:
        raise to_http_exception(e) from e

    if result.status == SignupStatus.CONFIRMED:
        message = "You're in!"
    else:
        message = f"This one is full. You're #{result.waitlist_position} on the waitlist."
    return SignupResponse(
        signup_id=result.signup_id,
        event_id=result.event_id,
        date_key=result.date_key,
        status=result.status,
        waitlist_position=result.waitlist_position,
        slot_index=result.slot_index,
        message=message,
    )


@router.post(CANCEL_SIGNUP_URL, response_model=CancelResponse)
async def cancel_signup(
    signup_id: UUID,
    controller: CapacityController = Depends(get_capacity_controller),
) -> CancelResponse:
    try:
        result = await controller.cancel(signup_id)
    except DOMAIN_ERRORS as e:
        raise to_http_exception(e) from e

    return CancelResponse(
        signup_id=result.signup_id,
        date_key=result.date_key,
        promoted_signup_id=result.promoted_signup_id,
        promoted_member_id=result.promoted_member_id,
        promoted_guest_name=result.promoted_guest_name,
    )


@router.get(OCCURRENCE_COUNT_URL, response_model=CountResponse)
async def get_occurrence_count(
    event_id: UUID,
    date_key: str,
    controller: CapacityController = Depends(get_capacity_controller),
) -> CountResponse:
    try:
        count = await controller.count(event_id, date_key)
    except DOMAIN_ERRORS as e:
        raise to_http_exception(e) from e

    return CountResponse(
        event_id=count.event_id,
        date_key=count.date_key,
        confirmed=count.confirmed,
        waitlist_length=count.waitlist_length,
        capacity=count.capacity,
        remaining=count.remaining,
    )


@router.get(OCCURRENCE_SIGNUPS_URL, response_model=list[SignupEntryResponse])
async def list_occurrence_signups(
    event_id: UUID,
    date_key: str,
    controller: CapacityController = Depends(get_capacity_controller),
) -> list[SignupEntryResponse]:
    try:
        signups = await controller.list_signups(event_id, date_key)
    except DOMAIN_ERRORS as e:
        raise to_http_exception(e) from e

    return [
        SignupEntryResponse(
            uuid=s.uuid,
            kind=s.kind,
            status=s.status,
            member_id=s.member_id,
            guest_name=s.guest_name,
            waitlist_position=s.waitlist_position,
            slot_index=s.slot_index,
        )
        for s in signups
    ]
