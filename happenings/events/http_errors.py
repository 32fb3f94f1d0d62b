from fastapi import HTTPException

from happenings.events.dtos import (
    DuplicateSignupError,
    EventNotFoundError,
    InvalidOverrideError,
    InvalidParticipantError,
    InvalidTransitionError,
    LockTimeout,
    SignupNotFoundError,
)
from happenings.occurrences.errors import (
    InvalidDateError,
    OccurrenceCancelledError,
    UnknownOccurrenceError,
)

STATUS_CODES: dict[type[Exception], int] = {
    EventNotFoundError: 404,
    SignupNotFoundError: 404,
    InvalidDateError: 400,
    UnknownOccurrenceError: 400,
    InvalidOverrideError: 400,
    InvalidParticipantError: 422,
    OccurrenceCancelledError: 409,
    DuplicateSignupError: 409,
    InvalidTransitionError: 409,
    LockTimeout: 503,
}

DOMAIN_ERRORS = tuple(STATUS_CODES)


def to_http_exception(error: Exception) -> HTTPException:
    status_code = next(
        code for error_type, code in STATUS_CODES.items() if isinstance(error, error_type)
    )
    headers = {"Retry-After": "1"} if isinstance(error, LockTimeout) else None
    return HTTPException(status_code=status_code, detail=str(error), headers=headers)
