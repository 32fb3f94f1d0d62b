"""Occurrence identity.

The signup path and the timeline path both derive occurrence keys through
``resolve_occurrence_key``. A date is taken as the occurrence identity unless
the caller asks for a display date to be mapped back to it.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable

from happenings.occurrences.dates import RegionClock, add_days, parse_date_key
from happenings.occurrences.errors import (
    OccurrenceCancelledError,
    UnknownOccurrenceError,
)
from happenings.occurrences.expander import EventDefinition, expand_event
from happenings.occurrences.overrides import OccurrenceOverride, build_override_map

DEFAULT_WINDOW_DAYS = 90


@dataclass(frozen=True)
class OccurrenceKey:
    event_id: Any
    date_key: str

    def __str__(self) -> str:
        return f"{self.event_id}:{self.date_key}"


def occurs_on(event: EventDefinition, date_key: str) -> bool:
    dates = expand_event(event, date_key, date_key)
    return bool(dates)


def compute_next_occurrence(
    event: EventDefinition, today: str, window_days: int = DEFAULT_WINDOW_DAYS
) -> str | None:
    """First natural occurrence on or after ``today`` within the window."""
    dates = expand_event(event, today, add_days(today, window_days), limit=1)
    if not dates:
        return None
    return dates[0].date_key


class DateKind(str, Enum):
    """What a caller-supplied date means.

    ``NATURAL`` is the occurrence identity as emitted in ``date_key``.
    ``DISPLAY`` is the date an occurrence is shown under, which differs from
    the natural date only for rescheduled occurrences.
    """

    NATURAL = "natural"
    DISPLAY = "display"


def resolve_occurrence_key(
    event: EventDefinition,
    date_key: str | None,
    overrides: Iterable[OccurrenceOverride],
    clock: RegionClock,
    window_days: int = DEFAULT_WINDOW_DAYS,
    allow_cancelled: bool = False,
    by: DateKind = DateKind.NATURAL,
) -> OccurrenceKey:
    """Canonical occurrence key for a request against ``event``.

    A natural ``date_key`` is returned unchanged as long as the event occurs
    on it, so a key handed out by the timeline always resolves to itself.
    With ``by=DateKind.DISPLAY`` the date is looked up among display dates
    and mapped to the natural key of the occurrence shown there. Without a
    date key the next occurrence from the region's today is used. Cancelled
    occurrences are rejected unless ``allow_cancelled`` is set, which read
    paths such as counts use.
    """
    override_map = build_override_map(overrides)

    if date_key is None:
        natural = compute_next_occurrence(event, clock.today(), window_days)
        if natural is None:
            raise UnknownOccurrenceError(event.id, clock.today())
    else:
        parse_date_key(date_key)
        if DateKind(by) is DateKind.DISPLAY:
            natural = _natural_date_displayed_on(event, date_key, override_map)
        elif occurs_on(event, date_key):
            natural = date_key
        else:
            raise UnknownOccurrenceError(event.id, date_key)

    override = override_map.get((str(event.id), natural))
    if override is not None and override.is_cancelled and not allow_cancelled:
        raise OccurrenceCancelledError(event.id, natural)
    return OccurrenceKey(event.id, natural)


def _natural_date_displayed_on(
    event: EventDefinition,
    display_date: str,
    override_map: dict[tuple[str, str], OccurrenceOverride],
) -> str:
    # a regular occurrence that stays put wins over one moved onto its date
    own = override_map.get((str(event.id), display_date))
    if occurs_on(event, display_date) and (own is None or own.reschedule_target is None):
        return display_date

    for (event_id, natural), override in override_map.items():
        if (
            event_id == str(event.id)
            and override.reschedule_target == display_date
            and occurs_on(event, natural)
        ):
            return natural
    raise UnknownOccurrenceError(event.id, display_date)
