"""Recurrence evaluator.

Turns the recurrence fields of an event row into the date keys the event
occurs on inside a bounded window. Only a small vocabulary is understood:

* one-off events (no rule, no day of week)
* weekly and every-other-week on one weekday
* ordinal weekdays of the month: "1st", "3rd", "last", "1st & 3rd", ...
* the matching RRULE subset: ``FREQ=WEEKLY[;INTERVAL=2][;BYDAY=TH]`` and
  ``FREQ=MONTHLY;BYDAY=1TH,3TH``

Day of week numbering is 0 = Sunday ... 6 = Saturday throughout.
"""

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time
from enum import Enum

from dateutil.rrule import FR, MO, MONTHLY, SA, SU, TH, TU, WE, WEEKLY, rrule

from happenings.occurrences.dates import DAY_NAMES, parse_date_key, to_date_key, weekday_index
from happenings.occurrences.errors import InvalidRecurrenceDescriptor

logger = logging.getLogger(__name__)

# dateutil weekday constants indexed by our day_of_week
WEEKDAYS = (SU, MO, TU, WE, TH, FR, SA)
RRULE_DAY_CODES = ("SU", "MO", "TU", "WE", "TH", "FR", "SA")

LAST = -1
ALLOWED_ORDINALS = frozenset({1, 2, 3, 4, 5, LAST})

ORDINAL_WORDS = {
    "1st": 1,
    "2nd": 2,
    "3rd": 3,
    "4th": 4,
    "5th": 5,
    "first": 1,
    "second": 2,
    "third": 3,
    "fourth": 4,
    "fifth": 5,
    "last": LAST,
}
ORDINAL_LABELS = {1: "1st", 2: "2nd", 3: "3rd", 4: "4th", 5: "5th", LAST: "Last"}

_ORDINAL_SEPARATORS = re.compile(r"[/&,]|\band\b")
_RRULE_BYDAY = re.compile(r"^([+-]?\d)?([A-Z]{2})$")


class RecurrenceKind(str, Enum):
    NONE = "none"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    ORDINAL_WEEKDAY = "ordinal_weekday"


def _ordinal_sort_key(ordinal: int) -> int:
    # "last" always sorts after the numbered ordinals
    return 99 if ordinal == LAST else ordinal


@dataclass(frozen=True)
class RecurrenceDescriptor:
    kind: RecurrenceKind
    day_of_week: int | None = None
    ordinals: tuple[int, ...] = ()

    def __post_init__(self) -> None:
        if self.day_of_week is not None and self.day_of_week not in range(7):
            raise InvalidRecurrenceDescriptor(
                None, f"day_of_week must be 0-6, got {self.day_of_week}"
            )
        if self.kind is RecurrenceKind.NONE:
            return
        if self.day_of_week is None:
            raise InvalidRecurrenceDescriptor(None, f"{self.kind.value} rule needs a day_of_week")
        if self.kind is RecurrenceKind.ORDINAL_WEEKDAY:
            if not self.ordinals:
                raise InvalidRecurrenceDescriptor(None, "ordinal rule needs at least one ordinal")
            bad = [o for o in self.ordinals if o not in ALLOWED_ORDINALS]
            if bad:
                raise InvalidRecurrenceDescriptor(None, f"unsupported ordinals {bad}")
        elif self.ordinals:
            raise InvalidRecurrenceDescriptor(None, f"{self.kind.value} rule cannot carry ordinals")

    @property
    def is_recurring(self) -> bool:
        return self.kind is not RecurrenceKind.NONE

    @property
    def interval(self) -> int:
        return 2 if self.kind is RecurrenceKind.BIWEEKLY else 1


@dataclass(frozen=True)
class RecurrenceDate:
    date_key: str
    is_confident: bool = True


def parse_recurrence(
    recurrence_rule: str | None,
    day_of_week: int | None = None,
    event_date: str | None = None,
) -> RecurrenceDescriptor:
    """Interpret the recurrence columns of an event row.

    Raises InvalidRecurrenceDescriptor for rules outside the supported
    vocabulary and for contradictory combinations.
    """
    rule = (recurrence_rule or "").strip()
    try:
        if rule.upper().startswith(("RRULE:", "FREQ=")):
            return _parse_rrule(rule, day_of_week, event_date)
        return _parse_text_rule(rule.lower(), day_of_week, event_date)
    except InvalidRecurrenceDescriptor as e:
        if e.rule is None:
            raise InvalidRecurrenceDescriptor(recurrence_rule, e.reason) from e
        raise


def _weekly_day(day_of_week: int | None, event_date: str | None) -> int | None:
    if day_of_week is not None:
        return day_of_week
    if event_date:
        return weekday_index(event_date)
    return None


def _parse_text_rule(
    rule: str, day_of_week: int | None, event_date: str | None
) -> RecurrenceDescriptor:
    if rule in ("", "none"):
        if day_of_week is not None:
            return RecurrenceDescriptor(RecurrenceKind.WEEKLY, day_of_week)
        return RecurrenceDescriptor(RecurrenceKind.NONE)

    if rule == "weekly":
        return RecurrenceDescriptor(RecurrenceKind.WEEKLY, _weekly_day(day_of_week, event_date))

    if rule in ("biweekly", "every other week"):
        return RecurrenceDescriptor(RecurrenceKind.BIWEEKLY, _weekly_day(day_of_week, event_date))

    parts = [p.strip() for p in _ORDINAL_SEPARATORS.split(rule) if p.strip()]
    if parts and all(p in ORDINAL_WORDS for p in parts):
        ordinals = sorted({ORDINAL_WORDS[p] for p in parts}, key=_ordinal_sort_key)
        return RecurrenceDescriptor(
            RecurrenceKind.ORDINAL_WEEKDAY, day_of_week, tuple(ordinals)
        )

    raise InvalidRecurrenceDescriptor(rule, "unsupported recurrence rule")


def _parse_rrule(rule: str, day_of_week: int | None, event_date: str | None) -> RecurrenceDescriptor:
    body = re.sub(r"^RRULE:", "", rule, flags=re.IGNORECASE)
    parts: dict[str, str] = {}
    for part in re.split(r"[;\n]+", body):
        if not part.strip():
            continue
        key, sep, value = part.partition("=")
        if not sep or not value.strip():
            raise InvalidRecurrenceDescriptor(rule, f"malformed RRULE part {part!r}")
        parts[key.strip().upper()] = value.strip().upper()

    unsupported = set(parts) - {"FREQ", "INTERVAL", "BYDAY", "WKST"}
    if unsupported:
        raise InvalidRecurrenceDescriptor(rule, f"unsupported RRULE parts {sorted(unsupported)}")

    try:
        interval = int(parts.get("INTERVAL", "1"))
    except ValueError as e:
        raise InvalidRecurrenceDescriptor(rule, "INTERVAL must be a number") from e

    byday: list[tuple[int | None, int]] = []
    for token in filter(None, parts.get("BYDAY", "").split(",")):
        match = _RRULE_BYDAY.match(token.strip())
        if not match or match.group(2) not in RRULE_DAY_CODES:
            raise InvalidRecurrenceDescriptor(rule, f"malformed BYDAY value {token!r}")
        ordinal = int(match.group(1)) if match.group(1) else None
        byday.append((ordinal, RRULE_DAY_CODES.index(match.group(2))))

    days = {day for _, day in byday}
    if len(days) > 1:
        raise InvalidRecurrenceDescriptor(rule, "only one weekday per rule is supported")
    rule_day = days.pop() if days else None
    if rule_day is not None and day_of_week is not None and rule_day != day_of_week:
        raise InvalidRecurrenceDescriptor(
            rule, f"BYDAY contradicts day_of_week {DAY_NAMES[day_of_week]}"
        )

    freq = parts.get("FREQ")
    if freq == "WEEKLY":
        if any(ordinal is not None for ordinal, _ in byday):
            raise InvalidRecurrenceDescriptor(rule, "weekly BYDAY cannot carry ordinals")
        if interval not in (1, 2):
            raise InvalidRecurrenceDescriptor(rule, "weekly INTERVAL must be 1 or 2")
        kind = RecurrenceKind.BIWEEKLY if interval == 2 else RecurrenceKind.WEEKLY
        day = rule_day if rule_day is not None else _weekly_day(day_of_week, event_date)
        return RecurrenceDescriptor(kind, day)

    if freq == "MONTHLY":
        if interval != 1:
            raise InvalidRecurrenceDescriptor(rule, "monthly INTERVAL must be 1")
        if not byday or any(ordinal is None for ordinal, _ in byday):
            raise InvalidRecurrenceDescriptor(rule, "monthly rules need ordinal BYDAY values")
        ordinals = sorted({ordinal for ordinal, _ in byday}, key=_ordinal_sort_key)
        return RecurrenceDescriptor(RecurrenceKind.ORDINAL_WEEKDAY, rule_day, tuple(ordinals))

    raise InvalidRecurrenceDescriptor(rule, f"unsupported FREQ {freq!r}")


def _midnight(day: date) -> datetime:
    return datetime.combine(day, time())


def evaluate(
    descriptor: RecurrenceDescriptor,
    start_key: str,
    end_key: str,
    anchor: str | None = None,
    end_date: str | None = None,
    max_occurrences: int | None = None,
    limit: int | None = None,
) -> list[RecurrenceDate]:
    """Date keys inside ``[start_key, end_key]`` on which the series occurs.

    ``anchor`` is the series start (the event_date); nothing before it is
    produced. ``max_occurrences`` caps the global sequence counted from the
    anchor. Without an anchor the global position of a window is unknown,
    so dates are still returned but flagged ``is_confident=False``.
    ``limit`` truncates the windowed result.
    """
    start = parse_date_key(start_key)
    end = parse_date_key(end_key)
    anchor_day = parse_date_key(anchor) if anchor else None
    if end_date:
        end = min(end, parse_date_key(end_date))
    if start > end or (max_occurrences is not None and max_occurrences <= 0):
        return []

    if descriptor.kind is RecurrenceKind.NONE:
        if anchor_day and start <= anchor_day <= end:
            return [RecurrenceDate(to_date_key(anchor_day))]
        return []

    if anchor_day and anchor_day > end:
        return []

    is_confident = True
    if anchor_day is None and (
        max_occurrences is not None or descriptor.kind is RecurrenceKind.BIWEEKLY
    ):
        is_confident = False

    counted = anchor_day is not None and max_occurrences is not None
    if anchor_day and (counted or descriptor.kind is RecurrenceKind.BIWEEKLY):
        # count and every-other-week phase both run from the series start
        dtstart = anchor_day
    else:
        dtstart = max(start, anchor_day) if anchor_day else start

    weekday = WEEKDAYS[descriptor.day_of_week]
    if descriptor.kind is RecurrenceKind.ORDINAL_WEEKDAY:
        freq = MONTHLY
        byweekday = [weekday(ordinal) for ordinal in descriptor.ordinals]
    else:
        freq = WEEKLY
        byweekday = weekday

    if counted:
        series = rrule(
            freq,
            dtstart=_midnight(dtstart),
            interval=descriptor.interval,
            byweekday=byweekday,
            count=max_occurrences,
        )
    else:
        series = rrule(
            freq,
            dtstart=_midnight(dtstart),
            interval=descriptor.interval,
            byweekday=byweekday,
            until=_midnight(end),
        )

    dates: list[RecurrenceDate] = []
    seen: set[str] = set()
    for occurrence in series:
        day = occurrence.date()
        if day > end:
            break
        if day < start:
            continue
        key = to_date_key(day)
        if key in seen:
            continue
        seen.add(key)
        dates.append(RecurrenceDate(key, is_confident))
        if limit is not None and len(dates) >= limit:
            break
    return dates


def label_for(descriptor: RecurrenceDescriptor) -> str:
    """Human label that always matches what evaluate() generates."""
    if descriptor.kind is RecurrenceKind.NONE:
        return "One-time"

    day_name = DAY_NAMES[descriptor.day_of_week]
    if descriptor.kind is RecurrenceKind.WEEKLY:
        return f"Every {day_name}"
    if descriptor.kind is RecurrenceKind.BIWEEKLY:
        return f"Every Other {day_name}"

    labels = [ORDINAL_LABELS[o] for o in descriptor.ordinals]
    if len(labels) == 1:
        return f"{labels[0]} {day_name} of the Month"
    return f"{' & '.join(labels)} {day_name}s"


def safe_evaluate(
    recurrence_rule: str | None,
    day_of_week: int | None,
    start_key: str,
    end_key: str,
    anchor: str | None = None,
    end_date: str | None = None,
    max_occurrences: int | None = None,
    limit: int | None = None,
    event_id: object = None,
) -> list[RecurrenceDate]:
    """Parse and evaluate in one step, logging instead of raising on bad rules."""
    try:
        descriptor = parse_recurrence(recurrence_rule, day_of_week, anchor)
    except InvalidRecurrenceDescriptor as e:
        logger.warning("Skipping event %s with malformed recurrence: %s", event_id, e)
        return []
    return evaluate(
        descriptor,
        start_key,
        end_key,
        anchor=anchor,
        end_date=end_date,
        max_occurrences=max_occurrences,
        limit=limit,
    )
