"""Calendar primitives.

Every date in the system is a *date key*: a ``YYYY-MM-DD`` string for a
calendar day in the deployment's region. Keys are produced here and nowhere
else, so the expansion engine and the signup path always agree on which day
an occurrence belongs to.

"Today" is never read from the raw server clock. It comes from a clock
object bound to the configured region and passed in by the caller, which
keeps date comparisons correct around midnight and lets tests pin the date.
"""

import re
from collections.abc import Callable, Iterator
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from happenings.occurrences.errors import InvalidDateError

DATE_KEY_FORMAT = "%Y-%m-%d"
DATE_KEY_REGEX = re.compile(r"^\d{4}-\d{2}-\d{2}$")

DAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")


class RegionClock:
    """Clock bound to a single IANA region."""

    def __init__(self, timezone: str, now: Callable[[], datetime] | None = None) -> None:
        try:
            self.tz = ZoneInfo(timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown region timezone: {timezone}") from e
        self._now = now

    def now(self) -> datetime:
        if self._now is not None:
            return self._now().astimezone(self.tz)
        return datetime.now(self.tz)

    def today(self) -> str:
        return to_date_key(self.now().date())


class FixedClock(RegionClock):
    """Clock pinned to a date key, for tests and backfills."""

    def __init__(self, date_key: str, timezone: str = "America/Denver") -> None:
        day = parse_date_key(date_key)
        super().__init__(timezone)
        self._fixed = datetime(day.year, day.month, day.day, 12, 0, tzinfo=self.tz)

    def now(self) -> datetime:
        return self._fixed


def today(clock: RegionClock) -> str:
    return clock.today()


def is_valid_date_key(value: object) -> bool:
    if not isinstance(value, str) or not DATE_KEY_REGEX.match(value):
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


def parse_date_key(value: object) -> date:
    if not is_valid_date_key(value):
        raise InvalidDateError(value)
    return date.fromisoformat(value)


def to_date_key(day: date) -> str:
    if isinstance(day, datetime):
        day = day.date()
    if not isinstance(day, date):
        raise InvalidDateError(day)
    return day.strftime(DATE_KEY_FORMAT)


def add_days(date_key: str, days: int) -> str:
    if not isinstance(days, int) or isinstance(days, bool):
        raise InvalidDateError(days)
    try:
        return to_date_key(parse_date_key(date_key) + timedelta(days=days))
    except OverflowError as e:
        raise InvalidDateError(date_key) from e


def days_between(start_key: str, end_key: str) -> int:
    return (parse_date_key(end_key) - parse_date_key(start_key)).days


def weekday_index(date_key: str) -> int:
    """Day of week for a date key, 0 = Sunday ... 6 = Saturday."""
    return (parse_date_key(date_key).weekday() + 1) % 7


def iter_month_starts(start_key: str, end_key: str) -> Iterator[date]:
    """First day of every month touching ``[start_key, end_key]``."""
    current = parse_date_key(start_key).replace(day=1)
    end = parse_date_key(end_key)
    while current <= end:
        yield current
        if current.month == 12:
            current = current.replace(year=current.year + 1, month=1)
        else:
            current = current.replace(month=current.month + 1)


def format_date_key_for_display(date_key: str) -> str:
    """2026-02-05 -> "Thursday, February 5, 2026"."""
    day = parse_date_key(date_key)
    return f"{DAY_NAMES[weekday_index(date_key)]}, {day.strftime('%B')} {day.day}, {day.year}"


def format_date_key_short(date_key: str) -> str:
    """2026-02-05 -> "Thu, Feb 5"."""
    day = parse_date_key(date_key)
    return f"{DAY_NAMES[weekday_index(date_key)][:3]}, {day.strftime('%b')} {day.day}"


def format_date_group_header(date_key: str, today_key: str) -> str:
    if date_key == today_key:
        return "Today"
    if date_key == add_days(today_key, 1):
        return "Tomorrow"
    return format_date_key_short(date_key)
