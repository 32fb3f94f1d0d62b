from datetime import datetime, timezone

import pytest

from happenings.occurrences.dates import (
    FixedClock,
    RegionClock,
    add_days,
    days_between,
    format_date_group_header,
    format_date_key_for_display,
    format_date_key_short,
    is_valid_date_key,
    iter_month_starts,
    parse_date_key,
    today,
    weekday_index,
)
from happenings.occurrences.errors import InvalidDateError


def test_today_uses_region_not_utc():
    # 05:00 UTC on the 6th is still the evening of the 5th in Denver
    clock = RegionClock(
        "America/Denver", now=lambda: datetime(2026, 2, 6, 5, 0, tzinfo=timezone.utc)
    )
    assert today(clock) == "2026-02-05"


def test_fixed_clock():
    clock = FixedClock("2026-02-05")
    assert clock.today() == "2026-02-05"
    assert add_days(today(clock), 0) == today(clock)


def test_unknown_region_is_rejected():
    with pytest.raises(ValueError):
        RegionClock("Not/AZone")


@pytest.mark.parametrize(
    "date_key, days, expected",
    [
        ("2026-01-31", 1, "2026-02-01"),
        ("2026-12-31", 1, "2027-01-01"),
        ("2024-02-28", 1, "2024-02-29"),
        ("2026-03-07", 1, "2026-03-08"),  # spring forward in Denver
        ("2026-11-01", 1, "2026-11-02"),  # fall back
        ("2026-03-01", -1, "2026-02-28"),
    ],
)
def test_add_days(date_key, days, expected):
    assert add_days(date_key, days) == expected


@pytest.mark.parametrize("value", ["2026-2-5", "2026-02-30", "yesterday", "", None, 20260205])
def test_malformed_date_keys(value):
    assert not is_valid_date_key(value)
    with pytest.raises(InvalidDateError):
        parse_date_key(value)


def test_add_days_rejects_non_integer_offset():
    with pytest.raises(InvalidDateError):
        add_days("2026-02-05", 1.5)


def test_add_days_overflow():
    with pytest.raises(InvalidDateError):
        add_days("9999-12-31", 1)


def test_weekday_index_starts_on_sunday():
    assert weekday_index("2026-02-01") == 0
    assert weekday_index("2026-02-05") == 4
    assert weekday_index("2026-02-07") == 6


def test_days_between():
    assert days_between("2026-02-01", "2026-03-01") == 28


def test_iter_month_starts():
    months = [d.isoformat() for d in iter_month_starts("2025-12-15", "2026-02-01")]
    assert months == ["2025-12-01", "2026-01-01", "2026-02-01"]


def test_display_formats():
    assert format_date_key_for_display("2026-02-05") == "Thursday, February 5, 2026"
    assert format_date_key_short("2026-02-05") == "Thu, Feb 5"
    assert format_date_group_header("2026-02-05", "2026-02-05") == "Today"
    assert format_date_group_header("2026-02-06", "2026-02-05") == "Tomorrow"
    assert format_date_group_header("2026-02-07", "2026-02-05") == "Sat, Feb 7"
