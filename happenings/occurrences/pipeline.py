from typing import Iterable

from happenings.occurrences.dates import add_days, parse_date_key
from happenings.occurrences.expander import (
    EventDefinition,
    ExpansionCaps,
    ExpansionResult,
    OccurrenceEntry,
    expand_event,
    expand_events,
)
from happenings.occurrences.overrides import OccurrenceOverride, Timeline, resolve

DEFAULT_BUFFER_DAYS = 60


def buffered_window(start_key: str, end_key: str, buffer_days: int) -> tuple[str, str]:
    return add_days(start_key, -buffer_days), add_days(end_key, buffer_days)


def _add_moved_in(
    expansion: ExpansionResult,
    events: list[EventDefinition],
    overrides: list[OccurrenceOverride],
    start_key: str,
    end_key: str,
    buffer_days: int,
) -> None:
    """Add occurrences whose natural date is outside the window but which are
    rescheduled into it, looking at most ``buffer_days`` beyond either edge."""
    start, end = parse_date_key(start_key), parse_date_key(end_key)
    buffered_start, buffered_end = (
        parse_date_key(d) for d in buffered_window(start_key, end_key, buffer_days)
    )

    unknown = {str(e.id) for e in expansion.unknown_events}
    processed = {
        str(e.id): e
        for e in events[: expansion.metrics.events_processed]
        if str(e.id) not in unknown
    }

    for override in overrides:
        target = override.reschedule_target
        event = processed.get(str(override.event_id))
        if target is None or event is None:
            continue
        natural = parse_date_key(override.date_key)
        if start <= natural <= end or not buffered_start <= natural <= buffered_end:
            continue
        if not start <= parse_date_key(target) <= end:
            continue

        dates = expand_event(event, override.date_key, override.date_key)
        if not dates:
            continue
        expansion.groups.setdefault(override.date_key, []).append(
            OccurrenceEntry(
                event=event,
                effective=event,
                date_key=override.date_key,
                display_date=override.date_key,
                is_confident=dates[0].is_confident,
            )
        )
        expansion.metrics.total_occurrences += 1


def build_timeline(
    events: Iterable[EventDefinition],
    overrides: Iterable[OccurrenceOverride],
    start_key: str,
    end_key: str,
    caps: ExpansionCaps | None = None,
    buffer_days: int = DEFAULT_BUFFER_DAYS,
) -> Timeline:
    """Expand, merge overrides and relocate, then trim to the display window.

    Caps apply to the display window only. Occurrences rescheduled into the
    window from up to ``buffer_days`` outside it are added on top.
    """
    events = list(events)
    overrides = list(overrides)
    expansion = expand_events(events, start_key, end_key, caps)
    _add_moved_in(expansion, events, overrides, start_key, end_key, buffer_days)
    return resolve(expansion, overrides).trim(start_key, end_key)
