"""Occurrence expander.

Walks a batch of event definitions over a bounded window and emits one
occurrence entry per (event, date) pair, bucketed by date key. The expander
never touches storage; callers pre-fetch everything it needs.
"""

import logging
from dataclasses import dataclass, field
from datetime import time
from typing import Any, Iterable

from happenings.occurrences.dates import parse_date_key
from happenings.occurrences.errors import InvalidRecurrenceDescriptor
from happenings.occurrences.recurrence import (
    RecurrenceDate,
    RecurrenceDescriptor,
    RecurrenceKind,
    evaluate,
    parse_recurrence,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExpansionCaps:
    max_events: int = 200
    max_total_occurrences: int = 500
    max_occurrences_per_event: int = 40


@dataclass(frozen=True)
class EventDefinition:
    id: Any
    title: str
    event_date: str | None = None
    day_of_week: int | None = None
    recurrence_rule: str | None = None
    recurrence_end_date: str | None = None
    max_occurrences: int | None = None
    capacity: int | None = None
    has_timeslots: bool = False
    start_time: time | None = None
    end_time: time | None = None
    venue_name: str | None = None
    venue_address: str | None = None
    cover_image_url: str | None = None
    host_notes: str | None = None
    is_published: bool = True

    @property
    def is_recurring(self) -> bool:
        rule = (self.recurrence_rule or "").strip().lower()
        return rule not in ("", "none") or self.day_of_week is not None

    def descriptor(self) -> RecurrenceDescriptor:
        return parse_recurrence(self.recurrence_rule, self.day_of_week, self.event_date)


@dataclass(frozen=True)
class OccurrenceEntry:
    """Resolved view of one event on one date.

    ``date_key`` is the occurrence identity and never changes once emitted.
    ``display_date`` is the bucket the entry is shown under, which differs
    from ``date_key`` only for rescheduled occurrences.
    """

    event: EventDefinition
    effective: EventDefinition
    date_key: str
    display_date: str
    is_cancelled: bool = False
    is_confident: bool = True
    is_rescheduled: bool = False
    override: Any = None

    @property
    def event_id(self) -> Any:
        return self.event.id

    @property
    def key(self) -> tuple[str, str]:
        return (str(self.event.id), self.date_key)


@dataclass
class ExpansionMetrics:
    events_processed: int = 0
    events_skipped: int = 0
    total_occurrences: int = 0
    was_capped: bool = False


@dataclass
class ExpansionResult:
    groups: dict[str, list[OccurrenceEntry]] = field(default_factory=dict)
    unknown_events: list[EventDefinition] = field(default_factory=list)
    metrics: ExpansionMetrics = field(default_factory=ExpansionMetrics)

    def entries(self) -> list[OccurrenceEntry]:
        return [entry for bucket in self.groups.values() for entry in bucket]


def entry_sort_key(entry: OccurrenceEntry) -> tuple:
    """Start time (missing last), then title, then event id."""
    start = entry.effective.start_time
    return (
        start is None,
        start or time.min,
        (entry.effective.title or "").lower(),
        str(entry.event.id),
        entry.date_key,
    )


def sort_groups(groups: dict[str, list[OccurrenceEntry]]) -> dict[str, list[OccurrenceEntry]]:
    return {
        date_key: sorted(groups[date_key], key=entry_sort_key)
        for date_key in sorted(groups)
        if groups[date_key]
    }


def expand_event(
    event: EventDefinition, start_key: str, end_key: str, limit: int | None = None
) -> list[RecurrenceDate] | None:
    """Natural occurrence dates of one event inside the window.

    Returns ``None`` when the event has no computable schedule at all (bad
    rule, or neither an anchor nor a weekday), as opposed to an empty list
    for a valid schedule that simply has nothing in the window.
    """
    try:
        descriptor = event.descriptor()
    except InvalidRecurrenceDescriptor as e:
        logger.warning("Skipping event %s with malformed recurrence: %s", event.id, e)
        return None

    if descriptor.kind is RecurrenceKind.NONE and not event.event_date:
        return None

    return evaluate(
        descriptor,
        start_key,
        end_key,
        anchor=event.event_date,
        end_date=event.recurrence_end_date,
        max_occurrences=event.max_occurrences,
        limit=limit,
    )


def expand_events(
    events: Iterable[EventDefinition],
    start_key: str,
    end_key: str,
    caps: ExpansionCaps | None = None,
) -> ExpansionResult:
    caps = caps or ExpansionCaps()
    if parse_date_key(start_key) > parse_date_key(end_key):
        return ExpansionResult()

    events = list(events)
    result = ExpansionResult()
    metrics = result.metrics
    groups: dict[str, list[OccurrenceEntry]] = {}

    if len(events) > caps.max_events:
        metrics.events_skipped = len(events) - caps.max_events
        metrics.was_capped = True
        events = events[: caps.max_events]

    for index, event in enumerate(events):
        remaining = caps.max_total_occurrences - metrics.total_occurrences
        if remaining <= 0:
            metrics.events_skipped += len(events) - index
            metrics.was_capped = True
            break

        # one extra date tells us whether the per-event cap truncated anything
        dates = expand_event(event, start_key, end_key, limit=caps.max_occurrences_per_event + 1)
        metrics.events_processed += 1
        if dates is None:
            result.unknown_events.append(event)
            continue

        if len(dates) > caps.max_occurrences_per_event:
            dates = dates[: caps.max_occurrences_per_event]
            metrics.was_capped = True
        if len(dates) > remaining:
            dates = dates[:remaining]
            metrics.was_capped = True

        for occurrence in dates:
            groups.setdefault(occurrence.date_key, []).append(
                OccurrenceEntry(
                    event=event,
                    effective=event,
                    date_key=occurrence.date_key,
                    display_date=occurrence.date_key,
                    is_confident=occurrence.is_confident,
                )
            )
        metrics.total_occurrences += len(dates)

    if metrics.was_capped:
        logger.warning(
            "Expansion of %s..%s capped: processed=%s skipped=%s occurrences=%s",
            start_key,
            end_key,
            metrics.events_processed,
            metrics.events_skipped,
            metrics.total_occurrences,
        )

    result.groups = sort_groups(groups)
    return result
