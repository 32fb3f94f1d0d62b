"""Per-occurrence overrides.

An override row is an exception authored for one event on one date: it can
cancel the occurrence, change display fields, change capacity, or move the
occurrence to another date. Overrides are merged into expansion entries here;
they are never turned into event rows.
"""

import logging
from dataclasses import dataclass, field, fields, replace
from datetime import time
from enum import Enum
from typing import Any, Iterable, Mapping

from happenings.occurrences.dates import is_valid_date_key, parse_date_key
from happenings.occurrences.errors import InvalidOverridePatch
from happenings.occurrences.expander import (
    EventDefinition,
    ExpansionMetrics,
    ExpansionResult,
    OccurrenceEntry,
    sort_groups,
)

logger = logging.getLogger(__name__)


class OverrideStatus(str, Enum):
    NORMAL = "normal"
    CANCELLED = "cancelled"


def _coerce_text(name: str, value: Any) -> str:
    if not isinstance(value, str):
        raise InvalidOverridePatch(name, value)
    return value


def _coerce_time(name: str, value: Any) -> time:
    if isinstance(value, time):
        return value
    if isinstance(value, str):
        try:
            return time.fromisoformat(value)
        except ValueError as e:
            raise InvalidOverridePatch(name, value) from e
    raise InvalidOverridePatch(name, value)


def _coerce_capacity(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidOverridePatch(name, value)
    return value


def _coerce_date_key(name: str, value: Any) -> str:
    if not is_valid_date_key(value):
        raise InvalidOverridePatch(name, value)
    return value


@dataclass(frozen=True)
class OverridePatch:
    """The known per-occurrence fields an override may replace.

    Series-level fields (recurrence rule, day of week, caps) are not part of
    the patch and are dropped when parsing.
    """

    title: str | None = None
    start_time: time | None = None
    end_time: time | None = None
    venue_name: str | None = None
    venue_address: str | None = None
    cover_image_url: str | None = None
    host_notes: str | None = None
    capacity: int | None = None
    event_date: str | None = None

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any] | None, strict: bool = False) -> "OverridePatch":
        """Build a patch from a stored JSON map.

        Nulls and empty strings are dropped so they fall back to the base
        event. With ``strict`` a badly typed value raises
        InvalidOverridePatch; otherwise it is logged and ignored, so one bad
        row never breaks a timeline.
        """
        if not mapping:
            return cls()

        values: dict[str, Any] = {}
        for name, value in mapping.items():
            coerce = _PATCH_FIELDS.get(name)
            if coerce is None:
                logger.debug("Dropping unsupported override field %s", name)
                continue
            if value is None or value == "":
                continue
            try:
                values[name] = coerce(name, value)
            except InvalidOverridePatch:
                if strict:
                    raise
                logger.warning("Ignoring invalid override value %s=%r", name, value)
        return cls(**values)

    def to_mapping(self) -> dict[str, Any]:
        values = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            values[f.name] = value.isoformat() if isinstance(value, time) else value
        return values


_PATCH_FIELDS = {
    "title": _coerce_text,
    "start_time": _coerce_time,
    "end_time": _coerce_time,
    "venue_name": _coerce_text,
    "venue_address": _coerce_text,
    "cover_image_url": _coerce_text,
    "host_notes": _coerce_text,
    "capacity": _coerce_capacity,
    "event_date": _coerce_date_key,
}


@dataclass(frozen=True)
class OccurrenceOverride:
    event_id: Any
    date_key: str
    status: OverrideStatus = OverrideStatus.NORMAL
    override_start_time: time | None = None
    override_cover_image_url: str | None = None
    override_notes: str | None = None
    patch: OverridePatch = field(default_factory=OverridePatch)

    @property
    def key(self) -> tuple[str, str]:
        return (str(self.event_id), self.date_key)

    @property
    def is_cancelled(self) -> bool:
        return self.status == OverrideStatus.CANCELLED

    @property
    def reschedule_target(self) -> str | None:
        target = self.patch.event_date
        if target and target != self.date_key:
            return target
        return None

    def effective_patch(self) -> OverridePatch:
        """Legacy columns folded under the patch; the patch wins."""
        legacy = OverridePatch(
            start_time=self.override_start_time,
            cover_image_url=self.override_cover_image_url or None,
            host_notes=self.override_notes or None,
        )
        values = {
            f.name: getattr(self.patch, f.name)
            if getattr(self.patch, f.name) is not None
            else getattr(legacy, f.name)
            for f in fields(OverridePatch)
        }
        return OverridePatch(**values)


def build_override_map(
    overrides: Iterable[OccurrenceOverride],
) -> dict[tuple[str, str], OccurrenceOverride]:
    return {override.key: override for override in overrides}


def apply_occurrence_override(
    event: EventDefinition, override: OccurrenceOverride | None
) -> EventDefinition:
    """Effective event for one occurrence. The base event is never mutated."""
    if override is None:
        return event
    patch = override.effective_patch()
    # event_date is a reschedule target, not a field of the effective event
    changes = {
        f.name: getattr(patch, f.name)
        for f in fields(OverridePatch)
        if f.name != "event_date" and getattr(patch, f.name) is not None
    }
    return replace(event, **changes)


def get_display_date(date_key: str, override: OccurrenceOverride | None) -> str:
    if override is None:
        return date_key
    return override.reschedule_target or date_key


def apply_reschedules(
    groups: Mapping[str, Iterable[OccurrenceEntry]],
) -> dict[str, list[OccurrenceEntry]]:
    """Regroup entries under their display date.

    The target bucket is derived from each entry's identity and override,
    never from the bucket it currently sits in, so running this twice or on
    a reordered input gives the same grouping.
    """
    by_key: dict[tuple[str, str], OccurrenceEntry] = {}
    for bucket in groups.values():
        for entry in bucket:
            by_key.setdefault(entry.key, entry)

    regrouped: dict[str, list[OccurrenceEntry]] = {}
    for entry in by_key.values():
        display_date = get_display_date(entry.date_key, entry.override)
        entry = replace(
            entry,
            display_date=display_date,
            is_rescheduled=display_date != entry.date_key,
        )
        regrouped.setdefault(display_date, []).append(entry)
    return sort_groups(regrouped)


@dataclass
class Timeline:
    groups: dict[str, list[OccurrenceEntry]] = field(default_factory=dict)
    unknown_events: list[EventDefinition] = field(default_factory=list)
    metrics: ExpansionMetrics = field(default_factory=ExpansionMetrics)

    def entries(self) -> list[OccurrenceEntry]:
        return [entry for bucket in self.groups.values() for entry in bucket]

    def visible(self, show_cancelled: bool = False) -> dict[str, list[OccurrenceEntry]]:
        if show_cancelled:
            return dict(self.groups)
        visible = {
            date_key: [entry for entry in bucket if not entry.is_cancelled]
            for date_key, bucket in self.groups.items()
        }
        return {date_key: bucket for date_key, bucket in visible.items() if bucket}

    @property
    def cancelled_occurrences(self) -> list[OccurrenceEntry]:
        return [entry for entry in self.entries() if entry.is_cancelled]

    def trim(self, start_key: str, end_key: str) -> "Timeline":
        start, end = parse_date_key(start_key), parse_date_key(end_key)
        groups = {
            date_key: bucket
            for date_key, bucket in self.groups.items()
            if start <= parse_date_key(date_key) <= end
        }
        return Timeline(groups=groups, unknown_events=self.unknown_events, metrics=self.metrics)


def resolve(expansion: ExpansionResult, overrides: Iterable[OccurrenceOverride]) -> Timeline:
    override_map = build_override_map(overrides)
    merged: dict[str, list[OccurrenceEntry]] = {}
    for date_key, bucket in expansion.groups.items():
        for entry in bucket:
            override = override_map.get(entry.key)
            if override is not None:
                entry = replace(
                    entry,
                    effective=apply_occurrence_override(entry.event, override),
                    is_cancelled=override.is_cancelled,
                    override=override,
                )
            merged.setdefault(date_key, []).append(entry)

    return Timeline(
        groups=apply_reschedules(merged),
        unknown_events=list(expansion.unknown_events),
        metrics=expansion.metrics,
    )
