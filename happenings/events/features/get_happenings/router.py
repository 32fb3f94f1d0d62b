from datetime import time
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from happenings.config.settings import settings
from happenings.events.repository.read_models import HappeningsReadModel, SqlHappeningsReadModel
from happenings.events.urls import HAPPENINGS_URL
from happenings.occurrences.dates import (
    RegionClock,
    add_days,
    days_between,
    format_date_group_header,
    parse_date_key,
)
from happenings.occurrences.errors import InvalidDateError, InvalidRecurrenceDescriptor
from happenings.occurrences.expander import OccurrenceEntry
from happenings.occurrences.recurrence import label_for

router = APIRouter()

MAX_WINDOW_DAYS = 366


class OccurrenceResponse(BaseModel):
    event_id: UUID
    date_key: str
    display_date: str
    title: str
    start_time: time | None = None
    end_time: time | None = None
    venue_name: str | None = None
    venue_address: str | None = None
    cover_image_url: str | None = None
    host_notes: str | None = None
    capacity: int | None = None
    has_timeslots: bool = False
    recurrence_label: str | None = None
    is_cancelled: bool = False
    is_confident: bool = True
    is_rescheduled: bool = False


class DateGroupResponse(BaseModel):
    date_key: str
    header: str
    occurrences: list[OccurrenceResponse]


class UnknownEventResponse(BaseModel):
    event_id: UUID
    title: str


class MetricsResponse(BaseModel):
    events_processed: int
    events_skipped: int
    total_occurrences: int
    was_capped: bool


class HappeningsResponse(BaseModel):
    start: str
    end: str
    groups: list[DateGroupResponse]
    cancelled_count: int
    unknown_events: list[UnknownEventResponse]
    metrics: MetricsResponse


def get_happenings_read_model() -> HappeningsReadModel:
    """Dependency to get happenings read model instance."""
    return SqlHappeningsReadModel()


def get_clock() -> RegionClock:
    return RegionClock(settings.region_timezone)


def _recurrence_label(entry: OccurrenceEntry) -> str | None:
    try:
        return label_for(entry.event.descriptor())
    except InvalidRecurrenceDescriptor:
        return None


def to_occurrence_response(entry: OccurrenceEntry) -> OccurrenceResponse:
    effective = entry.effective
    return OccurrenceResponse(
        event_id=entry.event_id,
        date_key=entry.date_key,
        display_date=entry.display_date,
        title=effective.title,
        start_time=effective.start_time,
        end_time=effective.end_time,
        venue_name=effective.venue_name,
        venue_address=effective.venue_address,
        cover_image_url=effective.cover_image_url,
        host_notes=effective.host_notes,
        capacity=effective.capacity,
        has_timeslots=effective.has_timeslots,
        recurrence_label=_recurrence_label(entry),
        is_cancelled=entry.is_cancelled,
        is_confident=entry.is_confident,
        is_rescheduled=entry.is_rescheduled,
    )


@router.get(HAPPENINGS_URL, response_model=HappeningsResponse)
async def get_happenings(
    start: str | None = None,
    end: str | None = None,
    show_cancelled: bool = False,
    read_model: HappeningsReadModel = Depends(get_happenings_read_model),
    clock: RegionClock = Depends(get_clock),
) -> HappeningsResponse:
    """
    Occurrences of every published event in [start, end], grouped by date.
    Defaults to the next default_window_days days in the configured region.
    Cancelled occurrences are left out unless show_cancelled is set.
    """
    today_key = clock.today()
    start = start or today_key
    try:
        end = end or add_days(start, settings.default_window_days)
        if parse_date_key(start) > parse_date_key(end):
            raise HTTPException(status_code=400, detail="start must not be after end")
    except InvalidDateError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    if days_between(start, end) > MAX_WINDOW_DAYS:
        raise HTTPException(status_code=400, detail=f"Window is limited to {MAX_WINDOW_DAYS} days")

    timeline = await read_model.get_timeline(start, end)

    groups = [
        DateGroupResponse(
            date_key=date_key,
            header=format_date_group_header(date_key, today_key),
            occurrences=[to_occurrence_response(entry) for entry in bucket],
        )
        for date_key, bucket in timeline.visible(show_cancelled).items()
    ]
    metrics = timeline.metrics
    return HappeningsResponse(
        start=start,
        end=end,
        groups=groups,
        cancelled_count=len(timeline.cancelled_occurrences),
        unknown_events=[
            UnknownEventResponse(event_id=event.id, title=event.title)
            for event in timeline.unknown_events
        ],
        metrics=MetricsResponse(
            events_processed=metrics.events_processed,
            events_skipped=metrics.events_skipped,
            total_occurrences=metrics.total_occurrences,
            was_capped=metrics.was_capped,
        ),
    )
