from datetime import time
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel

from happenings.events.features.occurrence_overrides.write_model import (
    OverrideWriteModel,
    SqlOverrideWriteModel,
)
from happenings.events.http_errors import DOMAIN_ERRORS, to_http_exception
from happenings.events.urls import OCCURRENCE_OVERRIDE_URL
from happenings.occurrences.overrides import OverrideStatus

router = APIRouter()


class OverrideSubmit(BaseModel):
    status: OverrideStatus = OverrideStatus.NORMAL
    override_patch: dict | None = None
    override_start_time: time | None = None
    override_cover_image_url: str | None = None
    override_notes: str | None = None


class OverrideResponse(BaseModel):
    event_id: UUID
    date_key: str
    status: OverrideStatus
    override_patch: dict
    display_date: str | None = None


def get_override_write_model() -> OverrideWriteModel:
    """Dependency to get the override write model instance."""
    return SqlOverrideWriteModel()


@router.put(OCCURRENCE_OVERRIDE_URL, response_model=OverrideResponse)
async def upsert_occurrence_override(
    event_id: UUID,
    date_key: str,
    request: OverrideSubmit,
    write_model: OverrideWriteModel = Depends(get_override_write_model),
) -> OverrideResponse:
    """
    Cancel, edit or reschedule a single occurrence.
    Set override_patch.event_date to move the occurrence to another day.
    """
    try:
        override = await write_model.upsert_override(
            event_id,
            date_key,
            status=request.status,
            patch=request.override_patch,
            override_start_time=request.override_start_time,
            override_cover_image_url=request.override_cover_image_url,
            override_notes=request.override_notes,
        )
    except DOMAIN_ERRORS as e:
        raise to_http_exception(e) from e

    return OverrideResponse(
        event_id=override.event_id,
        date_key=override.date_key,
        status=override.status,
        override_patch=override.override_patch,
        display_date=override.display_date,
    )


@router.delete(OCCURRENCE_OVERRIDE_URL, status_code=204)
async def delete_occurrence_override(
    event_id: UUID,
    date_key: str,
    write_model: OverrideWriteModel = Depends(get_override_write_model),
) -> Response:
    try:
        deleted = await write_model.delete_override(event_id, date_key)
    except DOMAIN_ERRORS as e:
        raise to_http_exception(e) from e

    if not deleted:
        raise HTTPException(status_code=404, detail="No override stored for this occurrence")
    return Response(status_code=204)
