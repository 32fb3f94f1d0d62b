from fastapi import APIRouter
from pydantic import BaseModel

from happenings.config.settings import settings

router = APIRouter()


class HealthCheckResponse(BaseModel):
    status: str
    version: str = "0.1.0"
    region: str


@router.get("/", response_model=HealthCheckResponse)
async def health_check() -> HealthCheckResponse:
    """
    Health check endpoint to verify the API is running.
    Reports the region all date keys are computed in.
    """
    return HealthCheckResponse(status="healthy", region=settings.region_timezone)
