from fastapi import APIRouter

from .features.get_happenings.router import router as get_happenings_router
from .features.occurrence_overrides.router import router as occurrence_overrides_router
from .features.signups.router import router as signups_router

router = APIRouter()

router.include_router(get_happenings_router)
router.include_router(signups_router)
router.include_router(occurrence_overrides_router)
