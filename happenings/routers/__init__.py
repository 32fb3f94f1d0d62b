from happenings.events.routers import router as events
from happenings.routers.healthz.router import router as healthz

__all__ = [
    "healthz",
    "events",
]
