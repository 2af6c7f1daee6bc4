"""API routers for the ACF coaching service."""

from acf_coach.routers.sessions import router as sessions_router
from acf_coach.routers.action_items import router as action_items_router

__all__ = [
    "sessions_router",
    "action_items_router",
]
