"""Database models for the ACF coaching service."""

from acf_coach.models.base import Base, init_db, engine, AsyncSessionLocal
from acf_coach.models.coaching_session import (
    CoachingSession,
    StageTranscript,
    STAGE_NAMES,
    FINAL_STAGE,
    SESSION_TYPES,
)
from acf_coach.models.action_item import ActionItem

__all__ = [
    "Base",
    "init_db",
    "engine",
    "AsyncSessionLocal",
    "CoachingSession",
    "StageTranscript",
    "ActionItem",
    "STAGE_NAMES",
    "FINAL_STAGE",
    "SESSION_TYPES",
]
