"""Coaching services."""

from acf_coach.services.errors import (
    CoachingError,
    SessionNotFoundError,
    ActionItemNotFoundError,
    InvalidTransitionError,
    AlreadyCompleteError,
    TurnInProgressError,
    InitializationError,
    ModelUnavailableError,
    StoreUnavailableError,
)
from acf_coach.services.model_client import ModelClient, AnthropicModelClient
from acf_coach.services.coaching_store import CoachingStore
from acf_coach.services.autosave import DebouncedSaver
from acf_coach.services.action_extractor import ActionItemExtractor
from acf_coach.services.action_plan_reconciler import ActionPlanReconciler, DraftMatch
from acf_coach.services.summary_cache import SummaryCache
from acf_coach.services.session_machine import CoachingSessionStateMachine
from acf_coach.services.action_items import ActionItemService

__all__ = [
    "CoachingError",
    "SessionNotFoundError",
    "ActionItemNotFoundError",
    "InvalidTransitionError",
    "AlreadyCompleteError",
    "TurnInProgressError",
    "InitializationError",
    "ModelUnavailableError",
    "StoreUnavailableError",
    "ModelClient",
    "AnthropicModelClient",
    "CoachingStore",
    "DebouncedSaver",
    "ActionItemExtractor",
    "ActionPlanReconciler",
    "DraftMatch",
    "SummaryCache",
    "CoachingSessionStateMachine",
    "ActionItemService",
]
