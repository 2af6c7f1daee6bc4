"""Service wiring shared by the application and its routers."""

from collections.abc import Callable
from dataclasses import dataclass

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from acf_coach.config import settings
from acf_coach.services.action_extractor import ActionItemExtractor
from acf_coach.services.action_items import ActionItemService
from acf_coach.services.action_plan_reconciler import ActionPlanReconciler
from acf_coach.services.autosave import DebouncedSaver
from acf_coach.services.coaching_store import CoachingStore
from acf_coach.services.model_client import AnthropicModelClient, ModelClient
from acf_coach.services.session_machine import CoachingSessionStateMachine
from acf_coach.services.summary_cache import SummaryCache


@dataclass
class Services:
    """Process-wide service instances, built once at startup."""

    store: CoachingStore
    saver: DebouncedSaver
    summary_cache: SummaryCache
    extractor: ActionItemExtractor
    reconciler: ActionPlanReconciler
    machine: CoachingSessionStateMachine
    action_items: ActionItemService


def build_services(
    db_session_factory: Callable[[], AsyncSession],
    coach_client: ModelClient | None = None,
    summary_client: ModelClient | None = None,
    extraction_client: ModelClient | None = None,
) -> Services:
    """
    Wire the services around one session factory.

    Model clients default to Anthropic clients for the configured models.
    """
    coach_client = coach_client or AnthropicModelClient(model=settings.model_coach)
    summary_client = summary_client or AnthropicModelClient(model=settings.model_summary)
    extraction_client = extraction_client or AnthropicModelClient(model=settings.model_extraction)

    store = CoachingStore(db_session_factory)
    saver = DebouncedSaver()
    summary_cache = SummaryCache(summary_client, store)
    extractor = ActionItemExtractor(extraction_client, store)
    reconciler = ActionPlanReconciler(store)
    machine = CoachingSessionStateMachine(
        store=store,
        coach_client=coach_client,
        summary_cache=summary_cache,
        extractor=extractor,
        saver=saver,
    )
    return Services(
        store=store,
        saver=saver,
        summary_cache=summary_cache,
        extractor=extractor,
        reconciler=reconciler,
        machine=machine,
        action_items=ActionItemService(store, reconciler),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services
