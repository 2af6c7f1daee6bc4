"""
Pytest configuration and shared fixtures for ACF coach tests.

This module provides:
- Async database fixtures (throwaway SQLite file) and a CoachingStore
- A scripted fake model client and a mock Anthropic client
- Wired services and an HTTP client for API tests
- Sample summaries and extraction output
"""

import asyncio
import json
import os
from collections.abc import AsyncGenerator
from datetime import date
from typing import Any
from unittest.mock import AsyncMock, MagicMock

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from acf_coach.models.base import Base
from acf_coach.schemas import ModelOptions, Turn
from acf_coach.services.action_extractor import ActionItemExtractor
from acf_coach.services.action_plan_reconciler import ActionPlanReconciler
from acf_coach.services.autosave import DebouncedSaver
from acf_coach.services.coaching_store import CoachingStore
from acf_coach.services.model_client import ModelClient
from acf_coach.services.session_machine import CoachingSessionStateMachine
from acf_coach.services.summary_cache import SummaryCache

FIXED_TODAY = date(2025, 11, 3)


# =============================================================================
# Sample Data
# =============================================================================

SAMPLE_SUMMARY = """**Executive Summary**
This coaching session focused on moving from engineering into product management. The coachee clarified what draws them to the role and committed to a concrete job search plan.

**Key Insights**
• Stage 1: Feels stalled after four years in the same engineering role
• Stage 2: Side projects already involve product decisions
• Quote from the session: **Coach:** What would success look like? **Coachee:** Leading a product team.

**Goal Statement**
I want to become a Product Manager at a SaaS company within six months, measured by at least two offers.

**Action Plan**
List 3-7 specific actions with timeline:
1. **Update resume:** Highlight product-facing projects and their metrics (Deadline: Friday, November 7, 2025)
2. **Complete PM certification:** Finish the online product management course
3. **Schedule informational interviews:** Talk to three PMs at target companies. **Deadline: Friday, November 21, 2025**

**Success Metrics**
Number of interviews scheduled per month and offers received.

**Support & Accountability**
Weekly check-in with a mentor every Friday."""


EXTRACTION_OUTPUT = [
    {
        "title": "Update resume",
        "description": "Highlight product-facing projects and their metrics",
        "due_date": "2025-11-07",
        "priority": "high",
    },
    {
        "title": "Complete PM certification",
        "description": "Finish the online product management course",
        "due_date": "2025-11-28",
        "priority": "medium",
    },
    {
        "title": "Schedule informational interviews",
        "description": "Talk to three PMs at target companies",
        "due_date": "2025-11-21",
        "priority": "low",
    },
]


@pytest.fixture
def sample_summary() -> str:
    """A well-formed six-section summary."""
    return SAMPLE_SUMMARY


@pytest.fixture
def extraction_json() -> str:
    """Extraction output wrapped in a markdown fence, as models tend to return it."""
    return f"```json\n{json.dumps(EXTRACTION_OUTPUT, indent=2)}\n```"


# =============================================================================
# Fake Model Client
# =============================================================================

class FakeModelClient(ModelClient):
    """
    Scripted ModelClient.

    Replies are consumed in order; an Exception in the script is raised
    instead of returned. When the script runs out, numbered default replies
    are produced. Setting ``gate`` holds every call until the event is set.
    """

    def __init__(self, replies: list[Any] | None = None, default: str = "Coach question") -> None:
        self.replies = list(replies or [])
        self.default = default
        self.calls: list[dict[str, Any]] = []
        self.gate: asyncio.Event | None = None

    async def complete(
        self,
        system: str,
        conversation: list[Turn],
        options: ModelOptions | None = None,
    ) -> str:
        self.calls.append({"system": system, "conversation": list(conversation), "options": options})
        if self.gate is not None:
            await self.gate.wait()
        if self.replies:
            reply = self.replies.pop(0)
            if isinstance(reply, Exception):
                raise reply
            return reply
        return f"{self.default} {len(self.calls)}?"


@pytest.fixture
def coach_client() -> FakeModelClient:
    return FakeModelClient()


@pytest.fixture
def summary_client() -> FakeModelClient:
    return FakeModelClient(default=SAMPLE_SUMMARY)


@pytest.fixture
def extraction_client(extraction_json) -> FakeModelClient:
    return FakeModelClient(replies=[extraction_json])


@pytest.fixture
def mock_anthropic_client():
    """Mock Anthropic client for testing."""
    mock_client = AsyncMock()

    mock_response = MagicMock()
    mock_response.content = [MagicMock(text="Mock response")]
    mock_response.stop_reason = "end_turn"
    mock_client.messages.create = AsyncMock(return_value=mock_response)

    return mock_client


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
async def async_engine(tmp_path):
    """
    Create an async engine on a throwaway SQLite file.

    A file (rather than :memory: on one shared connection) gives every
    session its own connection, so background auto-saves are isolated from
    the test's own writes the way they are in production.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'acf_coach_test.db'}",
        echo=False,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
def db_session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest.fixture(scope="function")
async def db(db_session_factory) -> AsyncGenerator[AsyncSession, None]:
    """A session for asserting directly against the tables."""
    async with db_session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def store(db_session_factory) -> CoachingStore:
    return CoachingStore(db_session_factory)


@pytest.fixture
async def completed_session(store, sample_summary):
    """A finished session with its summary stored and no action items yet."""
    session = await store.create_session("self_coaching")
    return await store.update_session(
        session.id, is_complete=True, current_stage=5, summary=sample_summary
    )


# =============================================================================
# Service Fixtures
# =============================================================================

@pytest.fixture
async def saver() -> AsyncGenerator[DebouncedSaver, None]:
    saver = DebouncedSaver(delay_seconds=0.01)
    yield saver
    await saver.shutdown()


@pytest.fixture
def extractor(store, extraction_client) -> ActionItemExtractor:
    return ActionItemExtractor(extraction_client, store, today=lambda: FIXED_TODAY)


@pytest.fixture
def reconciler(store) -> ActionPlanReconciler:
    return ActionPlanReconciler(store, today=lambda: FIXED_TODAY)


@pytest.fixture
def summary_cache(store, summary_client) -> SummaryCache:
    return SummaryCache(summary_client, store)


@pytest.fixture
def machine(store, coach_client, summary_cache, extractor, saver) -> CoachingSessionStateMachine:
    return CoachingSessionStateMachine(
        store=store,
        coach_client=coach_client,
        summary_cache=summary_cache,
        extractor=extractor,
        saver=saver,
        min_questions=8,
        max_questions=15,
        completion_settle_seconds=0,
    )


@pytest.fixture
async def services(db_session_factory, coach_client, summary_client, extraction_client):
    """Fully wired services around the test database and fake models."""
    from acf_coach.dependencies import build_services

    services = build_services(
        db_session_factory,
        coach_client=coach_client,
        summary_client=summary_client,
        extraction_client=extraction_client,
    )
    services.saver.delay_seconds = 0.01
    services.machine.completion_settle_seconds = 0
    yield services
    await services.saver.shutdown()


@pytest.fixture
async def api_client(services) -> AsyncGenerator[httpx.AsyncClient, None]:
    """HTTP client against the FastAPI app with test services installed."""
    from acf_coach.main import app

    app.state.services = services
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.state.services = None


# =============================================================================
# Helpers
# =============================================================================

async def answer_questions(machine: CoachingSessionStateMachine, session_id: str, count: int):
    """Submit count coachee turns and return the last state."""
    state = None
    for n in range(count):
        state = await machine.submit_user_turn(session_id, f"Coachee answer {n + 1}")
    return state


# =============================================================================
# Environment Setup
# =============================================================================

@pytest.fixture(autouse=True)
def setup_test_environment():
    """Set up test environment variables."""
    original_env = os.environ.copy()

    os.environ["ANTHROPIC_API_KEY"] = "test-key-for-testing"
    os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"

    yield

    os.environ.clear()
    os.environ.update(original_env)
