"""Structured action item extraction from a finished session summary."""

import json
import logging
from collections.abc import Callable
from datetime import date, timedelta
from typing import Any

from acf_coach.config import settings
from acf_coach.models import ActionItem
from acf_coach.prompts import EXTRACTION_SYSTEM_PROMPT, get_extraction_prompt
from acf_coach.schemas import (
    ActionItemDraft,
    ExtractedDrafts,
    ExtractionParseFailure,
    ExtractionResult,
    ModelOptions,
    Turn,
)
from acf_coach.services.coaching_store import CoachingStore
from acf_coach.services.errors import ModelUnavailableError
from acf_coach.services.model_client import ModelClient
from acf_coach.services.section_parser import (
    ACTION_PLAN,
    GOAL_STATEMENT,
    extract_coaching_theme,
    parse_due_date,
    parse_summary,
)
from acf_coach.utils.priority import to_stored, to_text
from acf_coach.utils.text import loads_markdown_json

logger = logging.getLogger(__name__)

MAX_ACTION_ITEMS = 7
MIN_ACTION_ITEMS = 3
MAX_TITLE_LENGTH = 255
MAX_DESCRIPTION_LENGTH = 1000
MAX_GOAL_STATEMENT_LENGTH = 500
FALLBACK_TITLE_LENGTH = 200
DEFAULT_DUE_DAYS = 7
FALLBACK_DUE_DAYS = 14
FALLBACK_TITLE = "Complete coaching action items"
FALLBACK_DESCRIPTION = "Review the coaching summary and work toward the goal set in this session"


def with_defaults(draft: ActionItemDraft, today: date) -> ActionItemDraft:
    """Fill the due date and clamp field lengths for persistence."""
    return ActionItemDraft(
        title=draft.title.strip()[:MAX_TITLE_LENGTH],
        description=(draft.description or "").strip()[:MAX_DESCRIPTION_LENGTH],
        due_date=draft.due_date or today + timedelta(days=DEFAULT_DUE_DAYS),
        priority=to_text(draft.priority),
    )


def draft_to_row(
    draft: ActionItemDraft,
    goal_statement: str | None = None,
    coaching_theme: str | None = None,
) -> dict[str, Any]:
    """Column values for a new pending action item."""
    return {
        "title": draft.title,
        "description": draft.description,
        "due_date": draft.due_date,
        "priority": to_stored(draft.priority),
        "status": "pending",
        "goal_statement": goal_statement,
        "coaching_theme": coaching_theme,
    }


class ActionItemExtractor:
    """
    Turns a summary's Action Plan into action item drafts.

    One extraction model call per completed session. Anything the model gets
    wrong degrades to a single fallback item built from the goal statement;
    extraction never fails the completion it is part of.
    """

    def __init__(
        self,
        model_client: ModelClient,
        store: CoachingStore,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.model_client = model_client
        self.store = store
        self._today = today

    async def extract(self, summary_text: str) -> list[ActionItemDraft]:
        """Extract 1-7 drafts from a summary; always returns at least one."""
        today = self._today()
        sections = parse_summary(summary_text)
        prompt = get_extraction_prompt(summary_text, sections[ACTION_PLAN], today)

        try:
            raw = await self.model_client.complete(
                EXTRACTION_SYSTEM_PROMPT,
                [Turn(role="coachee", text=prompt)],
                ModelOptions(
                    temperature=settings.extraction_temperature,
                    max_tokens=settings.extraction_max_tokens,
                ),
            )
            result = self._parse_model_output(raw, today)
        except ModelUnavailableError as e:
            result = ExtractionParseFailure(raw_text="", reason=f"model unavailable ({e.reason}): {e}")

        if isinstance(result, ExtractionParseFailure):
            logger.warning(
                f"[ActionItemExtractor] Extraction failed, using fallback item: {result.reason}"
            )
            return [self._fallback(sections, today)]

        drafts = result.drafts
        if len(drafts) < MIN_ACTION_ITEMS:
            logger.warning(
                f"[ActionItemExtractor] Only {len(drafts)} action items extracted "
                f"(expected at least {MIN_ACTION_ITEMS})"
            )
        logger.info(f"[ActionItemExtractor] Extracted {len(drafts)} action items")
        return drafts

    def _parse_model_output(self, raw: str, today: date) -> ExtractionResult:
        """Validate raw model output into drafts or a tagged failure."""
        try:
            data = loads_markdown_json(raw)
        except json.JSONDecodeError as e:
            return ExtractionParseFailure(raw_text=raw, reason=f"invalid JSON: {e}")

        if isinstance(data, dict):
            # Tolerate {"action_items": [...]} wrappers
            data = next((value for value in data.values() if isinstance(value, list)), None)
        if not isinstance(data, list):
            return ExtractionParseFailure(raw_text=raw, reason="expected a JSON array")

        drafts = []
        for entry in data[:MAX_ACTION_ITEMS]:
            draft = self._validate_entry(entry, today)
            if draft is not None:
                drafts.append(draft)

        if not drafts:
            return ExtractionParseFailure(raw_text=raw, reason="no valid action items")
        if len(data) > MAX_ACTION_ITEMS:
            logger.info(
                f"[ActionItemExtractor] Model returned {len(data)} items, keeping {MAX_ACTION_ITEMS}"
            )
        return ExtractedDrafts(drafts=drafts)

    @staticmethod
    def _validate_entry(entry: Any, today: date) -> ActionItemDraft | None:
        if not isinstance(entry, dict):
            return None
        title = entry.get("title")
        if not isinstance(title, str) or not title.strip():
            return None

        description = entry.get("description")
        due_date = entry.get("due_date")
        draft = ActionItemDraft(
            title=title,
            description=description if isinstance(description, str) else "",
            due_date=parse_due_date(due_date) if isinstance(due_date, str) else None,
            priority=to_text(entry.get("priority")),
        )
        return with_defaults(draft, today)

    @staticmethod
    def _fallback(sections: dict[str, str], today: date) -> ActionItemDraft:
        goal = sections.get(GOAL_STATEMENT, "").strip()
        return ActionItemDraft(
            title=goal[:FALLBACK_TITLE_LENGTH] if goal else FALLBACK_TITLE,
            description=FALLBACK_DESCRIPTION,
            due_date=today + timedelta(days=FALLBACK_DUE_DAYS),
            priority="medium",
        )

    async def extract_and_persist(self, session_id: str, summary_text: str) -> list[ActionItem]:
        """
        Extract drafts and store them as pending action items.

        Raises:
            SessionNotFoundError: the session was deleted while extracting
        """
        drafts = await self.extract(summary_text)
        # The session may have been deleted while the model was working
        await self.store.require_session(session_id)

        sections = parse_summary(summary_text)
        goal_statement = sections[GOAL_STATEMENT][:MAX_GOAL_STATEMENT_LENGTH] or None
        coaching_theme = extract_coaching_theme(sections)
        rows = [draft_to_row(draft, goal_statement, coaching_theme) for draft in drafts]
        return await self.store.insert_action_items(session_id, rows)
