"""Keeps a session summary's Action Plan in step with its action items.

The summary is written once by the model; afterwards the action_items rows
are authoritative. Every create, edit or delete rewrites the Action Plan
section of the stored summary from the current rows.
"""

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date

from acf_coach.models import ActionItem
from acf_coach.schemas import ActionItemDraft
from acf_coach.services.action_extractor import draft_to_row, with_defaults
from acf_coach.services.coaching_store import CoachingStore
from acf_coach.services.section_parser import (
    ACTION_PLAN,
    GOAL_STATEMENT,
    extract_coaching_theme,
    heading,
    parse_numbered_actions,
    parse_summary,
)
from acf_coach.utils.text import collapse_whitespace

logger = logging.getLogger(__name__)

TITLE_MATCH_PREFIX = 20
ACTION_PLAN_SUBLINE = "List 3-7 specific actions with timeline:"

# A heading only counts at the start of a line ("## " and "> " allowed);
# inline mentions such as "revisit the **Action Plan**" are left alone.
_LINE_START = r"(?P<prefix>^[ \t#>]*)"
_ACTION_PLAN_HEADING = _LINE_START + r"\*\*Action Plan\*\*"
_SUCCESS_METRICS_HEADING = re.compile(
    _LINE_START + r"\*\*Success Metrics\*\*", re.IGNORECASE | re.MULTILINE
)

# Candidate locations of the existing Action Plan block, broadest first.
# The first pattern that matches is applied once.
_SECTION_PATTERNS = tuple(
    re.compile(_ACTION_PLAN_HEADING + body, re.IGNORECASE | re.MULTILINE)
    for body in (
        r"[\s\S]*?(?=\n\n\*\*|\n\n##|\Z)",
        r"\n[^*]*(?:\n\d+\.[^\n]+)+",
        r"[\s\S]*?(?=\n\*\*[^*]|\Z)",
        r"[\s\S]*?(?:\n\d+\.[^\n]+\n?)+",
    )
)


@dataclass
class DraftMatch:
    """A draft paired with the persisted item it corresponds to, if any."""

    draft: ActionItemDraft
    item: ActionItem | None = None

    @property
    def is_persisted(self) -> bool:
        return self.item is not None


def titles_match(a: str, b: str) -> bool:
    """Fuzzy title equality: a 20-character prefix of one appears in the other."""
    a = (a or "").strip().lower()
    b = (b or "").strip().lower()
    if not a or not b:
        return False
    return a[:TITLE_MATCH_PREFIX] in b or b[:TITLE_MATCH_PREFIX] in a


def match_drafts_to_existing(
    drafts: list[ActionItemDraft],
    existing: list[ActionItem],
) -> list[DraftMatch]:
    """Pair each draft with the first persisted item whose title matches."""
    return [
        DraftMatch(
            draft=draft,
            item=next((item for item in existing if titles_match(draft.title, item.title)), None),
        )
        for draft in drafts
    ]


def _format_deadline(due: date) -> str:
    return f"{due:%A}, {due:%B} {due.day}, {due.year}"


def render_action_plan(items: list[ActionItem]) -> str:
    """Render the numbered Action Plan list, one line per item."""
    lines = []
    for number, item in enumerate(items, start=1):
        title = collapse_whitespace(item.title or "")
        description = collapse_whitespace(item.description or item.notes or "")
        line = f"{number}. **{title}:**"
        if description:
            line = f"{line} {description}"
        if item.due_date:
            if description:
                line = f"{line.rstrip('.')}."
            line = f"{line} **Deadline: {_format_deadline(item.due_date)}**"
        lines.append(line)
    return "\n".join(lines)


def build_action_plan_section(items: list[ActionItem]) -> str:
    block = render_action_plan(items)
    section = f"{heading(ACTION_PLAN)}\n{ACTION_PLAN_SUBLINE}"
    return f"{section}\n{block}" if block else section


def replace_action_plan_section(summary: str, section: str) -> str:
    """Swap the Action Plan block of summary for section, inserting it if absent."""
    for pattern in _SECTION_PATTERNS:
        if pattern.search(summary):
            return pattern.sub(lambda match: match.group("prefix") + section, summary, count=1)

    success = _SUCCESS_METRICS_HEADING.search(summary)
    if success:
        index = success.start()
        return f"{summary[:index]}{section}\n\n{summary[index:]}"
    return f"{summary.rstrip()}\n\n{section}"


class ActionPlanReconciler:
    """Matches drafts to persisted items and rewrites the Action Plan section."""

    def __init__(self, store: CoachingStore, today: Callable[[], date] = date.today) -> None:
        self.store = store
        self._today = today

    async def create_missing(
        self,
        session_id: str,
        candidates: list[ActionItemDraft],
    ) -> list[DraftMatch]:
        """
        Persist the candidates as pending items and pair each with its new row.

        Rows are paired by exact (case-insensitive, trimmed) title first, then
        remaining candidates take the remaining rows in order.
        """
        if not candidates:
            return []

        session = await self.store.require_session(session_id)
        sections = parse_summary(session.summary)
        goal_statement = sections[GOAL_STATEMENT][:500] or None
        coaching_theme = extract_coaching_theme(sections) if session.summary else None

        today = self._today()
        prepared = [with_defaults(draft, today) for draft in candidates]
        rows = [draft_to_row(draft, goal_statement, coaching_theme) for draft in prepared]
        created = await self.store.insert_action_items(session_id, rows)

        unassigned = list(created)
        matches: list[DraftMatch] = []
        for draft in candidates:
            key = draft.title.strip().lower()
            exact = next((item for item in unassigned if item.title.strip().lower() == key), None)
            matches.append(DraftMatch(draft=draft, item=exact))
            if exact is not None:
                unassigned.remove(exact)

        for match in matches:
            if match.item is None and unassigned:
                match.item = unassigned.pop(0)

        logger.info(f"[ActionPlanReconciler] Created {len(created)} action items for session {session_id}")
        await self.safe_regenerate(session_id)
        return matches

    async def sync_from_summary(self, session_id: str) -> list[DraftMatch]:
        """
        Make sure every numbered action in the stored Action Plan has a row.

        Returns one match per numbered action, in Action Plan order.
        """
        session = await self.store.require_session(session_id)
        if not session.summary:
            return []

        drafts = parse_numbered_actions(parse_summary(session.summary)[ACTION_PLAN])
        existing = await self.store.list_action_items(session_id)
        matches = match_drafts_to_existing(drafts, existing)

        missing = [match.draft for match in matches if not match.is_persisted]
        if missing:
            created = {id(m.draft): m.item for m in await self.create_missing(session_id, missing)}
            for match in matches:
                if match.item is None:
                    match.item = created.get(id(match.draft))
        return matches

    async def regenerate_action_plan_section(self, session_id: str) -> str | None:
        """
        Rewrite the stored summary's Action Plan from the current items.

        Returns:
            The updated summary, or None if the session has no summary yet
        """
        session = await self.store.require_session(session_id)
        if not session.summary:
            return None

        items = await self.store.list_action_items(session_id)
        section = build_action_plan_section(items)
        updated = replace_action_plan_section(session.summary, section)
        if updated != session.summary:
            await self.store.save_summary(session_id, updated)
            logger.info(
                f"[ActionPlanReconciler] Regenerated Action Plan for session {session_id} "
                f"({len(items)} items)"
            )
        return updated

    async def safe_regenerate(self, session_id: str) -> None:
        """Regenerate the Action Plan, logging instead of raising on failure."""
        try:
            await self.regenerate_action_plan_section(session_id)
        except Exception as e:
            logger.warning(
                f"[ActionPlanReconciler] Could not regenerate Action Plan for session {session_id}: {e}"
            )
