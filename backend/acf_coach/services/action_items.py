"""Action item CRUD as surfaced to the API."""

import logging
from datetime import datetime
from typing import Any

from acf_coach.models import ActionItem
from acf_coach.schemas import ActionItemDraft
from acf_coach.services.action_plan_reconciler import ActionPlanReconciler, DraftMatch
from acf_coach.services.coaching_store import CoachingStore
from acf_coach.utils.priority import completion_changes, normalize_status, to_stored

logger = logging.getLogger(__name__)


class ActionItemService:
    """
    Reads and writes action items.

    Every change is followed by a best-effort rewrite of the owning
    session's Action Plan section; a failed rewrite never fails the change.
    """

    def __init__(self, store: CoachingStore, reconciler: ActionPlanReconciler) -> None:
        self.store = store
        self.reconciler = reconciler

    async def list_by_session(self, session_id: str) -> list[ActionItem]:
        await self.store.require_session(session_id)
        return await self.store.list_action_items(session_id)

    async def list_all(self, status: str | None = None) -> list[ActionItem]:
        if status is not None:
            status = normalize_status(status)
        return await self.store.list_action_items(status=status)

    async def get(self, item_id: str) -> ActionItem:
        return await self.store.get_action_item(item_id)

    async def create_from_drafts(
        self,
        session_id: str,
        drafts: list[ActionItemDraft],
    ) -> list[DraftMatch]:
        """Persist drafts for a session; the Action Plan is regenerated afterwards."""
        return await self.reconciler.create_missing(session_id, drafts)

    async def sync_from_summary(self, session_id: str) -> list[DraftMatch]:
        return await self.reconciler.sync_from_summary(session_id)

    async def update(self, item_id: str, changes: dict[str, Any]) -> ActionItem:
        """
        Apply a partial update.

        Args:
            item_id: The action item
            changes: Field values as supplied by the client; priority is a
                textual band and status changes maintain completed_at
        """
        changes = dict(changes)
        current = await self.store.get_action_item(item_id)

        if "priority" in changes:
            changes["priority"] = to_stored(changes["priority"])
        if "status" in changes:
            changes["status"] = normalize_status(changes["status"])
            changes.update(
                completion_changes(
                    changes["status"],
                    previous_status=current.status,
                    completed_at=changes.get("completed_at"),
                )
            )
        for text_field in ("description", "notes"):
            if text_field in changes and changes[text_field] is None:
                changes[text_field] = ""

        item = await self.store.update_action_item(item_id, **changes)
        logger.info(f"[ActionItemService] Updated action item {item_id}: {', '.join(sorted(changes))}")
        await self.reconciler.safe_regenerate(item.session_id)
        return item

    async def complete(self, item_id: str, notes: str | None = None) -> ActionItem:
        """Mark an item completed, recording a completion time with or without notes."""
        changes: dict[str, Any] = {"status": "completed", "completed_at": datetime.utcnow()}
        if notes:
            changes["notes"] = notes
        return await self.update(item_id, changes)

    async def start(self, item_id: str) -> ActionItem:
        return await self.update(item_id, {"status": "in_progress"})

    async def delete(self, item_id: str) -> None:
        session_id = await self.store.delete_action_item(item_id)
        logger.info(f"[ActionItemService] Deleted action item {item_id}")
        await self.reconciler.safe_regenerate(session_id)

    async def due_soon(self, days: int = 7) -> list[ActionItem]:
        return await self.store.list_due_soon(days)

    async def overdue(self) -> list[ActionItem]:
        return await self.store.list_overdue()

    async def stats(self) -> dict[str, Any]:
        """Totals across all action items."""
        counts = await self.store.action_item_stats()
        total = sum(counts.values())
        completed = counts.get("completed", 0)
        return {
            "total": total,
            "pending": counts.get("pending", 0),
            "in_progress": counts.get("in_progress", 0),
            "completed": completed,
            "blocked": counts.get("blocked", 0),
            "completion_rate": round(completed / total * 100, 1) if total else 0.0,
        }
