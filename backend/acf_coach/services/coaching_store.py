"""Persistence for sessions, stage transcripts and action items.

CoachingStore is constructed once per process around an async session
factory and passed to every service that needs the database. Each method
opens its own short-lived session and commits before returning, so callers
never share a session across awaits (auto-save runs concurrently with turns).
"""

import logging
from collections.abc import Callable, Sequence
from datetime import date, datetime, timedelta
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from acf_coach.models import ActionItem, CoachingSession, StageTranscript, STAGE_NAMES
from acf_coach.services.errors import ActionItemNotFoundError, SessionNotFoundError

logger = logging.getLogger(__name__)

_SESSION_FIELDS = {"current_stage", "is_complete", "summary", "session_type"}
_ACTION_ITEM_FIELDS = {
    "title",
    "description",
    "goal_statement",
    "priority",
    "status",
    "due_date",
    "notes",
    "reminder_enabled",
    "reminder_frequency",
    "completed_at",
    "coaching_theme",
}


class CoachingStore:
    """
    Narrow, single-row / single-session persistence operations.

    No multi-row transactions are used: every write is an insert, an update
    by id, or an upsert by natural key.
    """

    def __init__(self, db_session_factory: Callable[[], AsyncSession]) -> None:
        self._db_session_factory = db_session_factory

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def create_session(self, session_type: str) -> CoachingSession:
        """Create a new session at stage 1."""
        async with self._db_session_factory() as db:
            session = CoachingSession(
                session_type=session_type,
                current_stage=1,
                is_complete=False,
            )
            db.add(session)
            await db.commit()
            logger.info(f"[CoachingStore] Created session {session.id} ({session_type})")
            return session

    async def get_session(self, session_id: str) -> CoachingSession | None:
        async with self._db_session_factory() as db:
            return await db.get(CoachingSession, session_id)

    async def require_session(self, session_id: str) -> CoachingSession:
        """Get a session or raise SessionNotFoundError."""
        session = await self.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def session_exists(self, session_id: str) -> bool:
        async with self._db_session_factory() as db:
            result = await db.execute(
                select(CoachingSession.id).where(CoachingSession.id == session_id)
            )
            return result.scalar_one_or_none() is not None

    async def list_sessions(self) -> list[CoachingSession]:
        """All sessions, newest first."""
        async with self._db_session_factory() as db:
            result = await db.execute(
                select(CoachingSession).order_by(CoachingSession.created_at.desc())
            )
            return list(result.scalars().all())

    async def update_session(self, session_id: str, **changes: Any) -> CoachingSession:
        """Update session columns by id; raises SessionNotFoundError."""
        unknown = set(changes) - _SESSION_FIELDS
        if unknown:
            raise ValueError(f"Unknown session fields: {', '.join(sorted(unknown))}")

        async with self._db_session_factory() as db:
            session = await db.get(CoachingSession, session_id)
            if session is None:
                raise SessionNotFoundError(session_id)
            for key, value in changes.items():
                setattr(session, key, value)
            session.updated_at = datetime.utcnow()
            await db.commit()
            return session

    async def save_summary(self, session_id: str, summary: str) -> CoachingSession:
        return await self.update_session(session_id, summary=summary)

    async def get_cached_summary(self, session_id: str) -> str | None:
        async with self._db_session_factory() as db:
            result = await db.execute(
                select(CoachingSession.summary).where(CoachingSession.id == session_id)
            )
            return result.scalar_one_or_none()

    async def delete_session(self, session_id: str) -> bool:
        """
        Delete a session with its transcripts and action items.

        Returns:
            True if the session existed
        """
        async with self._db_session_factory() as db:
            await db.execute(delete(ActionItem).where(ActionItem.session_id == session_id))
            await db.execute(
                delete(StageTranscript).where(StageTranscript.session_id == session_id)
            )
            result = await db.execute(
                delete(CoachingSession).where(CoachingSession.id == session_id)
            )
            await db.commit()
            deleted = result.rowcount > 0
            if deleted:
                logger.info(f"[CoachingStore] Deleted session {session_id}")
            return deleted

    # ------------------------------------------------------------------
    # Stage transcripts
    # ------------------------------------------------------------------

    async def save_stage_response(
        self,
        session_id: str,
        stage_number: int,
        turns: list[dict[str, Any]],
        completed_at: datetime | None = None,
    ) -> StageTranscript:
        """
        Upsert the transcript for (session, stage).

        The latest turns always win. A completion timestamp is written once
        and never cleared or moved by later saves. Two writers racing on the
        first insert resolve to an update for the loser.
        """
        try:
            return await self._upsert_stage_response(session_id, stage_number, turns, completed_at)
        except IntegrityError:
            logger.debug(
                f"[CoachingStore] Concurrent insert for stage {stage_number} of session "
                f"{session_id}, retrying as update"
            )
            return await self._upsert_stage_response(session_id, stage_number, turns, completed_at)

    async def _upsert_stage_response(
        self,
        session_id: str,
        stage_number: int,
        turns: list[dict[str, Any]],
        completed_at: datetime | None,
    ) -> StageTranscript:
        async with self._db_session_factory() as db:
            exists = await db.execute(
                select(CoachingSession.id).where(CoachingSession.id == session_id)
            )
            if exists.scalar_one_or_none() is None:
                raise SessionNotFoundError(session_id)

            result = await db.execute(
                select(StageTranscript).where(
                    StageTranscript.session_id == session_id,
                    StageTranscript.stage_number == stage_number,
                )
            )
            transcript = result.scalar_one_or_none()

            if transcript is None:
                transcript = StageTranscript(
                    session_id=session_id,
                    stage_number=stage_number,
                    stage_name=STAGE_NAMES[stage_number],
                    turns=list(turns),
                    completed_at=completed_at,
                )
                db.add(transcript)
            else:
                transcript.turns = list(turns)
                transcript.updated_at = datetime.utcnow()
                if transcript.completed_at is None and completed_at is not None:
                    transcript.completed_at = completed_at

            await db.commit()
            logger.debug(
                f"[CoachingStore] Saved stage {stage_number} for session {session_id} "
                f"({len(turns)} turns)"
            )
            return transcript

    async def get_stage_transcripts(self, session_id: str) -> list[StageTranscript]:
        """All stage transcripts of a session, ordered by stage number."""
        async with self._db_session_factory() as db:
            result = await db.execute(
                select(StageTranscript)
                .where(StageTranscript.session_id == session_id)
                .order_by(StageTranscript.stage_number)
            )
            return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Action items
    # ------------------------------------------------------------------

    async def list_action_items(
        self,
        session_id: str | None = None,
        status: str | None = None,
    ) -> list[ActionItem]:
        """
        List action items.

        Per-session listings are in creation order (the Action Plan order);
        the global listing is ordered by due date, undated last, newest first.
        """
        async with self._db_session_factory() as db:
            query = select(ActionItem)
            if session_id is not None:
                query = query.where(ActionItem.session_id == session_id).order_by(
                    ActionItem.created_at, ActionItem.id
                )
            else:
                query = query.order_by(
                    ActionItem.due_date.is_(None),
                    ActionItem.due_date,
                    ActionItem.created_at.desc(),
                )
            if status is not None:
                query = query.where(ActionItem.status == status)
            result = await db.execute(query)
            return list(result.scalars().all())

    async def get_action_item(self, item_id: str) -> ActionItem:
        async with self._db_session_factory() as db:
            item = await db.get(ActionItem, item_id)
            if item is None:
                raise ActionItemNotFoundError(item_id)
            return item

    async def insert_action_items(
        self,
        session_id: str,
        rows: Sequence[dict[str, Any]],
    ) -> list[ActionItem]:
        """Bulk-insert action items for one session, preserving input order."""
        async with self._db_session_factory() as db:
            exists = await db.execute(
                select(CoachingSession.id).where(CoachingSession.id == session_id)
            )
            if exists.scalar_one_or_none() is None:
                raise SessionNotFoundError(session_id)

            # Stagger timestamps so creation order survives identical clocks
            base_time = datetime.utcnow()
            items = []
            for offset, row in enumerate(rows):
                unknown = set(row) - _ACTION_ITEM_FIELDS
                if unknown:
                    raise ValueError(f"Unknown action item fields: {', '.join(sorted(unknown))}")
                created = base_time + timedelta(microseconds=offset)
                item = ActionItem(
                    session_id=session_id,
                    created_at=created,
                    updated_at=created,
                    **row,
                )
                db.add(item)
                items.append(item)
            await db.commit()
            logger.info(f"[CoachingStore] Inserted {len(items)} action items for session {session_id}")
            return items

    async def update_action_item(self, item_id: str, **changes: Any) -> ActionItem:
        unknown = set(changes) - _ACTION_ITEM_FIELDS
        if unknown:
            raise ValueError(f"Unknown action item fields: {', '.join(sorted(unknown))}")

        async with self._db_session_factory() as db:
            item = await db.get(ActionItem, item_id)
            if item is None:
                raise ActionItemNotFoundError(item_id)
            for key, value in changes.items():
                setattr(item, key, value)
            item.updated_at = datetime.utcnow()
            await db.commit()
            return item

    async def delete_action_item(self, item_id: str) -> str:
        """
        Delete an action item.

        Returns:
            The id of the session the item belonged to
        """
        async with self._db_session_factory() as db:
            item = await db.get(ActionItem, item_id)
            if item is None:
                raise ActionItemNotFoundError(item_id)
            session_id = item.session_id
            await db.delete(item)
            await db.commit()
            return session_id

    async def list_due_soon(self, days: int = 7, today: date | None = None) -> list[ActionItem]:
        """Open items due between today and today + days."""
        today = today or date.today()
        async with self._db_session_factory() as db:
            result = await db.execute(
                select(ActionItem)
                .where(
                    ActionItem.status != "completed",
                    ActionItem.due_date.is_not(None),
                    ActionItem.due_date >= today,
                    ActionItem.due_date <= today + timedelta(days=days),
                )
                .order_by(ActionItem.due_date)
            )
            return list(result.scalars().all())

    async def list_overdue(self, today: date | None = None) -> list[ActionItem]:
        """Open items whose due date has passed."""
        today = today or date.today()
        async with self._db_session_factory() as db:
            result = await db.execute(
                select(ActionItem)
                .where(
                    ActionItem.status != "completed",
                    ActionItem.due_date.is_not(None),
                    ActionItem.due_date < today,
                )
                .order_by(ActionItem.due_date)
            )
            return list(result.scalars().all())

    async def action_item_stats(self) -> dict[str, int]:
        """Action item counts keyed by status."""
        async with self._db_session_factory() as db:
            result = await db.execute(
                select(ActionItem.status, func.count(ActionItem.id)).group_by(ActionItem.status)
            )
            return {status: count for status, count in result.all()}
