"""Session summary generation with a write-through cache on the session row."""

import logging

from sqlalchemy.exc import SQLAlchemyError

from acf_coach.config import settings
from acf_coach.prompts import SUMMARY_SYSTEM_PROMPT, get_summary_user_prompt
from acf_coach.schemas import ModelOptions, SummaryResult, Turn
from acf_coach.services.coaching_store import CoachingStore
from acf_coach.services.model_client import ModelClient

logger = logging.getLogger(__name__)

StageTranscripts = list[tuple[str, list[Turn]]]


class SummaryCache:
    """Returns the stored summary, generating and storing one when needed."""

    def __init__(self, model_client: ModelClient, store: CoachingStore) -> None:
        self.model_client = model_client
        self.store = store

    async def get_or_generate(
        self,
        session_id: str,
        force_regenerate: bool = False,
        stage_transcripts: StageTranscripts | None = None,
    ) -> SummaryResult:
        """
        Get the session summary.

        Args:
            session_id: The session to summarize
            force_regenerate: Ignore any stored summary
            stage_transcripts: (stage name, turns) per stage; loaded from the
                store when omitted

        Raises:
            SessionNotFoundError: unknown session
            ModelUnavailableError: generation failed; nothing is stored
        """
        if not force_regenerate:
            try:
                cached = await self.store.get_cached_summary(session_id)
            except SQLAlchemyError as e:
                logger.warning(f"[SummaryCache] Could not read cached summary for {session_id}: {e}")
                cached = None
            if cached:
                logger.debug(f"[SummaryCache] Using cached summary for {session_id}")
                return SummaryResult(summary=cached, cached=True)

        session = await self.store.require_session(session_id)
        if stage_transcripts is None:
            stage_transcripts = await self._load_transcripts(session_id)

        prompt = get_summary_user_prompt(stage_transcripts, session.session_type)
        summary = await self.model_client.complete(
            SUMMARY_SYSTEM_PROMPT,
            [Turn(role="coachee", text=prompt)],
            ModelOptions(
                temperature=settings.summary_temperature,
                max_tokens=settings.summary_max_tokens,
            ),
        )

        try:
            await self.store.save_summary(session_id, summary)
        except SQLAlchemyError as e:
            logger.error(f"[SummaryCache] Failed to cache summary for {session_id}: {e}")

        logger.info(f"[SummaryCache] Generated summary for session {session_id} ({len(summary)} chars)")
        return SummaryResult(summary=summary, cached=False)

    async def _load_transcripts(self, session_id: str) -> StageTranscripts:
        rows = await self.store.get_stage_transcripts(session_id)
        return [
            (row.stage_name, [Turn.model_validate(turn) for turn in row.turns or []])
            for row in rows
        ]
