"""Five-stage coaching session flow: turns, stage gating and completion."""

import asyncio
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from acf_coach.config import settings
from acf_coach.models import FINAL_STAGE, SESSION_TYPES, STAGE_NAMES
from acf_coach.prompts import STAGE_CONTEXTS, get_coach_system_prompt
from acf_coach.schemas import ModelOptions, SessionState, Turn
from acf_coach.services.action_extractor import ActionItemExtractor
from acf_coach.services.autosave import DebouncedSaver
from acf_coach.services.coaching_store import CoachingStore
from acf_coach.services.errors import (
    AlreadyCompleteError,
    InitializationError,
    InvalidTransitionError,
    ModelUnavailableError,
    SessionNotFoundError,
    StoreUnavailableError,
    TurnInProgressError,
)
from acf_coach.services.model_client import ModelClient
from acf_coach.services.summary_cache import SummaryCache

logger = logging.getLogger(__name__)


@contextmanager
def _store_errors(session_id: str) -> Iterator[None]:
    """Re-raise database failures as StoreUnavailableError."""
    try:
        yield
    except SQLAlchemyError as e:
        logger.error(f"[CoachingSessionStateMachine] Store failure for session {session_id}: {e}")
        raise StoreUnavailableError("Coaching data is temporarily unavailable") from e


@dataclass
class _LiveSession:
    """In-memory state of a session that is being worked through."""

    session_id: str
    session_type: str
    stage: int
    turns: list[Turn] = field(default_factory=list)
    question_count: int = 0
    is_complete: bool = False
    summary: str | None = None
    action_item_ids: list[str] = field(default_factory=list)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class CoachingSessionStateMachine:
    """
    Drives a session through the five ACF stages.

    A stage transcript lives in memory while the stage is active and is
    persisted by a debounced auto-save after every exchange, and once more
    with a completion timestamp when the stage is left. At most one turn per
    session is in flight; a second submission is rejected, not queued.
    """

    def __init__(
        self,
        store: CoachingStore,
        coach_client: ModelClient,
        summary_cache: SummaryCache,
        extractor: ActionItemExtractor,
        saver: DebouncedSaver | None = None,
        min_questions: int | None = None,
        max_questions: int | None = None,
        completion_settle_seconds: float | None = None,
    ) -> None:
        self.store = store
        self.coach_client = coach_client
        self.summary_cache = summary_cache
        self.extractor = extractor
        self.saver = saver or DebouncedSaver()
        self.min_questions = min_questions or settings.min_questions_per_stage
        self.max_questions = max_questions or settings.max_questions_per_stage
        self.completion_settle_seconds = (
            settings.completion_settle_seconds
            if completion_settle_seconds is None
            else completion_settle_seconds
        )
        self._sessions: dict[str, _LiveSession] = {}

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def start(self, session_kind: str) -> SessionState:
        """
        Create a session and ask the stage 1 opening question.

        Raises:
            ValueError: unknown session kind
            InitializationError: the session could not be created or the
                opening question could not be generated
        """
        if session_kind not in SESSION_TYPES:
            raise ValueError(f"Unknown session type: {session_kind}")

        try:
            session = await self.store.create_session(session_kind)
        except SQLAlchemyError as e:
            logger.error(f"[CoachingSessionStateMachine] Failed to create session: {e}")
            raise InitializationError("Could not create the coaching session") from e

        live = _LiveSession(session_id=session.id, session_type=session_kind, stage=1)
        try:
            await self._open_stage(live)
        except ModelUnavailableError as e:
            logger.error(
                f"[CoachingSessionStateMachine] Opening question failed for {session.id}: {e}"
            )
            await self._discard_session(session.id)
            raise InitializationError("Could not start the coaching conversation") from e

        self._sessions[live.session_id] = live
        self._schedule_save(live)
        logger.info(f"[CoachingSessionStateMachine] Started {session_kind} session {live.session_id}")
        return self._state(live)

    async def submit_user_turn(self, session_id: str, text: str) -> SessionState:
        """
        Add a coachee message and the coach's reply.

        The transcript and question count change only if the model replies.

        Raises:
            ValueError: blank text
            TurnInProgressError: a reply is already being generated
            AlreadyCompleteError: the session has finished
            SessionNotFoundError: the session does not exist (or was deleted
                while the reply was generated)
            ModelUnavailableError: no reply; the coachee may resubmit
            StoreUnavailableError: the session could not be loaded
        """
        if not text or not text.strip():
            raise ValueError("Message text must not be empty")

        with _store_errors(session_id):
            live = await self._live(session_id)
        if live.lock.locked():
            raise TurnInProgressError(f"A reply is already pending for session {session_id}")

        async with live.lock:
            if live.is_complete:
                raise AlreadyCompleteError(session_id)

            conversation = [*live.turns, Turn(role="coachee", text=text.strip())]
            reply = await self._coach_reply(live, conversation)

            if self._sessions.get(session_id) is not live:
                raise SessionNotFoundError(session_id)

            live.turns = [*conversation, Turn(role="coach", text=reply)]
            live.question_count += 1
            self._schedule_save(live)
            return self._state(live)

    async def can_advance(self, session_id: str) -> bool:
        """True once the stage has reached the question threshold."""
        with _store_errors(session_id):
            live = await self._live(session_id)
        return self._can_advance(live)

    async def advance_stage(self, session_id: str) -> SessionState:
        """
        Close the current stage and open the next one, or complete the session.

        Raises:
            InvalidTransitionError: below the question threshold
            TurnInProgressError: a reply is being generated
            AlreadyCompleteError: the session has finished
            SessionNotFoundError: the session was deleted; state is dropped
            ModelUnavailableError: the next opening question or the summary
                could not be generated; the stage can be advanced again
            StoreUnavailableError: the transition could not be persisted;
                the stage can be advanced again
        """
        with _store_errors(session_id):
            live = await self._live(session_id)
        if live.lock.locked():
            raise TurnInProgressError(f"A reply is already pending for session {session_id}")

        async with live.lock:
            if live.is_complete:
                raise AlreadyCompleteError(session_id)
            if not self._can_advance(live):
                raise InvalidTransitionError(
                    f"Stage {live.stage} needs at least {self.min_questions} questions "
                    f"before advancing (currently {live.question_count})"
                )

            with _store_errors(session_id):
                # A save that already started finishes before these writes
                self.saver.cancel(session_id)
                await self.saver.wait(session_id)
                await self._persist_turns(live)

                if live.stage < FINAL_STAGE:
                    return await self._open_next_stage(live)
                return await self._complete(live)

    async def resume(self, session_id: str) -> SessionState:
        """
        Continue an unfinished session.

        A session already held in memory keeps its transcript; otherwise it
        is loaded from the persisted transcripts. A current stage with no
        turns yet gets its opening question.

        Raises:
            SessionNotFoundError: unknown session
            AlreadyCompleteError: the session has finished
            TurnInProgressError: a reply is being generated
            StoreUnavailableError: the session could not be loaded
        """
        with _store_errors(session_id):
            live = await self._live(session_id)
        if live.lock.locked():
            raise TurnInProgressError(f"A reply is already pending for session {session_id}")

        async with live.lock:
            with _store_errors(session_id):
                try:
                    await self.store.require_session(session_id)
                except SessionNotFoundError:
                    self.forget(session_id)
                    raise
            if live.is_complete:
                raise AlreadyCompleteError(session_id)

            if not live.turns:
                await self._open_stage(live)
                self._schedule_save(live)

        logger.info(
            f"[CoachingSessionStateMachine] Resumed session {session_id} at stage {live.stage} "
            f"({live.question_count} questions)"
        )
        return self._state(live)

    async def get_state(self, session_id: str) -> SessionState:
        """Current state, from memory or the store (completed sessions included)."""
        live = self._sessions.get(session_id)
        if live is None:
            with _store_errors(session_id):
                live = await self._load(session_id)
        return self._state(live)

    def forget(self, session_id: str) -> None:
        """Drop in-memory state and any pending auto-save for a session."""
        self.saver.cancel(session_id)
        if self._sessions.pop(session_id, None) is not None:
            logger.debug(f"[CoachingSessionStateMachine] Forgot session {session_id}")

    # ------------------------------------------------------------------
    # Stage transitions
    # ------------------------------------------------------------------

    async def _open_next_stage(self, live: _LiveSession) -> SessionState:
        next_stage = live.stage + 1
        candidate = _LiveSession(
            session_id=live.session_id,
            session_type=live.session_type,
            stage=next_stage,
        )
        # Ask first so a model failure leaves the session on the current stage
        await self._open_stage(candidate)
        await self._persist_turns(live, completed_at=datetime.utcnow())

        try:
            await self.store.update_session(live.session_id, current_stage=next_stage, is_complete=False)
        except SessionNotFoundError:
            self.forget(live.session_id)
            raise

        live.stage = next_stage
        live.turns = candidate.turns
        live.question_count = candidate.question_count
        self._schedule_save(live)
        logger.info(
            f"[CoachingSessionStateMachine] Session {live.session_id} moved to stage {next_stage}"
        )
        return self._state(live)

    async def _complete(self, live: _LiveSession) -> SessionState:
        session_id = live.session_id
        try:
            result = await self.summary_cache.get_or_generate(session_id, force_regenerate=True)
        except SessionNotFoundError:
            self.forget(session_id)
            raise

        await self._persist_turns(live, completed_at=datetime.utcnow())
        try:
            await self.store.update_session(
                session_id,
                is_complete=True,
                current_stage=FINAL_STAGE,
                summary=result.summary,
            )
        except SessionNotFoundError:
            self.forget(session_id)
            raise

        live.is_complete = True
        live.summary = result.summary
        logger.info(f"[CoachingSessionStateMachine] Session {session_id} complete, extracting actions")

        await asyncio.sleep(self.completion_settle_seconds)
        try:
            items = await self.extractor.extract_and_persist(session_id, result.summary)
        except SessionNotFoundError:
            self.forget(session_id)
            raise
        except SQLAlchemyError as e:
            # The session is already complete; items can be recreated from the summary
            logger.error(
                f"[CoachingSessionStateMachine] Could not store action items for {session_id}: {e}"
            )
            return self._state(live)

        live.action_item_ids = [item.id for item in items]
        return self._state(live)

    async def _open_stage(self, live: _LiveSession) -> None:
        """Ask the opening question of live.stage into an empty transcript."""
        intro = Turn(role="coachee", text=STAGE_CONTEXTS[live.stage].introduction)
        live.question_count = 0
        reply = await self._coach_reply(live, [intro])
        live.turns = [Turn(role="coach", text=reply)]
        live.question_count = 1

    async def _coach_reply(self, live: _LiveSession, conversation: list[Turn]) -> str:
        system = get_coach_system_prompt(
            live.stage,
            live.question_count,
            live.session_type,
            self.min_questions,
            self.max_questions,
        )
        return await self.coach_client.complete(
            system,
            conversation,
            ModelOptions(
                temperature=settings.coach_temperature,
                max_tokens=settings.coach_max_tokens,
            ),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _live(self, session_id: str) -> _LiveSession:
        live = self._sessions.get(session_id)
        if live is None:
            live = self._sessions.setdefault(session_id, await self._load(session_id))
        return live

    async def _load(self, session_id: str) -> _LiveSession:
        session = await self.store.require_session(session_id)
        live = _LiveSession(
            session_id=session.id,
            session_type=session.session_type,
            stage=session.current_stage,
            is_complete=session.is_complete,
            summary=session.summary,
        )

        for transcript in await self.store.get_stage_transcripts(session_id):
            if transcript.stage_number == session.current_stage:
                live.turns = [Turn.model_validate(turn) for turn in transcript.turns or []]
                live.question_count = transcript.coach_turn_count

        if session.is_complete:
            items = await self.store.list_action_items(session_id)
            live.action_item_ids = [item.id for item in items]
        return live

    async def _discard_session(self, session_id: str) -> None:
        try:
            await self.store.delete_session(session_id)
        except SQLAlchemyError as e:
            logger.warning(
                f"[CoachingSessionStateMachine] Could not remove unstarted session {session_id}: {e}"
            )

    def _can_advance(self, live: _LiveSession) -> bool:
        return not live.is_complete and live.question_count >= self.min_questions

    async def _persist_turns(self, live: _LiveSession, completed_at: datetime | None = None) -> None:
        """Write the current stage transcript now, dropping state if the session is gone."""
        try:
            await self.store.save_stage_response(
                live.session_id,
                live.stage,
                self._serialize_turns(live.turns),
                completed_at=completed_at,
            )
        except SessionNotFoundError:
            self.forget(live.session_id)
            raise

    def _schedule_save(self, live: _LiveSession) -> None:
        session_id = live.session_id
        stage = live.stage
        turns = self._serialize_turns(live.turns)
        self.saver.schedule(
            session_id,
            lambda: self.store.save_stage_response(session_id, stage, turns),
        )

    @staticmethod
    def _serialize_turns(turns: list[Turn]) -> list[dict]:
        return [turn.model_dump() for turn in turns]

    def _state(self, live: _LiveSession) -> SessionState:
        return SessionState(
            session_id=live.session_id,
            session_type=live.session_type,
            current_stage=live.stage,
            stage_name=STAGE_NAMES[live.stage],
            turns=list(live.turns),
            question_count=live.question_count,
            can_advance=self._can_advance(live),
            is_complete=live.is_complete,
            min_questions=self.min_questions,
            max_questions=self.max_questions,
            summary=live.summary,
            action_item_ids=list(live.action_item_ids),
        )
