"""
Tests for CoachingSessionStateMachine.

Tests cover:
- Starting a session and its failure modes
- Turn submission, atomicity and single in-flight turn
- Stage gating and transitions
- Completion: summary, action items, terminal state
- Resume and concurrent deletion
"""

import asyncio
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from acf_coach.services.errors import (
    AlreadyCompleteError,
    CoachingError,
    InitializationError,
    InvalidTransitionError,
    ModelTransportError,
    ModelUnavailableError,
    SessionNotFoundError,
    StoreUnavailableError,
    TurnInProgressError,
)
from acf_coach.services.session_machine import CoachingSessionStateMachine

from conftest import answer_questions


async def wait_for_calls(client, count: int) -> None:
    """Yield to the event loop until the fake client has seen count calls."""
    for _ in range(100):
        if len(client.calls) >= count:
            return
        await asyncio.sleep(0.01)
    raise AssertionError(f"expected {count} model calls, saw {len(client.calls)}")


async def complete_stage(machine, session_id: str):
    """Answer enough questions to reach the threshold, then advance."""
    await answer_questions(machine, session_id, 7)
    return await machine.advance_stage(session_id)


class TestStart:
    """Tests for starting a session."""

    @pytest.mark.unit
    async def test_start_asks_opening_question(self, machine, coach_client, store):
        state = await machine.start("self_coaching")

        assert state.current_stage == 1
        assert state.stage_name == "Assess the Situation"
        assert state.question_count == 1
        assert [t.role for t in state.turns] == ["coach"]
        assert state.turns[0].text == "Coach question 1?"
        assert state.can_advance is False
        assert state.is_complete is False

        call = coach_client.calls[0]
        assert call["conversation"][0].role == "coachee"
        assert call["conversation"][0].text.startswith("Start Stage 1: Assess the Situation")
        assert "Start by asking this opening question" in call["system"]
        assert "Current question count: 0" in call["system"]
        assert call["options"].temperature == 0.8

        session = await store.get_session(state.session_id)
        assert session.session_type == "self_coaching"
        assert session.current_stage == 1

    @pytest.mark.unit
    async def test_opening_turn_is_auto_saved(self, machine, store):
        state = await machine.start("coach_led")
        await machine.saver.flush(state.session_id)

        [transcript] = await store.get_stage_transcripts(state.session_id)
        assert transcript.turns == [{"role": "coach", "text": "Coach question 1?"}]
        assert transcript.completed_at is None

    @pytest.mark.unit
    async def test_unknown_kind_rejected(self, machine):
        with pytest.raises(ValueError):
            await machine.start("group")

    @pytest.mark.unit
    async def test_model_failure_leaves_nothing_behind(self, machine, coach_client, store):
        coach_client.replies = [ModelTransportError("connection reset")]

        with pytest.raises(InitializationError):
            await machine.start("self_coaching")

        assert await store.list_sessions() == []
        assert machine._sessions == {}

        # Start can simply be retried
        state = await machine.start("self_coaching")
        assert state.question_count == 1


class TestTurns:
    """Tests for submit_user_turn."""

    @pytest.mark.unit
    async def test_turn_appends_exchange(self, machine, coach_client):
        state = await machine.start("self_coaching")

        state = await machine.submit_user_turn(state.session_id, "  I feel stuck at work  ")

        assert state.question_count == 2
        assert [(t.role, t.text) for t in state.turns] == [
            ("coach", "Coach question 1?"),
            ("coachee", "I feel stuck at work"),
            ("coach", "Coach question 2?"),
        ]
        call = coach_client.calls[1]
        assert "Current question count: 1" in call["system"]
        assert "Start by asking this opening question" not in call["system"]
        assert call["conversation"][-1].text == "I feel stuck at work"

    @pytest.mark.unit
    async def test_blank_text_rejected(self, machine):
        state = await machine.start("self_coaching")
        with pytest.raises(ValueError):
            await machine.submit_user_turn(state.session_id, "   ")

    @pytest.mark.unit
    async def test_failed_turn_changes_nothing(self, machine, coach_client):
        state = await machine.start("self_coaching")
        await answer_questions(machine, state.session_id, 2)
        before = await machine.get_state(state.session_id)

        coach_client.replies = [ModelTransportError("timeout")]
        with pytest.raises(ModelUnavailableError):
            await machine.submit_user_turn(state.session_id, "This one fails")

        after = await machine.get_state(state.session_id)
        assert after.turns == before.turns
        assert after.question_count == before.question_count == 3

        # The coachee can resubmit
        retried = await machine.submit_user_turn(state.session_id, "This one fails")
        assert retried.question_count == 4

    @pytest.mark.unit
    async def test_second_turn_in_flight_is_rejected(self, machine, coach_client):
        state = await machine.start("self_coaching")
        coach_client.gate = asyncio.Event()

        pending = asyncio.create_task(machine.submit_user_turn(state.session_id, "First"))
        await wait_for_calls(coach_client, 2)

        with pytest.raises(TurnInProgressError):
            await machine.submit_user_turn(state.session_id, "Second")
        with pytest.raises(TurnInProgressError):
            await machine.advance_stage(state.session_id)

        coach_client.gate.set()
        result = await pending

        assert result.question_count == 2
        assert [t.text for t in result.turns if t.role == "coachee"] == ["First"]

    @pytest.mark.unit
    async def test_unknown_session(self, machine):
        with pytest.raises(SessionNotFoundError):
            await machine.submit_user_turn("missing", "Hello")

    @pytest.mark.unit
    async def test_turns_auto_save(self, machine, store):
        state = await machine.start("self_coaching")
        await answer_questions(machine, state.session_id, 2)
        await machine.saver.flush(state.session_id)
        await asyncio.sleep(0.05)

        [transcript] = await store.get_stage_transcripts(state.session_id)
        assert len(transcript.turns) == 5
        assert transcript.coach_turn_count == 3


class TestStageGating:
    """Tests for can_advance and advance_stage below the final stage."""

    @pytest.mark.unit
    async def test_seven_questions_cannot_advance(self, machine):
        state = await machine.start("self_coaching")
        state = await answer_questions(machine, state.session_id, 6)

        assert state.question_count == 7
        assert state.can_advance is False
        assert await machine.can_advance(state.session_id) is False
        with pytest.raises(InvalidTransitionError):
            await machine.advance_stage(state.session_id)

    @pytest.mark.unit
    async def test_eight_questions_can_advance(self, machine):
        state = await machine.start("self_coaching")
        state = await answer_questions(machine, state.session_id, 7)

        assert state.question_count == 8
        assert state.can_advance is True
        assert await machine.can_advance(state.session_id) is True

    @pytest.mark.unit
    async def test_advance_opens_next_stage(self, machine, coach_client, store):
        state = await machine.start("self_coaching")
        state = await complete_stage(machine, state.session_id)

        assert state.current_stage == 2
        assert state.stage_name == "Creative Brainstorming"
        assert state.question_count == 1
        assert len(state.turns) == 1
        assert coach_client.calls[-1]["conversation"][0].text.startswith("Start Stage 2")

        session = await store.get_session(state.session_id)
        assert session.current_stage == 2
        transcripts = await store.get_stage_transcripts(state.session_id)
        stage_one = transcripts[0]
        assert stage_one.stage_number == 1
        assert stage_one.completed_at is not None
        assert len(stage_one.turns) == 15

    @pytest.mark.unit
    async def test_failed_opening_keeps_current_stage(self, machine, coach_client, store):
        state = await machine.start("self_coaching")
        await answer_questions(machine, state.session_id, 7)

        coach_client.replies = [ModelTransportError("overloaded")]
        with pytest.raises(ModelUnavailableError):
            await machine.advance_stage(state.session_id)

        current = await machine.get_state(state.session_id)
        assert current.current_stage == 1
        assert current.question_count == 8
        assert (await store.get_session(state.session_id)).current_stage == 1
        [stage_one] = await store.get_stage_transcripts(state.session_id)
        assert stage_one.completed_at is None
        assert len(stage_one.turns) == 15

        retried = await machine.advance_stage(state.session_id)
        assert retried.current_stage == 2
        stage_one = (await store.get_stage_transcripts(state.session_id))[0]
        assert stage_one.completed_at is not None

    @pytest.mark.unit
    async def test_store_failure_is_retryable(self, machine, store, monkeypatch):
        state = await machine.start("self_coaching")
        await answer_questions(machine, state.session_id, 7)

        failing = AsyncMock(
            side_effect=OperationalError("UPDATE stage_transcripts", {}, Exception("database is locked"))
        )
        monkeypatch.setattr(store, "save_stage_response", failing)
        with pytest.raises(StoreUnavailableError) as excinfo:
            await machine.advance_stage(state.session_id)
        assert isinstance(excinfo.value, CoachingError)
        monkeypatch.undo()

        current = await machine.get_state(state.session_id)
        assert current.current_stage == 1
        assert current.question_count == 8

        retried = await machine.advance_stage(state.session_id)
        assert retried.current_stage == 2

    @pytest.mark.unit
    async def test_store_failure_on_load(self, machine, store, monkeypatch):
        session = await store.create_session("self_coaching")
        monkeypatch.setattr(
            store,
            "require_session",
            AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("disk I/O error"))),
        )

        with pytest.raises(StoreUnavailableError):
            await machine.get_state(session.id)
        with pytest.raises(StoreUnavailableError):
            await machine.submit_user_turn(session.id, "Hello")
        assert session.id not in machine._sessions

    @pytest.mark.unit
    async def test_advance_after_delete_drops_state(self, machine, store):
        state = await machine.start("self_coaching")
        await answer_questions(machine, state.session_id, 7)
        await machine.saver.flush(state.session_id)
        await store.delete_session(state.session_id)

        with pytest.raises(SessionNotFoundError):
            await machine.advance_stage(state.session_id)

        assert state.session_id not in machine._sessions


class TestCompletion:
    """Tests for leaving the final stage."""

    @pytest.mark.integration
    async def test_full_session(self, machine, store, summary_client, extraction_client, sample_summary):
        state = await machine.start("self_coaching")
        session_id = state.session_id

        for expected_stage in (2, 3, 4, 5):
            state = await complete_stage(machine, session_id)
            assert state.current_stage == expected_stage

        state = await complete_stage(machine, session_id)

        assert state.is_complete is True
        assert state.current_stage == 5
        assert state.can_advance is False
        assert state.summary == sample_summary
        assert len(state.action_item_ids) == 3
        assert len(summary_client.calls) == 1
        assert len(extraction_client.calls) == 1

        session = await store.get_session(session_id)
        assert session.is_complete is True
        assert session.current_stage == 5
        assert session.summary == sample_summary

        transcripts = await store.get_stage_transcripts(session_id)
        assert [t.stage_number for t in transcripts] == [1, 2, 3, 4, 5]
        assert all(t.completed_at is not None for t in transcripts)

        summary_prompt = summary_client.calls[0]["conversation"][0].text
        assert "### Stage 5: Nourish Accountability" in summary_prompt

        items = await store.list_action_items(session_id)
        assert [i.id for i in items] == state.action_item_ids
        assert items[0].title == "Update resume"

        with pytest.raises(AlreadyCompleteError):
            await machine.submit_user_turn(session_id, "One more thing")
        with pytest.raises(AlreadyCompleteError):
            await machine.advance_stage(session_id)

    @pytest.mark.integration
    async def test_summary_failure_leaves_session_incomplete(self, machine, store, summary_client):
        state = await machine.start("self_coaching")
        for _ in range(4):
            state = await complete_stage(machine, state.session_id)
        await answer_questions(machine, state.session_id, 7)

        summary_client.replies = [ModelTransportError("timeout")]
        with pytest.raises(ModelUnavailableError):
            await machine.advance_stage(state.session_id)

        session = await store.get_session(state.session_id)
        assert session.is_complete is False
        assert session.summary is None
        assert (await machine.get_state(state.session_id)).is_complete is False
        stage_five = (await store.get_stage_transcripts(state.session_id))[-1]
        assert stage_five.stage_number == 5
        assert stage_five.completed_at is None

        done = await machine.advance_stage(state.session_id)
        assert done.is_complete is True
        stage_five = (await store.get_stage_transcripts(state.session_id))[-1]
        assert stage_five.completed_at is not None

    @pytest.mark.integration
    async def test_item_store_failure_still_completes(self, machine, store, monkeypatch):
        monkeypatch.setattr(
            store,
            "insert_action_items",
            AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("database is locked"))),
        )
        state = await machine.start("self_coaching")
        for _ in range(5):
            state = await complete_stage(machine, state.session_id)

        assert state.is_complete is True
        assert state.action_item_ids == []
        assert (await store.get_session(state.session_id)).is_complete is True

    @pytest.mark.integration
    async def test_extraction_failure_still_completes(self, machine, store, extraction_client):
        extraction_client.replies = [ModelTransportError("timeout")]
        state = await machine.start("coach_led")
        for _ in range(5):
            state = await complete_stage(machine, state.session_id)

        assert state.is_complete is True
        [item] = await store.list_action_items(state.session_id)
        assert item.title.startswith("I want to become a Product Manager")

    @pytest.mark.integration
    async def test_completed_state_loads_in_fresh_machine(self, machine, store, summary_cache, extractor, coach_client, sample_summary):
        state = await machine.start("self_coaching")
        for _ in range(5):
            state = await complete_stage(machine, state.session_id)

        fresh = CoachingSessionStateMachine(store, coach_client, summary_cache, extractor, machine.saver)
        loaded = await fresh.get_state(state.session_id)

        assert loaded.is_complete is True
        assert loaded.summary == sample_summary
        assert loaded.action_item_ids == state.action_item_ids


class TestResume:
    """Tests for resume."""

    @pytest.mark.integration
    async def test_resume_restores_transcript(self, machine, store, summary_cache, extractor, coach_client):
        state = await machine.start("self_coaching")
        await answer_questions(machine, state.session_id, 3)
        await machine.saver.flush(state.session_id)
        await asyncio.sleep(0.05)

        fresh = CoachingSessionStateMachine(store, coach_client, summary_cache, extractor, machine.saver)
        resumed = await fresh.resume(state.session_id)

        assert resumed.current_stage == 1
        assert resumed.question_count == 4
        assert len(resumed.turns) == 7

        after = await fresh.submit_user_turn(state.session_id, "Picking up again")
        assert after.question_count == 5

    @pytest.mark.integration
    async def test_resume_empty_stage_asks_opening_question(self, machine, store, coach_client):
        session = await store.create_session("self_coaching")
        await store.update_session(session.id, current_stage=3)

        resumed = await machine.resume(session.id)

        assert resumed.current_stage == 3
        assert resumed.question_count == 1
        assert coach_client.calls[-1]["conversation"][0].text.startswith("Start Stage 3")

    @pytest.mark.integration
    async def test_resume_keeps_live_transcript(self, machine, coach_client):
        state = await machine.start("self_coaching")
        before = await answer_questions(machine, state.session_id, 2)

        resumed = await machine.resume(state.session_id)

        assert resumed.turns == before.turns
        assert resumed.question_count == 3
        assert len(coach_client.calls) == 3

        after = await machine.submit_user_turn(state.session_id, "Carrying on")
        assert after.question_count == 4
        assert after.turns[:5] == before.turns

    @pytest.mark.integration
    async def test_turn_during_resume_is_rejected(self, machine, store, coach_client):
        session = await store.create_session("self_coaching")
        await store.update_session(session.id, current_stage=3)
        coach_client.gate = asyncio.Event()

        pending = asyncio.create_task(machine.resume(session.id))
        await wait_for_calls(coach_client, 1)

        with pytest.raises(TurnInProgressError):
            await machine.submit_user_turn(session.id, "Hello")

        coach_client.gate.set()
        resumed = await pending
        assert resumed.question_count == 1

        after = await machine.submit_user_turn(session.id, "Hello")
        assert after.question_count == 2
        assert after.turns[0] == resumed.turns[0]

    @pytest.mark.integration
    async def test_resume_during_turn_is_rejected(self, machine, coach_client):
        state = await machine.start("self_coaching")
        coach_client.gate = asyncio.Event()

        pending = asyncio.create_task(machine.submit_user_turn(state.session_id, "Hello"))
        await wait_for_calls(coach_client, 2)

        with pytest.raises(TurnInProgressError):
            await machine.resume(state.session_id)

        coach_client.gate.set()
        answered = await pending
        assert answered.question_count == 2
        assert (await machine.resume(state.session_id)).turns == answered.turns

    @pytest.mark.integration
    async def test_resume_after_delete_drops_state(self, machine, store):
        state = await machine.start("self_coaching")
        await machine.saver.flush(state.session_id)
        await store.delete_session(state.session_id)

        with pytest.raises(SessionNotFoundError):
            await machine.resume(state.session_id)
        assert state.session_id not in machine._sessions

    @pytest.mark.integration
    async def test_resume_complete_session(self, machine, completed_session):
        with pytest.raises(AlreadyCompleteError):
            await machine.resume(completed_session.id)

    @pytest.mark.integration
    async def test_resume_missing_session(self, machine):
        with pytest.raises(SessionNotFoundError):
            await machine.resume("missing")


class TestConcurrentDelete:
    """Tests for deleting a session while work is in flight."""

    @pytest.mark.integration
    async def test_delete_during_turn(self, machine, coach_client, store):
        state = await machine.start("self_coaching")
        await machine.saver.flush(state.session_id)
        coach_client.gate = asyncio.Event()

        pending = asyncio.create_task(machine.submit_user_turn(state.session_id, "Hello"))
        await wait_for_calls(coach_client, 2)

        machine.forget(state.session_id)
        await store.delete_session(state.session_id)
        coach_client.gate.set()

        with pytest.raises(SessionNotFoundError):
            await pending
        assert await store.get_stage_transcripts(state.session_id) == []

    @pytest.mark.integration
    async def test_forget_cancels_pending_save(self, machine):
        state = await machine.start("self_coaching")
        assert machine.saver.pending(state.session_id)

        machine.forget(state.session_id)

        assert not machine.saver.pending(state.session_id)
