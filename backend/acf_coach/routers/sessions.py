"""Coaching sessions API router."""

from dataclasses import asdict
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from acf_coach.dependencies import Services, get_services
from acf_coach.models import CoachingSession, StageTranscript
from acf_coach.routers.errors import http_error
from acf_coach.schemas import SessionKind, SessionState, Turn
from acf_coach.services.errors import CoachingError

router = APIRouter(prefix="/sessions", tags=["sessions"])


class SessionCreate(BaseModel):
    """Schema for starting a session."""

    session_type: SessionKind


class TurnSubmit(BaseModel):
    """Schema for a coachee message."""

    text: str


class SummaryRequest(BaseModel):
    """Schema for requesting a summary."""

    force_regenerate: bool = False


class SessionStateResponse(BaseModel):
    """Schema for the live coaching state."""

    session_id: str
    session_type: str
    current_stage: int
    stage_name: str
    turns: list[Turn]
    question_count: int
    can_advance: bool
    is_complete: bool
    min_questions: int
    max_questions: int
    summary: str | None = None
    action_item_ids: list[str] = []


class SessionResponse(BaseModel):
    """Schema for a stored session."""

    id: str
    session_type: str
    current_stage: int
    is_complete: bool
    has_summary: bool
    created_at: datetime
    updated_at: datetime


class SessionListResponse(BaseModel):
    """Schema for list of sessions."""

    sessions: list[SessionResponse]
    total: int


class StageTranscriptResponse(BaseModel):
    """Schema for one stage's stored conversation."""

    stage_number: int
    stage_name: str
    turns: list[Turn]
    completed_at: datetime | None


class SessionDetailResponse(BaseModel):
    """Schema for a session with all of its stage transcripts."""

    session: SessionResponse
    stages: list[StageTranscriptResponse]
    summary: str | None


class SummaryResponse(BaseModel):
    """Schema for a session summary."""

    summary: str
    cached: bool


def session_to_response(session: CoachingSession) -> SessionResponse:
    return SessionResponse(
        id=session.id,
        session_type=session.session_type,
        current_stage=session.current_stage,
        is_complete=session.is_complete,
        has_summary=bool(session.summary),
        created_at=session.created_at,
        updated_at=session.updated_at,
    )


def transcript_to_response(transcript: StageTranscript) -> StageTranscriptResponse:
    return StageTranscriptResponse(
        stage_number=transcript.stage_number,
        stage_name=transcript.stage_name,
        turns=[Turn.model_validate(turn) for turn in transcript.turns or []],
        completed_at=transcript.completed_at,
    )


def state_to_response(state: SessionState) -> SessionStateResponse:
    return SessionStateResponse(**asdict(state))


@router.post("", response_model=SessionStateResponse, status_code=201)
async def start_session(
    data: SessionCreate,
    services: Services = Depends(get_services),
) -> SessionStateResponse:
    """Start a session and return the stage 1 opening question."""
    try:
        state = await services.machine.start(data.session_type)
    except (CoachingError, ValueError) as e:
        raise http_error(e) from e
    return state_to_response(state)


@router.get("", response_model=SessionListResponse)
async def list_sessions(
    services: Services = Depends(get_services),
) -> SessionListResponse:
    """List all sessions, newest first."""
    sessions = await services.store.list_sessions()
    return SessionListResponse(
        sessions=[session_to_response(s) for s in sessions],
        total=len(sessions),
    )


@router.get("/{session_id}", response_model=SessionDetailResponse)
async def get_session(
    session_id: str,
    services: Services = Depends(get_services),
) -> SessionDetailResponse:
    """Get a session with its stage transcripts."""
    session = await services.store.get_session(session_id)
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")

    transcripts = await services.store.get_stage_transcripts(session_id)
    return SessionDetailResponse(
        session=session_to_response(session),
        stages=[transcript_to_response(t) for t in transcripts],
        summary=session.summary,
    )


@router.get("/{session_id}/state", response_model=SessionStateResponse)
async def get_session_state(
    session_id: str,
    services: Services = Depends(get_services),
) -> SessionStateResponse:
    """Get the current coaching state."""
    try:
        state = await services.machine.get_state(session_id)
    except CoachingError as e:
        raise http_error(e) from e
    return state_to_response(state)


@router.post("/{session_id}/turns", response_model=SessionStateResponse)
async def submit_turn(
    session_id: str,
    data: TurnSubmit,
    services: Services = Depends(get_services),
) -> SessionStateResponse:
    """Send a coachee message and get the coach's reply."""
    try:
        state = await services.machine.submit_user_turn(session_id, data.text)
    except (CoachingError, ValueError) as e:
        raise http_error(e) from e
    return state_to_response(state)


@router.post("/{session_id}/advance", response_model=SessionStateResponse)
async def advance_stage(
    session_id: str,
    services: Services = Depends(get_services),
) -> SessionStateResponse:
    """
    Move to the next stage.

    Advancing from stage 5 completes the session: the summary is generated
    and action items are extracted before this returns.
    """
    try:
        state = await services.machine.advance_stage(session_id)
    except CoachingError as e:
        raise http_error(e) from e
    return state_to_response(state)


@router.post("/{session_id}/resume", response_model=SessionStateResponse)
async def resume_session(
    session_id: str,
    services: Services = Depends(get_services),
) -> SessionStateResponse:
    """Continue an unfinished session."""
    try:
        state = await services.machine.resume(session_id)
    except CoachingError as e:
        raise http_error(e) from e
    return state_to_response(state)


@router.post("/{session_id}/summary", response_model=SummaryResponse)
async def get_summary(
    session_id: str,
    data: SummaryRequest | None = None,
    services: Services = Depends(get_services),
) -> SummaryResponse:
    """Get the session summary, generating it if it is not stored yet."""
    force = data.force_regenerate if data else False
    try:
        result = await services.summary_cache.get_or_generate(session_id, force_regenerate=force)
    except CoachingError as e:
        raise http_error(e) from e
    return SummaryResponse(summary=result.summary, cached=result.cached)


@router.delete("/{session_id}", status_code=204)
async def delete_session(
    session_id: str,
    services: Services = Depends(get_services),
) -> None:
    """Delete a session with its transcripts and action items."""
    services.machine.forget(session_id)
    deleted = await services.store.delete_session(session_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Session not found")
