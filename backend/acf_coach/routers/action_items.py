"""Action items API router."""

from datetime import date, datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from acf_coach.dependencies import Services, get_services
from acf_coach.models import ActionItem
from acf_coach.routers.errors import http_error
from acf_coach.schemas import ActionItemDraft
from acf_coach.services.action_plan_reconciler import DraftMatch
from acf_coach.services.errors import CoachingError
from acf_coach.utils.priority import PriorityText, Status, to_text

router = APIRouter(prefix="/action-items", tags=["action-items"])


class ActionItemUpdate(BaseModel):
    """Schema for updating an action item."""

    title: str | None = None
    description: str | None = None
    priority: PriorityText | None = None
    status: Status | None = None
    due_date: date | None = None
    notes: str | None = None
    reminder_enabled: bool | None = None
    reminder_frequency: str | None = None


class CompleteRequest(BaseModel):
    """Schema for completing an action item."""

    notes: str | None = None


class CreateFromDrafts(BaseModel):
    """Schema for creating action items from drafts."""

    session_id: str
    drafts: list[ActionItemDraft]


class ActionItemResponse(BaseModel):
    """Schema for action item response."""

    id: str
    session_id: str
    title: str
    description: str
    goal_statement: str | None
    priority: PriorityText
    status: str
    due_date: date | None
    notes: str
    reminder_enabled: bool
    reminder_frequency: str
    completed_at: datetime | None
    coaching_theme: str | None
    created_at: datetime
    updated_at: datetime


class ActionItemListResponse(BaseModel):
    """Schema for list of action items."""

    action_items: list[ActionItemResponse]
    total: int


class DraftMatchResponse(BaseModel):
    """Schema for a draft and the action item it was stored as."""

    draft: ActionItemDraft
    action_item: ActionItemResponse | None


class ActionItemStats(BaseModel):
    """Schema for action item totals."""

    total: int
    pending: int
    in_progress: int
    completed: int
    blocked: int
    completion_rate: float


def item_to_response(item: ActionItem) -> ActionItemResponse:
    """Convert ActionItem model to response schema."""
    return ActionItemResponse(
        id=item.id,
        session_id=item.session_id,
        title=item.title,
        description=item.description or "",
        goal_statement=item.goal_statement,
        priority=to_text(item.priority),
        status=item.status,
        due_date=item.due_date,
        notes=item.notes or "",
        reminder_enabled=item.reminder_enabled,
        reminder_frequency=item.reminder_frequency,
        completed_at=item.completed_at,
        coaching_theme=item.coaching_theme,
        created_at=item.created_at,
        updated_at=item.updated_at,
    )


def items_to_list(items: list[ActionItem]) -> ActionItemListResponse:
    return ActionItemListResponse(
        action_items=[item_to_response(item) for item in items],
        total=len(items),
    )


def matches_to_response(matches: list[DraftMatch]) -> list[DraftMatchResponse]:
    return [
        DraftMatchResponse(
            draft=match.draft,
            action_item=item_to_response(match.item) if match.item else None,
        )
        for match in matches
    ]


@router.get("", response_model=ActionItemListResponse)
async def list_action_items(
    status: Status | None = None,
    services: Services = Depends(get_services),
) -> ActionItemListResponse:
    """List action items across all sessions, soonest due first."""
    return items_to_list(await services.action_items.list_all(status))


@router.get("/due-soon", response_model=ActionItemListResponse)
async def list_due_soon(
    days: int = Query(default=7, ge=0, le=365),
    services: Services = Depends(get_services),
) -> ActionItemListResponse:
    """Open action items due within the next few days."""
    return items_to_list(await services.action_items.due_soon(days))


@router.get("/overdue", response_model=ActionItemListResponse)
async def list_overdue(
    services: Services = Depends(get_services),
) -> ActionItemListResponse:
    """Open action items past their due date."""
    return items_to_list(await services.action_items.overdue())


@router.get("/stats", response_model=ActionItemStats)
async def get_stats(
    services: Services = Depends(get_services),
) -> ActionItemStats:
    """Action item totals and completion rate."""
    return ActionItemStats(**await services.action_items.stats())


@router.get("/by-session/{session_id}", response_model=ActionItemListResponse)
async def list_session_action_items(
    session_id: str,
    services: Services = Depends(get_services),
) -> ActionItemListResponse:
    """Action items of one session, in Action Plan order."""
    try:
        items = await services.action_items.list_by_session(session_id)
    except CoachingError as e:
        raise http_error(e) from e
    return items_to_list(items)


@router.post("/by-session/{session_id}/sync", response_model=list[DraftMatchResponse])
async def sync_session_action_items(
    session_id: str,
    services: Services = Depends(get_services),
) -> list[DraftMatchResponse]:
    """Create rows for any numbered Action Plan entries that have none."""
    try:
        matches = await services.action_items.sync_from_summary(session_id)
    except CoachingError as e:
        raise http_error(e) from e
    return matches_to_response(matches)


@router.post("/create-from-drafts", response_model=list[DraftMatchResponse], status_code=201)
async def create_from_drafts(
    data: CreateFromDrafts,
    services: Services = Depends(get_services),
) -> list[DraftMatchResponse]:
    """Store drafts as pending action items of a session."""
    try:
        matches = await services.action_items.create_from_drafts(data.session_id, data.drafts)
    except CoachingError as e:
        raise http_error(e) from e
    return matches_to_response(matches)


@router.get("/{item_id}", response_model=ActionItemResponse)
async def get_action_item(
    item_id: str,
    services: Services = Depends(get_services),
) -> ActionItemResponse:
    """Get an action item by ID."""
    try:
        item = await services.action_items.get(item_id)
    except CoachingError as e:
        raise http_error(e) from e
    return item_to_response(item)


@router.patch("/{item_id}", response_model=ActionItemResponse)
async def update_action_item(
    item_id: str,
    update: ActionItemUpdate,
    services: Services = Depends(get_services),
) -> ActionItemResponse:
    """Update an action item."""
    changes = update.model_dump(exclude_unset=True)
    # Explicit nulls only clear the nullable columns
    changes = {
        key: value
        for key, value in changes.items()
        if value is not None or key in ("due_date", "description", "notes")
    }
    if "title" in changes and not (changes["title"] or "").strip():
        raise http_error(ValueError("Title must not be empty"))
    try:
        item = await services.action_items.update(item_id, changes)
    except (CoachingError, ValueError) as e:
        raise http_error(e) from e
    return item_to_response(item)


@router.post("/{item_id}/complete", response_model=ActionItemResponse)
async def complete_action_item(
    item_id: str,
    data: CompleteRequest | None = None,
    services: Services = Depends(get_services),
) -> ActionItemResponse:
    """Mark an action item completed."""
    try:
        item = await services.action_items.complete(item_id, data.notes if data else None)
    except CoachingError as e:
        raise http_error(e) from e
    return item_to_response(item)


@router.post("/{item_id}/start", response_model=ActionItemResponse)
async def start_action_item(
    item_id: str,
    services: Services = Depends(get_services),
) -> ActionItemResponse:
    """Mark an action item in progress."""
    try:
        item = await services.action_items.start(item_id)
    except CoachingError as e:
        raise http_error(e) from e
    return item_to_response(item)


@router.delete("/{item_id}", status_code=204)
async def delete_action_item(
    item_id: str,
    services: Services = Depends(get_services),
) -> None:
    """Delete an action item."""
    try:
        await services.action_items.delete(item_id)
    except CoachingError as e:
        raise http_error(e) from e
