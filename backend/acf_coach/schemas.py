"""Value types passed between the coaching services."""

from dataclasses import dataclass, field
from datetime import date
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from acf_coach.utils.priority import PriorityText

TurnRole = Literal["coach", "coachee"]
SessionKind = Literal["coach_led", "self_coaching"]


class Turn(BaseModel):
    """One message in a stage transcript."""

    role: TurnRole
    text: str


class ActionItemDraft(BaseModel):
    """An extracted or parsed action item that has not been persisted yet."""

    title: str
    description: str = ""
    due_date: date | None = None
    priority: PriorityText = "medium"

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("title must not be blank")
        return value


class ModelOptions(BaseModel):
    """Generation options forwarded to the model-call service."""

    temperature: float = 0.7
    max_tokens: int = Field(default=1000, gt=0)


@dataclass
class ExtractedDrafts:
    """The model returned a usable JSON array of action items."""

    drafts: list[ActionItemDraft]


@dataclass
class ExtractionParseFailure:
    """The model output could not be turned into drafts."""

    raw_text: str
    reason: str


ExtractionResult = ExtractedDrafts | ExtractionParseFailure


@dataclass
class SummaryResult:
    """A session summary and whether it came from the cache."""

    summary: str
    cached: bool


@dataclass
class SessionState:
    """Everything a client needs to render the current coaching step."""

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
    action_item_ids: list[str] = field(default_factory=list)
