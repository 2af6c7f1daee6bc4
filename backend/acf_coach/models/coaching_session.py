"""Coaching session and per-stage transcript models."""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, JSON, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from acf_coach.models.base import Base

if TYPE_CHECKING:
    from acf_coach.models.action_item import ActionItem


# Stage number -> stage name for the five ACF stages
STAGE_NAMES: dict[int, str] = {
    1: "Assess the Situation",
    2: "Creative Brainstorming",
    3: "Formulate the Goal",
    4: "Initiate the Action Plan",
    5: "Nourish Accountability",
}

FINAL_STAGE = 5

SESSION_TYPES = ("coach_led", "self_coaching")


class CoachingSession(Base):
    """One run through the five-stage ACF coaching framework."""

    __tablename__ = "coaching_sessions"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    session_type: Mapped[str] = mapped_column(
        String(20), nullable=False
    )  # coach_led, self_coaching
    current_stage: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    is_complete: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # Cached markdown summary with the six fixed sections
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    # Relationships
    stages: Mapped[list["StageTranscript"]] = relationship(
        "StageTranscript",
        back_populates="session",
        order_by="StageTranscript.stage_number",
    )
    action_items: Mapped[list["ActionItem"]] = relationship(
        "ActionItem",
        back_populates="session",
        order_by="ActionItem.created_at",
    )

    def __repr__(self) -> str:
        return (
            f"<CoachingSession(id={self.id}, stage={self.current_stage}, "
            f"complete={self.is_complete})>"
        )


class StageTranscript(Base):
    """The conversation for one stage of a session, upserted by (session, stage)."""

    __tablename__ = "stage_responses"
    __table_args__ = (
        UniqueConstraint("session_id", "stage_number", name="uq_stage_responses_session_stage"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    session_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("coaching_sessions.id"), nullable=False, index=True
    )
    stage_number: Mapped[int] = mapped_column(Integer, nullable=False)
    stage_name: Mapped[str] = mapped_column(String(100), nullable=False)
    # JSON array of {"role": "coach" | "coachee", "text": "..."}
    turns: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    session: Mapped["CoachingSession"] = relationship(
        "CoachingSession", back_populates="stages"
    )

    @property
    def coach_turn_count(self) -> int:
        """Number of coach turns, which is the stage's question count."""
        return sum(1 for turn in self.turns or [] if turn.get("role") == "coach")

    def __repr__(self) -> str:
        return (
            f"<StageTranscript(session_id={self.session_id}, stage={self.stage_number}, "
            f"turns={len(self.turns or [])})>"
        )
