"""Action item model for commitments derived from a session summary."""

import uuid
from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from acf_coach.models.base import Base

if TYPE_CHECKING:
    from acf_coach.models.coaching_session import CoachingSession


class ActionItem(Base):
    """A single action the coachee committed to during a session."""

    __tablename__ = "action_items"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    session_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("coaching_sessions.id"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    goal_statement: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Integer band: low=1, medium=3, high=5 (see utils.priority)
    priority: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default="pending", nullable=False
    )  # pending, in_progress, completed, blocked
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    notes: Mapped[str] = mapped_column(Text, default="", nullable=False)
    reminder_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    reminder_frequency: Mapped[str] = mapped_column(
        String(20), default="daily", nullable=False
    )  # none, daily, weekly, custom
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    # Shared label for every item of a session, derived from its summary
    coaching_theme: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    session: Mapped["CoachingSession"] = relationship(
        "CoachingSession", back_populates="action_items"
    )

    def __repr__(self) -> str:
        return f"<ActionItem(id={self.id}, title={self.title[:30]}, status={self.status})>"
