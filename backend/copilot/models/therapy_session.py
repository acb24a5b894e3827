"""Therapy session ORM model."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Float, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from copilot.models.base import Base, CreatedAtMixin, UpdatedAtMixin, UuidMixin, utcnow


class TherapySession(Base, UuidMixin, CreatedAtMixin, UpdatedAtMixin):
    """A Fellow-led group session and its latest AI analysis."""

    __tablename__ = "sessions"

    supervisor_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    fellow_name: Mapped[str] = mapped_column(String(255), nullable=False)
    group_id: Mapped[str] = mapped_column(String(64), nullable=False)
    session_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True, nullable=False)
    assigned_concept: Mapped[str] = mapped_column(String(255), nullable=False)
    transcript: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(32), default="pending", index=True, nullable=False)

    ai_analysis_json: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    ai_confidence_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    ai_processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    supervisor_action: Mapped[str | None] = mapped_column(String(32), nullable=True)
    supervisor_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    supervisor_reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    batch_id: Mapped[str | None] = mapped_column(String(36), index=True, nullable=True)
