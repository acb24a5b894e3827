"""Batch analysis job ORM model."""

from datetime import datetime

from sqlalchemy import JSON, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from copilot.models.base import Base, CreatedAtMixin, UuidMixin

TERMINAL_BATCH_STATUSES: frozenset[str] = frozenset({"completed", "failed", "partial"})


class BatchJob(Base, UuidMixin, CreatedAtMixin):
    """One batch submission and its progress counters."""

    __tablename__ = "batch_jobs"

    supervisor_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    status: Mapped[str] = mapped_column(String(16), default="queued", index=True, nullable=False)
    session_ids_json: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    total_sessions: Mapped[int] = mapped_column(Integer, nullable=False)
    processed_sessions: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed_sessions: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error_log_json: Mapped[list[dict[str, str]]] = mapped_column(JSON, default=list, nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
