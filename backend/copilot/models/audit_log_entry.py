"""Supervisor review audit trail ORM model."""

from typing import Any

from sqlalchemy import JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from copilot.models.base import Base, CreatedAtMixin, IdMixin


class AuditLogEntry(Base, IdMixin, CreatedAtMixin):
    """Records every supervisor validation or override of an AI finding."""

    __tablename__ = "audit_log"

    supervisor_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    session_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    action: Mapped[str] = mapped_column(String(32), nullable=False)
    previous_value_json: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    new_value_json: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
