"""SQLAlchemy metadata registry import."""

from copilot.models import AuditLogEntry, BatchJob, TherapySession
from copilot.models.base import Base

__all__ = ["Base", "AuditLogEntry", "BatchJob", "TherapySession"]
