"""ORM models package exports."""

from copilot.models.audit_log_entry import AuditLogEntry
from copilot.models.batch_job import BatchJob
from copilot.models.therapy_session import TherapySession

__all__ = [
    "AuditLogEntry",
    "BatchJob",
    "TherapySession",
]
