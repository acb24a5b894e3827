"""Supervisor validation and override of AI findings."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from copilot.errors import PersistenceError
from copilot.models.audit_log_entry import AuditLogEntry
from copilot.schemas.session import ReviewResult, SupervisorAction
from copilot.services.cache import CacheFacade, CacheKeys
from copilot.services.sessions import get_session

logger = logging.getLogger(__name__)

_STATUS_BY_ACTION: dict[str, str | None] = {
    "validated": None,
    "rejected": "flagged_for_review",
    "overridden_safe": "safe",
    "overridden_risk": "risk",
}

_MESSAGE_BY_ACTION: dict[str, str] = {
    "validated": "AI assessment confirmed",
    "rejected": "Flagged for further review",
    "overridden_safe": "Status overridden to SAFE",
    "overridden_risk": "Status overridden to RISK",
}


def status_after_review(current_status: str, action: str) -> str:
    """Return the session status a review action leads to; ``validated`` keeps it."""

    if action not in _STATUS_BY_ACTION:
        raise ValueError(f"Unsupported review action: {action}")
    return _STATUS_BY_ACTION[action] or current_status


def apply_supervisor_review(
    db: Session,
    session_id: str,
    *,
    supervisor_id: str,
    action: SupervisorAction,
    note: str | None = None,
    cache: CacheFacade | None = None,
) -> ReviewResult:
    """Record a supervisor's decision on a session and write an audit row."""

    record = get_session(db, session_id, supervisor_id=supervisor_id)
    previous_status = record.status
    previous_action = record.supervisor_action
    new_status = status_after_review(previous_status, action)
    clean_note = note.strip() if note and note.strip() else None
    now = datetime.now(timezone.utc)

    try:
        db.add(
            AuditLogEntry(
                supervisor_id=supervisor_id,
                session_id=session_id,
                action=action,
                previous_value_json={"status": previous_status, "action": previous_action},
                new_value_json={"status": new_status, "action": action},
                note=clean_note,
            )
        )
        record.status = new_status
        record.supervisor_action = action
        record.supervisor_note = clean_note
        record.supervisor_reviewed_at = now
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceError(f"Failed to record review for session {session_id}") from exc

    if cache is not None:
        cache.delete(CacheKeys.analysis(session_id))
        cache.delete_pattern(CacheKeys.session_list_pattern(supervisor_id))

    logger.info(
        "review.applied session_id=%s supervisor_id=%s action=%s previous_status=%s new_status=%s",
        session_id,
        supervisor_id,
        action,
        previous_status,
        new_status,
    )
    return ReviewResult(
        session_id=session_id,
        action=action,
        previous_status=previous_status,
        new_status=new_status,
        message=_MESSAGE_BY_ACTION[action],
    )
