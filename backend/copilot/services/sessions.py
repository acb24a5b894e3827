"""Therapy session persistence used by the analysis pipeline."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from copilot.analysis.types import StructuredAnalysis, TranscriptAnalysisRequest
from copilot.errors import PersistenceError, SessionNotFoundError
from copilot.models.therapy_session import TherapySession
from copilot.schemas.session import SessionListItem, SessionListResponse
from copilot.services.cache import CacheFacade, CacheKeys


def get_session(db: Session, session_id: str, *, supervisor_id: str | None = None) -> TherapySession:
    """Return a session, optionally scoped to its supervisor."""

    stmt = select(TherapySession).where(TherapySession.id == session_id)
    if supervisor_id is not None:
        stmt = stmt.where(TherapySession.supervisor_id == supervisor_id)
    try:
        record = db.scalar(stmt)
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceError(f"Failed to load session {session_id}") from exc
    if record is None:
        raise SessionNotFoundError(f"Session {session_id} not found")
    return record


def get_session_transcript(db: Session, session_id: str) -> TranscriptAnalysisRequest:
    """Return the analysis request (transcript and concept) for a session."""

    record = get_session(db, session_id)
    return TranscriptAnalysisRequest(
        session_id=record.id,
        transcript=record.transcript,
        concept=record.assigned_concept,
    )


def find_foreign_session_ids(db: Session, supervisor_id: str, session_ids: list[str]) -> list[str]:
    """Return the ids that do not exist or belong to another supervisor."""

    try:
        owned = set(
            db.scalars(
                select(TherapySession.id).where(
                    TherapySession.supervisor_id == supervisor_id,
                    TherapySession.id.in_(session_ids),
                )
            )
        )
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceError("Failed to verify session ownership") from exc
    return [session_id for session_id in session_ids if session_id not in owned]


def claim_session_for_processing(db: Session, session_id: str, *, batch_id: str | None = None) -> bool:
    """Move a session to ``processing`` unless another worker already holds it.

    The transition is a single conditional UPDATE, so two concurrent claims for
    the same session cannot both succeed.
    """

    values: dict[str, Any] = {"status": "processing", "updated_at": datetime.now(timezone.utc)}
    if batch_id is not None:
        values["batch_id"] = batch_id
    try:
        result = db.execute(
            update(TherapySession)
            .where(TherapySession.id == session_id, TherapySession.status != "processing")
            .values(**values)
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceError(f"Failed to claim session {session_id}") from exc
    if result.rowcount == 1:
        return True
    # Distinguish "busy" from "missing" for callers.
    get_session(db, session_id)
    return False


def update_session_status(db: Session, session_id: str, status: str) -> None:
    try:
        db.execute(
            update(TherapySession)
            .where(TherapySession.id == session_id)
            .values(status=status, updated_at=datetime.now(timezone.utc))
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceError(f"Failed to set status {status} on session {session_id}") from exc


def update_session_result(
    db: Session,
    session_id: str,
    *,
    status: str,
    analysis: StructuredAnalysis,
    processed_at: datetime | None = None,
) -> None:
    """Persist a finished analysis and its derived status."""

    processed_at = processed_at or datetime.now(timezone.utc)
    try:
        db.execute(
            update(TherapySession)
            .where(TherapySession.id == session_id)
            .values(
                status=status,
                ai_analysis_json=analysis.to_payload(),
                ai_confidence_score=analysis.confidence_score,
                ai_processed_at=processed_at,
                updated_at=processed_at,
            )
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceError(f"Failed to store analysis for session {session_id}") from exc


def list_sessions_for_supervisor(
    db: Session,
    supervisor_id: str,
    *,
    page: int = 1,
    page_size: int = 20,
    cache: CacheFacade | None = None,
) -> SessionListResponse:
    """List a supervisor's sessions newest first, cached per page."""

    cache_key = CacheKeys.session_list(supervisor_id, page)
    if cache is not None:
        cached = cache.get(cache_key)
        if cached is not None:
            try:
                return SessionListResponse.model_validate(cached)
            except ValueError:
                cache.delete(cache_key)

    offset = (max(1, page) - 1) * page_size
    try:
        total = db.scalar(
            select(func.count()).select_from(TherapySession).where(TherapySession.supervisor_id == supervisor_id)
        )
        records = db.scalars(
            select(TherapySession)
            .where(TherapySession.supervisor_id == supervisor_id)
            .order_by(TherapySession.session_date.desc(), TherapySession.id.asc())
            .offset(offset)
            .limit(page_size)
        ).all()
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceError(f"Failed to list sessions for supervisor {supervisor_id}") from exc

    response = SessionListResponse(
        items=[SessionListItem.model_validate(record) for record in records],
        page=page,
        page_size=page_size,
        total=int(total or 0),
    )
    if cache is not None:
        cache.set(cache_key, response.model_dump(mode="json"), cache.ttl.session_list)
    return response
