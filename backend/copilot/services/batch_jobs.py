"""Batch job persistence."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from copilot.errors import BatchNotFoundError, PersistenceError
from copilot.models.batch_job import TERMINAL_BATCH_STATUSES, BatchJob
from copilot.schemas.batch import BatchErrorEntry, BatchStatusRead


def create_batch_job(db: Session, supervisor_id: str, session_ids: list[str]) -> BatchJob:
    job = BatchJob(
        supervisor_id=supervisor_id,
        status="queued",
        session_ids_json=list(session_ids),
        total_sessions=len(session_ids),
        processed_sessions=0,
        failed_sessions=0,
        error_log_json=[],
    )
    try:
        db.add(job)
        db.commit()
        db.refresh(job)
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceError("Failed to create batch job") from exc
    return job


def get_batch_job(db: Session, batch_id: str) -> BatchJob:
    try:
        job = db.scalar(select(BatchJob).where(BatchJob.id == batch_id))
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceError(f"Failed to load batch job {batch_id}") from exc
    if job is None:
        raise BatchNotFoundError(f"Batch {batch_id} not found")
    return job


def mark_batch_started(db: Session, batch_id: str) -> bool:
    """Transition ``queued -> processing``; returns False if the job was not queued."""

    now = datetime.now(timezone.utc)
    try:
        result = db.execute(
            update(BatchJob)
            .where(BatchJob.id == batch_id, BatchJob.status == "queued")
            .values(status="processing", started_at=now)
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceError(f"Failed to start batch job {batch_id}") from exc
    return result.rowcount == 1


def update_batch_progress(db: Session, batch_id: str, *, processed: int, failed: int) -> None:
    try:
        db.execute(
            update(BatchJob)
            .where(BatchJob.id == batch_id, BatchJob.status == "processing")
            .values(processed_sessions=processed, failed_sessions=failed)
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceError(f"Failed to update progress for batch job {batch_id}") from exc


def finalize_batch_job(
    db: Session,
    batch_id: str,
    *,
    status: str,
    processed: int,
    failed: int,
    error_log: list[dict[str, str]],
) -> None:
    if status not in TERMINAL_BATCH_STATUSES:
        raise ValueError(f"{status!r} is not a terminal batch status")
    try:
        db.execute(
            update(BatchJob)
            .where(BatchJob.id == batch_id, BatchJob.status == "processing")
            .values(
                status=status,
                processed_sessions=processed,
                failed_sessions=failed,
                error_log_json=error_log,
                completed_at=datetime.now(timezone.utc),
            )
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceError(f"Failed to finalize batch job {batch_id}") from exc


def batch_status_snapshot(job: BatchJob) -> BatchStatusRead:
    return BatchStatusRead(
        id=job.id,
        status=job.status,
        total=job.total_sessions,
        processed=job.processed_sessions,
        failed=job.failed_sessions,
        started_at=job.started_at,
        completed_at=job.completed_at,
        errors=[BatchErrorEntry.model_validate(entry) for entry in job.error_log_json or []],
    )
