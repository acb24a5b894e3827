"""Batch analysis routes."""

from fastapi import APIRouter, Depends, HTTPException, Path
from sqlalchemy.orm import Session

from copilot.db.dependencies import get_db
from copilot.dependencies import get_batch_coordinator, get_supervisor_id
from copilot.errors import BatchNotFoundError, BatchValidationError, ConfigurationError, PersistenceError
from copilot.schemas.batch import BatchCreate, BatchStatusRead, BatchSubmitResult
from copilot.schemas.common import ApiResponse
from copilot.services.batch import BatchCoordinator
from copilot.services.sessions import find_foreign_session_ids

router = APIRouter(prefix="/batches")


@router.post("", response_model=ApiResponse[BatchSubmitResult], status_code=202)
def submit_batch(
    payload: BatchCreate,
    supervisor_id: str = Depends(get_supervisor_id),
    db: Session = Depends(get_db),
    coordinator: BatchCoordinator = Depends(get_batch_coordinator),
) -> ApiResponse[BatchSubmitResult]:
    """Queue a batch and start processing it in the background."""

    session_ids = list(dict.fromkeys(sid.strip() for sid in payload.session_ids if sid.strip()))
    if len(session_ids) > coordinator.max_sessions:
        raise HTTPException(
            status_code=400,
            detail=f"A batch may contain at most {coordinator.max_sessions} sessions",
        )
    try:
        foreign = find_foreign_session_ids(db, supervisor_id, session_ids)
        if foreign:
            raise HTTPException(status_code=404, detail=f"Sessions not found: {', '.join(foreign)}")
        # Fail before creating a job that could never run.
        coordinator.resolve_engine()
        batch_id = coordinator.submit(supervisor_id, session_ids)
    except BatchValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except ConfigurationError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except PersistenceError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc

    coordinator.start(batch_id)
    return ApiResponse(data=BatchSubmitResult(batch_id=batch_id, session_count=len(session_ids)))


@router.get("/{batch_id}", response_model=ApiResponse[BatchStatusRead])
def read_batch_status(
    batch_id: str = Path(..., min_length=1),
    _: str = Depends(get_supervisor_id),
    coordinator: BatchCoordinator = Depends(get_batch_coordinator),
) -> ApiResponse[BatchStatusRead]:
    """Poll batch progress."""

    try:
        snapshot = coordinator.get_batch_status(batch_id.strip())
    except BatchNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Batch not found") from exc
    except PersistenceError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return ApiResponse(data=snapshot)


@router.post("/{batch_id}/cancel", response_model=ApiResponse[BatchStatusRead])
def cancel_batch(
    batch_id: str = Path(..., min_length=1),
    _: str = Depends(get_supervisor_id),
    coordinator: BatchCoordinator = Depends(get_batch_coordinator),
) -> ApiResponse[BatchStatusRead]:
    """Stop a running batch after its current chunk."""

    clean_batch_id = batch_id.strip()
    try:
        snapshot = coordinator.get_batch_status(clean_batch_id)
    except BatchNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Batch not found") from exc
    except PersistenceError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    if not coordinator.cancel(clean_batch_id):
        raise HTTPException(status_code=409, detail=f"Batch {clean_batch_id} is not running")
    return ApiResponse(data=snapshot)
