"""Session listing, analysis, and supervisor review routes."""

from collections.abc import Callable

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from sqlalchemy.orm import Session

from copilot.analysis.engine import AnalysisEngine
from copilot.analysis.policy import ConfidenceThresholds, confidence_level, review_reasons
from copilot.config import get_settings
from copilot.db.dependencies import get_db
from copilot.dependencies import get_analysis_engine_factory, get_cache, get_supervisor_id, get_thresholds
from copilot.errors import (
    AnalysisError,
    ConfigurationError,
    PersistenceError,
    SessionBusyError,
    SessionNotFoundError,
)
from copilot.schemas.common import ApiResponse
from copilot.schemas.session import ReviewCreate, ReviewResult, SessionAnalysisRead, SessionListResponse
from copilot.services.analysis import analyze_session
from copilot.services.cache import CacheFacade
from copilot.services.review import apply_supervisor_review
from copilot.services.sessions import list_sessions_for_supervisor

router = APIRouter(prefix="/sessions")


@router.get("", response_model=ApiResponse[SessionListResponse])
def list_sessions(
    page: int = Query(default=1, ge=1),
    page_size: int | None = Query(default=None, ge=1, le=100),
    supervisor_id: str = Depends(get_supervisor_id),
    db: Session = Depends(get_db),
    cache: CacheFacade = Depends(get_cache),
) -> ApiResponse[SessionListResponse]:
    """List the caller's sessions, newest first."""

    try:
        result = list_sessions_for_supervisor(
            db,
            supervisor_id,
            page=page,
            page_size=page_size or get_settings().session_list_page_size,
            cache=cache,
        )
    except PersistenceError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return ApiResponse(data=result)


@router.post("/{session_id}/analysis", response_model=ApiResponse[SessionAnalysisRead])
def create_session_analysis(
    session_id: str = Path(..., min_length=1),
    supervisor_id: str = Depends(get_supervisor_id),
    db: Session = Depends(get_db),
    cache: CacheFacade = Depends(get_cache),
    engine_factory: Callable[[], AnalysisEngine] = Depends(get_analysis_engine_factory),
    thresholds: ConfidenceThresholds = Depends(get_thresholds),
) -> ApiResponse[SessionAnalysisRead]:
    """Return the session's analysis, running the engine if none exists yet."""

    try:
        outcome = analyze_session(
            db,
            session_id.strip(),
            engine_factory=engine_factory,
            cache=cache,
            thresholds=thresholds,
            supervisor_id=supervisor_id,
        )
    except SessionNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Session not found") from exc
    except SessionBusyError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ConfigurationError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except AnalysisError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    except PersistenceError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc

    analysis = outcome.analysis
    return ApiResponse(
        data=SessionAnalysisRead(
            session_id=outcome.session_id,
            analysis=analysis.to_payload(),
            status=outcome.status,
            confidence_level=confidence_level(analysis.confidence_score, thresholds),
            review_reasons=review_reasons(analysis, thresholds),
            from_cache=outcome.from_cache,
        )
    )


@router.post("/{session_id}/review", response_model=ApiResponse[ReviewResult])
def review_session(
    payload: ReviewCreate,
    session_id: str = Path(..., min_length=1),
    supervisor_id: str = Depends(get_supervisor_id),
    db: Session = Depends(get_db),
    cache: CacheFacade = Depends(get_cache),
) -> ApiResponse[ReviewResult]:
    """Validate or override the AI finding for one session."""

    try:
        result = apply_supervisor_review(
            db,
            session_id.strip(),
            supervisor_id=supervisor_id,
            action=payload.action,
            note=payload.note,
            cache=cache,
        )
    except SessionNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Session not found") from exc
    except PersistenceError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return ApiResponse(data=result)
