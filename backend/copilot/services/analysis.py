"""Single-session analysis orchestration."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from time import perf_counter

from sqlalchemy.orm import Session

from copilot.analysis.engine import AnalysisEngine, build_analysis_engine
from copilot.analysis.policy import DEFAULT_THRESHOLDS, ConfidenceThresholds, derive_session_status
from copilot.analysis.types import StructuredAnalysis
from copilot.analysis.validator import validate_analysis
from copilot.config import get_settings
from copilot.errors import PersistenceError, SchemaValidationError, SessionBusyError
from copilot.services.cache import CacheFacade, CacheKeys
from copilot.services.sessions import (
    claim_session_for_processing,
    get_session,
    update_session_result,
    update_session_status,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SessionAnalysisOutcome:
    """Analysis returned to the caller plus where it came from."""

    session_id: str
    analysis: StructuredAnalysis
    status: str | None
    from_cache: bool


def analyze_session(
    db: Session,
    session_id: str,
    *,
    engine: AnalysisEngine | None = None,
    engine_factory: Callable[[], AnalysisEngine] | None = None,
    cache: CacheFacade | None = None,
    thresholds: ConfidenceThresholds = DEFAULT_THRESHOLDS,
    supervisor_id: str | None = None,
) -> SessionAnalysisOutcome:
    """Return the analysis for one session, running the engine only when none exists.

    Order of lookups: analysis cache, stored analysis, then a fresh engine run.
    When ``supervisor_id`` is given the session's ownership is checked before
    the cache is consulted. A failure after the session was claimed reverts it
    to ``pending`` and re-raises. The engine, from ``engine`` or
    ``engine_factory`` or the settings, is only built for a fresh run.
    """

    cache = cache or CacheFacade(None)
    cache_key = CacheKeys.analysis(session_id)
    record = get_session(db, session_id, supervisor_id=supervisor_id) if supervisor_id is not None else None

    cached = _cached_analysis(cache, cache_key)
    if cached is not None:
        return SessionAnalysisOutcome(session_id=session_id, analysis=cached, status=None, from_cache=True)

    if record is None:
        record = get_session(db, session_id)

    if record.ai_analysis_json:
        try:
            stored = validate_analysis(record.ai_analysis_json)
        except SchemaValidationError as exc:
            logger.warning("analysis.stored_analysis_invalid session_id=%s error=%s; re-analysing", session_id, exc)
        else:
            cache.set(cache_key, stored.to_payload(), cache.ttl.analysis)
            return SessionAnalysisOutcome(session_id=session_id, analysis=stored, status=record.status, from_cache=False)

    transcript = record.transcript
    concept = record.assigned_concept
    owner_id = record.supervisor_id
    if engine is not None:
        active_engine = engine
    elif engine_factory is not None:
        active_engine = engine_factory()
    else:
        active_engine = build_analysis_engine(get_settings())

    if not claim_session_for_processing(db, session_id):
        raise SessionBusyError(f"Session {session_id} is already being analysed")

    started = perf_counter()
    try:
        analysis = active_engine.analyze(transcript, concept)
        status = derive_session_status(analysis, thresholds)
        update_session_result(db, session_id, status=status, analysis=analysis)
    except Exception:
        logger.exception(
            "analysis.session_failed session_id=%s elapsed_ms=%.2f",
            session_id,
            (perf_counter() - started) * 1000.0,
        )
        revert_session_to_pending(db, session_id)
        raise

    cache.set(cache_key, analysis.to_payload(), cache.ttl.analysis)
    cache.delete_pattern(CacheKeys.session_list_pattern(owner_id))
    logger.info(
        "analysis.session_timing session_id=%s model=%s status=%s confidence=%.2f total_ms=%.2f",
        session_id,
        active_engine.model_name,
        status,
        analysis.confidence_score,
        (perf_counter() - started) * 1000.0,
    )
    return SessionAnalysisOutcome(session_id=session_id, analysis=analysis, status=status, from_cache=False)


def revert_session_to_pending(db: Session, session_id: str) -> None:
    """Best-effort revert used on failure paths; the original error is what callers see."""

    try:
        update_session_status(db, session_id, "pending")
    except PersistenceError:
        logger.exception("analysis.revert_failed session_id=%s", session_id)


def _cached_analysis(cache: CacheFacade, cache_key: str) -> StructuredAnalysis | None:
    payload = cache.get(cache_key)
    if payload is None:
        return None
    try:
        return validate_analysis(payload)
    except SchemaValidationError:
        cache.delete(cache_key)
        return None
