"""Batch coordinator for concurrent analysis of many sessions.

Sessions are analysed in fixed-size chunks. Every item in a chunk runs
concurrently on a thread pool and the next chunk starts only after the whole
chunk has resolved, so peak concurrency against the model provider never
exceeds the configured width. A failed item is recorded in the job's error
log and its session reverted to ``pending``; sibling items are unaffected.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Event, Lock
from time import perf_counter
from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

from copilot.analysis.engine import AnalysisEngine, build_analysis_engine
from copilot.analysis.policy import DEFAULT_THRESHOLDS, ConfidenceThresholds, derive_session_status
from copilot.errors import BatchStateError, BatchValidationError, PersistenceError, SessionBusyError
from copilot.schemas.batch import BatchErrorEntry, BatchStatusRead
from copilot.services.analysis import revert_session_to_pending
from copilot.services.batch_jobs import (
    batch_status_snapshot,
    create_batch_job,
    finalize_batch_job,
    get_batch_job,
    mark_batch_started,
    update_batch_progress,
)
from copilot.services.cache import CacheFacade, CacheKeys
from copilot.services.sessions import claim_session_for_processing, get_session_transcript, update_session_result

if TYPE_CHECKING:
    from copilot.config import Settings

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "batch cancelled before this session was processed"


@dataclass(slots=True)
class BatchRunResult:
    """Summary of a finished batch run."""

    batch_id: str
    status: str
    total: int
    processed: int
    failed: int
    errors: list[dict[str, str]] = field(default_factory=list)
    chunk_sizes: list[int] = field(default_factory=list)


def chunk_session_ids(session_ids: list[str], size: int) -> list[list[str]]:
    """Partition ids, in order, into chunks of at most ``size``."""

    if size < 1:
        raise ValueError("chunk size must be at least 1")
    return [session_ids[i : i + size] for i in range(0, len(session_ids), size)]


def terminal_batch_status(total: int, failed: int) -> str:
    if failed == 0:
        return "completed"
    if failed >= total:
        return "failed"
    return "partial"


def _error_entry(session_id: str, message: str) -> dict[str, str]:
    return {
        "sessionId": session_id,
        "errorMessage": message,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


class BatchCoordinator:
    """Creates, runs, tracks, and cancels batch analysis jobs."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        engine: AnalysisEngine | None = None,
        engine_factory: Callable[[], AnalysisEngine] | None = None,
        cache: CacheFacade | None = None,
        thresholds: ConfidenceThresholds = DEFAULT_THRESHOLDS,
        max_sessions: int = 25,
        concurrency: int = 2,
        chunk_delay_seconds: float = 0.5,
        max_running_batches: int = 4,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if engine is None and engine_factory is None:
            raise ValueError("BatchCoordinator needs an engine or an engine_factory")
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._session_factory = session_factory
        self._engine = engine
        self._engine_factory = engine_factory
        self._cache = cache or CacheFacade(None)
        self._thresholds = thresholds
        self._max_sessions = max_sessions
        self._concurrency = concurrency
        self._chunk_delay_seconds = chunk_delay_seconds
        self._sleep = sleep
        self._dispatcher = ThreadPoolExecutor(max_workers=max_running_batches, thread_name_prefix="batch-dispatch")
        self._lock = Lock()
        self._cancel_events: dict[str, Event] = {}
        self._running: dict[str, Future[BatchRunResult]] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session_factory: Callable[[], Session],
        cache: CacheFacade | None = None,
    ) -> BatchCoordinator:
        return cls(
            session_factory,
            engine_factory=lambda: build_analysis_engine(settings),
            cache=cache,
            thresholds=ConfidenceThresholds.from_settings(settings),
            max_sessions=settings.batch_max_sessions,
            concurrency=settings.batch_concurrency,
            chunk_delay_seconds=settings.batch_chunk_delay_seconds,
        )

    @property
    def max_sessions(self) -> int:
        return self._max_sessions

    def resolve_engine(self) -> AnalysisEngine:
        """Return the engine for the next run; raises ``ConfigurationError`` when none is configured."""

        if self._engine is not None:
            return self._engine
        assert self._engine_factory is not None
        return self._engine_factory()

    def submit(self, supervisor_id: str, session_ids: list[str]) -> str:
        """Create a queued batch job and return its id.

        Duplicate ids are collapsed in order. Submissions above the size cap are
        rejected outright rather than truncated or split.
        """

        unique_ids = list(dict.fromkeys(session_ids))
        if not unique_ids:
            raise BatchValidationError("A batch needs at least one session id")
        if len(unique_ids) > self._max_sessions:
            raise BatchValidationError(
                f"A batch may contain at most {self._max_sessions} sessions; got {len(unique_ids)}"
            )
        with self._session_factory() as db:
            job = create_batch_job(db, supervisor_id, unique_ids)
            batch_id = job.id
            snapshot = batch_status_snapshot(job)
        self._publish_status(snapshot)
        logger.info("batch.submitted batch_id=%s supervisor_id=%s sessions=%d", batch_id, supervisor_id, len(unique_ids))
        return batch_id

    def start(self, batch_id: str, session_ids: list[str] | None = None) -> Future[BatchRunResult]:
        """Run a batch in the background and return a handle to await or cancel it."""

        with self._lock:
            self._cancel_events.setdefault(batch_id, Event())
            future = self._dispatcher.submit(self.run, batch_id, session_ids)
            self._running[batch_id] = future
        future.add_done_callback(lambda done: self._on_background_done(batch_id, done))
        return future

    def cancel(self, batch_id: str) -> bool:
        """Request cancellation; items not yet started are recorded as failed."""

        with self._lock:
            event = self._cancel_events.get(batch_id)
        if event is None:
            return False
        event.set()
        logger.info("batch.cancel_requested batch_id=%s", batch_id)
        return True

    def shutdown(self, *, wait_for_running: bool = True, cancel_running: bool = False) -> None:
        if cancel_running:
            with self._lock:
                events = list(self._cancel_events.values())
            for event in events:
                event.set()
        self._dispatcher.shutdown(wait=wait_for_running)

    def get_batch_status(self, batch_id: str) -> BatchStatusRead:
        """Return the latest progress snapshot, cache first."""

        cached = self._cache.get(CacheKeys.batch_status(batch_id))
        if cached is not None:
            try:
                return BatchStatusRead.model_validate(cached)
            except ValueError:
                self._cache.delete(CacheKeys.batch_status(batch_id))
        with self._session_factory() as db:
            snapshot = batch_status_snapshot(get_batch_job(db, batch_id))
        self._publish_status(snapshot)
        return snapshot

    def run(self, batch_id: str, session_ids: list[str] | None = None) -> BatchRunResult:
        """Process every session of a queued batch and finalize the job."""

        engine = self.resolve_engine()
        with self._session_factory() as db:
            job = get_batch_job(db, batch_id)
            ids = list(session_ids) if session_ids is not None else list(job.session_ids_json)
            if len(ids) != job.total_sessions:
                raise BatchStateError(f"Batch {batch_id} was submitted with {job.total_sessions} sessions, got {len(ids)}")
            if not mark_batch_started(db, batch_id):
                raise BatchStateError(f"Batch {batch_id} is {job.status}; only queued batches can run")
            started_at = datetime.now(timezone.utc)

        with self._lock:
            cancel_event = self._cancel_events.setdefault(batch_id, Event())

        total = len(ids)
        processed = 0
        errors: list[dict[str, str]] = []
        settled: set[str] = set()
        chunk_sizes: list[int] = []
        run_started = perf_counter()
        chunks = chunk_session_ids(ids, self._concurrency)

        try:
            with ThreadPoolExecutor(max_workers=self._concurrency, thread_name_prefix="batch-item") as pool:
                for index, chunk in enumerate(chunks):
                    if cancel_event.is_set():
                        remaining = [sid for later in chunks[index:] for sid in later]
                        errors.extend(_error_entry(sid, CANCELLED_MESSAGE) for sid in remaining)
                        settled.update(remaining)
                        logger.warning("batch.cancelled batch_id=%s skipped=%d", batch_id, len(remaining))
                        break

                    chunk_started = perf_counter()
                    chunk_sizes.append(len(chunk))
                    futures = [(sid, pool.submit(self._process_item, engine, batch_id, sid)) for sid in chunk]
                    wait([future for _, future in futures])
                    for sid, future in futures:
                        exc = future.exception()
                        if exc is None:
                            processed += 1
                        else:
                            errors.append(_error_entry(sid, str(exc) or type(exc).__name__))
                    settled.update(chunk)

                    self._record_progress(batch_id, processed=processed, failed=len(errors))
                    self._publish_status(
                        BatchStatusRead(
                            id=batch_id,
                            status="processing",
                            total=total,
                            processed=processed,
                            failed=len(errors),
                            started_at=started_at,
                            errors=[BatchErrorEntry.model_validate(entry) for entry in errors],
                        )
                    )
                    logger.info(
                        "batch.chunk_completed batch_id=%s chunk=%d/%d size=%d processed=%d failed=%d chunk_ms=%.2f",
                        batch_id,
                        index + 1,
                        len(chunks),
                        len(chunk),
                        processed,
                        len(errors),
                        (perf_counter() - chunk_started) * 1000.0,
                    )
                    if index + 1 < len(chunks) and self._chunk_delay_seconds > 0:
                        self._sleep(self._chunk_delay_seconds)

            status = terminal_batch_status(total, len(errors))
            with self._session_factory() as db:
                finalize_batch_job(
                    db,
                    batch_id,
                    status=status,
                    processed=processed,
                    failed=len(errors),
                    error_log=errors,
                )
                snapshot = batch_status_snapshot(get_batch_job(db, batch_id))
        except Exception as exc:
            logger.exception(
                "batch.run_failed batch_id=%s processed=%d failed=%d elapsed_ms=%.2f",
                batch_id,
                processed,
                len(errors),
                (perf_counter() - run_started) * 1000.0,
            )
            self._mark_run_failed(
                batch_id,
                [sid for sid in ids if sid not in settled],
                processed=processed,
                errors=errors,
                started_at=started_at,
                reason=str(exc) or type(exc).__name__,
            )
            raise
        finally:
            with self._lock:
                self._cancel_events.pop(batch_id, None)

        self._publish_status(snapshot)
        self._cache.delete_pattern(CacheKeys.session_list_pattern())
        logger.info(
            "batch.completed batch_id=%s status=%s total=%d processed=%d failed=%d total_ms=%.2f",
            batch_id,
            status,
            total,
            processed,
            len(errors),
            (perf_counter() - run_started) * 1000.0,
        )
        return BatchRunResult(
            batch_id=batch_id,
            status=status,
            total=total,
            processed=processed,
            failed=len(errors),
            errors=errors,
            chunk_sizes=chunk_sizes,
        )

    def _process_item(self, engine: AnalysisEngine, batch_id: str, session_id: str) -> str:
        started = perf_counter()
        with self._session_factory() as db:
            if not claim_session_for_processing(db, session_id, batch_id=batch_id):
                raise SessionBusyError(f"Session {session_id} is already being analysed")
            try:
                request = get_session_transcript(db, session_id)
                analysis = engine.analyze(request.transcript, request.concept)
                status = derive_session_status(analysis, self._thresholds)
                update_session_result(db, session_id, status=status, analysis=analysis)
            except Exception as exc:
                logger.warning(
                    "batch.item_failed batch_id=%s session_id=%s error=%s: %s",
                    batch_id,
                    session_id,
                    type(exc).__name__,
                    exc,
                )
                revert_session_to_pending(db, session_id)
                raise

        cache_key = CacheKeys.analysis(session_id)
        self._cache.delete(cache_key)
        self._cache.set(cache_key, analysis.to_payload(), self._cache.ttl.analysis)
        logger.info(
            "batch.item_completed batch_id=%s session_id=%s status=%s total_ms=%.2f",
            batch_id,
            session_id,
            status,
            (perf_counter() - started) * 1000.0,
        )
        return status

    def _record_progress(self, batch_id: str, *, processed: int, failed: int) -> None:
        try:
            with self._session_factory() as db:
                update_batch_progress(db, batch_id, processed=processed, failed=failed)
        except PersistenceError:
            # Progress counters are advisory; the final write is authoritative.
            logger.exception("batch.progress_write_failed batch_id=%s", batch_id)

    def _mark_run_failed(
        self,
        batch_id: str,
        unsettled: list[str],
        *,
        processed: int,
        errors: list[dict[str, str]],
        started_at: datetime,
        reason: str,
    ) -> None:
        """Best-effort terminal write for an aborted run so the job does not stay ``processing``."""

        error_log = errors + [_error_entry(sid, f"batch aborted: {reason}") for sid in unsettled]
        completed_at = datetime.now(timezone.utc)
        try:
            with self._session_factory() as db:
                finalize_batch_job(
                    db,
                    batch_id,
                    status="failed",
                    processed=processed,
                    failed=len(error_log),
                    error_log=error_log,
                )
        except PersistenceError:
            logger.exception("batch.mark_failed_write_failed batch_id=%s", batch_id)
        self._publish_status(
            BatchStatusRead(
                id=batch_id,
                status="failed",
                total=processed + len(error_log),
                processed=processed,
                failed=len(error_log),
                started_at=started_at,
                completed_at=completed_at,
                errors=[BatchErrorEntry.model_validate(entry) for entry in error_log],
            )
        )
        self._cache.delete_pattern(CacheKeys.session_list_pattern())

    def _publish_status(self, snapshot: BatchStatusRead) -> None:
        self._cache.set(
            CacheKeys.batch_status(snapshot.id),
            snapshot.model_dump(mode="json", by_alias=True),
            self._cache.ttl.batch_status,
        )

    def _on_background_done(self, batch_id: str, future: Future[BatchRunResult]) -> None:
        with self._lock:
            self._running.pop(batch_id, None)
            self._cancel_events.pop(batch_id, None)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error("batch.background_failed batch_id=%s error=%s: %s", batch_id, type(exc).__name__, exc)
