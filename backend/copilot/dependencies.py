"""FastAPI dependencies for process-wide services and caller identity."""

from collections.abc import Callable

from fastapi import Header, HTTPException, Request

from copilot.analysis.engine import AnalysisEngine, build_analysis_engine
from copilot.analysis.policy import ConfidenceThresholds
from copilot.config import get_settings
from copilot.services.batch import BatchCoordinator
from copilot.services.cache import CacheFacade


def get_cache(request: Request) -> CacheFacade:
    return request.app.state.cache


def get_batch_coordinator(request: Request) -> BatchCoordinator:
    return request.app.state.batch_coordinator


def get_analysis_engine_factory() -> Callable[[], AnalysisEngine]:
    """Deferred engine construction; missing credentials surface only when a model run is needed."""

    settings = get_settings()
    return lambda: build_analysis_engine(settings)


def get_thresholds() -> ConfidenceThresholds:
    return ConfidenceThresholds.from_settings(get_settings())


def get_supervisor_id(x_supervisor_id: str | None = Header(default=None)) -> str:
    """Caller identity; authentication itself happens upstream."""

    supervisor_id = (x_supervisor_id or "").strip()
    if not supervisor_id:
        raise HTTPException(status_code=401, detail="Missing X-Supervisor-Id header")
    return supervisor_id
