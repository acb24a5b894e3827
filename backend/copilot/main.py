"""FastAPI application entrypoint."""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from copilot.config import get_settings
from copilot.db.base import Base
from copilot.db.session import SessionLocal, engine
from copilot.routers import batches, sessions
from copilot.services.batch import BatchCoordinator
from copilot.services.cache import build_cache

logger = logging.getLogger(__name__)


def _prepare_database() -> None:
    """Create tables if missing and prime the connection pool."""

    try:
        Base.metadata.create_all(bind=engine)
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
    except Exception:
        logger.exception("Database warm-up failed; continuing without startup pre-warm.")


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    _prepare_database()
    cache = build_cache(settings)
    app.state.cache = cache
    app.state.batch_coordinator = BatchCoordinator.from_settings(settings, SessionLocal, cache=cache)
    yield
    app.state.batch_coordinator.shutdown(wait_for_running=False, cancel_running=True)


app = FastAPI(title="Supervisor Copilot API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sessions.router, tags=["sessions"])
app.include_router(batches.router, tags=["batches"])


@app.get("/health")
def health() -> dict[str, str]:
    """Health check with cache availability."""

    cache = getattr(app.state, "cache", None)
    cache_state = "up" if cache is not None and cache.is_available() else "down"
    return {"status": "ok", "cache": cache_state}
