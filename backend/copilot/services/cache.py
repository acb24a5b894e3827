"""Degrading key-value cache for analyses, session lists, and batch status.

The cache is an accelerator only: every read path has a database fallback, so
all facade operations degrade to misses or no-ops when the backing store is
unreachable.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from threading import Lock
from typing import TYPE_CHECKING, Any, Protocol

import redis

from copilot.errors import CacheError

if TYPE_CHECKING:
    from copilot.config import Settings

logger = logging.getLogger(__name__)


class CacheKeys:
    """Namespaced key builders."""

    @staticmethod
    def analysis(session_id: str) -> str:
        return f"analysis:{session_id}"

    @staticmethod
    def session_list(supervisor_id: str, page: int) -> str:
        return f"sessions:{supervisor_id}:{page}"

    @staticmethod
    def session_list_pattern(supervisor_id: str | None = None) -> str:
        if supervisor_id is None:
            return "sessions:*"
        return f"sessions:{supervisor_id}:*"

    @staticmethod
    def batch_status(batch_id: str) -> str:
        return f"batch:{batch_id}"


@dataclass(frozen=True, slots=True)
class CacheTTL:
    """Time-to-live per key namespace, in seconds."""

    analysis: int = 60 * 60 * 24
    batch_status: int = 60 * 2
    session_list: int = 60 * 5

    @classmethod
    def from_settings(cls, settings: Settings) -> CacheTTL:
        return cls(
            analysis=settings.cache_ttl_analysis_seconds,
            batch_status=settings.cache_ttl_batch_status_seconds,
            session_list=settings.cache_ttl_session_list_seconds,
        )


class CacheBackend(Protocol):
    """Raw string key-value transport. Implementations raise ``CacheError``."""

    def ping(self) -> None: ...

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    def delete(self, key: str) -> None: ...

    def delete_pattern(self, pattern: str) -> int: ...


class RedisCacheBackend:
    """Redis transport with short timeouts so an unreachable server fails fast."""

    def __init__(self, url: str, *, connect_timeout_seconds: float = 2.0) -> None:
        self._url = url
        self._client = redis.Redis.from_url(
            url,
            socket_connect_timeout=connect_timeout_seconds,
            socket_timeout=connect_timeout_seconds,
            decode_responses=True,
        )

    def ping(self) -> None:
        try:
            self._client.ping()
        except redis.RedisError as exc:
            raise CacheError(f"Redis at {self._url} is unreachable: {exc}") from exc

    def get(self, key: str) -> str | None:
        try:
            return self._client.get(key)
        except redis.RedisError as exc:
            raise CacheError(f"Redis GET {key} failed: {exc}") from exc

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            self._client.setex(key, ttl_seconds, value)
        except redis.RedisError as exc:
            raise CacheError(f"Redis SETEX {key} failed: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            self._client.delete(key)
        except redis.RedisError as exc:
            raise CacheError(f"Redis DEL {key} failed: {exc}") from exc

    def delete_pattern(self, pattern: str) -> int:
        try:
            keys = list(self._client.scan_iter(match=pattern, count=500))
            if keys:
                self._client.delete(*keys)
            return len(keys)
        except redis.RedisError as exc:
            raise CacheError(f"Redis delete pattern {pattern} failed: {exc}") from exc


class CacheFacade:
    """Fail-open cache used by the orchestrator and the batch coordinator.

    The backend is probed once, on first use. If the probe fails the facade
    stays disabled for its lifetime. Errors are logged once at warning level
    and never raised to callers.
    """

    def __init__(self, backend: CacheBackend | None, *, ttl: CacheTTL | None = None) -> None:
        self._backend = backend
        self.ttl = ttl or CacheTTL()
        self.keys = CacheKeys
        self._lock = Lock()
        self._connected: bool | None = None if backend is not None else False
        self._warned = False

    def is_available(self) -> bool:
        return self._active_backend() is not None

    def get(self, key: str) -> Any | None:
        backend = self._active_backend()
        if backend is None:
            return None
        try:
            raw = backend.get(key)
            return json.loads(raw) if raw is not None else None
        except Exception as exc:
            self._report("get", key, exc)
            return None

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        backend = self._active_backend()
        if backend is None:
            return
        try:
            backend.set(key, json.dumps(value, default=str), ttl_seconds)
        except Exception as exc:
            self._report("set", key, exc)

    def delete(self, key: str) -> None:
        backend = self._active_backend()
        if backend is None:
            return
        try:
            backend.delete(key)
        except Exception as exc:
            self._report("delete", key, exc)

    def delete_pattern(self, pattern: str) -> None:
        backend = self._active_backend()
        if backend is None:
            return
        try:
            removed = backend.delete_pattern(pattern)
            logger.debug("cache.delete_pattern pattern=%s removed=%d", pattern, removed)
        except Exception as exc:
            self._report("delete_pattern", pattern, exc)

    def _active_backend(self) -> CacheBackend | None:
        if self._connected is None:
            with self._lock:
                if self._connected is None:
                    try:
                        self._backend.ping()
                        self._connected = True
                        logger.info("cache.connected backend=%s", type(self._backend).__name__)
                    except Exception as exc:
                        self._connected = False
                        self._report("connect", "-", exc)
        return self._backend if self._connected else None

    def _report(self, operation: str, key: str, exc: Exception) -> None:
        if not self._warned:
            self._warned = True
            logger.warning("cache.unavailable operation=%s key=%s error=%s; continuing without cache", operation, key, exc)
        else:
            logger.debug("cache.error operation=%s key=%s error=%s", operation, key, exc)


def build_cache(settings: Settings) -> CacheFacade:
    """Construct the process-wide cache facade from settings."""

    backend = (
        RedisCacheBackend(settings.redis_url, connect_timeout_seconds=settings.redis_connect_timeout_seconds)
        if settings.redis_url
        else None
    )
    return CacheFacade(backend, ttl=CacheTTL.from_settings(settings))
