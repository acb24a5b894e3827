"""Retry helper with exponential backoff for model provider calls."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_schedule(max_attempts: int, base_delay: float) -> list[float]:
    """Return the delays slept between attempts (one fewer than ``max_attempts``)."""

    return [base_delay * (2**attempt) for attempt in range(max(0, max_attempts - 1))]


def call_with_retry(
    func: Callable[[], T],
    *,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
    description: str = "call",
) -> T:
    """Call ``func`` until it succeeds or ``max_attempts`` is exhausted.

    Args:
        func: Zero-argument callable to invoke.
        max_attempts: Total number of attempts, including the first one.
        base_delay: Delay after the first failed attempt, in seconds; doubled after each failure.
        retry_on: Exception types that trigger a retry. Anything else propagates immediately.
        sleep: Sleep function, injectable for tests.
        description: Label used in log lines.

    Returns:
        The first successful result.

    Raises:
        The last exception raised by ``func`` once attempts are exhausted.

    """
    attempts = max(1, max_attempts)
    for attempt in range(attempts):
        try:
            return func()
        except retry_on as exc:
            if attempt + 1 >= attempts:
                logger.error("%s failed after %d attempts: %s", description, attempts, exc)
                raise
            delay = base_delay * (2**attempt)
            logger.warning(
                "%s attempt %d/%d failed (%s: %s); retrying in %.2fs",
                description,
                attempt + 1,
                attempts,
                type(exc).__name__,
                exc,
                delay,
            )
            sleep(delay)
    raise AssertionError("unreachable")
