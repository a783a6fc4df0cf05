"""
Bounded retry with per-attempt timeout for provider calls.

Only transient provider failures (RateLimited, ProviderUnavailable, Timeout)
are retried, with exponential backoff. Everything else propagates on the
first occurrence.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Awaitable, Callable, TypeVar

from analysis.errors import ProviderError, Timeout

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = int(os.getenv("LLM_MAX_ATTEMPTS", "3"))
DEFAULT_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "60"))

_BASE_DELAY = 1.0
_MAX_DELAY = 8.0


def backoff_delay(attempt: int) -> float:
    """Delay before retry number ``attempt`` (1-based): 1s, 2s, 4s, capped at 8s."""
    return min(_BASE_DELAY * (2 ** (attempt - 1)), _MAX_DELAY)


async def _sleep(seconds: float) -> None:
    await asyncio.sleep(seconds)


class RetryState:
    """Attempt counter, readable by the caller after with_retry returns."""

    def __init__(self) -> None:
        self.attempts = 0


async def with_retry(
    fn: Callable[..., Awaitable[T]],
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    state: RetryState | None = None,
    **kwargs: Any,
) -> T:
    """
    Await ``fn(**kwargs)`` up to ``max_attempts`` times.

    Each attempt is bounded by ``timeout_seconds``; hitting it counts as a
    retryable Timeout. The last provider error is re-raised when attempts are
    exhausted.
    """
    max_attempts = max(1, max_attempts)
    state = state if state is not None else RetryState()
    last_error: ProviderError | None = None

    for attempt in range(1, max_attempts + 1):
        state.attempts = attempt
        try:
            return await asyncio.wait_for(fn(**kwargs), timeout=timeout_seconds)
        except asyncio.TimeoutError:
            last_error = Timeout(f"Provider call exceeded {timeout_seconds:g}s")
        except ProviderError as e:
            if not e.retryable:
                raise
            last_error = e

        if attempt < max_attempts:
            delay = backoff_delay(attempt)
            logger.warning(
                "Provider call failed (%s), attempt %d/%d; retrying in %.0fs",
                last_error.category, attempt, max_attempts, delay,
            )
            await _sleep(delay)

    logger.error(
        "Provider call failed after %d attempts (%s)",
        max_attempts, last_error.category,
    )
    raise last_error
