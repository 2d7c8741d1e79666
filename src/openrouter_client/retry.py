"""Retry with exponential backoff.

Delay before attempt k+1 is ``base_delay * 2 ** (k - 1)``: with the
defaults that is 1s, 2s, 4s.  There is no jitter.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

import httpx

from openrouter_client.cancel import CancelToken, run_cancellable
from openrouter_client.errors import ErrorKind, OpenRouterError

_logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY = 1.0  # seconds

Sleep = Callable[[float], Awaitable[None]]


def is_retryable(exc: BaseException) -> bool:
    """Whether another attempt could succeed.

    Aborts are never retried, whatever else is true of them.
    """
    if isinstance(exc, asyncio.CancelledError):
        return False
    if isinstance(exc, OpenRouterError):
        if exc.kind is ErrorKind.ABORTED:
            return False
        return exc.retryable
    return isinstance(exc, httpx.TransportError)


def backoff_delay(attempt: int, base_delay: float = DEFAULT_BASE_DELAY) -> float:
    """Delay after failed attempt number *attempt* (1-based)."""
    return base_delay * (2 ** (attempt - 1))


async def execute_with_retry(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_BASE_DELAY,
    *,
    sleep: Sleep = asyncio.sleep,
    token: CancelToken | None = None,
) -> T:
    """Run *operation* up to ``max_retries + 1`` times.

    Non-retryable errors propagate on first occurrence.  When every
    attempt fails the last error is re-raised.  If *token* fires during
    a backoff wait the wait ends at once with an ``ABORTED`` error.
    """
    total = max_retries + 1
    for attempt in range(1, total + 1):
        try:
            return await operation()
        except Exception as exc:
            if attempt >= total or not is_retryable(exc):
                raise
            delay = backoff_delay(attempt, base_delay)
            _logger.warning(
                "Request failed (attempt %d/%d): %s -- retrying in %.1fs",
                attempt, total, exc, delay,
            )
            if token is None:
                await sleep(delay)
            else:
                await run_cancellable(sleep(delay), token)
    raise AssertionError("unreachable")  # pragma: no cover
