"""Tenacity retry wrapper for remote mailbox calls."""

from __future__ import annotations

from collections.abc import Callable

import httpx
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .config import RetryConfig

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


def is_transient(exc: BaseException) -> bool:
    """True for network failures and throttling / server-side HTTP errors."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS_CODES
    return isinstance(exc, httpx.TransportError)


def with_retry(
    config: RetryConfig,
    *,
    predicate: Callable[[BaseException], bool] = is_transient,
) -> Callable:
    """Return a tenacity retry decorator configured from *config*.

    Only exceptions accepted by *predicate* are retried; anything else
    propagates on the first failure. The last error is re-raised once
    attempts are exhausted.

    Usage::

        @with_retry(config.retry)
        async def list_history(...) -> HistoryPage: ...
    """
    return retry(
        stop=stop_after_attempt(config.max_attempts),
        wait=wait_exponential(
            multiplier=config.multiplier,
            min=config.initial_wait_seconds,
            max=config.max_wait_seconds,
        ),
        retry=retry_if_exception(predicate),
        reraise=True,
    )
