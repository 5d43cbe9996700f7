"""HTTP helpers with retry/backoff for mail, AI and ERP integrations."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable

import httpx

logger = logging.getLogger(__name__)

DEFAULT_RETRY_STATUSES = {429, 500, 502, 503, 504}


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Exponential delay for the given zero-based attempt, with jitter."""
    delay = min(max_delay, base_delay * (2**attempt))
    if delay:
        delay += random.uniform(0, delay / 2)
    return delay


async def request_with_retries(
    request_fn: Callable[[], Awaitable[httpx.Response]],
    *,
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 4.0,
    retry_statuses: set[int] | None = None,
) -> httpx.Response:
    """
    Execute an HTTP request with exponential backoff retries.

    Transport errors are retried and re-raised after the last attempt.
    Retryable statuses are retried; the last response is returned as-is
    so callers can map it to their own error types.
    """
    statuses = retry_statuses or DEFAULT_RETRY_STATUSES

    for attempt in range(max_attempts):
        is_last = attempt >= max_attempts - 1
        try:
            response = await request_fn()
        except httpx.RequestError as exc:
            if is_last:
                raise
            logger.warning("HTTP request failed, retrying", exc_info=exc)
        else:
            if response.status_code not in statuses or is_last:
                return response
            logger.warning("HTTP request returned %s, retrying", response.status_code)

        delay = backoff_delay(attempt, base_delay, max_delay)
        if delay:
            await asyncio.sleep(delay)

    raise RuntimeError("request_with_retries called with max_attempts < 1")
