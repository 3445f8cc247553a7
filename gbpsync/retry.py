"""
Bounded retry with exponential backoff for provider calls.
"""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from .exceptions import GBPSyncError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_async(func: Callable[[], Awaitable[T]],
                      attempts: int = 3,
                      backoff_seconds: float = 0.5,
                      operation: str = "request") -> T:
    """Run ``func`` until it succeeds or fails with a non-retryable error.

    Only errors flagged ``retryable`` (timeouts, 5xx, rate limits) are
    retried. The delay before retry ``n`` is ``backoff_seconds * 2**n``.
    """
    attempts = max(1, attempts)
    for attempt in range(attempts):
        try:
            return await func()
        except GBPSyncError as e:
            if not e.retryable or attempt + 1 >= attempts:
                raise
            delay = backoff_seconds * (2 ** attempt)
            logger.warning(
                f"{operation} failed (attempt {attempt + 1}/{attempts}): {e.message}; "
                f"retrying in {delay:.2f}s"
            )
            await asyncio.sleep(delay)

    # Unreachable: the loop either returns or raises
    raise RuntimeError(f"{operation}: retry loop exited without result")
