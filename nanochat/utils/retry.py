from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Tuple, TypeVar

from nanochat.core.exceptions import SyncError

T = TypeVar("T")

logger = logging.getLogger(__name__)


def is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, SyncError) and bool(exc.retryable)


async def async_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    retries: int = 2,
    base_delay: float = 0.4,
    max_delay: float = 2.0,
    retry_exceptions: Optional[Tuple[type[BaseException], ...]] = None,
) -> T:
    """Call `fn` until it succeeds, retrying retryable sync errors with capped backoff.

    `retry_exceptions` widens the set of exception types that are retried.
    """
    attempt = 0
    while True:
        try:
            return await fn()
        except Exception as e:
            retry = is_retryable(e) or (retry_exceptions is not None and isinstance(e, retry_exceptions))
            if not retry or attempt >= retries:
                raise
            delay = min(max_delay, base_delay * (2 ** attempt))
            logger.info(f"Retrying after {type(e).__name__} (attempt {attempt + 1}/{retries}, delay {delay:.2f}s)")
            await asyncio.sleep(delay)
            attempt += 1
