"""Resilience utilities for blob store and tool calls with retry logic.

Provides decorators for wrapping calls with exponential backoff and retry
logic using tenacity. Stage workers use them to give a just-published blob
time to become visible before an event is declared unprocessable.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def resilient_async_call(
    max_attempts: int = 3,
    min_wait: float = 1,
    max_wait: float = 10,
    retry_on: tuple[type[Exception], ...] = (Exception,),
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Retry decorator for asynchronous calls.

    Wraps async calls with exponential backoff retry logic. Logs warnings
    before each retry attempt. The last exception is re-raised once the
    attempts are exhausted.

    Args:
        max_attempts: Maximum attempts including the first call (default: 3).
        min_wait: Minimum wait time in seconds (default: 1).
        max_wait: Maximum wait time in seconds (default: 10).
        retry_on: Exception types to retry on (default: all exceptions).

    Returns:
        Callable: Decorated async function with retry logic.

    Example:
        >>> @resilient_async_call(max_attempts=3, min_wait=0.5, max_wait=5,
        ...                       retry_on=(NotFoundError,))
        ... async def fetch(bucket: str, key: str) -> bytes:
        ...     return await store.get(bucket, key)
    """
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=min_wait or 1, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(retry_on),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )


async def call_with_retry(
    func: Callable[..., Awaitable[T]],
    *args: object,
    max_attempts: int,
    min_wait: float,
    max_wait: float,
    retry_on: tuple[type[Exception], ...],
) -> T:
    """Invoke ``func`` with retry settings only known at runtime."""
    wrapped = resilient_async_call(
        max_attempts=max_attempts,
        min_wait=min_wait,
        max_wait=max_wait,
        retry_on=retry_on,
    )(func)
    return await wrapped(*args)


__all__ = ["call_with_retry", "resilient_async_call"]
