"""Retry decorator with exponential backoff for sync and async callables."""
from __future__ import annotations

import asyncio
import functools
import random
import time
from typing import Any, Callable, Tuple, Type

from crewapply.log import get_logger

log = get_logger(__name__)


def _backoff(
    attempt: int, base_delay: float, max_delay: float, backoff_factor: float, jitter: bool
) -> float:
    delay = min(base_delay * (backoff_factor ** (attempt - 1)), max_delay)
    if jitter:
        delay *= 0.5 + random.random()
    return delay


def retry(
    *,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    backoff_factor: float = 2.0,
    jitter: bool = True,
    retryable: Tuple[Type[BaseException], ...] = (Exception,),
) -> Callable:
    """Decorator: retries the wrapped function with exponential backoff.

    Coroutine functions get an async wrapper that sleeps with ``asyncio.sleep``
    so only the calling task waits between attempts.
    """
    max_attempts = max(1, max_attempts)

    def decorator(fn: Callable) -> Callable:
        name = getattr(fn, "__qualname__", repr(fn))

        if asyncio.iscoroutinefunction(fn):

            @functools.wraps(fn)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                for attempt in range(1, max_attempts + 1):
                    try:
                        return await fn(*args, **kwargs)
                    except retryable as exc:
                        if attempt == max_attempts:
                            log.error("%s failed after %d attempts: %s", name, max_attempts, exc)
                            raise
                        delay = _backoff(attempt, base_delay, max_delay, backoff_factor, jitter)
                        log.warning(
                            "%s attempt %d/%d failed (%s), retrying in %.1fs",
                            name, attempt, max_attempts, exc, delay,
                        )
                        await asyncio.sleep(delay)

            return async_wrapper

        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            for attempt in range(1, max_attempts + 1):
                try:
                    return fn(*args, **kwargs)
                except retryable as exc:
                    if attempt == max_attempts:
                        log.error("%s failed after %d attempts: %s", name, max_attempts, exc)
                        raise
                    delay = _backoff(attempt, base_delay, max_delay, backoff_factor, jitter)
                    log.warning(
                        "%s attempt %d/%d failed (%s), retrying in %.1fs",
                        name, attempt, max_attempts, exc, delay,
                    )
                    time.sleep(delay)

        return wrapper

    return decorator
