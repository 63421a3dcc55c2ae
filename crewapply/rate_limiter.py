"""Token-bucket rate limiting for outbound browser navigation."""
from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, TypeVar

from crewapply.log import get_logger

log = get_logger(__name__)

T = TypeVar("T")


class RateLimiter:
    """Token bucket: ``burst_size`` capacity, refilled at ``requests_per_minute``.

    ``acquire`` suspends only the calling task. Waiters queue on an
    ``asyncio.Lock``, which wakes them in arrival order, and the lock is held
    while the head of the queue sleeps for its token, so nobody can jump ahead.
    """

    def __init__(self, requests_per_minute: float = 10, burst_size: int = 3) -> None:
        if requests_per_minute <= 0:
            raise ValueError("requests_per_minute must be positive")
        if burst_size < 1:
            raise ValueError("burst_size must be at least 1")
        self.requests_per_minute = float(requests_per_minute)
        self.burst_size = int(burst_size)
        self.refill_rate = self.requests_per_minute / 60.0  # tokens per second
        self._tokens = float(self.burst_size)
        self._last_refill = time.monotonic()
        self._lock = asyncio.Lock()
        self._waiting = 0

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self._last_refill
        self._tokens = min(self.burst_size, self._tokens + elapsed * self.refill_rate)
        self._last_refill = now

    async def acquire(self) -> None:
        self._waiting += 1
        try:
            async with self._lock:
                self._refill()
                while self._tokens < 1:
                    wait = (1 - self._tokens) / self.refill_rate
                    log.debug("Rate limit: waiting %.2fs for next token", wait)
                    await asyncio.sleep(wait)
                    self._refill()
                self._tokens -= 1
        finally:
            self._waiting -= 1

    async def execute(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Acquire one token, then await ``fn``; its exceptions propagate untouched."""
        await self.acquire()
        return await fn(*args, **kwargs)

    @staticmethod
    async def delay(seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)

    def status(self) -> dict[str, float]:
        self._refill()
        return {
            "tokens": self._tokens,
            "waiting": self._waiting,
            "requests_per_minute": self.requests_per_minute,
        }
