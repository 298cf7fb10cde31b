"""
rate_limit.py

In-process sliding-window AsyncLimiter for TMDb quota protection, and the
RetryingGateway that applies exponential backoff to retryable failures.
"""
import time
import asyncio
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, TypeVar

from movierec.services.error_handler import CatalogError, classify

logger = logging.getLogger(__name__)

T = TypeVar("T")

class AsyncLimiter:
    """Sliding-window limiter. Blocks callers until a slot frees up; never drops a request.

    One instance is shared by every request of a client. The ledger is only
    mutated under the lock, and the lock is released while waiting.
    """

    def __init__(
        self,
        limit: int = 40,
        window: float = 10.0,
        service: str = "tmdb_api",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self.service = service
        self.limit = limit
        self.window = window
        self._clock = clock
        self._sleep = sleep
        self._timestamps: Deque[float] = deque()
        self._lock = asyncio.Lock()

    def _prune(self, now: float) -> None:
        while self._timestamps and now - self._timestamps[0] >= self.window:
            self._timestamps.popleft()

    async def acquire(self) -> float:
        """Wait for a slot and record the request. Returns total seconds waited."""
        waited = 0.0
        while True:
            async with self._lock:
                now = self._clock()
                self._prune(now)
                if len(self._timestamps) < self.limit:
                    self._timestamps.append(now)
                    return waited
                delay = self._timestamps[0] + self.window - now
            logger.debug(f"Rate limit reached for {self.service} ({self.limit}/{self.window}s), waiting {delay:.2f}s")
            await self._sleep(max(delay, 0.0))
            waited += max(delay, 0.0)

    async def get_status(self) -> Dict[str, Any]:
        """Get current quota status."""
        async with self._lock:
            now = self._clock()
            self._prune(now)
            current_count = len(self._timestamps)
            reset_in = (self._timestamps[0] + self.window - now) if self._timestamps else 0.0

        return {
            "service": self.service,
            "limit": self.limit,
            "window": self.window,
            "remaining": max(0, self.limit - current_count),
            "reset_in": round(max(reset_in, 0.0), 3),
            "current_count": current_count,
        }


class RetryingGateway:
    """Execute an async operation with bounded retries and exponential backoff.

    Only retryable error kinds are retried; everything else surfaces after the
    first attempt. The last classified error is raised once attempts run out.
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self._sleep = sleep

    @staticmethod
    def backoff_delay(attempt: int, base_delay: float) -> float:
        """Delay after failed attempt ``attempt`` (counted from 1)."""
        return base_delay * (2 ** (attempt - 1))

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        max_retries: Optional[int] = None,
        base_delay: Optional[float] = None,
    ) -> T:
        max_retries = self.max_retries if max_retries is None else max_retries
        base_delay = self.base_delay if base_delay is None else base_delay
        attempts = max(1, max_retries)

        attempt = 1
        while True:
            try:
                return await operation()
            except Exception as e:
                error: CatalogError = classify(e)
                if not error.retryable or attempt >= attempts:
                    if error.retryable:
                        logger.error(f"Giving up after {attempt} attempts: {error!r}")
                    if error is e:
                        raise
                    raise error from e
                delay = self.backoff_delay(attempt, base_delay)
                logger.warning(f"{error.kind.value} error on attempt {attempt}/{attempts}, sleeping {delay}s")
                await self._sleep(delay)
                attempt += 1
