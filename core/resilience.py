"""
Resilience policies shared by provider clients and loaders.

Provides:
- RetryPolicy: bounded attempts with exponential backoff
- RateLimiter: max concurrency plus a minimum interval between calls

Both are plain objects with injectable clock/sleep so the pacing
rules can be tested without real I/O.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Tuple, Type

from core.exceptions import RetryableError
import logging

logger = logging.getLogger(__name__)


@dataclass
class RetryPolicy:
    """Configuration for retry behavior."""
    max_attempts: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 30.0  # seconds
    exponential_base: float = 2.0
    retryable_exceptions: Tuple[Type[BaseException], ...] = (RetryableError,)

    def delay_for(self, attempt: int) -> float:
        """Backoff before the next try, ``attempt`` being 1-based."""
        delay = self.base_delay * (self.exponential_base ** (attempt - 1))
        return min(delay, self.max_delay)

    def should_retry(self, exc: BaseException, attempt: int) -> bool:
        if attempt >= self.max_attempts:
            return False
        return isinstance(exc, self.retryable_exceptions)


@dataclass
class RateLimiter:
    """
    Serializing rate limiter.

    At most ``max_concurrency`` holders at a time, and consecutive
    acquisitions are spaced at least ``min_interval`` seconds apart.

    Usage:
        limiter = RateLimiter(min_interval=1.0)
        async with limiter:
            await client.get(...)
    """
    min_interval: float = 1.0
    max_concurrency: int = 1
    clock: Callable[[], float] = time.monotonic
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    name: str = "default"
    _last_acquired: Optional[float] = field(default=None, init=False)
    _semaphore: asyncio.Semaphore = field(init=False, repr=False)

    def __post_init__(self):
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._semaphore = asyncio.Semaphore(self.max_concurrency)

    def wait_time(self, now: Optional[float] = None) -> float:
        """Seconds the next caller has to wait before it may proceed."""
        if self._last_acquired is None or self.min_interval <= 0:
            return 0.0
        now = self.clock() if now is None else now
        return max(0.0, self._last_acquired + self.min_interval - now)

    async def acquire(self) -> None:
        await self._semaphore.acquire()
        try:
            delay = self.wait_time()
            if delay > 0:
                logger.debug(f"Rate limiter '{self.name}' waiting {delay:.2f}s")
                await self.sleep(delay)
            self._last_acquired = self.clock()
        except BaseException:
            self._semaphore.release()
            raise

    def release(self) -> None:
        self._semaphore.release()

    async def __aenter__(self) -> "RateLimiter":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.release()
