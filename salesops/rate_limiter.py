"""
Redis fixed-window rate limiting for the notification queue
All workers share the same window counters, so the limit holds across processes
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable

from redis.asyncio import Redis

logger = logging.getLogger(__name__)


class QueueRateLimiter:
    """
    At most `max_jobs` acquisitions per `window_seconds` window.

    Windows are aligned to the epoch (fixed window). A caller that finds the
    current window full waits for the next one and tries again.
    """

    def __init__(
        self,
        redis: Redis,
        max_jobs: int = 100,
        window_seconds: int = 60,
        key_prefix: str = "ratelimit:email_queue",
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_jobs < 1 or window_seconds < 1:
            raise ValueError("max_jobs and window_seconds must be positive")
        self.redis = redis
        self.max_jobs = max_jobs
        self.window_seconds = window_seconds
        self.key_prefix = key_prefix
        self._clock = clock
        self._sleep = sleep

    def window_key(self, now: float) -> str:
        window = int(now // self.window_seconds)
        return f"{self.key_prefix}:{window}"

    def seconds_until_next_window(self, now: float) -> float:
        return self.window_seconds - (now % self.window_seconds)

    async def try_acquire(self) -> bool:
        """Claim a slot in the current window without waiting"""
        now = self._clock()
        key = self.window_key(now)

        count = await self.redis.incr(key)
        if count == 1:
            # Keep the counter a little longer than its window
            await self.redis.expire(key, self.window_seconds * 2)

        return count <= self.max_jobs

    async def acquire(self) -> None:
        """Wait until a slot is available in some window, then claim it"""
        while not await self.try_acquire():
            delay = self.seconds_until_next_window(self._clock())
            logger.info(
                f"⏳ Email queue rate limit reached ({self.max_jobs}/{self.window_seconds}s), "
                f"waiting {delay:.1f}s"
            )
            await self._sleep(delay)
