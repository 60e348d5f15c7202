"""Sliding-window rate limiter for external generation capabilities.

Each capability (prompts, images, videos, speech, music) gets its own
window. Timestamps of recent requests are kept in a deque; entries older
than the window are trimmed and the remainder counted. When the window is
full, acquire() sleeps until the oldest entry expires.
"""

import asyncio
import logging
import time
from collections import deque
from typing import Awaitable, Callable, Deque, Dict, Optional

from scenechain.config import RateLimitsConfig

logger = logging.getLogger(__name__)


class SlidingWindowLimiter:
    """Allow at most max_requests acquisitions per window_seconds."""

    def __init__(
        self,
        name: str,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        self.name = name
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._timestamps: Deque[float] = deque()
        self._lock = asyncio.Lock()

    def _trim(self, now: float) -> None:
        window_start = now - self.window_seconds
        while self._timestamps and self._timestamps[0] <= window_start:
            self._timestamps.popleft()

    def retry_after(self) -> float:
        """Seconds until a slot frees up (0 if one is free now)."""
        now = self._clock()
        self._trim(now)
        if len(self._timestamps) < self.max_requests:
            return 0.0
        return max(0.0, self._timestamps[0] + self.window_seconds - now)

    async def acquire(self) -> None:
        """Wait for a free slot and record this request."""
        async with self._lock:
            while True:
                wait = self.retry_after()
                if wait <= 0:
                    self._timestamps.append(self._clock())
                    return
                logger.warning(
                    f"Rate limit reached for {self.name} "
                    f"({self.max_requests}/{self.window_seconds:.0f}s), waiting {wait:.1f}s"
                )
                await self._sleep(wait)

    @property
    def in_window(self) -> int:
        self._trim(self._clock())
        return len(self._timestamps)


class RateLimiterRegistry:
    """Per-capability limiters built from configuration."""

    def __init__(self, limiters: Optional[Dict[str, SlidingWindowLimiter]] = None) -> None:
        self._limiters = dict(limiters or {})

    @classmethod
    def from_config(cls, cfg: RateLimitsConfig) -> "RateLimiterRegistry":
        return cls({
            name: SlidingWindowLimiter(name, limit.max_requests, limit.window_seconds)
            for name, limit in cfg
        })

    async def acquire(self, capability: str) -> None:
        limiter = self._limiters.get(capability)
        if limiter is not None:
            await limiter.acquire()

    def get(self, capability: str) -> Optional[SlidingWindowLimiter]:
        return self._limiters.get(capability)
