"""
In-process sliding window rate limiter.

Each region routes to its own Riot API cluster and has its own request
budget, so windows are kept per region.
"""

import asyncio
import logging
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Protocol

from ..config.settings import CrawlerSettings

logger = logging.getLogger(__name__)

# Used when a 429 carries no Retry-After header
DEFAULT_REJECTION_BACKOFF_SECONDS = 10.0


class RateLimiter(Protocol):
    async def wait_for_slot(self, region: str) -> None: ...

    async def record_rejection(self, region: str, retry_after: Optional[float] = None) -> None: ...

    def get_stats(self) -> Dict[str, Any]: ...


class LocalRateLimiter:
    """
    Sliding window limiter that suspends callers until their region has a free slot.

    Requests are serialized per region through an ``asyncio.Lock`` so that
    concurrent fetches of one region queue up instead of overshooting.
    """

    def __init__(
        self,
        max_requests: int = 100,
        window_seconds: float = 120.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._sleep = sleep

        self._requests: Dict[str, Deque[float]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._blocked_until: Dict[str, float] = {}

        self.stats = {"requests_admitted": 0, "rejections": 0, "waits": 0, "total_wait_seconds": 0.0}

        logger.info(f"Local rate limiter initialized: {max_requests} requests per {window_seconds}s per region")

    def _lock_for(self, region: str) -> asyncio.Lock:
        lock = self._locks.get(region)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[region] = lock
        return lock

    async def wait_for_slot(self, region: str) -> None:
        async with self._lock_for(region):
            window = self._requests.setdefault(region, deque())
            while True:
                now = self._clock()

                blocked_until = self._blocked_until.get(region, 0.0)
                if blocked_until > now:
                    await self._wait(blocked_until - now)
                    continue

                while window and window[0] <= now - self.window_seconds:
                    window.popleft()

                if len(window) < self.max_requests:
                    window.append(now)
                    self.stats["requests_admitted"] += 1
                    return

                await self._wait(window[0] + self.window_seconds - now)

    async def _wait(self, seconds: float) -> None:
        seconds = max(seconds, 0.01)
        self.stats["waits"] += 1
        self.stats["total_wait_seconds"] += seconds
        await self._sleep(seconds)

    async def record_rejection(self, region: str, retry_after: Optional[float] = None) -> None:
        """Block the region until ``retry_after`` seconds have passed."""
        backoff = retry_after if retry_after and retry_after > 0 else DEFAULT_REJECTION_BACKOFF_SECONDS
        until = self._clock() + backoff
        self._blocked_until[region] = max(self._blocked_until.get(region, 0.0), until)
        self.stats["rejections"] += 1
        logger.warning(f"Region {region} rate limited, blocking for {backoff:.1f}s", extra={"region": region})

    def get_stats(self) -> Dict[str, Any]:
        now = self._clock()
        return {
            **self.stats,
            "backend": "local",
            "regions": {
                region: {
                    "requests_in_window": sum(1 for ts in window if ts > now - self.window_seconds),
                    "blocked_for_seconds": max(self._blocked_until.get(region, 0.0) - now, 0.0),
                }
                for region, window in self._requests.items()
            },
        }


def create_rate_limiter(settings: CrawlerSettings, redis_client: Optional[Any] = None) -> RateLimiter:
    """Redis-backed limiter when a client is available, otherwise in-process"""
    if redis_client is not None:
        from .redis_limiter import RedisRateLimiter

        return RedisRateLimiter(
            redis_client,
            max_requests=settings.rate_limit_requests,
            window_seconds=settings.rate_limit_window_seconds,
        )
    return LocalRateLimiter(
        max_requests=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
