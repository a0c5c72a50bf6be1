"""
Distributed rate limiter using a Redis sliding window.

Counts requests in one-second buckets so that several crawler processes
sharing an API key also share its budget. Redis errors fail open.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from .limiter import DEFAULT_REJECTION_BACKOFF_SECONDS

logger = logging.getLogger(__name__)


class RedisRateLimiter:
    """Per-region sliding window limiter stored in Redis"""

    def __init__(
        self,
        redis_client: aioredis.Redis,
        max_requests: int = 100,
        window_seconds: float = 120.0,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.redis_client = redis_client
        self.max_requests = max_requests
        self.window_seconds = int(window_seconds)
        self.bucket_size_seconds = 1
        self.buckets_per_window = max(self.window_seconds // self.bucket_size_seconds, 1)
        self._clock = clock
        self._sleep = sleep

        self.request_count_prefix = "rate_limit:requests:"
        self.blocked_prefix = "rate_limit:blocked:"

        self._locks: Dict[str, asyncio.Lock] = {}
        self.stats = {"requests_admitted": 0, "rejections": 0, "waits": 0, "redis_errors": 0}

        logger.info("Redis sliding window rate limiter initialized")

    def _bucket_key(self, region: str, bucket_id: int) -> str:
        return f"{self.request_count_prefix}{region}:{bucket_id}"

    def _window_keys(self, region: str, timestamp: float) -> List[str]:
        current_bucket_id = int(timestamp) // self.bucket_size_seconds
        return [self._bucket_key(region, current_bucket_id - i) for i in range(self.buckets_per_window)]

    def _lock_for(self, region: str) -> asyncio.Lock:
        lock = self._locks.get(region)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[region] = lock
        return lock

    async def _try_acquire(self, region: str) -> float:
        """
        Take a slot if one is free.

        Returns:
            0 when admitted, otherwise seconds to wait before retrying
        """
        now = self._clock()
        try:
            blocked_until = await self.redis_client.get(f"{self.blocked_prefix}{region}")
            if blocked_until is not None and float(blocked_until) > now:
                return float(blocked_until) - now

            counts = await self.redis_client.mget(self._window_keys(region, now))
            total = sum(int(count) for count in counts if count is not None)
            if total >= self.max_requests:
                return float(self.bucket_size_seconds)

            bucket_key = self._bucket_key(region, int(now) // self.bucket_size_seconds)
            pipeline = self.redis_client.pipeline()
            pipeline.incr(bucket_key)
            pipeline.expire(bucket_key, self.window_seconds + 60)
            await pipeline.execute()
            return 0.0

        except (RedisError, ValueError) as e:
            # Fail open - allow request if Redis is down
            self.stats["redis_errors"] += 1
            logger.error(f"Error checking rate limit for {region}: {e}")
            return 0.0

    async def wait_for_slot(self, region: str) -> None:
        async with self._lock_for(region):
            while True:
                delay = await self._try_acquire(region)
                if delay <= 0:
                    self.stats["requests_admitted"] += 1
                    return
                self.stats["waits"] += 1
                await self._sleep(delay)

    async def record_rejection(self, region: str, retry_after: Optional[float] = None) -> None:
        backoff = retry_after if retry_after and retry_after > 0 else DEFAULT_REJECTION_BACKOFF_SECONDS
        self.stats["rejections"] += 1
        try:
            await self.redis_client.set(
                f"{self.blocked_prefix}{region}", str(self._clock() + backoff), ex=int(backoff) + 1
            )
        except RedisError as e:
            self.stats["redis_errors"] += 1
            logger.error(f"Error recording rejection for {region}: {e}")
        logger.warning(f"Region {region} rate limited, blocking for {backoff:.1f}s", extra={"region": region})

    def get_stats(self) -> Dict[str, Any]:
        return {**self.stats, "backend": "redis"}
