"""Tests for the rate limiters."""

import asyncio

from redis.exceptions import ConnectionError as RedisConnectionError

from match_crawler.rate_limiter.limiter import LocalRateLimiter, create_rate_limiter
from match_crawler.rate_limiter.redis_limiter import RedisRateLimiter


class FakePipeline:
    def __init__(self, redis):
        self.redis = redis
        self.commands = []

    def incr(self, key):
        self.commands.append(("incr", key))
        return self

    def expire(self, key, seconds):
        self.commands.append(("expire", key, seconds))
        return self

    async def execute(self):
        for command in self.commands:
            if command[0] == "incr":
                self.redis.data[command[1]] = str(int(self.redis.data.get(command[1], 0)) + 1)
        return [True] * len(self.commands)


class FakeRedis:
    def __init__(self, fail=False):
        self.data = {}
        self.fail = fail

    async def get(self, key):
        if self.fail:
            raise RedisConnectionError("down")
        return self.data.get(key)

    async def mget(self, keys):
        return [self.data.get(key) for key in keys]

    async def set(self, key, value, ex=None):
        if self.fail:
            raise RedisConnectionError("down")
        self.data[key] = value
        return True

    def pipeline(self):
        return FakePipeline(self)


async def test_local_limiter_admits_up_to_the_window(clock):
    """Requests beyond the window wait until the oldest one expires."""
    limiter = LocalRateLimiter(max_requests=2, window_seconds=10, clock=clock, sleep=clock.sleep)

    await limiter.wait_for_slot("europe")
    await limiter.wait_for_slot("europe")
    start = clock.now
    await limiter.wait_for_slot("europe")

    assert clock.now - start == 10
    assert limiter.stats["requests_admitted"] == 3
    assert limiter.stats["waits"] == 1


async def test_local_limiter_regions_are_independent(clock):
    """Each region has its own budget."""
    limiter = LocalRateLimiter(max_requests=1, window_seconds=10, clock=clock, sleep=clock.sleep)

    await limiter.wait_for_slot("europe")
    await limiter.wait_for_slot("asia")

    assert clock.now == 1000.0


async def test_rejection_blocks_region_for_retry_after(clock):
    """A recorded 429 holds the region until Retry-After elapses."""
    limiter = LocalRateLimiter(max_requests=100, window_seconds=10, clock=clock, sleep=clock.sleep)

    await limiter.record_rejection("europe", retry_after=7)
    await limiter.wait_for_slot("europe")

    assert clock.now == 1007.0
    assert limiter.get_stats()["rejections"] == 1


async def test_concurrent_waiters_share_the_budget():
    """Concurrent callers of one region never exceed the window."""
    limiter = LocalRateLimiter(max_requests=3, window_seconds=0.05)

    await asyncio.gather(*(limiter.wait_for_slot("europe") for _ in range(6)))

    assert limiter.stats["requests_admitted"] == 6
    assert limiter.stats["waits"] >= 1


async def test_redis_limiter_counts_requests_in_buckets(clock):
    """Admitted requests increment the current one-second bucket."""
    redis = FakeRedis()
    limiter = RedisRateLimiter(redis, max_requests=2, window_seconds=10, clock=clock, sleep=clock.sleep)

    await limiter.wait_for_slot("europe")
    await limiter.wait_for_slot("europe")

    assert redis.data["rate_limit:requests:europe:1000"] == "2"


async def test_redis_limiter_waits_when_window_is_full(clock):
    """A full window makes the caller wait for a new bucket."""
    redis = FakeRedis()
    limiter = RedisRateLimiter(redis, max_requests=1, window_seconds=2, clock=clock, sleep=clock.sleep)

    await limiter.wait_for_slot("europe")
    await limiter.wait_for_slot("europe")

    assert clock.now >= 1002.0
    assert limiter.stats["waits"] >= 1


async def test_redis_limiter_honours_rejections(clock):
    """A rejection stored in Redis blocks the region."""
    redis = FakeRedis()
    limiter = RedisRateLimiter(redis, max_requests=10, window_seconds=10, clock=clock, sleep=clock.sleep)

    await limiter.record_rejection("europe", retry_after=5)
    await limiter.wait_for_slot("europe")

    assert clock.now >= 1005.0


async def test_redis_limiter_fails_open(clock):
    """Redis errors never block crawling."""
    limiter = RedisRateLimiter(FakeRedis(fail=True), max_requests=1, clock=clock, sleep=clock.sleep)

    await limiter.wait_for_slot("europe")
    await limiter.wait_for_slot("europe")
    await limiter.record_rejection("europe", retry_after=5)

    assert limiter.stats["redis_errors"] == 3
    assert clock.now == 1000.0


def test_factory_picks_backend(settings):
    """Without Redis the in-process limiter is used."""
    assert isinstance(create_rate_limiter(settings), LocalRateLimiter)
    assert isinstance(create_rate_limiter(settings, FakeRedis()), RedisRateLimiter)
