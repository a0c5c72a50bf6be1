"""
Redis connection setup shared by the rate limiter and the match repository.
"""

import logging

import redis.asyncio as aioredis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError, TimeoutError

from ..core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


async def create_redis_client(redis_url: str) -> aioredis.Redis:
    """
    Connect to Redis and verify the connection with a PING.

    Raises:
        ConfigurationError: If Redis cannot be reached
    """
    client = aioredis.Redis.from_url(
        redis_url,
        decode_responses=True,
        max_connections=20,
        retry_on_timeout=True,
        retry_on_error=[ConnectionError, TimeoutError],
        retry=Retry(ExponentialBackoff(), 3),
        socket_connect_timeout=5,
        socket_timeout=5,
        health_check_interval=30,
    )
    try:
        await client.ping()
    except (ConnectionError, TimeoutError) as e:
        await client.aclose()
        raise ConfigurationError(f"Failed to connect to Redis at {redis_url}: {e}") from e

    logger.info("Redis connection established successfully")
    return client
