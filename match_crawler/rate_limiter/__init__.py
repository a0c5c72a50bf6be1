"""Per-region request rate limiting."""

from .limiter import LocalRateLimiter, RateLimiter, create_rate_limiter
from .redis_limiter import RedisRateLimiter

__all__ = ["LocalRateLimiter", "RateLimiter", "RedisRateLimiter", "create_rate_limiter"]
