"""
Backoff and retry for transient failures.

Used by the match source for 5xx and connection errors and by the player
crawler for repository writes. Rate-limit rejections never pass through
here; they go straight back to the rate limiter.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar, Union

logger = logging.getLogger(__name__)

R = TypeVar("R")

ExceptionTypes = Union[Type[Exception], Tuple[Type[Exception], ...]]
RetryCallback = Callable[[int, Exception, float], Awaitable[None]]


class RetryError(Exception):
    """Every attempt failed; ``last_exception`` is the final failure"""

    def __init__(self, attempts: int, last_exception: Exception):
        self.attempts = attempts
        self.last_exception = last_exception
        super().__init__(f"Gave up after {attempts} attempts: {last_exception}")


@dataclass(frozen=True)
class RetryConfig:
    """
    Exponential backoff settings.

    ``max_attempts`` counts the first call. The delay after attempt ``n``
    (0-indexed) is ``base_delay * exponential_base ** n`` capped at
    ``max_delay``, spread by up to ``jitter_range`` of itself when jitter
    is on.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: bool = True
    jitter_range: float = 0.1

    def calculate_delay(self, attempt: int) -> float:
        delay = min(self.base_delay * self.exponential_base**attempt, self.max_delay)
        if not self.jitter or self.jitter_range <= 0:
            return delay
        spread = delay * self.jitter_range
        return max(0.0, random.uniform(delay - spread, delay + spread))


def _describe(func: Callable) -> str:
    return getattr(func, "__qualname__", None) or getattr(func, "__name__", None) or repr(func)


async def retry_with_config(
    func: Callable[..., Awaitable[R]],
    config: RetryConfig,
    exceptions: ExceptionTypes = (Exception,),
    on_retry: Optional[RetryCallback] = None,
    *args,
    **kwargs,
) -> R:
    """
    Await ``func(*args, **kwargs)`` until it succeeds or attempts run out.

    Only ``exceptions`` are retried; anything else propagates from the
    attempt that raised it. ``on_retry(attempt, error, delay)`` is awaited
    before each backoff sleep and its own failures are only logged.

    Raises:
        RetryError: When the last attempt fails with a retried exception
    """
    operation = _describe(func)
    last_error: Optional[Exception] = None

    for attempt in range(1, config.max_attempts + 1):
        try:
            result = await func(*args, **kwargs)
        except exceptions as e:
            last_error = e
        else:
            if attempt > 1:
                logger.info(f"{operation} recovered on attempt {attempt}", extra={"operation": operation})
            return result

        if attempt == config.max_attempts:
            break

        delay = config.calculate_delay(attempt - 1)
        logger.warning(
            f"{operation} failed ({type(last_error).__name__}: {last_error}), retry {attempt}/"
            f"{config.max_attempts - 1} in {delay:.2f}s",
            extra={"operation": operation, "attempt": attempt, "delay": delay},
        )
        if on_retry is not None:
            try:
                await on_retry(attempt, last_error, delay)
            except Exception as callback_error:
                logger.error(f"on_retry callback for {operation} failed: {callback_error}")
        if delay > 0:
            await asyncio.sleep(delay)

    assert last_error is not None
    raise RetryError(config.max_attempts, last_error)


# Riot API 5xx and connection failures
NETWORK_RETRY_CONFIG = RetryConfig(max_attempts=3, base_delay=2.0, max_delay=30.0)

# Match repository writes
STORAGE_RETRY_CONFIG = RetryConfig(max_attempts=3, base_delay=0.5, max_delay=5.0)
