"""Tests for retry and timing helpers."""

import asyncio

import pytest

from match_crawler.utils.retry import RetryConfig, RetryError, retry_with_config
from match_crawler.utils.timing import format_duration, sleep_or_shutdown


async def test_retry_succeeds_after_failures():
    """Retried exceptions are swallowed until a call succeeds."""
    calls = []
    retries = []

    async def flaky(value):
        calls.append(value)
        if len(calls) < 3:
            raise ConnectionError("reset")
        return value * 2

    async def on_retry(attempt, error, delay):
        retries.append(attempt)

    config = RetryConfig(max_attempts=3, base_delay=0.0, jitter=False)
    result = await retry_with_config(flaky, config, (ConnectionError,), on_retry, 21)

    assert result == 42
    assert retries == [1, 2]


async def test_retry_gives_up():
    """Exhausted attempts raise RetryError with the last exception."""

    async def broken():
        raise ConnectionError("down")

    with pytest.raises(RetryError) as exc_info:
        await retry_with_config(broken, RetryConfig(max_attempts=2, base_delay=0.0), (ConnectionError,))

    assert exc_info.value.attempts == 2
    assert isinstance(exc_info.value.last_exception, ConnectionError)


async def test_unlisted_exceptions_are_not_retried():
    """Only the given exception types are retried."""
    calls = []

    async def broken():
        calls.append(1)
        raise KeyError("nope")

    with pytest.raises(KeyError):
        await retry_with_config(broken, RetryConfig(max_attempts=5, base_delay=0.0), (ConnectionError,))

    assert len(calls) == 1


def test_delay_is_capped():
    """Backoff grows exponentially up to the maximum delay."""
    config = RetryConfig(base_delay=1.0, max_delay=5.0, jitter=False)

    assert [config.calculate_delay(attempt) for attempt in range(4)] == [1.0, 2.0, 4.0, 5.0]


async def test_sleep_or_shutdown():
    """Sleeping ends early when shutdown is requested."""
    event = asyncio.Event()

    assert await sleep_or_shutdown(event, 0.01) is False

    asyncio.get_running_loop().call_later(0.01, event.set)
    assert await sleep_or_shutdown(event, 10) is True


@pytest.mark.parametrize(
    "seconds, expected",
    [(5, "5s"), (125, "2m 5s"), (3 * 3600 + 120, "3h 2m")],
)
def test_format_duration(seconds, expected):
    """Durations are formatted compactly."""
    assert format_duration(seconds) == expected
