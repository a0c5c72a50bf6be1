"""Shutdown-aware sleeping and duration formatting."""

import asyncio


async def sleep_or_shutdown(shutdown: asyncio.Event, seconds: float) -> bool:
    """
    Sleep for ``seconds`` unless shutdown is requested first.

    Returns:
        True if shutdown was requested before the sleep finished
    """
    if shutdown.is_set():
        return True
    if seconds <= 0:
        return False
    try:
        await asyncio.wait_for(shutdown.wait(), timeout=seconds)
        return True
    except asyncio.TimeoutError:
        return False


def format_duration(seconds: float) -> str:
    total = int(seconds)
    minutes, secs = divmod(total, 60)
    hours, minutes = divmod(minutes, 60)
    if hours > 0:
        return f"{hours}h {minutes}m"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"
