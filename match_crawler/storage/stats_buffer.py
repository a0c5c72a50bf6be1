"""
Scheduling of buffered aggregate flushes and periodic cleanup.

The scoring side keeps its own buffer of aggregate writes; the crawler
only decides when to flush it. A flush runs as a tracked background task
so shutdown can wait for it instead of racing it.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

logger = logging.getLogger(__name__)


class StatsBuffer(Protocol):
    def pending_count(self) -> int: ...

    async def flush(self) -> None: ...


class NullStatsBuffer:
    """Buffer used when no scorer is wired in"""

    def pending_count(self) -> int:
        return 0

    async def flush(self) -> None:
        return None


class StatsFlushScheduler:
    """
    Flush policy for a stats buffer.

    A flush starts when the buffer holds ``flush_size`` entries or when
    ``flush_interval`` has passed since the previous flush with anything
    pending. Flushes are at least ``cooldown`` apart and never overlap.
    """

    def __init__(
        self,
        buffer: StatsBuffer,
        flush_size: int = 50_000,
        flush_interval: float = 7200.0,
        cooldown: float = 600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.buffer = buffer
        self.flush_size = flush_size
        self.flush_interval = flush_interval
        self.cooldown = cooldown
        self._clock = clock
        self._last_flush_at = clock()
        self._task: Optional[asyncio.Task] = None
        self.stats = {"flushes_started": 0, "flushes_completed": 0, "flushes_failed": 0}

    @property
    def flush_in_progress(self) -> bool:
        return self._task is not None and not self._task.done()

    def should_flush(self) -> bool:
        if self.flush_in_progress:
            return False
        pending = self.buffer.pending_count()
        if pending == 0:
            return False
        elapsed = self._clock() - self._last_flush_at
        if elapsed < self.cooldown:
            return False
        return pending >= self.flush_size or elapsed >= self.flush_interval

    def maybe_flush(self) -> bool:
        """Start a background flush if the policy allows one."""
        if not self.should_flush():
            return False
        self._last_flush_at = self._clock()
        self.stats["flushes_started"] += 1
        logger.info(f"Flushing {self.buffer.pending_count()} buffered stats in the background")
        self._task = asyncio.create_task(self._run_flush())
        return True

    async def _run_flush(self) -> None:
        try:
            await self.buffer.flush()
            self.stats["flushes_completed"] += 1
        except Exception as e:
            self.stats["flushes_failed"] += 1
            logger.error(f"Stats flush failed: {e}", exc_info=True)

    async def wait_idle(self) -> None:
        """Wait for an in-flight flush to finish."""
        if self._task is not None:
            await asyncio.shield(self._task)
            self._task = None

    async def flush_now(self) -> None:
        """Final flush at shutdown, after any background flush completes."""
        await self.wait_idle()
        if self.buffer.pending_count() > 0:
            self._last_flush_at = self._clock()
            self.stats["flushes_started"] += 1
            await self._run_flush()

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self.stats,
            "pending": self.buffer.pending_count(),
            "flush_in_progress": self.flush_in_progress,
        }


class CleanupScheduler:
    """Runs an optional async cleanup hook on a fixed cadence"""

    def __init__(
        self,
        hook: Optional[Callable[[], Awaitable[Any]]],
        interval: float = 43200.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.hook = hook
        self.interval = interval
        self._clock = clock
        self._last_run_at = clock()
        self.runs = 0

    async def maybe_run(self) -> bool:
        if self.hook is None or self._clock() - self._last_run_at < self.interval:
            return False
        self._last_run_at = self._clock()
        try:
            await self.hook()
            self.runs += 1
        except Exception as e:
            logger.error(f"Cleanup hook failed: {e}", exc_info=True)
            return False
        return True
