"""Match persistence and buffered side-effects."""

from .repository import LocalMatchRepository, MatchRepository, create_match_repository
from .stats_buffer import CleanupScheduler, NullStatsBuffer, StatsBuffer, StatsFlushScheduler

__all__ = [
    "LocalMatchRepository",
    "MatchRepository",
    "create_match_repository",
    "CleanupScheduler",
    "NullStatsBuffer",
    "StatsBuffer",
    "StatsFlushScheduler",
]
