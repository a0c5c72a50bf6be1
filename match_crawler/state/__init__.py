"""Crawl state and its checkpoint persistence."""

from .checkpoint import CheckpointManager, CheckpointStore, FileCheckpointStore
from .models import CrawlStats, KnownMatchCache, RegionCrawlState

__all__ = [
    "CheckpointManager",
    "CheckpointStore",
    "FileCheckpointStore",
    "CrawlStats",
    "KnownMatchCache",
    "RegionCrawlState",
]
