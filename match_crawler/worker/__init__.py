"""Crawl workers: per-player crawl, region loops and the orchestrator."""

from .orchestrator import CrawlOrchestrator
from .player_crawler import PlayerCrawler
from .region_loop import RegionCrawlLoop

__all__ = ["CrawlOrchestrator", "PlayerCrawler", "RegionCrawlLoop"]
