"""
Crawl orchestrator.

Restores or seeds every region, runs one crawl loop per region plus a
reporting loop, and shuts everything down gracefully: loops get a grace
period, buffered stats are flushed and a final checkpoint is written.
"""

import asyncio
import logging
import os
import random
import signal
import sys
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..config.settings import CrawlerSettings
from ..core.exceptions import AuthenticationError, ConfigurationError, MatchSourceError
from ..core.types import CrawlerStatus, SeedSpec, parse_riot_id
from ..discovery.seeding import Seeder
from ..http_client.client import MatchSource
from ..rate_limiter.limiter import RateLimiter
from ..state.checkpoint import CheckpointManager
from ..state.models import CrawlStats, KnownMatchCache, RegionCrawlState
from ..storage.repository import MatchRepository
from ..storage.stats_buffer import CleanupScheduler, NullStatsBuffer, StatsBuffer, StatsFlushScheduler
from ..utils.timing import format_duration, sleep_or_shutdown
from .player_crawler import PlayerCrawler
from .region_loop import RegionCrawlLoop

logger = logging.getLogger(__name__)


def should_prompt_for_seeds(settings: CrawlerSettings) -> bool:
    """Prompt only on an interactive terminal outside CI."""
    return settings.interactive_seeding and sys.stdin.isatty() and not os.getenv("CI")


class CrawlOrchestrator:
    """
    Runs the crawl for every configured region.

    Region states are independent; the known-match cache and the aggregate
    counters are shared across regions.
    """

    def __init__(
        self,
        settings: CrawlerSettings,
        source: MatchSource,
        repository: MatchRepository,
        rate_limiter: RateLimiter,
        checkpoints: CheckpointManager,
        stats_buffer: Optional[StatsBuffer] = None,
        cleanup_hook: Optional[Callable[[], Awaitable[Any]]] = None,
        rng: Optional[random.Random] = None,
        input_fn: Callable[[str], str] = input,
    ):
        self.settings = settings
        self.source = source
        self.repository = repository
        self.rate_limiter = rate_limiter
        self.checkpoints = checkpoints
        self.rng = rng or random.Random()
        self._input = input_fn

        self.status = CrawlerStatus.STARTING
        self.shutdown_event = asyncio.Event()
        self._tasks: List[asyncio.Task] = []

        self.known_matches = KnownMatchCache(settings.max_known_matches)
        self.crawl_stats = CrawlStats()
        self.states: Dict[str, RegionCrawlState] = {
            region: RegionCrawlState.from_settings(region, settings) for region in settings.regions
        }

        self.flusher = StatsFlushScheduler(
            stats_buffer or NullStatsBuffer(),
            flush_size=settings.stats_flush_size,
            flush_interval=settings.stats_flush_interval_seconds,
            cooldown=settings.stats_flush_cooldown_seconds,
        )
        self.cleanup = CleanupScheduler(cleanup_hook, settings.cleanup_interval_seconds)

        self.crawler = PlayerCrawler(
            settings, source, repository, rate_limiter, self.known_matches, flusher=self.flusher
        )
        self.seeder = Seeder(settings, source, repository, rate_limiter, rng=self.rng)
        self.loops: Dict[str, RegionCrawlLoop] = {
            region: RegionCrawlLoop(
                state, settings, self.crawler, self.seeder, self.crawl_stats, self.shutdown_event, rng=self.rng
            )
            for region, state in self.states.items()
        }

    @staticmethod
    def _has_work(state: RegionCrawlState) -> bool:
        return bool(state.frontier or state.backtrack or state.seed_pool)

    async def initialize(self, reset: bool = False, interactive: bool = False) -> List[str]:
        """
        Restore saved state, then seed regions that have nothing to crawl.

        Returns:
            Regions restored from the checkpoint

        Raises:
            ConfigurationError: If no region has anything to crawl afterwards
        """
        restored: List[str] = []
        if reset:
            logger.info("Reset requested, ignoring saved checkpoint")
        else:
            restored = self.checkpoints.restore(self.states, self.known_matches)

        idle = [region for region, state in self.states.items() if not self._has_work(state)]
        if idle:
            await self.seed_from_defaults(idle, interactive=interactive)

        if not any(self._has_work(state) for state in self.states.values()):
            self.status = CrawlerStatus.ERROR
            raise ConfigurationError("No seeds could be obtained for any region")

        logger.info(
            f"Crawler initialized for {len(self.states)} regions",
            extra={"restored": restored, "seeded": idle, "patches": self.settings.accepted_patches},
        )
        return restored

    def _prompt_seed(self, seed: SeedSpec) -> SeedSpec:
        """Let the operator replace a default seed; blank or malformed input keeps it."""
        value = self._input(f"Seed player for {seed.region} ({seed.platform}) [{seed.riot_id}]: ").strip()
        if not value:
            return seed
        if parse_riot_id(value) is None:
            logger.warning(f"Invalid Riot ID {value!r}, using {seed.riot_id}")
            return seed
        return seed.model_copy(update={"riot_id": value})

    async def seed_from_defaults(self, regions: List[str], interactive: bool = False) -> int:
        """
        Look up the default seed players of ``regions`` and queue them.

        Returns:
            Number of seeds queued

        Raises:
            ConfigurationError: If the API key is rejected
        """
        seeded = 0
        for default in self.settings.default_seeds:
            if default.region not in regions or default.region not in self.states:
                continue

            seed = self._prompt_seed(default) if interactive else default

            await self.rate_limiter.wait_for_slot(seed.region)
            try:
                puuid = await self.source.lookup_player(seed.game_name, seed.tag, seed.platform)
            except AuthenticationError as e:
                raise ConfigurationError(f"Riot API key rejected during seeding: {e}") from e
            except MatchSourceError as e:
                logger.warning(f"Seed lookup for {seed.riot_id} failed: {e}", extra={"region": seed.region})
                continue

            if puuid is None:
                logger.warning(f"Seed player {seed.riot_id} not found", extra={"region": seed.region})
                continue

            state = self.states[seed.region]
            state.push(puuid)
            state.add_to_pool([puuid])
            seeded += 1
            logger.info(f"Seeded {seed.region} with {seed.riot_id}", extra={"region": seed.region})

        return seeded

    async def run(self) -> None:
        """Run every region loop until shutdown is requested, then shut down."""
        if self.status not in (CrawlerStatus.STARTING, CrawlerStatus.RUNNING):
            raise RuntimeError(f"Cannot run crawler in status {self.status.value}")

        self.status = CrawlerStatus.RUNNING
        self._tasks = [
            asyncio.create_task(loop.run(), name=f"region-{region}") for region, loop in self.loops.items()
        ]
        self._tasks.append(asyncio.create_task(self._reporting_loop(), name="reporting"))
        logger.info(f"Started {len(self.loops)} region loops", extra={"regions": list(self.loops)})

        await self.shutdown_event.wait()
        await self.shutdown()

    async def _reporting_loop(self) -> None:
        while not await sleep_or_shutdown(self.shutdown_event, self.settings.report_interval_seconds):
            try:
                await self.report_once()
            except Exception as e:
                logger.error(f"Reporting cycle failed: {e}", exc_info=True)

    async def report_once(self) -> Dict[str, Any]:
        """Log the summary, run due maintenance and save a checkpoint."""
        summary = self.get_summary()
        logger.info(
            f"Crawl summary: {summary['matches_stored']} matches in {summary['runtime']}",
            extra={"summary": summary},
        )
        self.flusher.maybe_flush()
        await self.cleanup.maybe_run()
        self.save_checkpoint()
        return summary

    def save_checkpoint(self) -> bool:
        return self.checkpoints.save(self.states, self.known_matches)

    def request_shutdown(self) -> None:
        if not self.shutdown_event.is_set():
            logger.info("Shutdown requested")
            self.shutdown_event.set()

    async def shutdown(self) -> None:
        """Stop loops within the grace period, flush buffered stats and save state."""
        if self.status in (CrawlerStatus.STOPPING, CrawlerStatus.STOPPED):
            return

        logger.info("Shutting down crawler...")
        self.status = CrawlerStatus.STOPPING
        self.shutdown_event.set()

        if self._tasks:
            _, pending = await asyncio.wait(self._tasks, timeout=self.settings.shutdown_grace_seconds)
            for task in pending:
                task.cancel()
            if pending:
                logger.warning(f"Cancelled {len(pending)} tasks after the grace period")
                await asyncio.gather(*pending, return_exceptions=True)

        await self.flusher.flush_now()
        self.save_checkpoint()

        self.status = CrawlerStatus.STOPPED
        logger.info("Crawler shutdown complete", extra={"summary": self.get_summary()})

    def setup_signal_handlers(self) -> None:
        """Request shutdown on SIGINT/SIGTERM"""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_shutdown)
            except NotImplementedError:
                signal.signal(sig, lambda *_: loop.call_soon_threadsafe(self.request_shutdown))

    def get_summary(self) -> Dict[str, Any]:
        crawl = self.crawl_stats.get_summary()
        return {
            "status": self.status.value,
            "runtime": format_duration(crawl["runtime_seconds"]),
            "accepted_patches": list(self.settings.accepted_patches),
            "matches_stored": crawl["matches_stored"],
            "matches_per_minute": crawl["matches_per_minute"],
            "players_crawled": crawl["players_crawled"],
            "crawl_errors": crawl["crawl_errors"],
            "stats_buffer": self.flusher.get_stats(),
            "known_matches": len(self.known_matches),
            "regions": {
                region: {
                    **state.summary(),
                    "phase": self.loops[region].phase.value,
                    **crawl["stored_by_region"].get(region, {"matches": 0, "per_minute": 0.0}),
                }
                for region, state in self.states.items()
            },
            "rate_limiter": self.rate_limiter.get_stats(),
        }
