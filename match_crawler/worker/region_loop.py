"""
Region crawl loop.

Drains a region's frontier one player at a time. When the frontier is
empty it backtracks to a previously productive player, then reseeds, and
as a last resort forgets part of its dry and visited history and waits
before trying again. The loop never stops on its own.
"""

import asyncio
import random
from typing import Optional

from ..config.settings import CrawlerSettings
from ..core.exceptions import RateLimitedError
from ..core.types import CrawlOutcome, LoopPhase
from ..discovery.seeding import Seeder
from ..state.models import CrawlStats, RegionCrawlState
from ..utils.logging import RegionLogger, get_crawler_logger
from ..utils.timing import sleep_or_shutdown
from .player_crawler import PlayerCrawler


class RegionCrawlLoop:
    """State machine for one region; the only writer of its RegionCrawlState"""

    def __init__(
        self,
        state: RegionCrawlState,
        settings: CrawlerSettings,
        crawler: PlayerCrawler,
        seeder: Seeder,
        stats: CrawlStats,
        shutdown_event: asyncio.Event,
        rng: Optional[random.Random] = None,
    ):
        self.state = state
        self.settings = settings
        self.crawler = crawler
        self.seeder = seeder
        self.stats = stats
        self.shutdown_event = shutdown_event
        self.rng = rng or random.Random()
        self.log = RegionLogger(get_crawler_logger(__name__), state.region)

        self.phase = LoopPhase.EMPTY
        self.consecutive_backtracks = 0
        self.consecutive_dry = 0
        self.last_backtrack: Optional[str] = None

    @property
    def region(self) -> str:
        return self.state.region

    async def run(self) -> None:
        """Run until shutdown; a failed iteration never ends the loop."""
        self.log.info("region_loop_started", **self.state.summary())
        while not self.shutdown_event.is_set():
            try:
                await self.step()
            except Exception as e:
                self.stats.record_error()
                self.log.error("crawl_iteration_failed", error=str(e), error_type=type(e).__name__, exc_info=True)
            # Let sibling regions run even when this iteration never suspended
            await asyncio.sleep(0)
        self.log.info("region_loop_stopped", **self.state.summary())

    async def step(self) -> LoopPhase:
        """Run one iteration and return the phase it ran in."""
        if self.state.frontier:
            self.phase = LoopPhase.ACTIVE
            await self._crawl_next()
        else:
            self.phase = await self._replenish()
        return self.phase

    async def _crawl_next(self) -> None:
        puuid = self.state.pop()
        if puuid is None or self.state.is_explored(puuid):
            return

        self.log.log_crawl_started(puuid, len(self.state.frontier), len(self.state.visited), len(self.state.dry))
        try:
            outcome = await self.crawler.crawl(puuid, self.state)
        except RateLimitedError as e:
            self.stats.record_crawl(self.region, 0, False, True, 0)
            self.log.log_rate_limited(puuid, stage="match_list", retry_after=e.retry_after)
            return

        self._apply_outcome(puuid, outcome)

    def _apply_outcome(self, puuid: str, outcome: CrawlOutcome) -> None:
        state = self.state
        self.stats.record_crawl(
            self.region, outcome.stored_count, outcome.is_dry, outcome.rate_limited, outcome.skipped_old_patch
        )

        if outcome.is_dry:
            state.mark_dry(puuid)
            self.consecutive_dry += 1
            if (
                self.consecutive_dry >= self.settings.consecutive_dry_threshold
                and len(state.backtrack) > self.settings.backtrack_clear_min_size
            ):
                cleared = state.clear_backtrack()
                self.consecutive_dry = 0
                self.log.info("backtrack_cleared", cleared=cleared, reason="consecutive_dry")
            return

        self.consecutive_dry = 0
        state.mark_productive(puuid)

        if outcome.stored_count:
            self.log.log_matches_stored(
                outcome.stored_count, self.stats.region_total(self.region), self.stats["matches_stored"]
            )

        fresh = [player for player in outcome.discovered if not state.is_explored(player)]
        if fresh:
            # First discovered ends on top of the stack
            state.push_many(reversed(fresh))
            self.consecutive_backtracks = 0
            self.log.debug("players_discovered", count=len(fresh), frontier=len(state.frontier))

    async def _replenish(self) -> LoopPhase:
        if self.consecutive_backtracks < self.settings.max_consecutive_backtracks and self._backtrack():
            return LoopPhase.BACKTRACKING

        self.consecutive_backtracks = 0
        if await self.seeder.replenish(self.state):
            return LoopPhase.SEEDING

        await self._recover_stale()
        return LoopPhase.STALE_RECOVERY

    def _backtrack(self) -> bool:
        """Re-queue a random productive player that is not dry."""
        candidates = self.state.backtrack_candidates()
        if not candidates:
            return False

        choice = self.rng.choice(candidates)
        attempts = 1
        while (
            choice == self.last_backtrack
            and len(candidates) > 1
            and attempts < self.settings.backtrack_retry_attempts
        ):
            choice = self.rng.choice(candidates)
            attempts += 1

        self.last_backtrack = choice
        self.consecutive_backtracks += 1
        self.state.unvisit(choice)
        self.state.push(choice)
        self.log.log_backtrack(choice, len(candidates))
        return True

    async def _recover_stale(self) -> None:
        settings = self.settings
        dry_evicted, visited_evicted = self.state.evict_stale(
            settings.stale_dry_evict_fraction,
            settings.stale_visited_evict_fraction,
            settings.stale_min_set_size,
        )
        requeued = self.state.requeue_from_pool(settings.stale_requeue_count)
        self.log.warning(
            "stale_recovery",
            dry_evicted=dry_evicted,
            visited_evicted=visited_evicted,
            requeued=requeued,
            cooldown=settings.stale_cooldown_seconds,
        )
        await sleep_or_shutdown(self.shutdown_event, settings.stale_cooldown_seconds)
