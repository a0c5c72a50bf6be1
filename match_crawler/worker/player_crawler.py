"""
Crawl of a single player.

Filtering is staged so the two scarce resources, rate-limited API calls and
repository round-trips, are spent only on matches that are actually new:

1. list the player's recent match ids
2. drop ids already in the known-match cache
3. drop ids the repository already holds, checked in large batches
4. fetch the remaining matches in small concurrent sub-batches and store
   each sub-batch before moving on
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, List, Optional

from ..config.settings import CrawlerSettings
from ..core.exceptions import MatchSourceError, RateLimitedError, RepositoryError
from ..core.types import CrawlOutcome, MatchRecord
from ..http_client.client import MatchSource
from ..rate_limiter.limiter import RateLimiter
from ..state.models import KnownMatchCache, RegionCrawlState
from ..storage.repository import MatchRepository, chunked
from ..storage.stats_buffer import StatsFlushScheduler
from ..utils.logging import short_id
from ..utils.retry import STORAGE_RETRY_CONFIG, RetryConfig, RetryError, retry_with_config

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


class PlayerCrawler:
    """Crawls one player at a time for any region"""

    def __init__(
        self,
        settings: CrawlerSettings,
        source: MatchSource,
        repository: MatchRepository,
        rate_limiter: RateLimiter,
        known_matches: KnownMatchCache,
        flusher: Optional[StatsFlushScheduler] = None,
        store_retry_config: RetryConfig = STORAGE_RETRY_CONFIG,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings
        self.source = source
        self.repository = repository
        self.rate_limiter = rate_limiter
        self.known_matches = known_matches
        self.flusher = flusher
        self.store_retry_config = store_retry_config
        self._clock = clock
        self._sleep = sleep

    async def crawl(self, puuid: str, state: RegionCrawlState) -> CrawlOutcome:
        """
        Crawl one player of ``state.region``.

        Raises:
            RateLimitedError: If the match list request is rejected
            MatchSourceError: If the match list cannot be fetched
            RepositoryError: If the existence check fails
        """
        region = state.region
        min_timestamp = self._clock() - self.settings.match_history_days * SECONDS_PER_DAY

        await self.rate_limiter.wait_for_slot(region)
        try:
            match_ids = await self.source.list_recent_matches(
                puuid, region, self.settings.match_list_count, min_timestamp
            )
        except RateLimitedError as e:
            await self.rate_limiter.record_rejection(region, e.retry_after)
            raise

        if not match_ids:
            return CrawlOutcome(is_dry=True)

        candidates = self.known_matches.filter_unknown(match_ids)
        if not candidates:
            logger.debug(f"All {len(match_ids)} matches of {short_id(puuid)} already known", extra={"region": region})
            return CrawlOutcome(is_dry=True)

        new_ids = await self._filter_existing(candidates)
        logger.debug(
            f"{len(new_ids)} new matches, {len(candidates) - len(new_ids)} already stored",
            extra={"region": region, "puuid": short_id(puuid)},
        )
        if not new_ids:
            return CrawlOutcome(is_dry=True)

        return await self._fetch_and_store(puuid, state, new_ids)

    async def _filter_existing(self, candidates: List[str]) -> List[str]:
        """Existence check in batches; every checked id becomes known."""
        new_ids: List[str] = []
        for batch in chunked(candidates, self.settings.existence_check_batch_size):
            existing = await self.repository.exists_batch(batch)
            self.known_matches.add_many(batch)
            new_ids.extend(match_id for match_id in batch if match_id not in existing)
        return new_ids

    async def _fetch_one(self, match_id: str, region: str) -> MatchRecord:
        await self.rate_limiter.wait_for_slot(region)
        return await self.source.fetch_match(match_id, region)

    async def _fetch_and_store(self, puuid: str, state: RegionCrawlState, new_ids: List[str]) -> CrawlOutcome:
        region = state.region
        outcome = CrawlOutcome()
        discovered: Dict[str, None] = {}
        batches = list(chunked(new_ids, self.settings.fetch_concurrency))

        for index, batch in enumerate(batches):
            results = await asyncio.gather(
                *(self._fetch_one(match_id, region) for match_id in batch), return_exceptions=True
            )

            records: List[MatchRecord] = []
            rejection: Optional[RateLimitedError] = None
            failed: List[str] = []
            for match_id, result in zip(batch, results):
                if isinstance(result, RateLimitedError):
                    rejection = result
                elif isinstance(result, MatchSourceError):
                    failed.append(match_id)
                    logger.warning(f"Error fetching match {match_id}: {result}", extra={"region": region})
                elif isinstance(result, BaseException):
                    raise result
                elif result.patch not in self.settings.accepted_patches:
                    outcome.skipped_old_patch += 1
                else:
                    records.append(result)

            outcome.fetch_failures += len(failed)
            self.known_matches.discard_many(failed)

            if rejection is not None:
                # Unfetched and unstored ids must stay discoverable
                unfinished = [match_id for later in batches[index:] for match_id in later]
                self.known_matches.discard_many(unfinished)
                await self.rate_limiter.record_rejection(region, rejection.retry_after)
                outcome.rate_limited = True
                logger.info(
                    f"Rate limited while crawling {short_id(puuid)}, yielding",
                    extra={"region": region, "stored": outcome.stored_count},
                )
                break

            if not records:
                continue

            self._collect_participants(puuid, state, records, discovered)
            outcome.stored_count += await self._store(records, region)

            if self.flusher is not None:
                self.flusher.maybe_flush()
            await self._sleep(self.settings.batch_delay_seconds)

        outcome.discovered = list(discovered)
        if outcome.stored_count or outcome.skipped_old_patch:
            logger.info(
                f"Completed {short_id(puuid)}: {outcome.stored_count} stored, {outcome.skipped_old_patch} old patch",
                extra={"region": region},
            )
        return outcome

    def _collect_participants(
        self, puuid: str, state: RegionCrawlState, records: List[MatchRecord], discovered: Dict[str, None]
    ) -> None:
        """Co-participants always join the seed pool; the frontier only takes them while it has room."""
        for record in records:
            accepting = not state.frontier_full
            for participant in record.participants:
                if not participant or participant == puuid:
                    continue
                state.seed_pool.add(participant)
                if accepting and not state.is_explored(participant):
                    discovered[participant] = None

    async def _store(self, records: List[MatchRecord], region: str) -> int:
        """Store a sub-batch; on failure its ids leave the known cache."""
        match_ids = [record.match_id for record in records]
        try:
            result = await retry_with_config(
                self.repository.store_batch, self.store_retry_config, (RepositoryError,), None, records
            )
        except RetryError as e:
            self.known_matches.discard_many(match_ids)
            logger.error(
                f"Failed to store {len(records)} matches: {e.last_exception}",
                extra={"region": region, "match_ids": match_ids[:5]},
            )
            return 0

        self.known_matches.add_many(match_ids)
        return result.stored_count
