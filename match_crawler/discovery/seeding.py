"""
Seeding subsystem.

When a region runs out of frontier and backtrack candidates it is
replenished first from its in-memory seed pool, then from matches already
in the repository. The repository path spends API budget, so it samples
only a couple of matches per attempt.
"""

import logging
import random
from typing import List, Optional

from ..config.settings import CrawlerSettings
from ..core.exceptions import MatchSourceError, RateLimitedError, RepositoryError
from ..http_client.client import MatchSource
from ..rate_limiter.limiter import RateLimiter
from ..state.models import RegionCrawlState
from ..storage.repository import MatchRepository

logger = logging.getLogger(__name__)


class Seeder:
    """Produces fresh frontier players for a region"""

    def __init__(
        self,
        settings: CrawlerSettings,
        source: MatchSource,
        repository: MatchRepository,
        rate_limiter: RateLimiter,
        rng: Optional[random.Random] = None,
    ):
        self.settings = settings
        self.source = source
        self.repository = repository
        self.rate_limiter = rate_limiter
        self.rng = rng or random.Random()
        self.stats = {"pool_reseeds": 0, "repository_reseeds": 0, "empty_reseeds": 0}

    def pool_seeds(self, state: RegionCrawlState) -> List[str]:
        """Up to ``pool_reseed_count`` unexplored pool players, shuffled."""
        candidates = state.pool_candidates()
        self.rng.shuffle(candidates)
        return candidates[: self.settings.pool_reseed_count]

    async def repository_seeds(self, state: RegionCrawlState) -> List[str]:
        """
        Co-participants of recently stored matches of this region.

        Platform prefixes are tried in random order. Within a prefix the
        accepted patches are sampled in order until one has stored matches,
        then a few of those are fetched until one yields unexplored players.
        """
        prefixes = self.settings.prefixes_for(state.region)
        self.rng.shuffle(prefixes)

        for prefix in prefixes:
            match_ids = await self._sample_prefix(prefix, state.region)
            if not match_ids:
                continue

            sampled = self.rng.sample(match_ids, min(self.settings.repository_sample_matches, len(match_ids)))
            players: List[str] = []
            for match_id in sampled:
                await self.rate_limiter.wait_for_slot(state.region)
                try:
                    record = await self.source.fetch_match(match_id, state.region)
                except RateLimitedError as e:
                    await self.rate_limiter.record_rejection(state.region, e.retry_after)
                    logger.warning("Rate limited during reseed", extra={"region": state.region})
                    return []
                except MatchSourceError as e:
                    logger.warning(f"Reseed fetch of {match_id} failed: {e}", extra={"region": state.region})
                    continue

                for puuid in record.participants:
                    if puuid not in players and not state.is_explored(puuid):
                        players.append(puuid)
                if len(players) >= self.settings.repository_seed_limit:
                    break

            if players:
                seeds = players[: self.settings.repository_seed_limit]
                state.add_to_pool(seeds)
                return seeds

        return []

    async def _sample_prefix(self, prefix: str, region: str) -> List[str]:
        """Recent matches of the first accepted patch that has any for ``prefix``."""
        for patch in self.settings.accepted_patches:
            try:
                match_ids = await self.repository.sample_recent_matches(
                    prefix, patch, self.settings.repository_sample_limit
                )
            except RepositoryError as e:
                logger.warning(f"Sampling {prefix} {patch} for reseed failed: {e}", extra={"region": region})
                continue
            if match_ids:
                return match_ids
        return []

    async def replenish(self, state: RegionCrawlState) -> int:
        """
        Push fresh seeds onto the frontier, pool first.

        Returns:
            Number of players pushed
        """
        seeds = self.pool_seeds(state)
        if seeds:
            self.stats["pool_reseeds"] += 1
            source = "pool"
        else:
            seeds = await self.repository_seeds(state)
            if seeds:
                self.stats["repository_reseeds"] += 1
                source = "repository"

        if not seeds:
            self.stats["empty_reseeds"] += 1
            logger.info("No seeds available", extra={"region": state.region})
            return 0

        state.push_many(seeds)
        logger.info(f"Reseeded {len(seeds)} players from {source}", extra={"region": state.region, "source": source})
        return len(seeds)
