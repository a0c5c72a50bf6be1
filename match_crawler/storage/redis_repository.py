"""
Redis-backed match repository.

Keys:
    matches:ids                         set of stored match ids
    matches:body:<match_id>             JSON match record
    matches:recent:<PREFIX>:<patch>     sorted set scored by game creation
"""

import json
import logging
from typing import Any, Dict, List, Set

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from ..core.exceptions import RepositoryError
from ..core.types import MatchRecord, StoreResult

logger = logging.getLogger(__name__)


class RedisMatchRepository:
    """Idempotent match store on Redis"""

    def __init__(self, redis_client: aioredis.Redis, key_prefix: str = "matches"):
        self.redis_client = redis_client
        self.ids_key = f"{key_prefix}:ids"
        self.body_prefix = f"{key_prefix}:body:"
        self.recent_prefix = f"{key_prefix}:recent:"
        self.stats = {"exists_checks": 0, "matches_stored": 0, "duplicates_skipped": 0, "samples": 0}

    def _recent_key(self, platform_prefix: str, patch: str) -> str:
        return f"{self.recent_prefix}{platform_prefix.upper()}:{patch}"

    async def exists_batch(self, match_ids: List[str]) -> Set[str]:
        if not match_ids:
            return set()
        try:
            flags = await self.redis_client.smismember(self.ids_key, match_ids)
        except RedisError as e:
            raise RepositoryError(f"Existence check failed: {e}") from e
        self.stats["exists_checks"] += len(match_ids)
        return {match_id for match_id, flag in zip(match_ids, flags) if flag}

    async def store_batch(self, records: List[MatchRecord]) -> StoreResult:
        """
        Store a batch in one MULTI/EXEC transaction.

        Id, body and recency entry of every record commit together or not at all.

        Raises:
            RepositoryError: If the transaction fails
        """
        result = StoreResult()
        if not records:
            return result
        try:
            pipeline = self.redis_client.pipeline(transaction=True)
            for record in records:
                pipeline.sadd(self.ids_key, record.match_id)
                pipeline.set(f"{self.body_prefix}{record.match_id}", json.dumps(record.model_dump(mode="json")), nx=True)
                pipeline.zadd(
                    self._recent_key(record.platform_prefix, record.patch), {record.match_id: record.game_creation}
                )
            replies = await pipeline.execute()
        except RedisError as e:
            raise RepositoryError(f"Failed to store match batch: {e}") from e

        # Three replies per record; SADD answers 0 for an id stored before
        for record, added in zip(records, replies[::3]):
            if added:
                result.stored_ids.append(record.match_id)
            else:
                self.stats["duplicates_skipped"] += 1

        result.stored_count = len(result.stored_ids)
        self.stats["matches_stored"] += result.stored_count
        return result

    async def sample_recent_matches(self, platform_prefix: str, patch: str, limit: int) -> List[str]:
        try:
            match_ids = await self.redis_client.zrevrange(self._recent_key(platform_prefix, patch), 0, limit - 1)
        except RedisError as e:
            raise RepositoryError(f"Sampling {platform_prefix} failed: {e}") from e
        self.stats["samples"] += 1
        return list(match_ids)

    def get_stats(self) -> Dict[str, Any]:
        return {**self.stats, "backend": "redis"}
