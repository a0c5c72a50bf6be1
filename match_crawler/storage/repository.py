"""
Match repository contract and the local file-backed implementation.

Local development stores one JSON document per match plus an index file
that records each match's platform prefix, patch and creation time.
"""

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Set

from ..config.settings import CrawlerSettings
from ..core.exceptions import RepositoryError
from ..core.types import MatchRecord, StoreResult

logger = logging.getLogger(__name__)


class MatchRepository(Protocol):
    async def exists_batch(self, match_ids: List[str]) -> Set[str]: ...

    async def store_batch(self, records: List[MatchRecord]) -> StoreResult: ...

    async def sample_recent_matches(self, platform_prefix: str, patch: str, limit: int) -> List[str]: ...


class LocalMatchRepository:
    """
    File-based match store for local development and tests.

    ``store_batch`` is idempotent: matches already in the index are skipped
    and not counted.
    """

    def __init__(self, store_dir: Path):
        self.store_dir = Path(store_dir)
        self.matches_dir = self.store_dir / "matches"
        self.index_file = self.store_dir / "index.json"
        self.matches_dir.mkdir(parents=True, exist_ok=True)

        self._lock = threading.Lock()
        self._index: Dict[str, Dict[str, Any]] = self._read_index()

        self.stats = {"exists_checks": 0, "matches_stored": 0, "duplicates_skipped": 0, "samples": 0}

        logger.info(f"Initialized local match repository at {self.store_dir} with {len(self._index)} matches")

    def _read_index(self) -> Dict[str, Dict[str, Any]]:
        if not self.index_file.exists():
            return {}
        try:
            with open(self.index_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise RepositoryError(f"Failed to read match index {self.index_file}: {e}") from e
        return data if isinstance(data, dict) else {}

    def _write_index(self) -> None:
        tmp_path = self.index_file.with_suffix(".json.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(self._index, f)
        os.replace(tmp_path, self.index_file)

    def __len__(self) -> int:
        with self._lock:
            return len(self._index)

    async def exists_batch(self, match_ids: List[str]) -> Set[str]:
        with self._lock:
            self.stats["exists_checks"] += len(match_ids)
            return {match_id for match_id in match_ids if match_id in self._index}

    async def store_batch(self, records: List[MatchRecord]) -> StoreResult:
        """
        Persist records that are not stored yet.

        Raises:
            RepositoryError: If a match file or the index cannot be written
        """
        result = StoreResult()
        with self._lock:
            try:
                for record in records:
                    if record.match_id in self._index:
                        self.stats["duplicates_skipped"] += 1
                        continue
                    with open(self.matches_dir / f"{record.match_id}.json", "w", encoding="utf-8") as f:
                        json.dump(record.model_dump(mode="json"), f)
                    self._index[record.match_id] = {
                        "prefix": record.platform_prefix,
                        "patch": record.patch,
                        "game_creation": record.game_creation,
                    }
                    result.stored_ids.append(record.match_id)

                if result.stored_ids:
                    self._write_index()
            except OSError as e:
                for match_id in result.stored_ids:
                    self._index.pop(match_id, None)
                raise RepositoryError(f"Failed to store match batch: {e}") from e

            result.stored_count = len(result.stored_ids)
            self.stats["matches_stored"] += result.stored_count
        return result

    async def sample_recent_matches(self, platform_prefix: str, patch: str, limit: int) -> List[str]:
        """Most recently created matches of a platform on a patch, newest first"""
        prefix = platform_prefix.upper()
        with self._lock:
            self.stats["samples"] += 1
            candidates = [
                (entry.get("game_creation", 0), match_id)
                for match_id, entry in self._index.items()
                if entry.get("prefix") == prefix and entry.get("patch") == patch
            ]
        candidates.sort(reverse=True)
        return [match_id for _, match_id in candidates[:limit]]

    def load_match(self, match_id: str) -> Optional[MatchRecord]:
        path = self.matches_dir / f"{match_id}.json"
        if not path.exists():
            return None
        with open(path, "r", encoding="utf-8") as f:
            return MatchRecord.model_validate(json.load(f))

    def get_stats(self) -> Dict[str, Any]:
        return {**self.stats, "backend": "local", "total_matches": len(self)}


def create_match_repository(settings: CrawlerSettings, redis_client: Optional[Any] = None) -> MatchRepository:
    """
    Raises:
        ValueError: If the redis backend is selected without a Redis client
    """
    if settings.repository_backend == "redis":
        if redis_client is None:
            raise ValueError("repository_backend 'redis' requires redis_url")
        from .redis_repository import RedisMatchRepository

        return RedisMatchRepository(redis_client)
    return LocalMatchRepository(settings.match_store_dir)


def chunked(items: List[Any], size: int) -> Iterable[List[Any]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]
