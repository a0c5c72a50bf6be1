"""
In-memory crawl state.

``RegionCrawlState`` is owned by exactly one region loop and is not
locked. ``KnownMatchCache`` and ``CrawlStats`` are shared by every region
loop and guard their contents with a lock.
"""

import threading
import time
from collections import deque
from typing import Any, Deque, Dict, Iterable, List, Optional, Tuple

from ..config.settings import CrawlerSettings
from ..core.bounded import BoundedSet


class RegionCrawlState:
    """Traversal frontier and visitation bookkeeping for one region"""

    def __init__(
        self,
        region: str,
        max_stack_size: int = 200,
        max_visited: int = 50_000,
        max_dry: int = 8_000,
        max_backtrack: int = 300,
        max_seed_pool: int = 30_000,
    ):
        self.region = region
        self.max_stack_size = max_stack_size
        self.frontier: List[str] = []
        self.visited: BoundedSet[str] = BoundedSet(max_visited)
        self.dry: BoundedSet[str] = BoundedSet(max_dry)
        self.backtrack: Deque[str] = deque(maxlen=max_backtrack)
        self.seed_pool: BoundedSet[str] = BoundedSet(max_seed_pool)

    @classmethod
    def from_settings(cls, region: str, settings: CrawlerSettings) -> "RegionCrawlState":
        return cls(
            region,
            max_stack_size=settings.max_stack_size,
            max_visited=settings.max_visited,
            max_dry=settings.max_dry_puuids,
            max_backtrack=settings.max_backtrack_history,
            max_seed_pool=settings.max_seed_pool,
        )

    # Frontier

    def push(self, puuid: str) -> None:
        self.frontier.append(puuid)
        self.prune_frontier()

    def push_many(self, puuids: Iterable[str]) -> None:
        """Push in order; the last one pushed is popped first."""
        self.frontier.extend(puuids)
        self.prune_frontier()

    def pop(self) -> Optional[str]:
        if not self.frontier:
            return None
        return self.frontier.pop()

    def prune_frontier(self) -> int:
        """Drop the oldest frontier entries beyond the bound."""
        excess = len(self.frontier) - self.max_stack_size
        if excess <= 0:
            return 0
        del self.frontier[:excess]
        return excess

    @property
    def frontier_full(self) -> bool:
        return len(self.frontier) >= self.max_stack_size

    # Visitation

    def is_explored(self, puuid: str) -> bool:
        return puuid in self.visited or puuid in self.dry

    def mark_visited(self, puuid: str) -> None:
        for evicted in self.visited.add(puuid):
            self.dry.discard(evicted)

    def mark_dry(self, puuid: str) -> None:
        self.mark_visited(puuid)
        self.dry.add(puuid)

    def mark_productive(self, puuid: str) -> None:
        self.mark_visited(puuid)
        self.dry.discard(puuid)
        if puuid in self.backtrack:
            self.backtrack.remove(puuid)
        self.backtrack.append(puuid)

    def unvisit(self, puuid: str) -> None:
        self.visited.discard(puuid)
        self.dry.discard(puuid)

    def backtrack_candidates(self) -> List[str]:
        return [puuid for puuid in self.backtrack if puuid not in self.dry]

    def clear_backtrack(self) -> int:
        size = len(self.backtrack)
        self.backtrack.clear()
        return size

    # Seed pool

    def add_to_pool(self, puuids: Iterable[str]) -> None:
        self.seed_pool.update(puuids)

    def pool_candidates(self) -> List[str]:
        return [puuid for puuid in self.seed_pool if not self.is_explored(puuid)]

    # Recovery

    def evict_stale(self, dry_fraction: float, visited_fraction: float, min_size: int = 0) -> Tuple[int, int]:
        """
        Forget the oldest dry and visited players so they can be explored again.

        Sets at or below ``min_size`` are left alone.

        Returns:
            (dry evicted, visited evicted)
        """
        dry_evicted = 0
        visited_evicted = 0
        if len(self.dry) > min_size:
            dry_evicted = len(self.dry.evict_fraction(dry_fraction))
        if len(self.visited) > min_size:
            evicted = self.visited.evict_fraction(visited_fraction)
            for puuid in evicted:
                self.dry.discard(puuid)
            visited_evicted = len(evicted)
        return dry_evicted, visited_evicted

    def requeue_from_pool(self, count: int) -> int:
        """Push up to ``count`` unexplored pool players onto the frontier."""
        seeds = self.pool_candidates()[:count]
        self.push_many(seeds)
        return len(seeds)

    def reset_exploration(self) -> None:
        """Forget visited and dry, keeping the frontier, backtrack and pool."""
        self.visited.clear()
        self.dry.clear()

    def summary(self) -> Dict[str, Any]:
        visited = len(self.visited)
        dry = len(self.dry)
        productive = (visited - dry) / visited * 100 if visited else 0.0
        return {
            "region": self.region,
            "frontier": len(self.frontier),
            "visited": visited,
            "dry": dry,
            "backtrack": len(self.backtrack),
            "seed_pool": len(self.seed_pool),
            "productive_percent": round(productive, 1),
        }


class KnownMatchCache:
    """Bounded, lock-guarded set of match ids known to be stored"""

    def __init__(self, maxsize: int = 100_000):
        self._ids: BoundedSet[str] = BoundedSet(maxsize)
        self._lock = threading.Lock()

    def __contains__(self, match_id: object) -> bool:
        with self._lock:
            return match_id in self._ids

    def __len__(self) -> int:
        with self._lock:
            return len(self._ids)

    @property
    def maxsize(self) -> int:
        return self._ids.maxsize

    def filter_unknown(self, match_ids: Iterable[str]) -> List[str]:
        """Ids not in the cache, in input order, without duplicates."""
        with self._lock:
            seen = set()
            unknown = []
            for match_id in match_ids:
                if match_id in self._ids or match_id in seen:
                    continue
                seen.add(match_id)
                unknown.append(match_id)
            return unknown

    def add_many(self, match_ids: Iterable[str]) -> None:
        with self._lock:
            self._ids.update(match_ids)

    def discard_many(self, match_ids: Iterable[str]) -> None:
        with self._lock:
            for match_id in match_ids:
                self._ids.discard(match_id)

    def snapshot(self) -> List[str]:
        """Most recent ids, oldest first"""
        with self._lock:
            return list(self._ids)

    def restore(self, match_ids: Iterable[str]) -> None:
        with self._lock:
            self._ids.clear()
            self._ids.update(match_ids)


class CrawlStats(dict[str, Any]):
    """Aggregate counters shared by all region loops"""

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        super().__init__(
            {
                "started_at": clock(),
                "matches_stored": 0,
                "players_crawled": 0,
                "players_dry": 0,
                "crawl_errors": 0,
                "rate_limited": 0,
                "skipped_old_patch": 0,
                "stored_by_region": {},
            }
        )

    def record_crawl(self, region: str, stored: int, is_dry: bool, rate_limited: bool, skipped: int) -> None:
        with self._lock:
            self["players_crawled"] += 1
            self["matches_stored"] += stored
            self["skipped_old_patch"] += skipped
            if is_dry:
                self["players_dry"] += 1
            if rate_limited:
                self["rate_limited"] += 1
            by_region = self["stored_by_region"]
            by_region[region] = by_region.get(region, 0) + stored

    def record_error(self) -> None:
        with self._lock:
            self["crawl_errors"] += 1

    def region_total(self, region: str) -> int:
        with self._lock:
            return self["stored_by_region"].get(region, 0)

    def get_summary(self) -> Dict[str, Any]:
        """Counters plus per-minute rates for reporting"""
        with self._lock:
            runtime = max(self._clock() - self["started_at"], 1e-9)
            minutes = runtime / 60
            return {
                "runtime_seconds": runtime,
                "matches_stored": self["matches_stored"],
                "matches_per_minute": round(self["matches_stored"] / minutes, 2),
                "players_crawled": self["players_crawled"],
                "players_dry": self["players_dry"],
                "crawl_errors": self["crawl_errors"],
                "rate_limited": self["rate_limited"],
                "skipped_old_patch": self["skipped_old_patch"],
                "stored_by_region": {
                    region: {"matches": count, "per_minute": round(count / minutes, 2)}
                    for region, count in self["stored_by_region"].items()
                },
            }
