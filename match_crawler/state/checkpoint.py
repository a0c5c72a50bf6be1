"""
Checkpoint persistence for region crawl state.

Checkpoints are JSON documents validated with pydantic. The file store
writes atomically and keeps the previous document as a backup copy.
"""

import json
import logging
import os
import shutil
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel, Field, ValidationError

from ..config.settings import CrawlerSettings
from ..core.exceptions import CheckpointError
from .models import KnownMatchCache, RegionCrawlState

logger = logging.getLogger(__name__)

CRAWL_STATE_KEY = "crawl_state"
MATCH_CACHE_KEY = "match_cache"


class RegionCheckpoint(BaseModel):
    """Bounded trailing slices of one region's state"""

    frontier: List[str] = Field(default_factory=list)
    visited: List[str] = Field(default_factory=list)
    dry: List[str] = Field(default_factory=list)
    backtrack: List[str] = Field(default_factory=list)
    seed_pool: List[str] = Field(default_factory=list)


class CrawlCheckpoint(BaseModel):
    """Saved traversal state of every region"""

    regions: Dict[str, RegionCheckpoint] = Field(default_factory=dict)
    last_patch: Optional[str] = None
    saved_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class MatchCacheCheckpoint(BaseModel):
    match_ids: List[str] = Field(default_factory=list)
    saved_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class CheckpointStore(Protocol):
    def load(self, key: str) -> Optional[Dict[str, Any]]: ...

    def save(self, key: str, data: Dict[str, Any]) -> None: ...


class FileCheckpointStore:
    """
    Stores each checkpoint key as ``<state_dir>/<key>.json``.

    Writes go to a temporary file that replaces the target, and the
    previous document is kept as ``<key>.backup.json``.
    """

    def __init__(self, state_dir: Path):
        self.state_dir = Path(state_dir)
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def path_for(self, key: str) -> Path:
        return self.state_dir / f"{key}.json"

    def backup_path_for(self, key: str) -> Path:
        return self.state_dir / f"{key}.backup.json"

    def load(self, key: str) -> Optional[Dict[str, Any]]:
        """
        Raises:
            CheckpointError: If the file exists but cannot be parsed
        """
        path = self.path_for(key)
        with self._lock:
            if not path.exists():
                return None
            try:
                with open(path, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                raise CheckpointError(f"Failed to read checkpoint {path}: {e}") from e

        if not isinstance(data, dict):
            raise CheckpointError(f"Checkpoint {path} is not a JSON object")
        return data

    def save(self, key: str, data: Dict[str, Any]) -> None:
        path = self.path_for(key)
        tmp_path = path.with_suffix(".json.tmp")
        with self._lock:
            try:
                if path.exists():
                    shutil.copy2(path, self.backup_path_for(key))
                with open(tmp_path, "w", encoding="utf-8") as f:
                    json.dump(data, f, default=str)
                os.replace(tmp_path, path)
            except OSError as e:
                raise CheckpointError(f"Failed to write checkpoint {path}: {e}") from e


def snapshot_region(state: RegionCrawlState) -> RegionCheckpoint:
    return RegionCheckpoint(
        frontier=state.frontier[-state.max_stack_size :],
        visited=state.visited.newest(state.visited.maxsize),
        dry=state.dry.newest(state.dry.maxsize),
        backtrack=list(state.backtrack),
        seed_pool=state.seed_pool.newest(state.seed_pool.maxsize),
    )


def restore_region(state: RegionCrawlState, checkpoint: RegionCheckpoint) -> None:
    """Load the saved slices into an empty state; the state's bounds still apply."""
    state.frontier = []
    state.push_many(checkpoint.frontier)
    state.visited.clear()
    state.visited.update(checkpoint.visited)
    state.dry.clear()
    state.dry.update(puuid for puuid in checkpoint.dry if puuid in state.visited)
    state.backtrack.clear()
    state.backtrack.extend(checkpoint.backtrack)
    state.seed_pool.clear()
    state.seed_pool.update(checkpoint.seed_pool)


def build_checkpoint(
    states: Dict[str, RegionCrawlState],
    current_patch: str,
    carried: Optional[Dict[str, RegionCheckpoint]] = None,
) -> CrawlCheckpoint:
    """Snapshot the crawled regions; ``carried`` keeps saved regions not crawled by this process."""
    regions = dict(carried or {})
    regions.update({region: snapshot_region(state) for region, state in states.items()})
    return CrawlCheckpoint(regions=regions, last_patch=current_patch)


def apply_checkpoint(
    checkpoint: CrawlCheckpoint, states: Dict[str, RegionCrawlState], current_patch: str
) -> List[str]:
    """
    Restore every configured region found in the checkpoint.

    If the checkpoint was saved under another patch, ``visited`` and ``dry``
    are cleared for every region.

    Returns:
        Regions restored from the checkpoint
    """
    restored = []
    for region, state in states.items():
        saved = checkpoint.regions.get(region)
        if saved is None:
            continue
        restore_region(state, saved)
        restored.append(region)

    if checkpoint.last_patch != current_patch:
        logger.info(
            f"Patch changed from {checkpoint.last_patch} to {current_patch}, resetting visited and dry sets",
            extra={"old_patch": checkpoint.last_patch, "new_patch": current_patch},
        )
        for state in states.values():
            state.reset_exploration()

    return restored


class CheckpointManager:
    """Loads and saves crawl state and the match cache through a checkpoint store"""

    def __init__(self, store: CheckpointStore, settings: CrawlerSettings):
        self.store = store
        self.settings = settings
        self.stats = {"saves": 0, "save_failures": 0, "loads": 0, "load_failures": 0}
        self.last_saved_at: Optional[datetime] = None

    def _load_model(self, key: str, model: type) -> Optional[Any]:
        try:
            data = self.store.load(key)
            if data is None:
                return None
            parsed = model.model_validate(data)
            self.stats["loads"] += 1
            return parsed
        except (CheckpointError, ValidationError) as e:
            self.stats["load_failures"] += 1
            logger.warning(f"Ignoring unreadable checkpoint '{key}': {e}", extra={"key": key})
            return None

    def load_crawl_state(self) -> Optional[CrawlCheckpoint]:
        """Saved crawl state, or None when absent or unreadable"""
        return self._load_model(CRAWL_STATE_KEY, CrawlCheckpoint)

    def load_match_cache(self) -> Optional[MatchCacheCheckpoint]:
        return self._load_model(MATCH_CACHE_KEY, MatchCacheCheckpoint)

    def restore(self, states: Dict[str, RegionCrawlState], cache: KnownMatchCache) -> List[str]:
        """
        Restore region states and the match cache.

        Returns:
            Regions that were restored
        """
        restored: List[str] = []
        checkpoint = self.load_crawl_state()
        if checkpoint is not None:
            restored = apply_checkpoint(checkpoint, states, self.settings.current_patch)

        cache_checkpoint = self.load_match_cache()
        if cache_checkpoint is not None:
            cache.restore(cache_checkpoint.match_ids[-cache.maxsize :])

        logger.info(
            f"Restored {len(restored)} regions and {len(cache)} known matches",
            extra={"regions": restored, "known_matches": len(cache)},
        )
        return restored

    def _carried_regions(self, states: Dict[str, RegionCrawlState]) -> Dict[str, RegionCheckpoint]:
        """
        Saved regions that this process does not crawl, e.g. after ``--regions``.

        Their visited and dry slices are dropped when they were saved under
        another patch.
        """
        try:
            data = self.store.load(CRAWL_STATE_KEY)
            previous = CrawlCheckpoint.model_validate(data) if data is not None else None
        except (CheckpointError, ValidationError) as e:
            logger.warning(f"Not carrying over regions from unreadable checkpoint: {e}")
            return {}
        if previous is None:
            return {}

        carried = {region: saved for region, saved in previous.regions.items() if region not in states}
        if carried and previous.last_patch != self.settings.current_patch:
            carried = {
                region: saved.model_copy(update={"visited": [], "dry": []}) for region, saved in carried.items()
            }
        return carried

    def save(self, states: Dict[str, RegionCrawlState], cache: KnownMatchCache) -> bool:
        """Save crawl state and match cache; failures are logged, never raised"""
        try:
            checkpoint = build_checkpoint(states, self.settings.current_patch, self._carried_regions(states))
            self.store.save(CRAWL_STATE_KEY, checkpoint.model_dump(mode="json"))
            match_ids = cache.snapshot()[-self.settings.max_known_matches :]
            self.store.save(MATCH_CACHE_KEY, MatchCacheCheckpoint(match_ids=match_ids).model_dump(mode="json"))
        except CheckpointError as e:
            self.stats["save_failures"] += 1
            logger.error(f"Checkpoint save failed: {e}")
            return False

        self.stats["saves"] += 1
        self.last_saved_at = checkpoint.saved_at
        logger.info(
            "Checkpoint saved",
            extra={"regions": {region: state.summary() for region, state in states.items()}},
        )
        return True

    def get_stats(self) -> Dict[str, Any]:
        return {**self.stats, "last_saved_at": self.last_saved_at.isoformat() if self.last_saved_at else None}
