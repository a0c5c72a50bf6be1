"""
Core types for the match crawler.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .patch import extract_patch
from .regions import platform_prefix


class CrawlerStatus(str, Enum):
    """Crawler instance status"""

    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    ERROR = "error"


class LoopPhase(str, Enum):
    """What a region loop is doing on its current iteration"""

    ACTIVE = "active"
    EMPTY = "empty"
    BACKTRACKING = "backtracking"
    SEEDING = "seeding"
    STALE_RECOVERY = "stale_recovery"


class MatchRecord(BaseModel):
    """A fetched match, immutable once built"""

    model_config = ConfigDict(frozen=True)

    match_id: str
    patch: str
    game_version: str = ""
    duration_seconds: int = 0
    game_creation: int = Field(0, description="Epoch milliseconds")
    participants: Tuple[str, ...] = ()
    payload: Optional[Dict[str, Any]] = Field(None, description="Raw API body, persisted by the repository")

    @property
    def platform_prefix(self) -> str:
        return platform_prefix(self.match_id)

    @classmethod
    def from_riot_payload(cls, payload: Dict[str, Any]) -> "MatchRecord":
        """
        Build a record from a match-v5 response body.

        Raises:
            KeyError, TypeError, ValueError: If the body is malformed
        """
        metadata = payload["metadata"]
        info = payload["info"]
        participants = metadata.get("participants") or [p["puuid"] for p in info.get("participants", [])]
        game_version = info.get("gameVersion") or ""
        return cls(
            match_id=metadata["matchId"],
            patch=extract_patch(game_version),
            game_version=game_version,
            duration_seconds=int(info.get("gameDuration") or 0),
            game_creation=int(info.get("gameCreation") or 0),
            participants=tuple(participants),
            payload=payload,
        )


class SeedSpec(BaseModel):
    """A default seed player given as ``GameName#TAG`` on a platform"""

    region: str
    platform: str
    riot_id: str

    @field_validator("riot_id")
    @classmethod
    def validate_riot_id(cls, v: str) -> str:
        if parse_riot_id(v) is None:
            raise ValueError(f"Riot ID must look like GameName#TAG, got {v!r}")
        return v.strip()

    @property
    def game_name(self) -> str:
        return parse_riot_id(self.riot_id)[0]

    @property
    def tag(self) -> str:
        return parse_riot_id(self.riot_id)[1]


def parse_riot_id(value: str) -> Optional[Tuple[str, str]]:
    """Split ``GameName#TAG`` into its parts, None when malformed."""
    if not value or "#" not in value:
        return None
    game_name, _, tag = value.strip().rpartition("#")
    if not game_name.strip() or not tag.strip():
        return None
    return game_name.strip(), tag.strip()


@dataclass
class CrawlOutcome:
    """Result of crawling one player"""

    stored_count: int = 0
    discovered: List[str] = field(default_factory=list)
    is_dry: bool = False
    rate_limited: bool = False
    skipped_old_patch: int = 0
    fetch_failures: int = 0


@dataclass
class StoreResult:
    """Result of a repository batch write"""

    stored_count: int = 0
    stored_ids: List[str] = field(default_factory=list)
