"""Shared fixtures and in-process fakes for the crawler tests."""

import asyncio
import random
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest

from match_crawler.config.settings import CrawlerSettings, reset_settings_cache
from match_crawler.core.exceptions import RepositoryError
from match_crawler.core.patch import extract_patch
from match_crawler.core.types import MatchRecord, StoreResult
from match_crawler.state.models import CrawlStats, KnownMatchCache, RegionCrawlState


def build_match(match_id: str, participants: List[str], game_version: str = "26.1.612.1234", created: int = 0):
    return MatchRecord(
        match_id=match_id,
        patch=extract_patch(game_version),
        game_version=game_version,
        duration_seconds=1200,
        game_creation=created,
        participants=tuple(participants),
    )


class FakeMatchSource:
    def __init__(self):
        self.match_lists: Dict[str, List[str]] = {}
        self.matches: Dict[str, MatchRecord] = {}
        self.fetch_errors: Dict[str, Exception] = {}
        self.list_errors: Dict[str, Exception] = {}
        self.players: Dict[Tuple[str, str], str] = {}
        self.lookup_errors: Dict[Tuple[str, str], Exception] = {}
        self.fetched: List[str] = []
        self.listed: List[str] = []

    async def list_recent_matches(self, puuid, region, max_count, min_timestamp):
        self.listed.append(puuid)
        if puuid in self.list_errors:
            raise self.list_errors[puuid]
        return list(self.match_lists.get(puuid, []))[:max_count]

    async def fetch_match(self, match_id, region):
        self.fetched.append(match_id)
        if match_id in self.fetch_errors:
            raise self.fetch_errors[match_id]
        return self.matches[match_id]

    async def lookup_player(self, game_name, tag, platform):
        if (game_name, tag) in self.lookup_errors:
            raise self.lookup_errors[(game_name, tag)]
        return self.players.get((game_name, tag))


class FakeRepository:
    def __init__(self):
        self.stored: Dict[str, MatchRecord] = {}
        self.exists_calls: List[List[str]] = []
        self.store_calls = 0
        self.fail_store = False
        self.samples: Dict[Tuple[str, str], List[str]] = {}

    async def exists_batch(self, match_ids):
        self.exists_calls.append(list(match_ids))
        return {match_id for match_id in match_ids if match_id in self.stored}

    async def store_batch(self, records):
        self.store_calls += 1
        if self.fail_store:
            raise RepositoryError("disk full")
        result = StoreResult()
        for record in records:
            if record.match_id in self.stored:
                continue
            self.stored[record.match_id] = record
            result.stored_ids.append(record.match_id)
        result.stored_count = len(result.stored_ids)
        return result

    async def sample_recent_matches(self, platform_prefix, patch, limit):
        return list(self.samples.get((platform_prefix, patch), []))[:limit]


class FakeRateLimiter:
    def __init__(self):
        self.waits: List[str] = []
        self.rejections: List[Tuple[str, Optional[float]]] = []

    async def wait_for_slot(self, region):
        self.waits.append(region)

    async def record_rejection(self, region, retry_after=None):
        self.rejections.append((region, retry_after))

    def get_stats(self):
        return {"waits": len(self.waits), "rejections": len(self.rejections)}


class FakeStatsBuffer:
    def __init__(self, pending: int = 0):
        self.pending = pending
        self.flushes = 0
        self.release: Optional[asyncio.Event] = None

    def pending_count(self):
        return self.pending

    async def flush(self):
        if self.release is not None:
            await self.release.wait()
        self.flushes += 1
        self.pending = 0


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def _clear_settings_cache(monkeypatch):
    monkeypatch.delenv("CRAWLER_ENVIRONMENT", raising=False)
    reset_settings_cache()
    yield
    reset_settings_cache()


@pytest.fixture
def settings(tmp_path: Path) -> CrawlerSettings:
    return CrawlerSettings(
        riot_api_key="RGAPI-test",
        accepted_patches=["26.1"],
        batch_delay_seconds=0.0,
        stale_cooldown_seconds=0.0,
        shutdown_grace_seconds=1.0,
        report_interval_seconds=3600.0,
        state_dir=tmp_path / "state",
        match_store_dir=tmp_path / "matches",
        interactive_seeding=False,
    )


@pytest.fixture
def rng() -> random.Random:
    return random.Random(42)


@pytest.fixture
def source() -> FakeMatchSource:
    return FakeMatchSource()


@pytest.fixture
def repository() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def limiter() -> FakeRateLimiter:
    return FakeRateLimiter()


@pytest.fixture
def known_matches() -> KnownMatchCache:
    return KnownMatchCache(1000)


@pytest.fixture
def crawl_stats() -> CrawlStats:
    return CrawlStats()


@pytest.fixture
def region_state(settings) -> RegionCrawlState:
    return RegionCrawlState.from_settings("europe", settings)


@pytest.fixture
def make_match():
    return build_match


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def stats_buffer() -> FakeStatsBuffer:
    return FakeStatsBuffer()
