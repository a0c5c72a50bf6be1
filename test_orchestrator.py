"""Tests for startup seeding, checkpointing and shutdown of the orchestrator."""

import asyncio

import pytest

from conftest import FakeStatsBuffer
from match_crawler.core.exceptions import AuthenticationError, ConfigurationError, MatchSourceError
from match_crawler.core.types import CrawlerStatus
from match_crawler.state.checkpoint import CheckpointManager, FileCheckpointStore
from match_crawler.worker.orchestrator import CrawlOrchestrator


@pytest.fixture
def two_region_settings(settings):
    return settings.model_copy(update={"regions": ["europe", "asia"]})


def make_orchestrator(settings, source, repository, limiter, rng, **kwargs):
    checkpoints = CheckpointManager(FileCheckpointStore(settings.state_dir), settings)
    return CrawlOrchestrator(settings, source, repository, limiter, checkpoints, rng=rng, **kwargs)


async def test_regions_seeded_from_default_players(two_region_settings, source, repository, limiter, rng):
    """Each idle region is seeded with its default player."""
    source.players[("TwTv Yikesu0", "Yikes")] = "EU-SEED"
    source.players[("DK Sharvel", "KR1")] = "KR-SEED"
    orchestrator = make_orchestrator(two_region_settings, source, repository, limiter, rng)

    restored = await orchestrator.initialize()

    assert restored == []
    assert orchestrator.states["europe"].frontier == ["EU-SEED"]
    assert orchestrator.states["asia"].frontier == ["KR-SEED"]
    assert "EU-SEED" in orchestrator.states["europe"].seed_pool
    assert limiter.waits == ["europe", "asia"]


async def test_one_missing_seed_does_not_stop_startup(two_region_settings, source, repository, limiter, rng):
    """A failed lookup leaves only that region unseeded."""
    source.players[("TwTv Yikesu0", "Yikes")] = "EU-SEED"
    source.lookup_errors[("DK Sharvel", "KR1")] = MatchSourceError("boom")
    orchestrator = make_orchestrator(two_region_settings, source, repository, limiter, rng)

    await orchestrator.initialize()

    assert orchestrator.states["europe"].frontier == ["EU-SEED"]
    assert orchestrator.states["asia"].frontier == []


async def test_no_seeds_anywhere_is_a_configuration_error(two_region_settings, source, repository, limiter, rng):
    """Startup fails when no region has anything to crawl."""
    orchestrator = make_orchestrator(two_region_settings, source, repository, limiter, rng)

    with pytest.raises(ConfigurationError):
        await orchestrator.initialize()

    assert orchestrator.status == CrawlerStatus.ERROR


async def test_rejected_api_key_during_seeding(two_region_settings, source, repository, limiter, rng):
    """An invalid API key is reported as a configuration problem."""
    source.lookup_errors[("TwTv Yikesu0", "Yikes")] = AuthenticationError("forbidden", 403)
    orchestrator = make_orchestrator(two_region_settings, source, repository, limiter, rng)

    with pytest.raises(ConfigurationError):
        await orchestrator.initialize()


async def test_interactive_seed_prompt(two_region_settings, source, repository, limiter, rng):
    """A Riot ID typed at the prompt replaces the default seed."""
    source.players[("Custom", "EUW")] = "CUSTOM"
    source.players[("DK Sharvel", "KR1")] = "KR-SEED"
    answers = iter(["Custom#EUW", ""])
    orchestrator = make_orchestrator(
        two_region_settings, source, repository, limiter, rng, input_fn=lambda prompt: next(answers)
    )

    await orchestrator.initialize(interactive=True)

    assert orchestrator.states["europe"].frontier == ["CUSTOM"]
    assert orchestrator.states["asia"].frontier == ["KR-SEED"]


async def test_invalid_prompt_answer_falls_back_to_default(two_region_settings, source, repository, limiter, rng):
    """A malformed Riot ID keeps the default seed."""
    source.players[("TwTv Yikesu0", "Yikes")] = "EU-SEED"
    orchestrator = make_orchestrator(
        two_region_settings.model_copy(update={"regions": ["europe"]}),
        source,
        repository,
        limiter,
        rng,
        input_fn=lambda prompt: "no-tag-here",
    )

    await orchestrator.initialize(interactive=True)

    assert orchestrator.states["europe"].frontier == ["EU-SEED"]


async def test_restart_resumes_from_checkpoint(two_region_settings, source, repository, limiter, rng):
    """Restored regions are not seeded again."""
    first = make_orchestrator(two_region_settings, source, repository, limiter, rng)
    first.states["europe"].push_many(["A", "B"])
    first.states["europe"].mark_visited("V")
    first.states["asia"].add_to_pool(["K"])
    first.known_matches.add_many(["EUW1_1"])
    assert first.save_checkpoint()

    second = make_orchestrator(two_region_settings, source, repository, limiter, rng)
    restored = await second.initialize()

    assert sorted(restored) == ["asia", "europe"]
    assert second.states["europe"].frontier == ["A", "B"]
    assert "V" in second.states["europe"].visited
    assert "EUW1_1" in second.known_matches
    assert limiter.waits == []


async def test_reset_ignores_checkpoint(two_region_settings, source, repository, limiter, rng):
    """With reset the saved state is ignored and regions are seeded."""
    first = make_orchestrator(two_region_settings, source, repository, limiter, rng)
    first.states["europe"].push_many(["A", "B"])
    first.save_checkpoint()

    source.players[("TwTv Yikesu0", "Yikes")] = "EU-SEED"
    second = make_orchestrator(two_region_settings, source, repository, limiter, rng)
    await second.initialize(reset=True)

    assert second.states["europe"].frontier == ["EU-SEED"]


async def test_report_once_saves_checkpoint(two_region_settings, source, repository, limiter, rng):
    """Each report writes a checkpoint and returns the summary."""
    orchestrator = make_orchestrator(two_region_settings, source, repository, limiter, rng)
    orchestrator.states["europe"].push("A")

    summary = await orchestrator.report_once()

    assert summary["regions"]["europe"]["frontier"] == 1
    assert (two_region_settings.state_dir / "crawl_state.json").exists()
    assert (two_region_settings.state_dir / "match_cache.json").exists()


async def test_shutdown_flushes_and_saves(two_region_settings, source, repository, limiter, rng):
    """Shutdown flushes pending stats and writes the final checkpoint."""
    stats_buffer = FakeStatsBuffer(pending=3)
    orchestrator = make_orchestrator(
        two_region_settings, source, repository, limiter, rng, stats_buffer=stats_buffer
    )

    await orchestrator.shutdown()

    assert orchestrator.status == CrawlerStatus.STOPPED
    assert stats_buffer.flushes == 1
    assert (two_region_settings.state_dir / "crawl_state.json").exists()


async def test_run_until_shutdown(two_region_settings, source, repository, limiter, rng, make_match):
    """Region loops crawl until shutdown is requested."""
    run_settings = two_region_settings.model_copy(update={"stale_cooldown_seconds": 30.0})
    source.players[("TwTv Yikesu0", "Yikes")] = "EU-SEED"
    source.players[("DK Sharvel", "KR1")] = "KR-SEED"
    source.match_lists["EU-SEED"] = ["EUW1_1"]
    source.matches["EUW1_1"] = make_match("EUW1_1", ["EU-SEED", "EU-2"])
    orchestrator = make_orchestrator(run_settings, source, repository, limiter, rng)
    await orchestrator.initialize()

    asyncio.get_running_loop().call_later(0.1, orchestrator.request_shutdown)
    await asyncio.wait_for(orchestrator.run(), timeout=5)

    assert orchestrator.status == CrawlerStatus.STOPPED
    assert "EUW1_1" in repository.stored
    assert "EU-SEED" in source.listed
    assert orchestrator.get_summary()["matches_stored"] == 1
