"""Tests for crawler settings loading and validation."""

import pytest
from pydantic import ValidationError

from match_crawler.config.settings import CrawlerSettings, get_cached_settings, load_settings


def test_defaults_match_crawl_policy():
    """Defaults cover the four regions and the documented bounds."""
    settings = CrawlerSettings()

    assert settings.regions == ["europe", "americas", "asia", "sea"]
    assert settings.accepted_patches == ["26.1"]
    assert settings.queue_id == 450
    assert settings.max_stack_size == 200
    assert settings.max_known_matches == 100_000
    assert settings.region_platform_prefixes["sea"] == ["OC1", "SG2", "TW2", "VN2", "PH2", "TH2"]
    assert [seed.platform for seed in settings.default_seeds] == ["euw1", "na1", "kr", "sg2"]


def test_fetch_concurrency_follows_throttle():
    """Low throttle fetches two matches at a time, otherwise three."""
    assert CrawlerSettings(throttle_percent=50).fetch_concurrency == 2
    assert CrawlerSettings(throttle_percent=51).fetch_concurrency == 3
    assert CrawlerSettings(throttle_percent=10, match_batch_size=5).fetch_concurrency == 5


def test_comma_separated_lists_are_accepted():
    """Patches and regions may be given as comma separated strings."""
    settings = CrawlerSettings(accepted_patches="26.1, 25.24", regions="europe,asia")

    assert settings.accepted_patches == ["26.1", "25.24"]
    assert settings.current_patch == "26.1"
    assert settings.regions == ["europe", "asia"]


def test_region_prefixes_from_json_string():
    """Platform prefixes can be configured as a JSON object."""
    settings = CrawlerSettings(regions="europe", region_platform_prefixes='{"europe": ["EUW1"]}')

    assert settings.prefixes_for("europe") == ["EUW1"]


def test_regions_without_prefixes_are_rejected():
    """Every crawled region needs platform prefixes."""
    with pytest.raises(ValidationError):
        CrawlerSettings(regions="europe,moon")


@pytest.mark.parametrize(
    "overrides",
    [
        {"log_level": "LOUD"},
        {"environment": "qa"},
        {"accepted_patches": ""},
        {"stale_dry_evict_fraction": 0},
        {"stale_visited_evict_fraction": 1.5},
        {"repository_backend": "postgres"},
    ],
)
def test_invalid_values_are_rejected(overrides):
    """Invalid configuration fails validation."""
    with pytest.raises(ValidationError):
        CrawlerSettings(**overrides)


def test_log_level_is_normalized():
    """Log levels are upper-cased."""
    assert CrawlerSettings(log_level="debug").log_level == "DEBUG"


def test_environment_variables_are_read(monkeypatch):
    """CRAWLER_ prefixed variables configure the crawler."""
    monkeypatch.setenv("CRAWLER_RIOT_API_KEY", "RGAPI-env")
    monkeypatch.setenv("CRAWLER_MAX_STACK_SIZE", "50")

    settings = CrawlerSettings()

    assert settings.riot_api_key == "RGAPI-env"
    assert settings.max_stack_size == 50


def test_yaml_file_with_env_expansion(tmp_path, monkeypatch):
    """YAML values can reference environment variables with defaults."""
    monkeypatch.setenv("TEST_RIOT_KEY", "RGAPI-yaml")
    config_file = tmp_path / "crawler.yaml"
    config_file.write_text(
        "riot_api_key: ${TEST_RIOT_KEY}\nqueue_id: ${TEST_QUEUE:420}\nregions: europe\n", encoding="utf-8"
    )

    settings = load_settings(environment="dev", config_file=config_file, max_visited=10)

    assert settings.riot_api_key == "RGAPI-yaml"
    assert settings.queue_id == 420
    assert settings.regions == ["europe"]
    assert settings.max_visited == 10


def test_missing_explicit_config_file_raises(tmp_path):
    """An explicit config file must exist."""
    with pytest.raises(FileNotFoundError):
        load_settings(config_file=tmp_path / "missing.yaml")


def test_cached_settings_are_reused():
    """get_cached_settings returns the same instance until reset."""
    assert get_cached_settings() is get_cached_settings()
