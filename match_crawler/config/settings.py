"""
Configuration management for the match crawler.

Uses pydantic-settings to load configuration from environment variables
and YAML files with proper validation.
"""

import json
import os
import re
from pathlib import Path
from typing import Annotated, Any, Dict, List, Optional, Union

import yaml
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from ..core.regions import DEFAULT_REGION_PREFIXES
from ..core.types import SeedSpec

DEFAULT_SEEDS: List[Dict[str, str]] = [
    {"region": "europe", "platform": "euw1", "riot_id": "TwTv Yikesu0#Yikes"},
    {"region": "americas", "platform": "na1", "riot_id": "Usni#Boba"},
    {"region": "asia", "platform": "kr", "riot_id": "DK Sharvel#KR1"},
    {"region": "sea", "platform": "sg2", "riot_id": "Miss Lys#Lys"},
]


class CrawlerSettings(BaseSettings):
    """
    Main settings class that loads configuration from environment variables
    and configuration files.
    """

    model_config = SettingsConfigDict(
        env_prefix="CRAWLER_", env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    # Environment
    environment: str = Field("dev", description="Environment name (dev/devlocal/staging/prod)")

    # Riot API
    riot_api_key: Optional[str] = Field(None, description="Riot API key sent as X-Riot-Token")
    request_timeout: int = Field(30, ge=5, le=300)

    # Match selection
    accepted_patches: Annotated[List[str], NoDecode] = Field(default_factory=lambda: ["26.1"])
    queue_id: int = Field(450, description="Queue filter for match listing (450 = ARAM)")
    match_history_days: int = Field(14, ge=1, le=365)
    match_list_count: int = Field(100, ge=1, le=100)

    # Regions
    regions: Annotated[List[str], NoDecode] = Field(default_factory=lambda: ["europe", "americas", "asia", "sea"])
    region_platform_prefixes: Dict[str, List[str]] = Field(
        default_factory=lambda: {region: list(prefixes) for region, prefixes in DEFAULT_REGION_PREFIXES.items()}
    )

    # Memory bounds
    max_known_matches: int = Field(100_000, ge=1)
    max_seed_pool: int = Field(30_000, ge=1)
    max_dry_puuids: int = Field(8_000, ge=1)
    max_visited: int = Field(50_000, ge=1)
    max_backtrack_history: int = Field(300, ge=1)
    max_stack_size: int = Field(200, ge=1)

    # Batching
    throttle_percent: int = Field(100, ge=1, le=100)
    match_batch_size: Optional[int] = Field(None, ge=1, le=20, description="Overrides the throttle-derived value")
    existence_check_batch_size: int = Field(500, ge=1)
    batch_delay_seconds: float = Field(0.2, ge=0.0)

    # Backtracking and seeding
    max_consecutive_backtracks: int = Field(15, ge=1)
    backtrack_retry_attempts: int = Field(5, ge=1)
    consecutive_dry_threshold: int = Field(15, ge=1)
    backtrack_clear_min_size: int = Field(30, ge=0)
    pool_reseed_count: int = Field(15, ge=1)
    repository_sample_limit: int = Field(50, ge=1)
    repository_sample_matches: int = Field(2, ge=1)
    repository_seed_limit: int = Field(10, ge=1)

    # Stale recovery
    stale_dry_evict_fraction: float = Field(0.8)
    stale_visited_evict_fraction: float = Field(0.5)
    stale_min_set_size: int = Field(50, ge=0)
    stale_requeue_count: int = Field(15, ge=0)
    stale_cooldown_seconds: float = Field(15.0, ge=0.0)

    # Reporting and maintenance
    report_interval_seconds: float = Field(300.0, gt=0)
    stats_flush_size: int = Field(50_000, ge=1)
    stats_flush_interval_seconds: float = Field(7200.0, gt=0)
    stats_flush_cooldown_seconds: float = Field(600.0, ge=0)
    cleanup_interval_seconds: float = Field(43200.0, gt=0)
    shutdown_grace_seconds: float = Field(30.0, ge=0)

    # Persistence
    state_dir: Path = Field(Path("./crawler_state"))
    repository_backend: str = Field("local", description="local or redis")
    match_store_dir: Path = Field(Path("./crawler_state/matches"))

    # Redis Configuration
    redis_url: Optional[str] = Field(None, description="Redis connection URL (None to disable)")

    # Rate Limiting
    rate_limit_requests: int = Field(100, ge=1)
    rate_limit_window_seconds: float = Field(120.0, gt=0)

    # Seeding
    default_seeds: List[SeedSpec] = Field(default_factory=lambda: [SeedSpec(**seed) for seed in DEFAULT_SEEDS])
    interactive_seeding: bool = Field(True)

    # Logging
    log_level: str = Field("INFO", description="Logging level")
    json_logs: bool = Field(True, description="Whether to output JSON format logs")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        valid_envs = ["dev", "devlocal", "staging", "prod"]
        if v not in valid_envs:
            raise ValueError(f"Invalid environment: {v}. Must be one of {valid_envs}")
        return v

    @field_validator("repository_backend")
    @classmethod
    def validate_repository_backend(cls, v: str) -> str:
        if v not in ("local", "redis"):
            raise ValueError(f"Invalid repository backend: {v}. Must be 'local' or 'redis'")
        return v

    @field_validator("accepted_patches", "regions", mode="before")
    @classmethod
    def split_comma_list(cls, v: Union[str, List[str], None]) -> List[str]:
        """Accept either a list or a comma separated string"""
        if v is None:
            return []
        if isinstance(v, str):
            if v.strip().startswith("["):
                return json.loads(v)
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    @field_validator("accepted_patches")
    @classmethod
    def validate_accepted_patches(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("accepted_patches must contain at least one patch")
        return v

    @field_validator("region_platform_prefixes", mode="before")
    @classmethod
    def validate_region_platform_prefixes(cls, v: Union[str, dict, None]) -> Dict[str, List[str]]:
        """Parse region prefixes from JSON string or return dict"""
        if v is None or v == "":
            return {region: list(prefixes) for region, prefixes in DEFAULT_REGION_PREFIXES.items()}
        if isinstance(v, dict):
            return v
        if isinstance(v, str):
            try:
                parsed = json.loads(v)
            except json.JSONDecodeError as e:
                raise ValueError(f"Invalid JSON string for region_platform_prefixes: {e}")
            if not isinstance(parsed, dict):
                raise ValueError("JSON must be an object/dictionary")
            return parsed
        raise ValueError(f"region_platform_prefixes must be a dict or JSON string, got {type(v)}")

    @field_validator("default_seeds", mode="before")
    @classmethod
    def parse_default_seeds(cls, v: Any) -> Any:
        if isinstance(v, str):
            return json.loads(v)
        return v

    @field_validator("stale_dry_evict_fraction", "stale_visited_evict_fraction")
    @classmethod
    def validate_fraction(cls, v: float) -> float:
        if not 0.0 < v <= 1.0:
            raise ValueError(f"Eviction fraction must be in (0, 1], got {v}")
        return v

    @model_validator(mode="after")
    def validate_regions(self) -> "CrawlerSettings":
        """Every crawled region needs platform prefixes for repository sampling"""
        missing = [region for region in self.regions if region not in self.region_platform_prefixes]
        if missing:
            raise ValueError(f"No platform prefixes configured for regions: {missing}")
        if not self.regions:
            raise ValueError("At least one region must be configured")
        return self

    @property
    def fetch_concurrency(self) -> int:
        """Concurrent match fetches per sub-batch"""
        if self.match_batch_size is not None:
            return self.match_batch_size
        return 2 if self.throttle_percent <= 50 else 3

    @property
    def current_patch(self) -> str:
        """The patch recorded in checkpoints"""
        return self.accepted_patches[0]

    def prefixes_for(self, region: str) -> List[str]:
        return list(self.region_platform_prefixes.get(region, []))


# ${NAME} or ${NAME:fallback}
ENV_REFERENCE = re.compile(r"\$\{([^}:]+)(?::([^}]*))?\}")


def _expand_env_variables(obj: Any) -> Any:
    """Substitute environment references in every string of a YAML document."""
    if isinstance(obj, dict):
        return {key: _expand_env_variables(value) for key, value in obj.items()}
    if isinstance(obj, list):
        return [_expand_env_variables(item) for item in obj]
    if not isinstance(obj, str):
        return obj

    def substitute(match: "re.Match[str]") -> str:
        name, fallback = match.group(1), match.group(2)
        if fallback is None:
            return os.environ.get(name, match.group(0))
        return os.environ.get(name, fallback)

    return ENV_REFERENCE.sub(substitute, obj)


def load_config_from_yaml(file_path: Path) -> Dict[str, Any]:
    """
    Read a crawler YAML file and expand its environment references.

    Raises:
        FileNotFoundError: If the file does not exist
        yaml.YAMLError: If the file is not valid YAML
    """
    if not file_path.exists():
        raise FileNotFoundError(f"Crawler config file not found: {file_path}")

    with open(file_path, "r", encoding="utf-8") as f:
        document = yaml.safe_load(f)
    return _expand_env_variables(document or {})


def get_config_file_path(environment: str) -> Path:
    """Bundled YAML for an environment, e.g. ``config/dev.yaml``."""
    return Path(__file__).parent / f"{environment}.yaml"


def load_settings(
    environment: Optional[str] = None, config_file: Optional[Path] = None, **overrides: Any
) -> CrawlerSettings:
    """
    Build crawler settings.

    Precedence, lowest first: field defaults, ``CRAWLER_*`` environment
    variables and ``.env``, the YAML file, then non-None ``overrides``
    (the CLI flags).

    Raises:
        ValueError: If a value fails validation
        FileNotFoundError: If ``config_file`` is given but missing
    """
    environment = environment or os.getenv("CRAWLER_ENVIRONMENT", "dev")

    if config_file is not None:
        values = load_config_from_yaml(config_file)
    else:
        bundled = get_config_file_path(environment)
        values = load_config_from_yaml(bundled) if bundled.exists() else {}

    values["environment"] = environment
    values.update({key: value for key, value in overrides.items() if value is not None})
    return CrawlerSettings(**values)


_settings: Optional[CrawlerSettings] = None


def get_cached_settings() -> CrawlerSettings:
    """Settings loaded once per process."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings_cache() -> None:
    global _settings
    _settings = None
