"""Shared helpers: logging, retry and shutdown-aware sleeping."""

from .logging import RegionLogger, get_crawler_logger, setup_crawler_logger
from .retry import NETWORK_RETRY_CONFIG, RetryConfig, RetryError, retry_with_config
from .timing import format_duration, sleep_or_shutdown

__all__ = [
    "RegionLogger",
    "get_crawler_logger",
    "setup_crawler_logger",
    "NETWORK_RETRY_CONFIG",
    "RetryConfig",
    "RetryError",
    "retry_with_config",
    "format_duration",
    "sleep_or_shutdown",
]
