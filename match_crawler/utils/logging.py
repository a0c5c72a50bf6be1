"""
Logging utilities for the match crawler.

Both structlog loggers and plain ``logging`` loggers render through one
structlog formatter, so the ``extra=`` context of module loggers ends up
in the JSON lines next to the region-bound events of the crawl loops.
"""

import logging
import sys
from typing import Any, List

import structlog

NOISY_LOGGERS = ("aiohttp", "asyncio", "urllib3")


def setup_crawler_logger(name: str, level: str = "INFO", json_logs: bool = True) -> structlog.BoundLogger:
    """
    Route stdlib and structlog output through a single stdout handler.

    Args:
        name: Logger name
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_logs: JSON lines when true, coloured console output otherwise

    Returns:
        Configured structlog logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    shared: List[Any] = [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso" if json_logs else "%Y-%m-%d %H:%M:%S"),
        structlog.processors.StackInfoRenderer(),
    ]
    if json_logs:
        render: List[Any] = [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        render = [structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=[*shared, structlog.stdlib.ExtraAdder()],
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *render],
        )
    )
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(log_level)
    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(max(log_level, logging.WARNING))

    return structlog.get_logger(name)


def get_crawler_logger(name: str) -> structlog.BoundLogger:
    """Get a structlog logger with the given name."""
    return structlog.get_logger(name)


def short_id(puuid: str) -> str:
    """Shorten a PUUID for log lines."""
    return puuid[:8]


class RegionLogger:
    """
    Logger adapter that binds the region to every message of a region loop.
    """

    def __init__(self, logger: structlog.BoundLogger, region: str):
        self.logger = logger.bind(region=region)
        self.region = region

    def log_crawl_started(self, puuid: str, frontier: int, visited: int, dry: int) -> None:
        self.logger.info("crawl_started", puuid=short_id(puuid), frontier=frontier, visited=visited, dry=dry)

    def log_matches_stored(self, stored: int, region_total: int, global_total: int) -> None:
        self.logger.info("matches_stored", stored=stored, region_total=region_total, global_total=global_total)

    def log_backtrack(self, puuid: str, candidates: int) -> None:
        self.logger.info("backtracking", puuid=short_id(puuid), candidates=candidates)

    def log_rate_limited(self, puuid: str, **kwargs: Any) -> None:
        self.logger.warning("rate_limited", puuid=short_id(puuid), **kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self.logger.info(message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self.logger.warning(message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self.logger.error(message, **kwargs)

    def debug(self, message: str, **kwargs: Any) -> None:
        self.logger.debug(message, **kwargs)
