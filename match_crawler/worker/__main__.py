"""
CLI entry point for the match crawler.

Commands:
    run     crawl every configured region until SIGINT/SIGTERM
    status  print the saved checkpoint without crawling
"""

import argparse
import asyncio
import logging
import sys
from typing import Any, Dict, Optional

from ..config.settings import CrawlerSettings, get_cached_settings, load_settings
from ..core.exceptions import ConfigurationError
from ..core.types import CrawlerStatus
from ..http_client.client import RiotMatchSource
from ..rate_limiter.limiter import create_rate_limiter
from ..rate_limiter.redis_client import create_redis_client
from ..state.checkpoint import CheckpointManager, FileCheckpointStore
from ..storage.repository import create_match_repository
from ..utils.logging import setup_crawler_logger
from .orchestrator import CrawlOrchestrator, should_prompt_for_seeds

logger = logging.getLogger(__name__)


def build_checkpoint_manager(settings: CrawlerSettings) -> CheckpointManager:
    return CheckpointManager(FileCheckpointStore(settings.state_dir), settings)


async def run_crawler(
    environment: Optional[str] = None,
    log_level: Optional[str] = None,
    reset: bool = False,
    interactive: bool = True,
    config_overrides: Optional[Dict[str, Any]] = None,
):
    """
    Run the crawler with specified configuration.

    Args:
        environment: Environment name (dev/staging/prod)
        log_level: Logging level override
        reset: Ignore the saved checkpoint and seed fresh
        interactive: Allow prompting for seed players on a terminal
        config_overrides: Configuration overrides
    """
    orchestrator = None
    source = None
    redis_client = None
    try:
        settings = load_settings(environment=environment, log_level=log_level, **(config_overrides or {}))
        setup_crawler_logger("match_crawler", level=settings.log_level, json_logs=settings.json_logs)

        if not settings.riot_api_key:
            raise ConfigurationError("CRAWLER_RIOT_API_KEY is required to crawl")

        if settings.redis_url:
            redis_client = await create_redis_client(settings.redis_url)

        source = RiotMatchSource(settings)
        orchestrator = CrawlOrchestrator(
            settings,
            source,
            create_match_repository(settings, redis_client),
            create_rate_limiter(settings, redis_client),
            build_checkpoint_manager(settings),
        )
        orchestrator.setup_signal_handlers()

        logger.info(
            f"Starting crawler with environment: {settings.environment}",
            extra={"regions": settings.regions, "patches": settings.accepted_patches},
        )
        await orchestrator.initialize(reset=reset, interactive=interactive and should_prompt_for_seeds(settings))
        await orchestrator.run()

    except (ConfigurationError, ValueError) as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)
    finally:
        if orchestrator is not None and orchestrator.status == CrawlerStatus.RUNNING:
            await orchestrator.shutdown()
        if source is not None:
            await source.close()
        if redis_client is not None:
            await redis_client.aclose()


def show_status(environment: Optional[str] = None):
    """Print the saved checkpoint of every region."""
    settings = load_settings(environment=environment) if environment else get_cached_settings()
    checkpoint = build_checkpoint_manager(settings).load_crawl_state()
    if checkpoint is None:
        print(f"No checkpoint found in {settings.state_dir}")
        sys.exit(1)

    print(f"Checkpoint saved at: {checkpoint.saved_at.isoformat()}")
    print(f"Patch: {checkpoint.last_patch} (accepting {', '.join(settings.accepted_patches)})")
    print("\nRegions:")
    for region, saved in checkpoint.regions.items():
        print(
            f"  {region}: frontier={len(saved.frontier)} visited={len(saved.visited)} "
            f"dry={len(saved.dry)} backtrack={len(saved.backtrack)} pool={len(saved.seed_pool)}"
        )


def main():
    """Main CLI entry point"""
    parser = argparse.ArgumentParser(
        description="Match discovery crawler",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m match_crawler.worker run --environment dev
  python -m match_crawler.worker run --reset --regions europe,americas
  python -m match_crawler.worker status
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser("run", help="Run the crawler")
    run_parser.add_argument("--environment", "-e", help="Environment (dev/staging/prod)")
    run_parser.add_argument(
        "--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Logging level"
    )
    run_parser.add_argument("--reset", action="store_true", help="Ignore the saved checkpoint")
    run_parser.add_argument("--regions", help="Comma separated regions to crawl")
    run_parser.add_argument("--no-interactive", action="store_true", help="Never prompt for seed players")

    status_parser = subparsers.add_parser("status", help="Show the saved checkpoint")
    status_parser.add_argument("--environment", "-e", help="Environment")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        if args.command == "run":
            config_overrides: Dict[str, Any] = {}
            if args.regions:
                config_overrides["regions"] = args.regions
            asyncio.run(
                run_crawler(
                    environment=args.environment,
                    log_level=args.log_level,
                    reset=args.reset,
                    interactive=not args.no_interactive,
                    config_overrides=config_overrides,
                )
            )
        elif args.command == "status":
            show_status(environment=args.environment)
        else:
            print(f"Unknown command: {args.command}")
            sys.exit(1)
    except KeyboardInterrupt:
        print("\nOperation cancelled by user")
        sys.exit(0)


if __name__ == "__main__":
    main()
