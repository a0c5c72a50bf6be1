"""
Match discovery crawler.

Explores the player/match graph of the Riot match API region by region,
storing matches from the accepted patch and checkpointing its traversal
state so that a crawl can run for days and survive restarts.
"""

from .utils.logging import setup_crawler_logger

__version__ = "0.1.0"
__all__ = ["setup_crawler_logger"]
