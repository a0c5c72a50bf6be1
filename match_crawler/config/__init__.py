"""Configuration loading for the match crawler."""

from .settings import CrawlerSettings, get_cached_settings, load_settings, reset_settings_cache

__all__ = ["CrawlerSettings", "get_cached_settings", "load_settings", "reset_settings_cache"]
