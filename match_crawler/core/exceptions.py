"""
Exception hierarchy for the match crawler.
"""

from typing import Optional


class CrawlerError(Exception):
    """Base exception for crawler errors"""


class MatchSourceError(CrawlerError):
    """Transient failure talking to the match source"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TransientHTTPError(MatchSourceError):
    """5xx or connection failure that is worth retrying"""


class RateLimitedError(MatchSourceError):
    """The match source rejected the request with 429"""

    def __init__(self, message: str = "Rate limited", retry_after: Optional[float] = None):
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class AuthenticationError(MatchSourceError):
    """API key rejected (401/403)"""


class RepositoryError(CrawlerError):
    """Match repository operation failed"""


class CheckpointError(CrawlerError):
    """Checkpoint could not be read or written"""


class ConfigurationError(CrawlerError):
    """Invalid configuration or no way to start crawling"""
