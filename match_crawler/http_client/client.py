"""
HTTP client for the Riot match API.

Lists a player's recent match ids, fetches match bodies and resolves
Riot IDs to PUUIDs. Transient failures (5xx, connection errors) are retried
with exponential backoff; 429 responses are surfaced immediately so the
caller can yield to the rate limiter.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Protocol
from urllib.parse import quote

import aiohttp
from aiohttp import ClientError, ClientTimeout, TCPConnector

from ..config.settings import CrawlerSettings
from ..core.exceptions import AuthenticationError, MatchSourceError, RateLimitedError, TransientHTTPError
from ..core.regions import account_routing_for_platform
from ..core.types import MatchRecord
from ..utils.retry import NETWORK_RETRY_CONFIG, RetryConfig, RetryError, retry_with_config

logger = logging.getLogger(__name__)

API_HOST_TEMPLATE = "https://{routing}.api.riotgames.com"
MAX_MATCH_LIST_COUNT = 100


class MatchSource(Protocol):
    async def list_recent_matches(
        self, puuid: str, region: str, max_count: int, min_timestamp: float
    ) -> List[str]: ...

    async def fetch_match(self, match_id: str, region: str) -> MatchRecord: ...

    async def lookup_player(self, game_name: str, tag: str, platform: str) -> Optional[str]: ...


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class RiotMatchSource:
    """
    aiohttp client for match-v5 and account-v1.

    The session is created lazily and recreated every 30 minutes. A session
    passed in by the caller is used as-is and never closed here.
    """

    def __init__(
        self,
        settings: CrawlerSettings,
        session: Optional[aiohttp.ClientSession] = None,
        retry_config: RetryConfig = NETWORK_RETRY_CONFIG,
    ):
        self.settings = settings
        self.retry_config = retry_config
        self._session = session
        self._owns_session = session is None
        self._session_created_at = time.time()

        self.stats = {
            "requests_made": 0,
            "requests_successful": 0,
            "requests_failed": 0,
            "rate_limit_hits": 0,
            "not_found": 0,
            "total_response_time": 0.0,
        }

    async def close(self) -> None:
        if self._session and self._owns_session:
            await self._session.close()
            self._session = None
        logger.info("Match source closed")

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if not self._owns_session:
            assert self._session is not None
            return self._session

        if self._session is None or time.time() - self._session_created_at > 1800:
            if self._session:
                await self._session.close()

            connector = TCPConnector(
                limit=20,
                limit_per_host=10,
                ttl_dns_cache=300,
                use_dns_cache=True,
                keepalive_timeout=30,
                enable_cleanup_closed=True,
            )
            timeout = ClientTimeout(
                total=self.settings.request_timeout,
                connect=10,
                sock_read=max(self.settings.request_timeout - 5, 1),
            )
            headers = {
                "X-Riot-Token": self.settings.riot_api_key or "",
                "Accept": "application/json",
            }
            self._session = aiohttp.ClientSession(
                connector=connector, timeout=timeout, headers=headers, raise_for_status=False
            )
            self._session_created_at = time.time()
            logger.debug("Created new HTTP session")

        return self._session

    async def _request_once(self, url: str, params: Optional[Dict[str, Any]]) -> Optional[Any]:
        session = await self._ensure_session()
        self.stats["requests_made"] += 1
        start_time = time.time()
        try:
            async with session.get(url, params=params) as response:
                status = response.status
                if status == 200:
                    try:
                        body = await response.json(content_type=None)
                    except ValueError as e:
                        raise MatchSourceError(f"Malformed JSON body from {url}: {e}", status) from e
                    self.stats["requests_successful"] += 1
                    return body
                if status == 429:
                    self.stats["rate_limit_hits"] += 1
                    raise RateLimitedError(
                        f"Rate limited on {url}", retry_after=_parse_retry_after(response.headers.get("Retry-After"))
                    )
                if status == 404:
                    self.stats["not_found"] += 1
                    return None
                if status in (401, 403):
                    raise AuthenticationError(f"API key rejected with HTTP {status}", status)
                if status >= 500:
                    raise TransientHTTPError(f"HTTP {status} from {url}", status)
                raise MatchSourceError(f"Unexpected HTTP {status} from {url}", status)
        except (ClientError, asyncio.TimeoutError) as e:
            raise TransientHTTPError(f"Request to {url} failed: {e}") from e
        finally:
            self.stats["total_response_time"] += time.time() - start_time

    async def _get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Optional[Any]:
        """
        GET a JSON document, returning None on 404.

        Raises:
            RateLimitedError: On 429, never retried here
            AuthenticationError: On 401/403
            MatchSourceError: On any other failure once retries are exhausted
        """
        try:
            return await retry_with_config(self._request_once, self.retry_config, (TransientHTTPError,), None, url, params)
        except RetryError as e:
            self.stats["requests_failed"] += 1
            raise MatchSourceError(str(e.last_exception)) from e.last_exception
        except MatchSourceError:
            self.stats["requests_failed"] += 1
            raise

    async def list_recent_matches(self, puuid: str, region: str, max_count: int, min_timestamp: float) -> List[str]:
        url = f"{API_HOST_TEMPLATE.format(routing=region)}/lol/match/v5/matches/by-puuid/{puuid}/ids"
        params = {
            "queue": self.settings.queue_id,
            "count": min(max_count, MAX_MATCH_LIST_COUNT),
            "startTime": int(min_timestamp),
        }
        body = await self._get_json(url, params)
        if body is None:
            return []
        if not isinstance(body, list):
            raise MatchSourceError(f"Unexpected match list body for {puuid[:8]}")
        return [str(match_id) for match_id in body]

    async def fetch_match(self, match_id: str, region: str) -> MatchRecord:
        url = f"{API_HOST_TEMPLATE.format(routing=region)}/lol/match/v5/matches/{match_id}"
        body = await self._get_json(url)
        if body is None:
            raise MatchSourceError(f"Match {match_id} not found", 404)
        try:
            return MatchRecord.from_riot_payload(body)
        except (KeyError, TypeError, ValueError) as e:
            raise MatchSourceError(f"Malformed match body for {match_id}: {e}") from e

    async def lookup_player(self, game_name: str, tag: str, platform: str) -> Optional[str]:
        routing = account_routing_for_platform(platform)
        url = (
            f"{API_HOST_TEMPLATE.format(routing=routing)}/riot/account/v1/accounts/by-riot-id/"
            f"{quote(game_name, safe='')}/{quote(tag, safe='')}"
        )
        body = await self._get_json(url)
        if not body:
            return None
        return body.get("puuid")

    def get_stats(self) -> Dict[str, Any]:
        stats = dict(self.stats)
        completed = max(1, stats["requests_made"])
        stats["average_response_time"] = stats["total_response_time"] / completed
        return stats
