"""Tests for the Riot match source client."""

import pytest

from match_crawler.core.exceptions import AuthenticationError, MatchSourceError, RateLimitedError
from match_crawler.http_client.client import RiotMatchSource
from match_crawler.utils.retry import RetryConfig

NO_WAIT_RETRY = RetryConfig(max_attempts=3, base_delay=0.0, jitter=False)


class FakeResponse:
    def __init__(self, status, body=None, headers=None):
        self.status = status
        self.body = body
        self.headers = headers or {}

    async def json(self, content_type=None):
        if isinstance(self.body, Exception):
            raise self.body
        return self.body

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    def get(self, url, params=None):
        self.requests.append((url, params))
        return self.responses.pop(0)


def match_payload(match_id="EUW1_1", version="26.1.612.1234"):
    return {
        "metadata": {"matchId": match_id, "participants": ["P1", "P2"]},
        "info": {"gameVersion": version, "gameDuration": 1100, "gameCreation": 1700000000000},
    }


def make_source(settings, responses):
    session = FakeSession(responses)
    return RiotMatchSource(settings, session=session, retry_config=NO_WAIT_RETRY), session


async def test_list_recent_matches(settings):
    """Match ids are listed with queue, count and start time filters."""
    source, session = make_source(settings, [FakeResponse(200, ["EUW1_1", "EUW1_2"])])

    match_ids = await source.list_recent_matches("P1", "europe", 500, 1700000000.5)

    url, params = session.requests[0]
    assert match_ids == ["EUW1_1", "EUW1_2"]
    assert url == "https://europe.api.riotgames.com/lol/match/v5/matches/by-puuid/P1/ids"
    assert params == {"queue": 450, "count": 100, "startTime": 1700000000}


async def test_fetch_match_builds_record(settings):
    """A match body is parsed into a record with its patch."""
    source, _ = make_source(settings, [FakeResponse(200, match_payload())])

    record = await source.fetch_match("EUW1_1", "europe")

    assert record.match_id == "EUW1_1"
    assert record.patch == "26.1"
    assert record.participants == ("P1", "P2")


async def test_rate_limit_carries_retry_after(settings):
    """429 is raised immediately with the Retry-After value."""
    source, session = make_source(settings, [FakeResponse(429, headers={"Retry-After": "12"})])

    with pytest.raises(RateLimitedError) as exc_info:
        await source.fetch_match("EUW1_1", "europe")

    assert exc_info.value.retry_after == 12.0
    assert len(session.requests) == 1
    assert source.stats["rate_limit_hits"] == 1


async def test_server_errors_are_retried(settings):
    """5xx responses are retried before succeeding."""
    source, session = make_source(settings, [FakeResponse(503), FakeResponse(200, match_payload())])

    record = await source.fetch_match("EUW1_1", "europe")

    assert record.match_id == "EUW1_1"
    assert len(session.requests) == 2


async def test_exhausted_retries_raise_match_source_error(settings):
    """Persistent 5xx ends in a MatchSourceError."""
    source, session = make_source(settings, [FakeResponse(500) for _ in range(3)])

    with pytest.raises(MatchSourceError) as exc_info:
        await source.fetch_match("EUW1_1", "europe")

    assert not isinstance(exc_info.value, RateLimitedError)
    assert len(session.requests) == 3
    assert source.stats["requests_failed"] == 1


async def test_missing_match_is_an_error(settings):
    """A 404 on a match fetch is a fetch failure."""
    source, _ = make_source(settings, [FakeResponse(404)])

    with pytest.raises(MatchSourceError):
        await source.fetch_match("EUW1_1", "europe")


async def test_malformed_match_body(settings):
    """A body without metadata is rejected."""
    source, _ = make_source(settings, [FakeResponse(200, {"info": {}})])

    with pytest.raises(MatchSourceError):
        await source.fetch_match("EUW1_1", "europe")


async def test_rejected_api_key(settings):
    """401 and 403 raise AuthenticationError without retrying."""
    source, session = make_source(settings, [FakeResponse(403)])

    with pytest.raises(AuthenticationError):
        await source.list_recent_matches("P1", "europe", 10, 0)

    assert len(session.requests) == 1


async def test_lookup_player(settings):
    """Riot IDs resolve through the account routing of the platform."""
    source, session = make_source(settings, [FakeResponse(200, {"puuid": "PUUID-1"}), FakeResponse(404)])

    assert await source.lookup_player("Miss Lys", "Lys", "sg2") == "PUUID-1"
    assert await source.lookup_player("Nobody", "0000", "euw1") is None

    assert session.requests[0][0] == "https://asia.api.riotgames.com/riot/account/v1/accounts/by-riot-id/Miss%20Lys/Lys"
    assert session.requests[1][0].startswith("https://europe.api.riotgames.com/")
