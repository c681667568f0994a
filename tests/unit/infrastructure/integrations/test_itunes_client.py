"""Tests for the iTunes Search API client."""

from unittest.mock import AsyncMock

import httpx
import pytest

from chartspot.config.settings import ITunesSettings
from chartspot.infrastructure.integrations.itunes_client import ITunesClient
from chartspot.infrastructure.rate_limiter import RateLimiter


@pytest.fixture
def limiter() -> RateLimiter:
    """Limiter that never makes a test wait."""
    return RateLimiter.for_itunes(per_second=1000.0, burst=1000)


class TestBuildParams:
    """Test query construction."""

    def test_single_song_query(self, limiter: RateLimiter) -> None:
        client = ITunesClient(rate_limiter=limiter)
        params = client.build_params("Flowers", "Miley Cyrus")
        assert params == {"term": "Flowers Miley Cyrus", "entity": "song", "limit": 1}

    def test_country_added_when_configured(self, limiter: RateLimiter) -> None:
        client = ITunesClient(ITunesSettings(country="de"), rate_limiter=limiter)
        assert client.build_params("a", "b")["country"] == "de"


class TestSearchTrack:
    """Test the HTTP call."""

    async def test_sends_encoded_query(self, limiter: RateLimiter) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"resultCount": 0, "results": []})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = ITunesClient(client=http, rate_limiter=limiter)
            response = await client.search_track("Calm Down", "Rema & Selena Gomez")

        assert response.status_code == 200
        assert len(seen) == 1
        url = seen[0].url
        assert url.host == "itunes.apple.com"
        assert url.params["term"] == "Calm Down Rema & Selena Gomez"
        assert url.params["entity"] == "song"
        assert url.params["limit"] == "1"

    async def test_returns_error_responses_unchanged(self, limiter: RateLimiter) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = ITunesClient(client=http, rate_limiter=limiter)
            response = await client.search_track("a", "b")

        assert response.status_code == 503

    async def test_429_triggers_limiter_backoff(self, limiter: RateLimiter) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, headers={"Retry-After": "2"})

        backoff = AsyncMock(return_value=2.0)
        limiter.handle_rate_limit_response = backoff  # type: ignore[method-assign]

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = ITunesClient(client=http, rate_limiter=limiter)
            response = await client.search_track("a", "b")

        assert response.status_code == 429
        backoff.assert_awaited_once_with(2)

    async def test_transport_errors_propagate(self, limiter: RateLimiter) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = ITunesClient(client=http, rate_limiter=limiter)
            with pytest.raises(httpx.ConnectError):
                await client.search_track("a", "b")
