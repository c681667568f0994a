"""iTunes Search API HTTP client with rate limiting."""

import logging

import httpx

from chartspot.config.settings import ITunesSettings
from chartspot.infrastructure.integrations.http_pool import HttpClientPool
from chartspot.infrastructure.rate_limiter import RateLimiter, get_itunes_limiter

logger = logging.getLogger(__name__)


class ITunesClient:
    """Thin client for https://itunes.apple.com/search.

    Hey future me - this client ONLY does transport: build the query, respect
    the shared rate limiter, hand back the raw httpx.Response. Status code
    handling, decoding and retries are the enricher's job, because the retry
    rules (4xx definitive, 5xx transient) are business rules, not transport.
    """

    def __init__(
        self,
        settings: ITunesSettings | None = None,
        client: httpx.AsyncClient | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            settings: iTunes settings (defaults used when None)
            client: Explicit httpx client (tests); shared pool client otherwise
            rate_limiter: Explicit limiter (tests); process singleton otherwise
        """
        self.settings = settings or ITunesSettings()
        self._client = client
        self._limiter = rate_limiter or get_itunes_limiter(
            per_second=self.settings.rate_limit_per_second,
            burst=self.settings.rate_limit_burst,
        )

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = await HttpClientPool.get_client()
        return self._client

    def build_params(self, title: str, artist: str) -> dict[str, str | int]:
        """Query parameters for a single-result song search.

        httpx percent-encodes the values, so "Beyoncé & Jay-Z" is safe here.
        """
        params: dict[str, str | int] = {
            "term": f"{title} {artist}",
            "entity": "song",
            "limit": 1,
        }
        if self.settings.country:
            params["country"] = self.settings.country
        return params

    async def search_track(self, title: str, artist: str) -> httpx.Response:
        """Run one search request.

        Returns:
            The raw response, whatever its status code

        Raises:
            httpx.TransportError: Connection/timeout failures
        """
        client = await self._get_client()
        params = self.build_params(title, artist)

        async with self._limiter:
            response = await client.get(
                self.settings.search_url,
                params=params,
                timeout=self.settings.timeout,
            )

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            await self._limiter.handle_rate_limit_response(
                int(retry_after) if retry_after and retry_after.isdigit() else None
            )

        logger.debug(
            "iTunes search %r -> HTTP %d", params["term"], response.status_code
        )
        return response
