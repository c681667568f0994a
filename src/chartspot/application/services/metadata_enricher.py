"""Metadata enricher - one chart row in, one iTunes track out.

Hey future me - the retry rules here are deliberate, don't "simplify" them:

    2xx            -> decode, first result or NoResults
    4xx            -> DEFINITIVE. Decode whatever came back; first result or
                      NoResults. Never retried - asking again won't change a 404.
    5xx / transport-> TRANSIENT. Sleep backoff_base * 2**(attempt-1) and retry,
                      up to max_attempts total. Then EnrichmentNetworkError
                      chained to the last cause.
    decode failure -> NOT transient (iTunes sent HTML or garbage). Fail now.

Cache first: a fresh MetadataLookupCache hit means ZERO network calls.
Successful results are written to the cache before returning.
"""

import asyncio
import logging

import httpx
from pydantic import ValidationError

from chartspot.application.cache.metadata_cache import MetadataLookupCache
from chartspot.domain.dtos import ChartEntry
from chartspot.domain.exceptions import (
    EnrichmentNetworkError,
    EnrichmentNoResultsError,
)
from chartspot.infrastructure.integrations.itunes_client import ITunesClient
from chartspot.infrastructure.integrations.itunes_models import (
    ITunesSearchResponse,
    TrackMetadata,
)

logger = logging.getLogger(__name__)


class MetadataEnricher:
    """Looks up iTunes metadata for chart entries with caching and retries."""

    def __init__(
        self,
        client: ITunesClient,
        cache: MetadataLookupCache,
        max_attempts: int = 3,
        backoff_base: float = 0.5,
    ) -> None:
        self.client = client
        self.cache = cache
        self.max_attempts = max(1, max_attempts)
        self.backoff_base = backoff_base

    def backoff_delay(self, attempt: int) -> float:
        """Delay after a failed attempt (1-based): 0.5s, 1s, 2s, ..."""
        return self.backoff_base * (2 ** (attempt - 1))

    async def enrich(self, entry: ChartEntry) -> TrackMetadata:
        """Return metadata for entry.

        Raises:
            EnrichmentNoResultsError: The lookup definitively found nothing
            EnrichmentNetworkError: Retries exhausted or undecodable response
        """
        cached = await self.cache.get_track(entry.title, entry.artist)
        if cached is not None:
            logger.debug("Metadata cache HIT for #%d %s", entry.rank, entry.title)
            return cached

        last_error: Exception | None = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                response = await self.client.search_track(entry.title, entry.artist)
            except httpx.TransportError as e:
                last_error = e
                logger.info(
                    "Lookup transport error for #%d (attempt %d/%d): %s",
                    entry.rank,
                    attempt,
                    self.max_attempts,
                    e,
                )
            else:
                if response.is_server_error:
                    try:
                        response.raise_for_status()
                    except httpx.HTTPStatusError as e:
                        last_error = e
                    logger.info(
                        "Lookup HTTP %d for #%d (attempt %d/%d)",
                        response.status_code,
                        entry.rank,
                        attempt,
                        self.max_attempts,
                    )
                else:
                    # 2xx and 4xx both end here, neither is retried
                    track = self._decode(entry, response, attempt)
                    await self.cache.set_track(entry.title, entry.artist, track)
                    return track

            if attempt < self.max_attempts:
                await asyncio.sleep(self.backoff_delay(attempt))

        raise EnrichmentNetworkError(
            entry.title,
            entry.artist,
            attempts=self.max_attempts,
            reason=str(last_error) if last_error else "",
        ) from last_error

    def _decode(
        self, entry: ChartEntry, response: httpx.Response, attempt: int
    ) -> TrackMetadata:
        try:
            parsed = ITunesSearchResponse.model_validate_json(response.content)
        except ValidationError as e:
            raise EnrichmentNetworkError(
                entry.title,
                entry.artist,
                attempts=attempt,
                reason=f"undecodable response (HTTP {response.status_code})",
            ) from e

        track = parsed.first()
        if track is None:
            if response.is_client_error:
                logger.info(
                    "Lookup HTTP %d for #%d with no results",
                    response.status_code,
                    entry.rank,
                )
            raise EnrichmentNoResultsError(entry.title, entry.artist)
        return track
