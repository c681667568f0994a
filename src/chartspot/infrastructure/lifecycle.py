"""Application lifecycle: wiring at startup, cleanup at shutdown.

Hey future me - both caches MUST be process-wide singletons. Two
MetadataLookupCache instances pointing at the same file would overwrite each
other's snapshots, and two ImageCaches would each download every cover. So
everything is built once here and handed out via get_services().

Usage:
    async with lifespan() as services:
        await services.store.refresh()
        render(services.store.items)

or, for long-running hosts, build_services() at startup and shutdown() at exit.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from chartspot.application.cache.image_cache import ImageCache
from chartspot.application.cache.metadata_cache import MetadataLookupCache
from chartspot.application.services.enrichment_coordinator import (
    EnrichmentCoordinator,
    RankingConfig,
)
from chartspot.application.services.metadata_enricher import MetadataEnricher
from chartspot.application.services.ranking_store import RankingStore
from chartspot.application.sources.chart_source import ChartSourceProvider
from chartspot.config import Settings, get_settings
from chartspot.infrastructure.integrations.http_pool import HttpClientPool
from chartspot.infrastructure.integrations.itunes_client import ITunesClient
from chartspot.infrastructure.observability import configure_logging

logger = logging.getLogger(__name__)


@dataclass
class ChartspotServices:
    """Everything a host needs, built once per process."""

    settings: Settings
    metadata_cache: MetadataLookupCache
    image_cache: ImageCache
    itunes_client: ITunesClient
    enricher: MetadataEnricher
    source_provider: ChartSourceProvider
    coordinator: EnrichmentCoordinator
    store: RankingStore


_services: ChartspotServices | None = None


def build_services(
    settings: Settings | None = None, *, configure: bool = True
) -> ChartspotServices:
    """Construct the service graph.

    Args:
        settings: Settings to use (process settings when None)
        configure: Also configure logging from settings.observability
    """
    settings = settings or get_settings()

    if configure:
        configure_logging(
            log_level=settings.observability.log_level,
            json_format=settings.observability.json_format,
        )

    metadata_cache = MetadataLookupCache(
        path=settings.metadata_cache.path,
        ttl_seconds=settings.metadata_cache.ttl_seconds,
        debounce_seconds=settings.metadata_cache.debounce_seconds,
    )
    image_cache = ImageCache(
        cost_limit_bytes=settings.image_cache.cost_limit_bytes,
        max_concurrent_downloads=settings.image_cache.max_concurrent_downloads,
        slot_poll_interval=settings.image_cache.slot_poll_interval,
        download_timeout=settings.image_cache.download_timeout,
    )
    itunes_client = ITunesClient(settings.itunes)
    enricher = MetadataEnricher(
        itunes_client,
        metadata_cache,
        max_attempts=settings.itunes.max_attempts,
        backoff_base=settings.itunes.backoff_base,
    )
    source_provider = ChartSourceProvider()
    coordinator = EnrichmentCoordinator(source_provider, enricher)
    store = RankingStore(
        coordinator, default_config=RankingConfig.from_settings(settings.ranking)
    )

    logger.info(
        "Services built (cache=%s, concurrency=%d)",
        settings.metadata_cache.path,
        settings.ranking.concurrency_limit,
    )
    return ChartspotServices(
        settings=settings,
        metadata_cache=metadata_cache,
        image_cache=image_cache,
        itunes_client=itunes_client,
        enricher=enricher,
        source_provider=source_provider,
        coordinator=coordinator,
        store=store,
    )


def get_services() -> ChartspotServices:
    """Process-wide services, built on first use."""
    global _services
    if _services is None:
        _services = build_services()
    return _services


async def shutdown(services: ChartspotServices | None = None) -> None:
    """Flush and close everything. Each step runs even if an earlier one fails."""
    global _services
    services = services or _services

    if services is not None:
        try:
            await services.metadata_cache.flush()
        except Exception as e:
            logger.exception("Error flushing metadata cache: %s", e)

        try:
            await services.image_cache.aclose()
        except Exception as e:
            logger.exception("Error closing image cache: %s", e)

    try:
        await HttpClientPool.close()
    except Exception as e:
        logger.exception("Error closing HTTP client pool: %s", e)

    if services is _services:
        _services = None
    logger.info("Shutdown complete")


@asynccontextmanager
async def lifespan(
    settings: Settings | None = None,
) -> AsyncGenerator[ChartspotServices, None]:
    """Build services on enter, shut them down on exit (even on error)."""
    services = build_services(settings)
    try:
        yield services
    finally:
        await shutdown(services)
