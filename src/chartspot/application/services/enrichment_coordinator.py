"""Enrichment coordinator - turns a chart source into an enriched, ordered list.

Hey future me - this is the orchestration for one refresh:

    load entries (remote -> fallback local)
        ↓
    seed fallback items (callers can render right away)
        ↓
    batches of concurrency_limit entries, processed one batch after another,
    one task per entry inside an asyncio.TaskGroup
        ↓
    each finished task swaps its item in BY RANK and emits a RankingUpdate
        ↓
    return list sorted by rank

load_ranking() NEVER raises. One broken lookup becomes one fallback row, and a
missing chart file becomes an empty list. The only thing that leaves here is
data.

Batches (not a semaphore) on purpose: it keeps at most concurrency_limit lookups
in flight AND makes the progress pattern predictable (ranks 1-6, then 7-12...),
so the top of the list fills in first.
"""

import asyncio
import contextlib
import inspect
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from dataclasses import dataclass, field

from chartspot.application.services.metadata_enricher import MetadataEnricher
from chartspot.application.sources.chart_source import (
    ChartSourceProvider,
    LocalSource,
    RemoteSource,
)
from chartspot.config.settings import RankingSettings
from chartspot.domain.dtos import (
    ChartEntry,
    EnrichmentStatus,
    RankedItem,
    RankingUpdate,
)
from chartspot.domain.exceptions import (
    ConfigurationError,
    EnrichmentError,
    SourceError,
)
from chartspot.infrastructure.observability import log_operation

logger = logging.getLogger(__name__)

UpdateCallback = Callable[[RankingUpdate], Awaitable[None] | None]
SeedCallback = Callable[[list[RankedItem]], Awaitable[None] | None]


@dataclass(frozen=True)
class RankingConfig:
    """Per-call configuration for load_ranking().

    Passed explicitly instead of read from globals, so two refreshes with
    different settings can run side by side.
    """

    remote_url: str | None = None
    concurrency_limit: int = 6
    top_n: int | None = None
    artwork_size: int = 600
    local: LocalSource = field(default_factory=LocalSource)
    max_remote_bytes: int = 2_000_000
    remote_timeout: float = 12.0

    def __post_init__(self) -> None:
        if self.top_n is not None and self.top_n < 0:
            raise ConfigurationError(f"top_n must be >= 0, got {self.top_n}")

    @classmethod
    def from_settings(cls, settings: RankingSettings) -> "RankingConfig":
        return cls(
            remote_url=settings.remote_url,
            concurrency_limit=settings.concurrency_limit,
            top_n=settings.top_n,
            artwork_size=settings.artwork_size,
            local=ChartSourceProvider.local_from_settings(settings),
            max_remote_bytes=settings.max_remote_bytes,
            remote_timeout=settings.remote_timeout,
        )

    @property
    def remote(self) -> RemoteSource | None:
        if not self.remote_url:
            return None
        return RemoteSource(
            url=self.remote_url,
            max_bytes=self.max_remote_bytes,
            timeout=self.remote_timeout,
        )


async def _invoke(callback: Callable[..., object], *args: object) -> None:
    """Call a sync or async callback, logging (not raising) its errors."""
    try:
        result = callback(*args)
        if inspect.isawaitable(result):
            await result
    except Exception:
        logger.exception("Ranking callback %r failed", callback)


def seed_items(entries: Sequence[ChartEntry]) -> list[RankedItem]:
    """Fallback items in ascending rank order."""
    return [RankedItem.fallback(entry) for entry in sorted(entries, key=lambda e: e.rank)]


class EnrichmentCoordinator:
    """Bounded-concurrency fan-out of metadata lookups over a chart."""

    def __init__(
        self, source_provider: ChartSourceProvider, enricher: MetadataEnricher
    ) -> None:
        self.source_provider = source_provider
        self.enricher = enricher

    async def load_entries(self, config: RankingConfig) -> list[ChartEntry]:
        """Remote first (if configured), falling back to the local file.

        Raises:
            SourceError: The local source failed too
        """
        remote = config.remote
        if remote is not None:
            try:
                return await self.source_provider.fetch(remote)
            except SourceError as e:
                logger.warning(
                    "Remote chart unavailable, falling back to local: %s", e.message
                )

        return await self.source_provider.fetch(config.local)

    async def load_ranking(
        self,
        config: RankingConfig | None = None,
        *,
        on_update: UpdateCallback | None = None,
        on_seed: SeedCallback | None = None,
        initial_entries: Sequence[ChartEntry] | None = None,
    ) -> list[RankedItem]:
        """Load and enrich the chart.

        Args:
            config: Call configuration (defaults when None)
            on_update: Called once per finished lookup, success or failure
            on_seed: Called once with the fallback list before any lookup
            initial_entries: Skip the source and enrich these entries

        Returns:
            Items sorted by rank; empty only when no entries could be loaded
        """
        config = config or RankingConfig()

        if initial_entries is not None:
            entries = list(initial_entries)
        else:
            try:
                entries = await self.load_entries(config)
            except SourceError as e:
                logger.error("Failed to load chart: %s", e.message)
                return []

        entries.sort(key=lambda e: e.rank)
        if config.top_n is not None and len(entries) > config.top_n:
            entries = entries[: config.top_n]

        seeded = seed_items(entries)
        results: dict[int, RankedItem] = {item.rank: item for item in seeded}
        if on_seed is not None:
            await _invoke(on_seed, list(seeded))

        async with log_operation(
            logger,
            "load_ranking",
            entry_count=len(entries),
            concurrency_limit=config.concurrency_limit,
        ) as summary:
            failed = 0
            batch_size = max(1, config.concurrency_limit)
            for start in range(0, len(entries), batch_size):
                batch = entries[start : start + batch_size]
                async with asyncio.TaskGroup() as tg:
                    tasks = [
                        tg.create_task(
                            self._enrich_one(entry, config, results, on_update),
                            name=f"enrich:{entry.rank}",
                        )
                        for entry in batch
                    ]
                failed += sum(1 for task in tasks if not task.result())
            summary["failed"] = failed

        return sorted(results.values(), key=lambda item: item.rank)

    async def _enrich_one(
        self,
        entry: ChartEntry,
        config: RankingConfig,
        results: dict[int, RankedItem],
        on_update: UpdateCallback | None,
    ) -> bool:
        """Enrich one entry. Never raises; returns whether the lookup succeeded."""
        try:
            metadata = await self.enricher.enrich(entry)
        except EnrichmentError as e:
            logger.info("Using fallback for #%d: %s", entry.rank, e.message)
            item = RankedItem.fallback(entry)
            status = EnrichmentStatus.FAILED
        except Exception:
            logger.exception("Unexpected enrichment failure for #%d", entry.rank)
            item = RankedItem.fallback(entry)
            status = EnrichmentStatus.FAILED
        else:
            item = metadata.to_ranked_item(entry, config.artwork_size)
            status = EnrichmentStatus.SUCCESS

        results[entry.rank] = item
        if on_update is not None:
            await _invoke(on_update, RankingUpdate(rank=entry.rank, item=item, status=status))
        return status is EnrichmentStatus.SUCCESS

    async def stream(
        self,
        config: RankingConfig | None = None,
        *,
        initial_entries: Sequence[ChartEntry] | None = None,
    ) -> AsyncIterator[RankingUpdate]:
        """Yield RankingUpdates as lookups finish.

        The event stream is independent of the final list; use load_ranking()
        with on_update when both are needed.
        """
        queue: asyncio.Queue[RankingUpdate | None] = asyncio.Queue()

        async def run() -> None:
            try:
                await self.load_ranking(
                    config, on_update=queue.put_nowait, initial_entries=initial_entries
                )
            finally:
                queue.put_nowait(None)

        task = asyncio.create_task(run(), name="ranking-stream")
        try:
            while (update := await queue.get()) is not None:
                yield update
        finally:
            if not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
