"""Tests for the ranking store and overlapping refreshes."""

import asyncio
from unittest.mock import MagicMock

import pytest

from chartspot.application.services.enrichment_coordinator import (
    EnrichmentCoordinator,
    RankingConfig,
)
from chartspot.application.services.ranking_store import RankingStore
from chartspot.application.sources.chart_source import ChartSourceProvider
from chartspot.domain.dtos import (
    ChartEntry,
    EnrichmentStatus,
    RankedItem,
    RankingUpdate,
)
from chartspot.domain.exceptions import EnrichmentNoResultsError, SourceNotFoundError
from chartspot.infrastructure.integrations.itunes_models import TrackMetadata
from chartspot.infrastructure.observability import get_correlation_id


def make_entries(count: int, prefix: str) -> list[ChartEntry]:
    return [
        ChartEntry(rank=i, title=f"{prefix}{i}", artist=f"Artist{i}")
        for i in range(1, count + 1)
    ]


class PrefixDelayEnricher:
    """Enricher whose latency depends on the title prefix."""

    def __init__(self, delays: dict[str, float], fail_ranks: set[int] | None = None) -> None:
        self.delays = delays
        self.fail_ranks = fail_ranks or set()

    async def enrich(self, entry: ChartEntry) -> TrackMetadata:
        for prefix, delay in self.delays.items():
            if entry.title.startswith(prefix):
                await asyncio.sleep(delay)
                break
        if entry.rank in self.fail_ranks:
            raise EnrichmentNoResultsError(entry.title, entry.artist)
        return TrackMetadata(track_name=entry.title, collection_name=entry.title)


def make_store(enricher: object, provider: MagicMock | None = None) -> RankingStore:
    coordinator = EnrichmentCoordinator(
        provider or MagicMock(spec=ChartSourceProvider), enricher  # type: ignore[arg-type]
    )
    return RankingStore(coordinator, default_config=RankingConfig(concurrency_limit=6))


class TestRefresh:
    """Test a single refresh."""

    async def test_refresh_applies_final_list(self) -> None:
        store = make_store(PrefixDelayEnricher({}))

        applied = await store.refresh(initial_entries=make_entries(8, "Song"))

        assert applied is True
        assert [item.rank for item in store.items] == list(range(1, 9))
        assert all(item.is_enriched for item in store.items)
        assert set(store.status_by_rank.values()) == {EnrichmentStatus.SUCCESS}
        assert store.local_count == 8
        assert store.is_enriching is False

    async def test_failed_rows_marked(self) -> None:
        store = make_store(PrefixDelayEnricher({}, fail_ranks={2, 5}))

        await store.refresh(initial_entries=make_entries(6, "Song"))

        assert store.status_of(2) is EnrichmentStatus.FAILED
        assert store.status_of(5) is EnrichmentStatus.FAILED
        assert store.status_of(1) is EnrichmentStatus.SUCCESS
        assert not store.items[1].is_enriched

    async def test_seed_visible_while_enriching(self) -> None:
        store = make_store(PrefixDelayEnricher({"Slow": 0.05}))

        task = asyncio.create_task(store.refresh(initial_entries=make_entries(10, "Slow")))
        await asyncio.sleep(0.01)

        assert store.is_enriching is True
        assert store.local_count == 10
        assert [item.title for item in store.items][:2] == ["Slow1", "Slow2"]
        assert store.status_of(10) is EnrichmentStatus.PENDING

        assert await task is True
        assert store.is_enriching is False

    async def test_source_failure_gives_empty_ranking(self) -> None:
        provider = MagicMock(spec=ChartSourceProvider)
        provider.fetch.side_effect = SourceNotFoundError("kworb_top10.json")
        store = make_store(PrefixDelayEnricher({}), provider)

        applied = await store.refresh()

        assert applied is True
        assert store.items == []
        assert store.local_count == 0
        assert store.is_enriching is False

    async def test_correlation_id_is_refresh_token(self) -> None:
        store = make_store(PrefixDelayEnricher({}))

        await store.refresh(initial_entries=make_entries(2, "Song"))

        assert get_correlation_id() == store.gate.current

    async def test_rows_without_update_become_failed(self) -> None:
        entries = make_entries(3, "Song")
        seeded = [RankedItem.fallback(entry) for entry in entries]

        async def load_ranking(config, *, on_update, on_seed, initial_entries):
            on_seed(seeded)
            on_update(
                RankingUpdate(rank=1, item=seeded[0], status=EnrichmentStatus.SUCCESS)
            )
            return seeded

        coordinator = MagicMock(spec=EnrichmentCoordinator)
        coordinator.load_ranking = load_ranking
        store = RankingStore(coordinator)

        await store.refresh()

        assert store.status_by_rank == {
            1: EnrichmentStatus.SUCCESS,
            2: EnrichmentStatus.FAILED,
            3: EnrichmentStatus.FAILED,
        }


class TestOverlappingRefreshes:
    """Test that the newest refresh always wins."""

    async def test_slow_old_refresh_cannot_overwrite_new(self) -> None:
        store = make_store(PrefixDelayEnricher({"Old": 0.05, "New": 0.0}))

        old = asyncio.create_task(store.refresh(initial_entries=make_entries(10, "Old")))
        await asyncio.sleep(0.01)
        new_applied = await store.refresh(initial_entries=make_entries(100, "New"))
        old_applied = await old

        assert new_applied is True
        assert old_applied is False
        assert len(store.items) == 100
        assert all(item.title.startswith("New") for item in store.items)
        assert store.local_count == 100
        assert set(store.status_by_rank) == set(range(1, 101))
        assert store.is_enriching is False

    async def test_stale_refresh_does_not_clear_enriching_flag(self) -> None:
        store = make_store(PrefixDelayEnricher({"Old": 0.01, "Slow": 0.05}))

        old = asyncio.create_task(store.refresh(initial_entries=make_entries(6, "Old")))
        await asyncio.sleep(0)
        new = asyncio.create_task(store.refresh(initial_entries=make_entries(6, "Slow")))

        assert await old is False
        assert store.is_enriching is True

        assert await new is True
        assert store.is_enriching is False
        assert all(item.title.startswith("Slow") for item in store.items)

    @pytest.mark.parametrize("refreshes", [3, 5])
    async def test_only_last_of_many_applies(self, refreshes: int) -> None:
        store = make_store(PrefixDelayEnricher({"Gen": 0.01}))

        tasks = [
            asyncio.create_task(
                store.refresh(initial_entries=make_entries(4, f"Gen{n}-"))
            )
            for n in range(refreshes)
        ]
        results = await asyncio.gather(*tasks)

        assert results == [False] * (refreshes - 1) + [True]
        assert all(
            item.title.startswith(f"Gen{refreshes - 1}-") for item in store.items
        )
