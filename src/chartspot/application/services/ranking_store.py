"""Ranking store - the shared state a UI (or any consumer) renders from.

Hey future me - this is the only place that WRITES the visible ranking. Every
write goes through the SessionGate, so when two refreshes overlap the older
one can finish in any order and still never touch what the newer one shows.

Lifecycle of one refresh:

    begin token  -> is_enriching = True
    seed         -> items = fallback rows, every status PENDING      (stage "seed")
    per lookup   -> items[rank] swapped, status SUCCESS/FAILED       (stage "incremental")
    final        -> items = sorted final list, leftover PENDING -> FAILED (stage "final")
    done         -> is_enriching = False, but ONLY if still current

The token doubles as the correlation id, so all log lines of one refresh share it.
"""

import logging
from collections.abc import Sequence

from chartspot.application.services.enrichment_coordinator import (
    EnrichmentCoordinator,
    RankingConfig,
)
from chartspot.application.services.session_gate import SessionGate
from chartspot.domain.dtos import (
    ChartEntry,
    EnrichmentStatus,
    RankedItem,
    RankingUpdate,
)
from chartspot.infrastructure.observability import set_correlation_id

logger = logging.getLogger(__name__)


class RankingStore:
    """Holds the visible ranking and runs refreshes through the coordinator."""

    def __init__(
        self,
        coordinator: EnrichmentCoordinator,
        default_config: RankingConfig | None = None,
        gate: SessionGate | None = None,
    ) -> None:
        self.coordinator = coordinator
        self.default_config = default_config or RankingConfig()
        self.gate = gate or SessionGate()

        self.items: list[RankedItem] = []
        self.status_by_rank: dict[int, EnrichmentStatus] = {}
        self.is_enriching = False
        self.local_count = 0

    def status_of(self, rank: int) -> EnrichmentStatus | None:
        return self.status_by_rank.get(rank)

    async def refresh(
        self,
        config: RankingConfig | None = None,
        *,
        initial_entries: Sequence[ChartEntry] | None = None,
    ) -> bool:
        """Reload and re-enrich the ranking.

        Args:
            config: Overrides the store's default config for this refresh
            initial_entries: Skip the chart source and enrich these entries

        Returns:
            True if this refresh's final list was applied, False if a newer
            refresh superseded it
        """
        token = self.gate.begin()
        set_correlation_id(token)
        self.is_enriching = True
        logger.info("Ranking refresh started")

        def on_seed(seeded: list[RankedItem]) -> None:
            self.gate.apply(token, lambda: self._apply_seed(seeded), stage="seed")

        def on_update(update: RankingUpdate) -> None:
            self.gate.apply(
                token, lambda: self._apply_update(update), stage="incremental"
            )

        try:
            final = await self.coordinator.load_ranking(
                config or self.default_config,
                on_update=on_update,
                on_seed=on_seed,
                initial_entries=initial_entries,
            )
            applied = self.gate.apply(
                token, lambda: self._apply_final(final), stage="final"
            )
        finally:
            if self.gate.is_current(token):
                self.is_enriching = False

        if applied:
            failed = sum(
                1
                for status in self.status_by_rank.values()
                if status is EnrichmentStatus.FAILED
            )
            logger.info(
                "Ranking refresh applied: %d items, %d without metadata",
                len(self.items),
                failed,
            )
        return applied

    # =========================================================================
    # State mutations (only ever called through the gate)
    # =========================================================================

    def _apply_seed(self, seeded: list[RankedItem]) -> None:
        self.items = list(seeded)
        self.status_by_rank = {item.rank: EnrichmentStatus.PENDING for item in seeded}
        self.local_count = len(seeded)

    def _apply_update(self, update: RankingUpdate) -> None:
        # Swap by rank, never by position - tasks finish in any order
        self.items = [
            update.item if item.rank == update.rank else item for item in self.items
        ]
        self.status_by_rank[update.rank] = update.status

    def _apply_final(self, final: list[RankedItem]) -> None:
        self.items = list(final)
        self.local_count = len(final)
        statuses: dict[int, EnrichmentStatus] = {}
        for item in final:
            status = self.status_by_rank.get(item.rank, EnrichmentStatus.PENDING)
            if status is EnrichmentStatus.PENDING:
                status = EnrichmentStatus.FAILED
            statuses[item.rank] = status
        self.status_by_rank = statuses
