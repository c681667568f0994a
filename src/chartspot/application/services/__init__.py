"""Application services - enrichment, refresh orchestration and shared state."""

from chartspot.application.services.enrichment_coordinator import (
    EnrichmentCoordinator,
    RankingConfig,
    seed_items,
)
from chartspot.application.services.metadata_enricher import MetadataEnricher
from chartspot.application.services.ranking_store import RankingStore
from chartspot.application.services.session_gate import SessionGate

__all__ = [
    "EnrichmentCoordinator",
    "MetadataEnricher",
    "RankingConfig",
    "RankingStore",
    "SessionGate",
    "seed_items",
]
