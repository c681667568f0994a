"""
Data Transfer Objects for the chart pipeline.

Hey future me - these are the "dumb data carriers" that flow from the chart
source through enrichment to whoever renders the list:

    ChartEntry (source file) -> RankedItem (seed, then enriched) -> RankingUpdate (events)

Rank is THE identity everywhere. Items are swapped by rank, never by position,
because enrichment tasks finish in any order.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


@dataclass(frozen=True, slots=True)
class ChartEntry:
    """One row of the raw chart: position plus title/artist."""

    rank: int
    title: str
    artist: str


@dataclass(frozen=True, slots=True)
class RankedItem:
    """A chart row, optionally enriched with lookup metadata.

    The optional fields stay None until enrichment succeeds. A fallback item
    (all None) is a valid, renderable row.
    """

    rank: int
    title: str
    artist: str
    artwork_url: str | None = None
    preview_url: str | None = None
    release_date: datetime | None = None
    collection_name: str | None = None

    @classmethod
    def fallback(cls, entry: ChartEntry) -> "RankedItem":
        """Minimal item used for seeding and for failed lookups."""
        return cls(rank=entry.rank, title=entry.title, artist=entry.artist)

    @property
    def is_enriched(self) -> bool:
        """True when any lookup-provided field is present."""
        return any(
            value is not None
            for value in (
                self.artwork_url,
                self.preview_url,
                self.release_date,
                self.collection_name,
            )
        )


class EnrichmentStatus(str, Enum):
    """Per-row enrichment state shown next to each item."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class RankingUpdate:
    """Incremental event emitted once per completed enrichment task."""

    rank: int
    item: RankedItem
    status: EnrichmentStatus


__all__ = [
    "ChartEntry",
    "EnrichmentStatus",
    "RankedItem",
    "RankingUpdate",
]
