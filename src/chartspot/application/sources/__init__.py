"""Chart sources - local file discovery and remote download."""

from chartspot.application.sources.chart_source import (
    ChartSource,
    ChartSourceProvider,
    LocalSource,
    RemoteSource,
    candidate_paths,
    decode_entries,
)

__all__ = [
    "ChartSource",
    "ChartSourceProvider",
    "LocalSource",
    "RemoteSource",
    "candidate_paths",
    "decode_entries",
]
