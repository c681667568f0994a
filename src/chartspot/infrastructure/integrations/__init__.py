"""External service integrations."""

from chartspot.infrastructure.integrations.http_pool import HttpClientPool
from chartspot.infrastructure.integrations.itunes_client import ITunesClient
from chartspot.infrastructure.integrations.itunes_models import (
    ITunesSearchResponse,
    TrackMetadata,
)

__all__ = [
    "HttpClientPool",
    "ITunesClient",
    "ITunesSearchResponse",
    "TrackMetadata",
]
