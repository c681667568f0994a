"""Wire models for the iTunes Search API.

Hey future me - iTunes answers with camelCase JSON and a LOT of fields we don't
care about. These models read the handful we need and ignore the rest
(extra="ignore"). Field aliases keep the Python side snake_case while the
persisted metadata cache keeps the original iTunes names (by_alias=True on dump),
so an old snapshot stays readable.

Sample response (trimmed):
    {"resultCount": 1,
     "results": [{"trackName": "X", "artistName": "Y",
                  "artworkUrl100": "https://is1-ssl.mzstatic.com/.../100x100bb.jpg",
                  "previewUrl": "https://audio-ssl.itunes.apple.com/...m4a",
                  "releaseDate": "2020-01-01T00:00:00Z",
                  "collectionName": "Z"}]}
"""

import logging
import re
from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from chartspot.domain.dtos import ChartEntry, RankedItem

logger = logging.getLogger(__name__)

# First "<digits>x<digits>" token in an artwork URL, e.g. ".../100x100bb.jpg"
_SIZE_TOKEN = re.compile(r"\d+x\d+")


def upscale_artwork_url(url: str | None, size: int) -> str | None:
    """Rewrite the iTunes artwork size token to request a larger image.

    iTunes hands out 100x100 thumbnails by default but the CDN serves any size
    when you change the token. Only the FIRST token is replaced; URLs without a
    token are returned unchanged.
    """
    if not url:
        return None
    return _SIZE_TOKEN.sub(f"{size}x{size}", url, count=1)


def parse_release_date(value: str | None) -> datetime | None:
    """Parse an ISO-8601 release date, returning None when unparsable."""
    if not value:
        return None
    try:
        # fromisoformat handles the trailing "Z" since Python 3.11
        return datetime.fromisoformat(value)
    except ValueError:
        logger.debug("Unparsable release date %r", value)
        return None


class TrackMetadata(BaseModel):
    """The subset of an iTunes track result we keep."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    track_name: str | None = Field(default=None, alias="trackName")
    artist_name: str | None = Field(default=None, alias="artistName")
    artwork_url: str | None = Field(
        default=None,
        alias="artworkUrl100",
        validation_alias=AliasChoices("artworkUrl100", "artworkUrl", "artwork_url"),
    )
    preview_url: str | None = Field(default=None, alias="previewUrl")
    release_date: str | None = Field(default=None, alias="releaseDate")
    collection_name: str | None = Field(default=None, alias="collectionName")

    def to_ranked_item(self, entry: ChartEntry, artwork_size: int = 600) -> RankedItem:
        """Merge this lookup result into the chart row it was fetched for.

        Title and artist always come from the chart, never from iTunes - the
        chart is the source of truth for what is ranked.
        """
        return RankedItem(
            rank=entry.rank,
            title=entry.title,
            artist=entry.artist,
            artwork_url=upscale_artwork_url(self.artwork_url, artwork_size),
            preview_url=self.preview_url,
            release_date=parse_release_date(self.release_date),
            collection_name=self.collection_name,
        )


class ITunesSearchResponse(BaseModel):
    """Envelope of a search response."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    result_count: int = Field(default=0, alias="resultCount")
    results: list[TrackMetadata] = Field(default_factory=list)

    def first(self) -> TrackMetadata | None:
        """Only the first result is ever consumed."""
        return self.results[0] if self.results else None
