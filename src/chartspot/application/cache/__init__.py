"""Caching layer - lookup metadata on disk, artwork in memory."""

from chartspot.application.cache.base_cache import BaseCache, CacheEntry
from chartspot.application.cache.image_cache import ImageCache, ImageCacheStats
from chartspot.application.cache.metadata_cache import (
    MetadataLookupCache,
    normalize_key,
)

__all__ = [
    "BaseCache",
    "CacheEntry",
    "ImageCache",
    "ImageCacheStats",
    "MetadataLookupCache",
    "normalize_key",
]
