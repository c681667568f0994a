"""Base cache interface shared by the metadata and image caches."""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Generic, TypeVar

K = TypeVar("K")
V = TypeVar("V")


@dataclass
class CacheEntry(Generic[V]):
    """Cache entry with value and insertion metadata."""

    value: V
    created_at: float = field(default_factory=time.time)
    cost: int = 1

    # Hey future me, the TTL is NOT stored on the entry - it's a property of the cache.
    # That way lowering the TTL in settings applies to entries loaded from an old snapshot
    # too. Uses wall-clock time.time() because created_at survives process restarts via
    # the persisted snapshot, and monotonic clocks don't.
    def is_expired(self, ttl_seconds: float, now: float | None = None) -> bool:
        """Check if the entry is older than ttl_seconds."""
        current = time.time() if now is None else now
        return current - self.created_at > ttl_seconds


class BaseCache(ABC, Generic[K, V]):
    """Base cache interface for all cache implementations.

    Implementations serialize their own mutations (asyncio.Lock), so a single
    instance can be shared by every task in a fan-out.
    """

    @abstractmethod
    async def get(self, key: K) -> V | None:
        """Get value from cache.

        Returns:
            Cached value if found and still valid, None otherwise
        """

    @abstractmethod
    async def set(self, key: K, value: V) -> None:
        """Insert or overwrite a value."""

    @abstractmethod
    async def delete(self, key: K) -> bool:
        """Delete value from cache.

        Returns:
            True if deleted, False if not found
        """

    @abstractmethod
    async def clear(self) -> None:
        """Clear all entries from cache."""

    async def exists(self, key: K) -> bool:
        """Check if key exists in cache.

        Same side effects as get() - an expired entry is evicted.
        """
        return await self.get(key) is not None
