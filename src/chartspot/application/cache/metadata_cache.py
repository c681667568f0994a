"""Persistent TTL cache for iTunes lookup results.

Hey future me - this cache is why a refresh after a restart doesn't hammer iTunes
again. Chart positions change daily, the metadata for a given song basically
never does, so a 24h TTL is plenty.

How it works:
- In-memory dict is the source of truth. Reads NEVER touch disk.
- Keys are normalize(title)::normalize(artist) (strip + lowercase), so
  "  Flowers " by "MILEY CYRUS" hits the same record as "flowers" by "miley cyrus".
- Expired records are dropped lazily on read.
- Writes to disk are DEBOUNCED: a refresh sets up to 100 records within a few
  seconds, and we want one write for that burst, not 100. Every set() pushes
  the deadline out by debounce_seconds; the write happens once things go quiet.
- Disk failures are logged (CacheIOError) and swallowed. A broken disk must
  never break enrichment.

Snapshot format (JSON):
    {"flowers::miley cyrus": {"payload": {"trackName": ...}, "insertedAt": 1718000000.0}}
"""

import asyncio
import contextlib
import json
import logging
import os
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from chartspot.application.cache.base_cache import BaseCache, CacheEntry
from chartspot.domain.exceptions import CacheIOError
from chartspot.infrastructure.integrations.itunes_models import TrackMetadata

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 24 * 60 * 60
DEFAULT_DEBOUNCE_SECONDS = 1.0


class _PersistedRecord(BaseModel):
    """One record in the snapshot file."""

    model_config = ConfigDict(populate_by_name=True)

    payload: TrackMetadata
    inserted_at: float = Field(alias="insertedAt")


_SNAPSHOT_ADAPTER = TypeAdapter(dict[str, _PersistedRecord])


def normalize_key(title: str, artist: str) -> str:
    """Build the cache key for a (title, artist) pair."""
    return f"{title.strip().lower()}::{artist.strip().lower()}"


class MetadataLookupCache(BaseCache[str, TrackMetadata]):
    """TTL-bounded lookup cache with debounced JSON persistence."""

    def __init__(
        self,
        path: Path | None = None,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the cache and load a prior snapshot if one exists.

        Args:
            path: Snapshot file. None keeps the cache memory-only.
            ttl_seconds: Max record age before it's treated as absent
            debounce_seconds: Quiet window before a snapshot is written
            clock: Wall-clock source (tests inject a fake)
        """
        self.path = path
        self.ttl_seconds = ttl_seconds
        self.debounce_seconds = debounce_seconds
        self._clock = clock
        self._store: dict[str, CacheEntry[TrackMetadata]] = {}
        self._lock = asyncio.Lock()

        # Debounce state
        self._persist_task: asyncio.Task[None] | None = None
        self._deadline: float = 0.0
        self._dirty = False
        self._writing = False
        self.writes_completed = 0

        if path is not None:
            self._store = self._load_snapshot(path)

    # =========================================================================
    # BaseCache API
    # =========================================================================

    async def get(self, key: str) -> TrackMetadata | None:
        """Return a fresh record, evicting it if it has expired."""
        async with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None

            if entry.is_expired(self.ttl_seconds, now=self._clock()):
                del self._store[key]
                logger.debug("Metadata cache EXPIRED: %s", key)
                self._schedule_persist()
                return None

            return entry.value

    async def set(self, key: str, value: TrackMetadata) -> None:
        """Insert or overwrite a record, stamped with the current time."""
        async with self._lock:
            self._store[key] = CacheEntry(value=value, created_at=self._clock())
            self._schedule_persist()

    async def delete(self, key: str) -> bool:
        async with self._lock:
            if self._store.pop(key, None) is None:
                return False
            self._schedule_persist()
            return True

    async def clear(self) -> None:
        async with self._lock:
            self._store.clear()
            self._schedule_persist()

    # =========================================================================
    # Convenience API keyed by (title, artist)
    # =========================================================================

    async def get_track(self, title: str, artist: str) -> TrackMetadata | None:
        """Look up by title/artist."""
        return await self.get(normalize_key(title, artist))

    async def set_track(self, title: str, artist: str, value: TrackMetadata) -> None:
        """Store by title/artist."""
        await self.set(normalize_key(title, artist), value)

    def __len__(self) -> int:
        return len(self._store)

    def get_stats(self) -> dict[str, Any]:
        """Cache statistics for debugging. Not locked, may be slightly stale."""
        now = self._clock()
        total = len(self._store)
        expired = sum(
            1 for entry in self._store.values() if entry.is_expired(self.ttl_seconds, now)
        )
        return {
            "total_entries": total,
            "active_entries": total - expired,
            "expired_entries": expired,
            "writes_completed": self.writes_completed,
            "persist_pending": self._dirty,
        }

    # =========================================================================
    # Persistence
    # =========================================================================

    def _schedule_persist(self) -> None:
        """Mark dirty and (re)arm the debounce timer. Caller holds the lock."""
        if self.path is None:
            return

        loop = asyncio.get_running_loop()
        self._dirty = True
        self._deadline = loop.time() + self.debounce_seconds

        if self._persist_task is None or self._persist_task.done():
            self._persist_task = loop.create_task(
                self._persist_loop(), name="metadata-cache-persist"
            )

    async def _persist_loop(self) -> None:
        """Wait for a quiet window, then write. Repeats if dirtied mid-write."""
        loop = asyncio.get_running_loop()
        try:
            while True:
                delay = self._deadline - loop.time()
                if delay > 0:
                    await asyncio.sleep(delay)
                    continue

                await self._write_now()
                if not self._dirty:
                    break
        finally:
            self._writing = False

    async def _write_now(self) -> None:
        """Serialize current state and write it off the event loop."""
        path = self.path
        if path is None:
            self._dirty = False
            return

        async with self._lock:
            self._dirty = False
            snapshot = self._serialize()

        self._writing = True
        try:
            await asyncio.to_thread(self._write_snapshot, path, snapshot)
            self.writes_completed += 1
        except CacheIOError as e:
            # Never surfaced - in-memory state stays authoritative
            logger.warning("Metadata cache persist failed: %s", e.message)
        finally:
            self._writing = False

    async def flush(self) -> None:
        """Write pending changes immediately (shutdown, tests)."""
        task = self._persist_task
        if task is not None and not task.done():
            if self._writing:
                await task
            else:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._persist_task = None

        if self._dirty:
            await self._write_now()

    def _serialize(self) -> str:
        data = {
            key: {
                "payload": entry.value.model_dump(by_alias=True, mode="json"),
                "insertedAt": entry.created_at,
            }
            for key, entry in self._store.items()
        }
        return json.dumps(data, ensure_ascii=False, indent=2)

    @staticmethod
    def _write_snapshot(path: Path, snapshot: str) -> None:
        """Atomic write: temp file in the same dir, then os.replace."""
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(snapshot, encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as e:
            raise CacheIOError(
                f"Cannot write metadata cache to {path}: {e}", path=str(path)
            ) from e
        logger.debug("Metadata cache persisted to %s", path)

    @staticmethod
    def _load_snapshot(path: Path) -> dict[str, CacheEntry[TrackMetadata]]:
        """Load a snapshot. Missing or corrupt files give an empty cache."""
        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            logger.debug("No metadata cache snapshot at %s", path)
            return {}
        except OSError as e:
            logger.warning(
                "Ignoring unreadable metadata cache: %s",
                CacheIOError(f"Cannot read {path}: {e}", path=str(path)).message,
            )
            return {}

        try:
            records = _SNAPSHOT_ADAPTER.validate_json(raw)
        except ValidationError as e:
            logger.warning(
                "Ignoring corrupt metadata cache at %s (%d errors)", path, e.error_count()
            )
            return {}

        logger.info("Loaded %d metadata cache records from %s", len(records), path)
        return {
            key: CacheEntry(value=record.payload, created_at=record.inserted_at)
            for key, record in records.items()
        }
