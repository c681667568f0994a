"""In-memory artwork cache: de-duplicating, throttled, cost-bounded.

Hey future me - a chart list of 100 rows asks for 100 covers at once, and a
scroll back up asks for them AGAIN. This cache makes that cheap:

1. DE-DUPLICATION: per URL there is at most ONE download in flight. Everyone
   else asking for the same URL awaits that same task.
       absent -> in-flight -> cached
       absent -> in-flight -> absent (download or decode failed)
2. THROTTLE: at most max_concurrent_downloads network requests at once,
   across ALL URLs. Extra requesters poll for a free slot. The slot is
   released in a finally block, so failures can't leak slots.
3. DOWNSAMPLING: covers are decoded with Pillow in a worker thread and shrunk
   to max_pixel_size BEFORE caching. A 3000x3000 cover is 36MB decoded, a
   600x600 one is 1.4MB.
4. COST BUDGET: each entry costs width * height * bands bytes. When the total
   exceeds cost_limit_bytes the least recently used entries are evicted.

fetch() never raises - a missing cover is a placeholder, not an error.
"""

import asyncio
import logging
import re
from collections import OrderedDict
from dataclasses import dataclass
from io import BytesIO

import httpx
from PIL import Image, UnidentifiedImageError

from chartspot.application.cache.base_cache import BaseCache, CacheEntry
from chartspot.infrastructure.integrations.http_pool import HttpClientPool

logger = logging.getLogger(__name__)

DEFAULT_COST_LIMIT_BYTES = 50 * 1024 * 1024
DEFAULT_MAX_CONCURRENT_DOWNLOADS = 6
DEFAULT_SLOT_POLL_INTERVAL = 0.05

# iTunes artwork URLs end in ".../<w>x<h>bb.jpg" (or .png)
_ARTWORK_SIZE_TOKEN = re.compile(r"(\d+)x(\d+)(bb\.(jpg|png))", re.IGNORECASE)


def small_variant_url(url: str, target_pixel: int) -> str | None:
    """Derive a smaller artwork URL for known CDN patterns.

    Returns None when the URL has no recognizable size token.
    """
    if not _ARTWORK_SIZE_TOKEN.search(url):
        return None
    return _ARTWORK_SIZE_TOKEN.sub(
        f"{target_pixel}x{target_pixel}bb.jpg", url, count=1
    )


def estimate_cost(image: Image.Image) -> int:
    """Approximate decoded size in bytes."""
    width, height = image.size
    return max(1, width * height * len(image.getbands()))


def decode_image(data: bytes, max_pixel_size: int) -> Image.Image:
    """Decode and downsample (CPU-bound, run in a thread).

    Raises:
        UnidentifiedImageError / OSError: Not an image, or truncated
    """
    with Image.open(BytesIO(data)) as img:
        # thumbnail() uses JPEG draft mode, so big covers are never fully decoded
        img.thumbnail((max_pixel_size, max_pixel_size), Image.Resampling.LANCZOS)
        if img.mode not in ("RGB", "RGBA"):
            img = img.convert("RGBA" if "A" in img.getbands() else "RGB")
        img.load()
        # copy() detaches the pixels from the (about to be closed) file
        return img.copy()


@dataclass(frozen=True)
class ImageCacheStats:
    """Snapshot of cache counters."""

    hits: int
    misses: int
    entries: int
    total_cost: int
    in_flight: int


class ImageCache(BaseCache[str, Image.Image]):
    """Process-wide artwork cache keyed by URL."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        cost_limit_bytes: int = DEFAULT_COST_LIMIT_BYTES,
        max_concurrent_downloads: int = DEFAULT_MAX_CONCURRENT_DOWNLOADS,
        slot_poll_interval: float = DEFAULT_SLOT_POLL_INTERVAL,
        download_timeout: float = 15.0,
    ) -> None:
        """Initialize the cache.

        Args:
            client: Explicit httpx client (tests); shared pool client otherwise
            cost_limit_bytes: Total decoded-bytes budget
            max_concurrent_downloads: Global cap on simultaneous downloads
            slot_poll_interval: Seconds between throttle-slot polls
            download_timeout: Per-download timeout in seconds
        """
        self._client = client
        self.cost_limit_bytes = cost_limit_bytes
        self.max_concurrent_downloads = max_concurrent_downloads
        self.slot_poll_interval = slot_poll_interval
        self.download_timeout = download_timeout

        self._entries: OrderedDict[str, CacheEntry[Image.Image]] = OrderedDict()
        self._total_cost = 0
        self._lock = asyncio.Lock()
        self._in_flight: dict[str, asyncio.Task[Image.Image | None]] = {}
        self._background: set[asyncio.Task[Image.Image | None]] = set()

        self._active_downloads = 0
        self.peak_downloads = 0
        self._hits = 0
        self._misses = 0

    # =========================================================================
    # Main API
    # =========================================================================

    async def fetch(self, url: str, max_pixel_size: int = 600) -> Image.Image | None:
        """Get a decoded, downsampled image for url.

        Returns:
            The image, or None if it couldn't be downloaded/decoded
        """
        try:
            async with self._lock:
                entry = self._entries.get(url)
                if entry is not None:
                    self._entries.move_to_end(url)
                    self._hits += 1
                    logger.debug("ImageCache HIT %s (hits=%d)", url, self._hits)
                    return entry.value

                task = self._in_flight.get(url)
                if task is None:
                    self._misses += 1
                    logger.debug("ImageCache MISS %s (misses=%d)", url, self._misses)
                    task = asyncio.create_task(
                        self._load(url, max_pixel_size), name=f"image:{url}"
                    )
                    self._in_flight[url] = task

            # Shield so one impatient caller cancelling doesn't kill the shared download
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("ImageCache fetch failed for %s", url)
            return None

    async def small_then_full(
        self,
        url: str,
        small_pixel_size: int = 120,
        full_pixel_size: int = 600,
    ) -> Image.Image | None:
        """Return a quick low-res image, upgrade to full size in the background.

        The full-size image lands in the cache under the original URL, so the
        next fetch(url) gets it without waiting.
        """
        small_url = small_variant_url(url, small_pixel_size)
        if small_url and small_url != url:
            small = await self.fetch(small_url, small_pixel_size)
            if small is not None:
                self._spawn_background(url, full_pixel_size)
                return small

        return await self.fetch(url, full_pixel_size)

    def _spawn_background(self, url: str, max_pixel_size: int) -> None:
        task = asyncio.create_task(
            self.fetch(url, max_pixel_size), name=f"image-full:{url}"
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # =========================================================================
    # Download pipeline (owned by the single in-flight task per URL)
    # =========================================================================

    async def _load(self, url: str, max_pixel_size: int) -> Image.Image | None:
        try:
            await self._acquire_slot()
            try:
                data = await self._download(url)
            finally:
                self._release_slot()

            if data is None:
                return None

            try:
                image = await asyncio.to_thread(decode_image, data, max_pixel_size)
            except (UnidentifiedImageError, OSError, ValueError) as e:
                logger.warning("ImageCache cannot decode %s: %s", url, e)
                return None

            async with self._lock:
                self._insert(url, image, estimate_cost(image))
            return image
        finally:
            async with self._lock:
                self._in_flight.pop(url, None)

    async def _download(self, url: str) -> bytes | None:
        client = self._client or await HttpClientPool.get_client()
        try:
            response = await client.get(url, timeout=self.download_timeout)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("ImageCache download failed for %s: %s", url, e)
            return None
        return response.content

    async def _acquire_slot(self) -> None:
        """Wait for a free download slot.

        No await between the check and the increment, so this is atomic on
        the event loop.
        """
        while self._active_downloads >= self.max_concurrent_downloads:
            await asyncio.sleep(self.slot_poll_interval)
        self._active_downloads += 1
        self.peak_downloads = max(self.peak_downloads, self._active_downloads)

    def _release_slot(self) -> None:
        if self._active_downloads > 0:
            self._active_downloads -= 1

    def _insert(self, url: str, image: Image.Image, cost: int) -> None:
        """Insert and evict least recently used entries over budget. Caller holds the lock."""
        if cost > self.cost_limit_bytes:
            logger.debug(
                "ImageCache not caching %s: cost %d exceeds budget %d",
                url,
                cost,
                self.cost_limit_bytes,
            )
            return

        previous = self._entries.pop(url, None)
        if previous is not None:
            self._total_cost -= previous.cost

        self._entries[url] = CacheEntry(value=image, cost=cost)
        self._total_cost += cost

        while self._total_cost > self.cost_limit_bytes and self._entries:
            evicted_url, evicted = self._entries.popitem(last=False)
            self._total_cost -= evicted.cost
            logger.debug("ImageCache evicted %s (%d bytes)", evicted_url, evicted.cost)

    # =========================================================================
    # BaseCache API
    # =========================================================================

    async def get(self, key: str) -> Image.Image | None:
        """Peek at a cached image without downloading."""
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            self._entries.move_to_end(key)
            return entry.value

    async def set(self, key: str, value: Image.Image) -> None:
        async with self._lock:
            self._insert(key, value, estimate_cost(value))

    async def delete(self, key: str) -> bool:
        async with self._lock:
            entry = self._entries.pop(key, None)
            if entry is None:
                return False
            self._total_cost -= entry.cost
            return True

    async def clear(self) -> None:
        """Drop all entries and reset hit/miss counters."""
        async with self._lock:
            self._entries.clear()
            self._total_cost = 0
            self._hits = 0
            self._misses = 0
        logger.info("ImageCache cleared")

    def stats(self) -> ImageCacheStats:
        return ImageCacheStats(
            hits=self._hits,
            misses=self._misses,
            entries=len(self._entries),
            total_cost=self._total_cost,
            in_flight=len(self._in_flight),
        )

    async def aclose(self) -> None:
        """Cancel background upgrades and pending downloads."""
        pending = [*self._background, *self._in_flight.values()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._background.clear()
        # A task cancelled before its first step never reaches _load's finally
        self._in_flight.clear()
