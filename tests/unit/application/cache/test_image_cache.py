"""Tests for the in-memory artwork cache."""

import asyncio
from collections.abc import Callable
from io import BytesIO

import httpx
import pytest
from PIL import Image

from chartspot.application.cache.image_cache import (
    ImageCache,
    estimate_cost,
    small_variant_url,
)

COVER = "https://is1-ssl.mzstatic.com/image/thumb/Music/v4/ab/600x600bb.jpg"


def make_png(width: int = 10, height: int = 10, color: str = "red") -> bytes:
    buffer = BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


class CountingTransport:
    """MockTransport handler that records requested URLs."""

    def __init__(
        self,
        body: bytes | None = None,
        status: int = 200,
        delay: float = 0.0,
    ) -> None:
        self.body = make_png() if body is None else body
        self.status = status
        self.delay = delay
        self.urls: list[str] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.urls.append(str(request.url))
        if self.delay:
            await asyncio.sleep(self.delay)
        return httpx.Response(self.status, content=self.body)


@pytest.fixture
def make_cache() -> Callable[..., ImageCache]:
    def factory(transport: CountingTransport, **kwargs: object) -> ImageCache:
        client = httpx.AsyncClient(transport=httpx.MockTransport(transport))
        kwargs.setdefault("slot_poll_interval", 0.005)
        return ImageCache(client=client, **kwargs)  # type: ignore[arg-type]

    return factory


class TestHelpers:
    """Test URL and cost helpers."""

    def test_small_variant_url(self) -> None:
        assert small_variant_url(COVER, 120) == COVER.replace("600x600bb", "120x120bb")

    def test_small_variant_png_becomes_jpg(self) -> None:
        url = "https://cdn.example.com/a/1000x1000bb.png"
        assert small_variant_url(url, 120) == "https://cdn.example.com/a/120x120bb.jpg"

    def test_small_variant_unknown_pattern(self) -> None:
        assert small_variant_url("https://cdn.example.com/cover.jpg", 120) is None

    def test_estimate_cost(self) -> None:
        assert estimate_cost(Image.new("RGB", (10, 20))) == 10 * 20 * 3
        assert estimate_cost(Image.new("RGBA", (10, 10))) == 400


class TestFetch:
    """Test download, decode and caching."""

    async def test_fetch_decodes_and_caches(self, make_cache) -> None:
        transport = CountingTransport()
        cache = make_cache(transport)

        first = await cache.fetch(COVER)
        second = await cache.fetch(COVER)

        assert first is not None
        assert first.size == (10, 10)
        assert second is first
        assert len(transport.urls) == 1
        stats = cache.stats()
        assert (stats.hits, stats.misses, stats.entries) == (1, 1, 1)

    async def test_concurrent_requests_share_one_download(self, make_cache) -> None:
        transport = CountingTransport(delay=0.02)
        cache = make_cache(transport)

        images = await asyncio.gather(*(cache.fetch(COVER) for _ in range(10)))

        assert len(transport.urls) == 1
        assert all(image is images[0] for image in images)
        assert cache.stats().in_flight == 0

    async def test_downsamples_large_images(self, make_cache) -> None:
        transport = CountingTransport(body=make_png(1000, 500))
        cache = make_cache(transport)

        image = await cache.fetch(COVER, max_pixel_size=100)

        assert image is not None
        assert image.size == (100, 50)

    async def test_throttle_caps_parallel_downloads(self, make_cache) -> None:
        transport = CountingTransport(delay=0.02)
        cache = make_cache(transport, max_concurrent_downloads=2)

        urls = [f"https://cdn.example.com/cover{i}.jpg" for i in range(6)]
        images = await asyncio.gather(*(cache.fetch(url) for url in urls))

        assert all(image is not None for image in images)
        assert cache.peak_downloads == 2
        assert len(transport.urls) == 6

    async def test_http_failure_returns_none_and_is_not_cached(self, make_cache) -> None:
        transport = CountingTransport(status=404)
        cache = make_cache(transport)

        assert await cache.fetch(COVER) is None
        assert await cache.fetch(COVER) is None

        assert len(transport.urls) == 2
        assert cache.stats().entries == 0

    async def test_undecodable_body_returns_none(self, make_cache) -> None:
        transport = CountingTransport(body=b"<html>not an image</html>")
        cache = make_cache(transport)

        assert await cache.fetch(COVER) is None
        assert cache.stats().in_flight == 0

    async def test_failed_download_releases_slot(self, make_cache) -> None:
        transport = CountingTransport(status=500)
        cache = make_cache(transport, max_concurrent_downloads=1)

        for i in range(3):
            await cache.fetch(f"https://cdn.example.com/broken{i}.jpg")

        assert cache._active_downloads == 0


class TestEviction:
    """Test the cost budget."""

    async def test_least_recently_used_is_evicted(self, make_cache) -> None:
        # 10x10 RGB = 300 bytes, room for two
        cache = make_cache(CountingTransport(), cost_limit_bytes=700)
        a, b, c = (f"https://cdn.example.com/{name}.jpg" for name in "abc")

        await cache.fetch(a)
        await cache.fetch(b)
        await cache.fetch(a)  # a is now most recent
        await cache.fetch(c)

        assert await cache.get(a) is not None
        assert await cache.get(b) is None
        assert await cache.get(c) is not None
        assert cache.stats().total_cost == 600

    async def test_item_larger_than_budget_not_cached(self, make_cache) -> None:
        cache = make_cache(CountingTransport(), cost_limit_bytes=100)

        image = await cache.fetch(COVER)

        assert image is not None
        assert cache.stats().entries == 0

    async def test_clear_resets_counters(self, make_cache) -> None:
        cache = make_cache(CountingTransport())
        await cache.fetch(COVER)
        await cache.fetch(COVER)

        await cache.clear()

        stats = cache.stats()
        assert (stats.hits, stats.misses, stats.entries, stats.total_cost) == (0, 0, 0, 0)

    async def test_manual_set_and_delete(self, make_cache) -> None:
        cache = make_cache(CountingTransport())
        await cache.set("key", Image.new("RGB", (2, 2)))

        assert await cache.exists("key")
        assert await cache.delete("key") is True
        assert cache.stats().total_cost == 0


class TestSmallThenFull:
    """Test progressive loading."""

    async def test_small_first_then_full_in_background(self, make_cache) -> None:
        transport = CountingTransport()
        cache = make_cache(transport)

        small = await cache.small_then_full(COVER, small_pixel_size=120)

        assert small is not None
        assert transport.urls[0] == COVER.replace("600x600bb", "120x120bb")

        for _ in range(100):
            if await cache.get(COVER) is not None:
                break
            await asyncio.sleep(0.01)

        assert await cache.get(COVER) is not None
        assert COVER in transport.urls

    async def test_unknown_pattern_fetches_original(self, make_cache) -> None:
        transport = CountingTransport()
        cache = make_cache(transport)
        url = "https://cdn.example.com/cover.jpg"

        image = await cache.small_then_full(url)

        assert image is not None
        assert transport.urls == [url]

    async def test_aclose_cancels_background(self, make_cache) -> None:
        transport = CountingTransport(delay=1.0)
        cache = make_cache(transport)
        cache._spawn_background(COVER, 600)

        await asyncio.sleep(0)
        await cache.aclose()

        assert cache.stats().in_flight == 0
        assert await cache.get(COVER) is None
