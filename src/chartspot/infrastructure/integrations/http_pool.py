"""Shared HTTP client pool for connection reuse across services.

Hey future me - this is the CENTRAL http client! The chart source, the iTunes
client and the image cache all talk to a handful of hosts (itunes.apple.com,
mzstatic CDNs) over and over. One shared httpx.AsyncClient keeps those
connections alive instead of paying a TLS handshake per artwork.

Usage:
    client = await HttpClientPool.get_client()
    response = await client.get("https://itunes.apple.com/search", params=...)

Call HttpClientPool.close() at shutdown (see lifecycle.py).

Tests don't go through the pool - every service accepts an explicit client so
an httpx.MockTransport can be injected.
"""

import asyncio
import logging
from typing import ClassVar

import httpx

logger = logging.getLogger(__name__)

USER_AGENT = "chartspot/0.1 (+https://github.com/chartspot/chartspot)"


class HttpClientPool:
    """Singleton HTTP client pool.

    - Lazy initialization (created on first use)
    - asyncio.Lock guards creation
    - Proper cleanup at shutdown
    """

    _client: ClassVar[httpx.AsyncClient | None] = None
    _lock: ClassVar[asyncio.Lock | None] = None

    # Artwork downloads dominate the connection count. The image cache throttles
    # itself to 6 concurrent downloads, so 20 connections leave room for lookups.
    DEFAULT_TIMEOUT: ClassVar[float] = 15.0
    DEFAULT_MAX_KEEPALIVE: ClassVar[int] = 10
    DEFAULT_MAX_CONNECTIONS: ClassVar[int] = 20

    @classmethod
    def _ensure_lock(cls) -> asyncio.Lock:
        """Create the lock lazily so it binds to the running loop."""
        if cls._lock is None:
            cls._lock = asyncio.Lock()
        return cls._lock

    @classmethod
    async def get_client(
        cls,
        timeout: float | None = None,
        max_keepalive: int | None = None,
        max_connections: int | None = None,
    ) -> httpx.AsyncClient:
        """Get the shared HTTP client instance.

        Config params only apply on the FIRST call.
        """
        async with cls._ensure_lock():
            if cls._client is None:
                effective_timeout = timeout or cls.DEFAULT_TIMEOUT
                effective_keepalive = max_keepalive or cls.DEFAULT_MAX_KEEPALIVE
                effective_max_conn = max_connections or cls.DEFAULT_MAX_CONNECTIONS

                cls._client = httpx.AsyncClient(
                    timeout=httpx.Timeout(effective_timeout),
                    limits=httpx.Limits(
                        max_keepalive_connections=effective_keepalive,
                        max_connections=effective_max_conn,
                    ),
                    headers={"User-Agent": USER_AGENT},
                    # Artwork CDNs redirect a lot
                    follow_redirects=True,
                )
                logger.info(
                    "HTTP client pool initialized (timeout=%.1fs, keepalive=%d, max_conn=%d)",
                    effective_timeout,
                    effective_keepalive,
                    effective_max_conn,
                )

            return cls._client

    @classmethod
    async def close(cls) -> None:
        """Close the shared client. A later get_client() creates a new one."""
        async with cls._ensure_lock():
            if cls._client is not None:
                await cls._client.aclose()
                cls._client = None
                logger.info("HTTP client pool closed")
