"""
Token bucket rate limiter for external API calls.

Hey future me - one limiter PER external service, shared by every request that
hits it. The iTunes Search API is public and unauthenticated, which also means
Apple throttles it aggressively (403/429 after bursts). A chart refresh fans
out up to concurrency_limit lookups at once, so without a shared bucket a few
quick refreshes in a row would trip the limit.

ALGORITHM: Token Bucket
- Bucket holds max_tokens
- Tokens refill at refill_rate per second
- Every request consumes one token
- Empty bucket: wait until one token has refilled

ADAPTIVE BACKOFF on 429:
- First 429: initial_backoff_seconds
- Each further 429 doubles the wait (capped at max_backoff_seconds)
- A successful request resets the backoff

USAGE:
    limiter = get_itunes_limiter()

    async with limiter:
        response = await client.get(url)

    if response.status_code == 429:
        await limiter.handle_rate_limit_response(retry_after)
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass
class RateLimiterConfig:
    """Configuration for rate limiter."""

    max_tokens: int = 20  # Bucket size
    refill_rate: float = 5.0  # Tokens per second
    max_backoff_seconds: float = 30.0
    initial_backoff_seconds: float = 1.0
    backoff_multiplier: float = 2.0


@dataclass
class RateLimiter:
    """Token Bucket Rate Limiter with adaptive backoff.

    Use it as an async context manager. The token is taken on enter; a clean
    exit resets the 429 backoff.
    """

    config: RateLimiterConfig = field(default_factory=RateLimiterConfig)
    name: str = "default"

    _tokens: float = field(default=0.0, init=False)
    _last_refill: float = field(default_factory=time.monotonic, init=False)
    _current_backoff: float = field(default=0.0, init=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False)

    def __post_init__(self) -> None:
        """Start with a full bucket."""
        self._tokens = float(self.config.max_tokens)
        self._current_backoff = self.config.initial_backoff_seconds

    @classmethod
    def for_itunes(
        cls, per_second: float = 5.0, burst: int = 20
    ) -> "RateLimiter":
        """Create a limiter tuned for the iTunes Search API.

        Apple does not publish hard numbers. Community experience says roughly
        20 calls/minute sustained before 403s start, with short bursts tolerated.
        The defaults favour quick chart refreshes; lower per_second via settings
        if you see 403/429 in the logs.
        """
        return cls(
            config=RateLimiterConfig(
                max_tokens=burst,
                refill_rate=per_second,
                max_backoff_seconds=30.0,
                initial_backoff_seconds=1.0,
            ),
            name="itunes",
        )

    def _refill_tokens(self) -> None:
        """Add the tokens earned since the last refill."""
        now = time.monotonic()
        elapsed = now - self._last_refill
        self._tokens = min(
            float(self.config.max_tokens),
            self._tokens + elapsed * self.config.refill_rate,
        )
        self._last_refill = now

    async def acquire(self) -> None:
        """Acquire one token, waiting if necessary."""
        async with self._lock:
            self._refill_tokens()

            while self._tokens < 1.0:
                wait_time = (1.0 - self._tokens) / self.config.refill_rate
                logger.debug(
                    "RateLimiter[%s]: bucket empty, waiting %.2fs", self.name, wait_time
                )
                # Sleeping while holding the lock keeps waiters in FIFO order
                await asyncio.sleep(wait_time)
                self._refill_tokens()

            self._tokens -= 1.0

    async def handle_rate_limit_response(self, retry_after: int | None = None) -> float:
        """Back off after a 429 response.

        Args:
            retry_after: Retry-After header value in seconds, if the API sent one

        Returns:
            The wait time actually used
        """
        async with self._lock:
            wait_time = (
                float(retry_after) if retry_after is not None else self._current_backoff
            )
            wait_time = min(wait_time, self.config.max_backoff_seconds)

            logger.warning(
                "RateLimiter[%s]: 429 rate limited, waiting %.1fs (backoff level %.1fs)",
                self.name,
                wait_time,
                self._current_backoff,
            )

            self._current_backoff = min(
                self._current_backoff * self.config.backoff_multiplier,
                self.config.max_backoff_seconds,
            )
            # Empty the bucket so concurrent callers wait too
            self._tokens = 0.0

        await asyncio.sleep(wait_time)
        return wait_time

    def reset_backoff(self) -> None:
        """Reset backoff after a successful request."""
        self._current_backoff = self.config.initial_backoff_seconds

    async def __aenter__(self) -> "RateLimiter":
        await self.acquire()
        return self

    async def __aexit__(
        self, exc_type: type | None, exc_val: Exception | None, exc_tb: object
    ) -> None:
        if exc_type is None:
            self.reset_backoff()

    @property
    def available_tokens(self) -> float:
        """Current token count (for debugging)."""
        self._refill_tokens()
        return self._tokens


# Module-level singleton, shared by every ITunesClient in the process
_itunes_limiter: RateLimiter | None = None


def get_itunes_limiter(per_second: float = 5.0, burst: int = 20) -> RateLimiter:
    """Get the singleton iTunes rate limiter.

    The arguments only apply on the first call.
    """
    global _itunes_limiter
    if _itunes_limiter is None:
        _itunes_limiter = RateLimiter.for_itunes(per_second=per_second, burst=burst)
    return _itunes_limiter


__all__ = [
    "RateLimiter",
    "RateLimiterConfig",
    "get_itunes_limiter",
]
