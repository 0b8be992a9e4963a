"""
Token-bucket rate limiting for outbound catalog and preview-provider calls.

Hey future me - one limiter per upstream service, shared by every request in the process!
A playlist stream fans out to dozens of Deezer/iTunes lookups within seconds; without a
shared bucket we'd burn through their quotas and spend the next minute eating 429s.

ALGORITHM: token bucket
- The bucket holds up to max_tokens
- It refills at refill_rate tokens per second
- Every request takes one token, waiting if the bucket is empty

ADAPTIVE BACKOFF on 429:
- Retry-After header wins when present
- Otherwise wait initial_backoff, then double on each consecutive 429
- A successful request resets the backoff

USAGE:
    limiter = get_deezer_limiter()

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
    """Configuration for rate limiter.

    max_backoff_seconds must stay high for Spotify: it sends Retry-After values of
    several minutes under heavy load, and capping below that just earns another 429.
    """

    max_tokens: int = 10  # Bucket size
    refill_rate: float = 2.0  # Tokens per second
    max_backoff_seconds: float = 600.0
    initial_backoff_seconds: float = 1.0
    backoff_multiplier: float = 2.0


@dataclass
class RateLimiter:
    """Token bucket rate limiter with adaptive backoff.

    Use it as an async context manager: entering takes a token, a clean exit resets
    the backoff.
    """

    config: RateLimiterConfig = field(default_factory=RateLimiterConfig)

    _tokens: float = field(default=0.0, init=False)
    _last_refill: float = field(default_factory=time.monotonic, init=False)
    _current_backoff: float = field(default=0.0, init=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False)
    _name: str = field(default="default", init=False)

    def __post_init__(self) -> None:
        self._tokens = float(self.config.max_tokens)
        self._current_backoff = self.config.initial_backoff_seconds

    @classmethod
    def _named(cls, name: str, config: RateLimiterConfig) -> "RateLimiter":
        limiter = cls(config=config)
        limiter._name = name
        return limiter

    @classmethod
    def for_spotify(cls) -> "RateLimiter":
        """Spotify: roughly 180 req/min, we sustain 2 req/s with a burst of 10."""
        return cls._named(
            "spotify",
            RateLimiterConfig(
                max_tokens=10,
                refill_rate=2.0,
                max_backoff_seconds=600.0,
                initial_backoff_seconds=1.0,
            ),
        )

    @classmethod
    def for_deezer(cls) -> "RateLimiter":
        """Deezer: 50 requests per 5 seconds, we use half of it."""
        return cls._named(
            "deezer",
            RateLimiterConfig(
                max_tokens=15,
                refill_rate=5.0,
                max_backoff_seconds=30.0,
                initial_backoff_seconds=0.5,
            ),
        )

    @classmethod
    def for_itunes(cls) -> "RateLimiter":
        """iTunes Search: ~20 calls/minute per IP, and it 403s instead of 429ing."""
        return cls._named(
            "itunes",
            RateLimiterConfig(
                max_tokens=5,
                refill_rate=0.33,
                max_backoff_seconds=60.0,
                initial_backoff_seconds=2.0,
            ),
        )

    def _refill_tokens(self) -> None:
        now = time.monotonic()
        elapsed = now - self._last_refill
        self._tokens = min(
            self.config.max_tokens, self._tokens + elapsed * self.config.refill_rate
        )
        self._last_refill = now

    async def acquire(self) -> None:
        """Take one token, sleeping until one is available."""
        async with self._lock:
            self._refill_tokens()

            while self._tokens < 1.0:
                wait_time = (1.0 - self._tokens) / self.config.refill_rate
                logger.debug(
                    "RateLimiter[%s]: bucket empty, waiting %.2fs", self._name, wait_time
                )

                # Don't hold the lock while sleeping
                self._lock.release()
                try:
                    await asyncio.sleep(wait_time)
                finally:
                    await self._lock.acquire()

                self._refill_tokens()

            self._tokens -= 1.0

    async def handle_rate_limit_response(self, retry_after: int | None = None) -> float:
        """Back off after a 429 and return the seconds actually waited."""
        async with self._lock:
            if retry_after is not None:
                wait_time = float(retry_after)
            else:
                wait_time = self._current_backoff

            wait_time = min(wait_time, self.config.max_backoff_seconds)

            logger.warning(
                "RateLimiter[%s]: rate limited, waiting %.1fs (backoff level %.1fs)",
                self._name,
                wait_time,
                self._current_backoff,
            )

            self._current_backoff = min(
                self._current_backoff * self.config.backoff_multiplier,
                self.config.max_backoff_seconds,
            )
            self._tokens = 0.0

        await asyncio.sleep(wait_time)
        return wait_time

    def reset_backoff(self) -> None:
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
        self._refill_tokens()
        return self._tokens

    @property
    def current_backoff(self) -> float:
        return self._current_backoff

    @property
    def name(self) -> str:
        return self._name


# Module-level limiters, one per upstream, shared by all clients in the process
_spotify_limiter: RateLimiter | None = None
_deezer_limiter: RateLimiter | None = None
_itunes_limiter: RateLimiter | None = None


def get_spotify_limiter() -> RateLimiter:
    """Get singleton Spotify rate limiter."""
    global _spotify_limiter
    if _spotify_limiter is None:
        _spotify_limiter = RateLimiter.for_spotify()
    return _spotify_limiter


def get_deezer_limiter() -> RateLimiter:
    """Get singleton Deezer rate limiter."""
    global _deezer_limiter
    if _deezer_limiter is None:
        _deezer_limiter = RateLimiter.for_deezer()
    return _deezer_limiter


def get_itunes_limiter() -> RateLimiter:
    """Get singleton iTunes rate limiter."""
    global _itunes_limiter
    if _itunes_limiter is None:
        _itunes_limiter = RateLimiter.for_itunes()
    return _itunes_limiter


__all__ = [
    "RateLimiter",
    "RateLimiterConfig",
    "get_deezer_limiter",
    "get_itunes_limiter",
    "get_spotify_limiter",
]
