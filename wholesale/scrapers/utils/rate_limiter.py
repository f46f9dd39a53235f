"""Token bucket rate limiter keyed by bucket name (e.g. "alibaba-detail")."""

import asyncio
import time
from typing import Callable, Dict, Optional, Tuple

import structlog

from wholesale.core.exceptions import RateLimited

logger = structlog.get_logger(__name__)


class TokenBucket:
    """Token bucket algorithm implementation for rate limiting.

    The bucket starts full and refills continuously at ``refill_rate``
    tokens per second, never exceeding ``capacity``. Refill and consume
    happen in one synchronous step, so under asyncio no other task can
    observe a half-updated bucket.
    """

    def __init__(
        self,
        capacity: float,
        refill_rate: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize token bucket.

        Args:
            capacity: Maximum tokens in bucket (burst capacity)
            refill_rate: Tokens per second (e.g., 0.5 = 30 RPM)
            clock: Monotonic clock in seconds, injectable for tests
        """
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        if refill_rate < 0:
            raise ValueError("refill_rate must be non-negative")
        self.capacity = float(capacity)
        self.refill_rate = float(refill_rate)
        self._clock = clock
        self.tokens = self.capacity
        self.last_refill = clock()
        self._lock = asyncio.Lock()

    def _projected_tokens(self, now: float) -> float:
        elapsed = max(0.0, now - self.last_refill)
        return min(self.capacity, self.tokens + elapsed * self.refill_rate)

    def _refill(self) -> None:
        """Refill tokens based on elapsed time since last refill."""
        now = self._clock()
        self.tokens = self._projected_tokens(now)
        self.last_refill = now

    def try_remove_tokens(self, tokens: float = 1.0) -> bool:
        """Refill, then take ``tokens`` if available.

        Returns:
            True if the tokens were removed, False if the bucket was left untouched
        """
        self._refill()
        if self.tokens >= tokens:
            self.tokens -= tokens
            return True
        return False

    @property
    def estimated_wait_ms(self) -> float:
        """Milliseconds until the bucket would hold at least one token."""
        return self.wait_ms_for(1.0)

    def wait_ms_for(self, tokens: float) -> float:
        available = self._projected_tokens(self._clock())
        if available >= tokens:
            return 0.0
        if self.refill_rate == 0:
            return float("inf")
        return (tokens - available) / self.refill_rate * 1000.0

    async def acquire(
        self,
        tokens: float = 1.0,
        max_wait: Optional[float] = None,
        name: str = "",
    ) -> None:
        """Acquire tokens from the bucket, waiting if necessary.

        Args:
            tokens: Number of tokens to acquire (default 1.0)
            max_wait: Give up with RateLimited instead of waiting longer than this (seconds)
            name: Bucket name used in the RateLimited error

        Raises:
            ValueError: If more tokens are requested than the bucket can ever hold
            RateLimited: If max_wait is set and would be exceeded
        """
        if tokens > self.capacity:
            raise ValueError(f"Cannot acquire {tokens} tokens from a bucket of capacity {self.capacity}")

        async with self._lock:
            while not self.try_remove_tokens(tokens):
                wait_ms = self.wait_ms_for(tokens)
                if max_wait is not None and wait_ms / 1000.0 > max_wait:
                    raise RateLimited(name, wait_ms)
                await asyncio.sleep(wait_ms / 1000.0)


class RateLimiterRegistry:
    """Named token buckets, one per (platform, purpose) key.

    Buckets are created lazily on first use from the configured limits,
    falling back to the default capacity and refill rate. They live for
    the lifetime of the registry.
    """

    def __init__(
        self,
        limits: Optional[Dict[str, Tuple[float, float]]] = None,
        default_capacity: float = 10.0,
        default_refill_rate: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._limits = dict(limits or {})
        self._default = (default_capacity, default_refill_rate)
        self._clock = clock
        self._buckets: Dict[str, TokenBucket] = {}

    def get_bucket(self, name: str) -> TokenBucket:
        """Get or create the token bucket for ``name``."""
        bucket = self._buckets.get(name)
        if bucket is None:
            capacity, refill_rate = self._limits.get(name, self._default)
            bucket = TokenBucket(capacity=capacity, refill_rate=refill_rate, clock=self._clock)
            self._buckets[name] = bucket
            logger.debug("rate_bucket_created", bucket=name, capacity=capacity, refill_rate=refill_rate)
        return bucket

    def set_limit(self, name: str, capacity: float, refill_rate: float) -> None:
        """Set a custom limit. An existing bucket for ``name`` is replaced."""
        self._limits[name] = (capacity, refill_rate)
        self._buckets.pop(name, None)

    def try_acquire(self, name: str, tokens: float = 1.0) -> None:
        """Take tokens without waiting.

        Raises:
            RateLimited: If the bucket cannot supply the tokens right now
        """
        bucket = self.get_bucket(name)
        if not bucket.try_remove_tokens(tokens):
            raise RateLimited(name, bucket.wait_ms_for(tokens))

    async def acquire(self, name: str, tokens: float = 1.0, max_wait: Optional[float] = None) -> None:
        """Wait for tokens from the named bucket."""
        await self.get_bucket(name).acquire(tokens, max_wait=max_wait, name=name)
