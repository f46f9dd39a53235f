"""Tests for the token bucket and the named bucket registry."""

import pytest

from wholesale.core.exceptions import RateLimited
from wholesale.scrapers.utils.rate_limiter import RateLimiterRegistry, TokenBucket


class TestTokenBucket:
    """Tests for TokenBucket."""

    def test_burst_then_exhaustion(self, clock):
        """A full {30, 0.5} bucket admits 30 rapid removals and rejects the next 5."""
        bucket = TokenBucket(capacity=30, refill_rate=0.5, clock=clock)

        results = [bucket.try_remove_tokens() for _ in range(35)]

        assert results.count(True) == 30
        assert results.count(False) == 5
        assert results[:30] == [True] * 30
        expected = (1 - bucket.tokens) / 0.5 * 1000
        assert bucket.estimated_wait_ms == pytest.approx(expected)
        assert bucket.estimated_wait_ms > 0

    def test_refill_is_linear(self, clock):
        bucket = TokenBucket(capacity=2, refill_rate=0.5, clock=clock)
        assert bucket.try_remove_tokens(2)

        clock.advance(1.0)
        assert bucket.estimated_wait_ms == pytest.approx(1000.0)
        assert not bucket.try_remove_tokens()

        clock.advance(1.0)
        assert bucket.estimated_wait_ms == 0.0
        assert bucket.try_remove_tokens()

    def test_tokens_never_exceed_capacity(self, clock):
        bucket = TokenBucket(capacity=3, refill_rate=10, clock=clock)
        clock.advance(3600)

        assert bucket.try_remove_tokens(3)
        assert not bucket.try_remove_tokens()
        assert 0 <= bucket.tokens <= bucket.capacity

    def test_failed_removal_leaves_bucket_untouched(self, clock):
        bucket = TokenBucket(capacity=5, refill_rate=1, clock=clock)
        bucket.try_remove_tokens(4)

        assert not bucket.try_remove_tokens(2)
        assert bucket.tokens == pytest.approx(1.0)

    def test_zero_refill_waits_forever(self, clock):
        bucket = TokenBucket(capacity=1, refill_rate=0, clock=clock)
        bucket.try_remove_tokens()
        assert bucket.estimated_wait_ms == float("inf")

    def test_invalid_parameters(self):
        with pytest.raises(ValueError, match="capacity must be positive"):
            TokenBucket(capacity=0, refill_rate=1)
        with pytest.raises(ValueError, match="refill_rate must be non-negative"):
            TokenBucket(capacity=1, refill_rate=-1)

    async def test_acquire_gives_up_past_max_wait(self, clock):
        bucket = TokenBucket(capacity=1, refill_rate=0.1, clock=clock)
        bucket.try_remove_tokens()

        with pytest.raises(RateLimited) as exc_info:
            await bucket.acquire(max_wait=1.0, name="alibaba-detail")

        assert exc_info.value.bucket == "alibaba-detail"
        assert exc_info.value.wait_ms == pytest.approx(10000.0)

    async def test_acquire_waits_for_refill(self):
        bucket = TokenBucket(capacity=1, refill_rate=1000)
        bucket.try_remove_tokens()

        await bucket.acquire()

        assert bucket.tokens < 1

    async def test_acquire_more_than_capacity(self):
        bucket = TokenBucket(capacity=2, refill_rate=1)
        with pytest.raises(ValueError, match="Cannot acquire"):
            await bucket.acquire(3)


class TestRateLimiterRegistry:
    """Tests for RateLimiterRegistry."""

    def test_buckets_created_lazily_from_limits(self, clock):
        registry = RateLimiterRegistry(
            limits={"alibaba-detail": (30, 0.5)},
            default_capacity=4,
            default_refill_rate=1,
            clock=clock,
        )

        configured = registry.get_bucket("alibaba-detail")
        default = registry.get_bucket("indiamart-search")

        assert configured.capacity == 30
        assert configured.refill_rate == 0.5
        assert default.capacity == 4
        assert registry.get_bucket("alibaba-detail") is configured

    def test_try_acquire_raises_rate_limited(self, clock):
        registry = RateLimiterRegistry(default_capacity=1, default_refill_rate=0.5, clock=clock)
        registry.try_acquire("made_in_china-detail")

        with pytest.raises(RateLimited) as exc_info:
            registry.try_acquire("made_in_china-detail")

        assert exc_info.value.bucket == "made_in_china-detail"
        assert exc_info.value.wait_ms == pytest.approx(2000.0)

    def test_buckets_are_independent(self, clock):
        registry = RateLimiterRegistry(default_capacity=1, default_refill_rate=0.5, clock=clock)
        registry.try_acquire("alibaba-search")
        registry.try_acquire("alibaba-detail")

    def test_set_limit_replaces_bucket(self, clock):
        registry = RateLimiterRegistry(clock=clock)
        old = registry.get_bucket("alibaba-search")

        registry.set_limit("alibaba-search", 2, 0.1)
        new = registry.get_bucket("alibaba-search")

        assert new is not old
        assert new.capacity == 2
