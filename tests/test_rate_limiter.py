"""
Tests for the token bucket rate limiter.

Time is simulated: the limiter gets a fake monotonic clock and a fake
sleep that advances it, so no test actually waits.
"""

import asyncio

import pytest

from savings_engine.engine.rate_limiter import TokenBucketRateLimiter


class FakeTime:
    """Monotonic seconds plus a sleep that moves them forward."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []

    def clock(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


def make_limiter(max_tokens, refill_per_second, fake):
    return TokenBucketRateLimiter(
        max_tokens,
        refill_per_second,
        clock=fake.clock,
        sleep=fake.sleep,
    )


class TestTokenBucketRateLimiter:
    """Admission behaviour of the token bucket."""

    def test_burst_up_to_capacity_does_not_wait(self):
        """Test that a full bucket admits max_tokens calls immediately."""
        fake = FakeTime()
        limiter = make_limiter(3, 1.0, fake)

        async def run():
            for _ in range(3):
                await limiter.acquire()

        asyncio.run(run())
        assert fake.sleeps == []
        assert limiter.available_tokens == pytest.approx(0.0)

    def test_waits_for_missing_tokens(self):
        """Test that an empty bucket waits missing / refill_rate seconds."""
        fake = FakeTime()
        limiter = make_limiter(2, 0.5, fake)

        async def run():
            await limiter.acquire(2)
            await limiter.acquire(1)

        asyncio.run(run())
        assert fake.sleeps == [pytest.approx(2.0)]
        assert limiter.available_tokens >= 0

    def test_minimum_wait_is_one_millisecond(self):
        """Test that tiny waits are rounded up to 1 ms instead of busy looping."""
        fake = FakeTime()
        limiter = make_limiter(1, 1_000_000.0, fake)

        async def run():
            await limiter.acquire()
            await limiter.acquire()

        asyncio.run(run())
        assert fake.sleeps == [pytest.approx(0.001)]

    def test_non_positive_cost_is_admitted_without_debit(self):
        """Test that a zero or negative cost returns at once and keeps tokens."""
        fake = FakeTime()
        limiter = make_limiter(2, 1.0, fake)

        async def run():
            await limiter.acquire(0)
            await limiter.acquire(-3)

        asyncio.run(run())
        assert fake.sleeps == []
        assert limiter.available_tokens == pytest.approx(2.0)

    def test_cost_above_capacity_is_clamped(self):
        """Test that a cost larger than the bucket is clamped instead of waiting forever."""
        fake = FakeTime()
        limiter = make_limiter(2, 1.0, fake)

        asyncio.run(limiter.acquire(5))
        assert fake.sleeps == []
        assert limiter.available_tokens == pytest.approx(0.0)

    def test_refill_is_capped_at_capacity(self):
        """Test that a long idle period never refills beyond max_tokens."""
        fake = FakeTime()
        limiter = make_limiter(3, 1.0, fake)

        async def run():
            await limiter.acquire(3)
            fake.now += 1000
            await limiter.acquire(1)

        asyncio.run(run())
        assert limiter.available_tokens == pytest.approx(2.0)

    def test_concurrent_callers_never_overdraw(self):
        """Test that admitted cost stays within capacity plus refill over elapsed time."""
        fake = FakeTime()
        limiter = make_limiter(2, 1.0, fake)
        admitted = []

        async def caller(i):
            await limiter.acquire()
            admitted.append(i)
            assert limiter.available_tokens >= 0

        async def run():
            await asyncio.gather(*(caller(i) for i in range(8)))

        asyncio.run(run())
        assert sorted(admitted) == list(range(8))
        assert len(admitted) <= 2 + 1.0 * fake.now + 1e-9

    def test_rejects_invalid_configuration(self):
        """Test that capacity and refill rate must be positive."""
        with pytest.raises(ValueError):
            TokenBucketRateLimiter(0, 1.0)
        with pytest.raises(ValueError):
            TokenBucketRateLimiter(1.0, 0)
