"""Tests for the rate limiter and circuit breaker."""

import asyncio

from flowpay.utils.rate_limiter import CircuitBreaker, RateLimiter


def test_burst_is_not_throttled():
    limiter = RateLimiter(calls_per_second=100, burst_size=5)

    async def _go():
        return [await limiter.acquire() for _ in range(5)]

    assert asyncio.run(_go()) == [0.0] * 5
    assert limiter.throttled_calls == 0


def test_calls_beyond_burst_wait():
    limiter = RateLimiter(calls_per_second=100, burst_size=1)

    async def _go():
        await limiter.acquire()
        return await limiter.acquire()

    waited = asyncio.run(_go())

    assert waited > 0
    assert limiter.throttled_calls == 1
    assert limiter.total_calls == 2


def test_breaker_opens_after_threshold():
    breaker = CircuitBreaker(failure_threshold=2, reset_timeout=30, name="test")

    breaker.record_failure()
    assert not breaker.is_open
    breaker.record_failure()
    assert breaker.is_open

    breaker._last_failure -= 31
    assert not breaker.is_open

    breaker.record_success()
    assert breaker.failures == 0
    assert not breaker.is_open
