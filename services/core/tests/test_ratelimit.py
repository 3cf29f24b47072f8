"""Tests for the sliding-window rate limiter."""

import pytest

from marketdata.errors import RateLimitedError
from marketdata.retrieval.ratelimit import SlidingWindowRateLimiter

from conftest import FakeClock


def _limiter(clock, **kwargs):
    return SlidingWindowRateLimiter(clock=clock.time, sleep=clock.sleep, **kwargs)


@pytest.mark.asyncio
async def test_under_quota_does_not_wait():
    clock = FakeClock(now=0.0)
    limiter = _limiter(clock, max_calls=8)

    for _ in range(8):
        await limiter.acquire()

    assert clock.sleeps == []
    assert limiter.in_window() == 8


@pytest.mark.asyncio
async def test_ninth_call_waits_for_oldest_to_leave_window():
    """8 calls in the last 60s: the 9th is held until the oldest slides out."""
    clock = FakeClock(now=0.0)
    limiter = _limiter(clock, max_calls=8, window_seconds=60.0, margin_seconds=0.2)
    for ts in range(8):
        limiter.record(float(ts))  # calls at t=0..7
    clock.now = 10.0

    await limiter.acquire()

    assert clock.sleeps == [pytest.approx(50.2)]
    assert clock.now >= 60.0  # the call at t=0 has left the window
    assert limiter.in_window() == 8  # t=1..7 plus the new call


@pytest.mark.asyncio
async def test_old_calls_are_pruned():
    clock = FakeClock(now=0.0)
    limiter = _limiter(clock, max_calls=2)
    limiter.record(0.0)
    limiter.record(1.0)
    clock.now = 75.0

    await limiter.acquire()

    assert clock.sleeps == []
    assert limiter.in_window() == 1


@pytest.mark.asyncio
async def test_backoff_then_success():
    clock = FakeClock(now=0.0)
    limiter = _limiter(clock, backoff=(3.0, 6.0))
    attempts = []

    async def call():
        attempts.append(clock.now)
        if len(attempts) == 1:
            raise RateLimitedError("429")
        return {"ok": True}

    result = await limiter.call_with_backoff(call)

    assert result == {"ok": True}
    assert len(attempts) == 2
    assert clock.sleeps == [3.0]


@pytest.mark.asyncio
async def test_backoff_gives_up_after_bounded_attempts():
    clock = FakeClock(now=0.0)
    limiter = _limiter(clock, backoff=(3.0, 6.0))
    attempts = []

    async def call():
        attempts.append(clock.now)
        raise RateLimitedError("429")

    result = await limiter.call_with_backoff(call)

    assert result is None
    assert len(attempts) == 3
    assert clock.sleeps == [3.0, 6.0]
    assert limiter.in_window() == 3  # every attempt counts against the quota


def test_invalid_quota():
    with pytest.raises(ValueError):
        SlidingWindowRateLimiter(max_calls=0)
