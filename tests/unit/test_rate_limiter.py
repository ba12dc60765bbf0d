"""Unit tests for the shared provider rate limiter and stop tokens."""

from __future__ import annotations

import asyncio

import pytest

from demand_sweep.core.cancellation import CancelToken
from demand_sweep.core.rate_limiter import IntervalRateLimiter, get_volume_rate_limiter


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.mark.asyncio
async def test_calls_are_spaced_by_min_interval() -> None:
    clock = FakeClock()
    limiter = IntervalRateLimiter(6.0, clock=clock, sleep=clock.sleep)

    waits = [await limiter.acquire() for _ in range(3)]

    assert waits == [0.0, 6.0, 6.0]
    assert clock.sleeps == [6.0, 6.0]
    assert limiter.total_calls == 3


@pytest.mark.asyncio
async def test_elapsed_time_counts_toward_interval() -> None:
    clock = FakeClock()
    limiter = IntervalRateLimiter(6.0, clock=clock, sleep=clock.sleep)

    await limiter.acquire()
    clock.now += 4.0
    waited = await limiter.acquire()

    assert waited == pytest.approx(2.0)


@pytest.mark.asyncio
async def test_concurrent_tasks_share_one_gate() -> None:
    clock = FakeClock()
    limiter = IntervalRateLimiter(1.0, clock=clock, sleep=clock.sleep)
    call_times: list[float] = []

    async def task() -> None:
        async with limiter:
            call_times.append(clock.now)

    await asyncio.gather(*(task() for _ in range(4)))

    assert call_times == [100.0, 101.0, 102.0, 103.0]


def test_negative_interval_is_rejected() -> None:
    with pytest.raises(ValueError):
        IntervalRateLimiter(-1.0)


def test_volume_rate_limiter_is_process_wide() -> None:
    assert get_volume_rate_limiter() is get_volume_rate_limiter()


def test_cancel_token_keeps_first_reason() -> None:
    token = CancelToken("shaving")

    assert not token.cancelled
    token.cancel("operator stop")
    token.cancel("second stop")

    assert token.cancelled
    assert token.reason == "operator stop"
