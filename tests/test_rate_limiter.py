import asyncio

import pytest

from presearch_core.utils.rate_limiter import RateLimiter


@pytest.mark.asyncio
async def test_permits_up_to_max_without_waiting(clock, sleep):
    limiter = RateLimiter(max_requests=3, window_ms=1000, clock=clock, sleep=sleep)

    for _ in range(3):
        assert await limiter.permit() is True

    assert sleep.calls == []
    assert limiter.stats()["currentCount"] == 3


@pytest.mark.asyncio
async def test_caller_over_limit_suspends_until_window_reset(clock, sleep):
    limiter = RateLimiter(max_requests=3, window_ms=1000, clock=clock, sleep=sleep)
    for _ in range(3):
        await limiter.permit()

    clock.advance(0.25)
    assert await limiter.permit() is True

    assert sleep.calls == [pytest.approx(0.75)]
    assert limiter.total_waits == 1
    # The fourth request opened a fresh window
    assert limiter.stats()["currentCount"] == 1


@pytest.mark.asyncio
async def test_window_rolls_over(clock, sleep):
    limiter = RateLimiter(max_requests=2, window_ms=500, clock=clock, sleep=sleep)
    await limiter.permit()
    await limiter.permit()

    clock.advance(0.5)
    await limiter.permit()

    assert sleep.calls == []
    assert limiter.window.request_count == 1


@pytest.mark.asyncio
async def test_extra_caller_really_blocks():
    limiter = RateLimiter(max_requests=1, window_ms=60_000)
    await limiter.permit()

    waiter = asyncio.ensure_future(limiter.permit())
    await asyncio.sleep(0.05)
    assert not waiter.done()
    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter


def test_invalid_arguments():
    with pytest.raises(ValueError):
        RateLimiter(max_requests=0)
    with pytest.raises(ValueError):
        RateLimiter(window_ms=0)
