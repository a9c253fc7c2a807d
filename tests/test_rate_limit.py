import asyncio

import pytest

from services.rate_limit import SlidingWindowRateLimiter


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.slept = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.slept.append(seconds)
        self.now += seconds


def test_within_budget_never_waits():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(3, 60, clock=clock, sleep=clock.sleep)

    async def scenario():
        for _ in range(3):
            await limiter.acquire()

    asyncio.run(scenario())
    assert clock.slept == []
    assert limiter.in_window == 3


def test_waits_until_oldest_request_ages_out():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(2, 60, clock=clock, sleep=clock.sleep)

    async def scenario():
        await limiter.acquire()        # t=0
        clock.now = 10
        await limiter.acquire()        # t=10
        clock.now = 15
        await limiter.acquire()        # must wait for t=0 to leave: 45s

    asyncio.run(scenario())
    assert clock.slept == [45]
    assert clock.now == 60
    assert limiter.waits == 1
    # t=0 has aged out; t=10 and t=60 remain
    assert limiter.in_window == 2


def test_requests_outside_window_are_forgotten():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(1, 60, clock=clock, sleep=clock.sleep)

    async def scenario():
        await limiter.acquire()
        clock.now = 61
        await limiter.acquire()

    asyncio.run(scenario())
    assert clock.slept == []


def test_reset_clears_state():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(1, 60, clock=clock, sleep=clock.sleep)
    async def scenario():
        await limiter.acquire()
        limiter.reset()
        assert limiter.in_window == 0
        await limiter.acquire()

    asyncio.run(scenario())
    assert clock.slept == []


@pytest.mark.parametrize("max_requests, window", [(0, 60), (5, 0)])
def test_rejects_bad_configuration(max_requests, window):
    with pytest.raises(ValueError):
        SlidingWindowRateLimiter(max_requests, window)
