import asyncio
from datetime import date

import httpx
import pytest

from conftest import FakeElexon, entry
from services.elexon import SettlementFetcher
from services.errors import NetworkError
from services.rate_limit import SlidingWindowRateLimiter

D = date(2025, 3, 28)


def _run(fake: FakeElexon, coro_fn, **fetcher_kwargs):
    slept = []

    async def sleep(seconds):
        slept.append(seconds)

    async def scenario():
        limiter = SlidingWindowRateLimiter(100, 60, sleep=sleep)
        async with httpx.AsyncClient(transport=fake.transport) as client:
            fetcher = SettlementFetcher(
                client, limiter,
                base_url="https://api.test/bmrs/api/v1",
                max_retries=2,
                retry_base_seconds=1,
                rate_limit_pause_seconds=60,
                sleep=sleep,
                **fetcher_kwargs,
            )
            return await coro_fn(fetcher), fetcher

    (result, fetcher) = asyncio.run(scenario())
    return result, fetcher, slept


def test_url_shape():
    f = SettlementFetcher(None, SlidingWindowRateLimiter(1, 1), base_url="https://x/api/")
    assert f.stack_url("bid", D, 7) == "https://x/api/balancing/settlement/stack/all/bid/2025-03-28/7"


def test_concatenates_bid_and_offer_sides():
    fake = FakeElexon()
    fake.set("bid", D, 24, [entry("T_SGRWO-1")])
    fake.set("offer", D, 24, [entry("T_SGRWO-2", volume=3.0)])

    res, fetcher, slept = _run(fake, lambda f: f.fetch(D, 24))
    assert [e["id"] for e in res.entries] == ["T_SGRWO-1", "T_SGRWO-2"]
    assert [e["side"] for e in res.entries] == ["bid", "offer"]
    assert not res.partial
    assert fetcher.requests_made == 2
    assert slept == []


def test_one_side_failing_keeps_the_other():
    fake = FakeElexon()
    fake.set("bid", D, 24, [entry()])
    fake.fail("offer", D, 24, 503)

    res, fetcher, slept = _run(fake, lambda f: f.fetch(D, 24))
    assert len(res.entries) == 1
    assert res.partial
    assert res.failed_sides == ["offer"]
    # 1 bid + 3 offer attempts (initial + 2 retries), exponential backoff 1, 2
    assert fetcher.requests_made == 4
    assert slept == [1, 2]


def test_both_sides_failing_raises():
    fake = FakeElexon()
    fake.fail("bid", D, 24, 500)
    fake.fail("offer", D, 24, "timeout")

    with pytest.raises(NetworkError):
        _run(fake, lambda f: f.fetch(D, 24))


def test_rate_limited_response_gives_up_after_retries():
    fake = FakeElexon()
    fake.fail("bid", D, 1, 429)

    with pytest.raises(NetworkError) as exc:
        _run(fake, lambda f: f.fetch_side("bid", D, 1))
    assert exc.value.status_code == 429


def test_429_pause_length():
    fake = FakeElexon()
    fake.fail("bid", D, 1, 429)
    slept = []

    async def sleep(seconds):
        slept.append(seconds)

    async def scenario():
        async with httpx.AsyncClient(transport=fake.transport) as client:
            f = SettlementFetcher(client, SlidingWindowRateLimiter(100, 60, sleep=sleep),
                                  base_url="https://api.test", max_retries=1,
                                  rate_limit_pause_seconds=60, sleep=sleep)
            with pytest.raises(NetworkError):
                await f.fetch_side("bid", D, 1)

    asyncio.run(scenario())
    assert slept == [60]


def test_client_error_is_not_retried():
    fake = FakeElexon()
    fake.fail("bid", D, 5, 404)

    async def go(f):
        with pytest.raises(NetworkError) as exc:
            await f.fetch_side("bid", D, 5)
        return exc.value

    err, fetcher, slept = _run(fake, go)
    assert err.status_code == 404
    assert fetcher.requests_made == 1
    assert slept == []


def test_timeout_is_flagged():
    fake = FakeElexon()
    fake.fail("offer", D, 9, "timeout")

    async def go(f):
        with pytest.raises(NetworkError) as exc:
            await f.fetch_side("offer", D, 9)
        return exc.value

    err, fetcher, _ = _run(fake, go)
    assert err.timeout is True
    assert fetcher.requests_made == 3


def test_payload_without_data_list_is_rejected():
    def handler(request):
        return httpx.Response(200, json={"unexpected": True})

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            f = SettlementFetcher(client, SlidingWindowRateLimiter(10, 60), base_url="https://api.test")
            await f.fetch_side("bid", D, 1)

    with pytest.raises(NetworkError):
        asyncio.run(scenario())
