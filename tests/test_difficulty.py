from datetime import date

import httpx
import pytest

from models import DifficultySample
from services import config, difficulty
from services.errors import NetworkError

TODAY = date(2025, 3, 28)


def _client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_refresh_stores_difficulty_and_prices(run_db):
    def handler(request):
        if request.url.path.endswith("/hashrate/3d"):
            return httpx.Response(200, json={"currentDifficulty": 113757508810853})
        return httpx.Response(200, json={"USD": 84000, "GBP": 65000})

    async def scenario():
        async with _client(handler) as client:
            await difficulty.refresh_current_difficulty(client, TODAY)
            # a second refresh on the same day updates in place
            await difficulty.refresh_current_difficulty(client, TODAY)
        return await DifficultySample.filter(sample_date=TODAY).all()

    rows = run_db(scenario)
    assert len(rows) == 1
    assert rows[0].difficulty == 113757508810853
    assert rows[0].price_gbp == 65000
    assert rows[0].source == "mempool"


def test_price_failure_keeps_difficulty(run_db):
    def handler(request):
        if request.url.path.endswith("/prices"):
            return httpx.Response(503)
        return httpx.Response(200, json={"currentDifficulty": 1.5e14})

    async def scenario():
        async with _client(handler) as client:
            return await difficulty.refresh_current_difficulty(client, TODAY)

    sample = run_db(scenario)
    assert sample.difficulty == 1.5e14
    assert sample.price_usd is None


def test_missing_difficulty_is_a_network_error(run_db):
    def handler(request):
        return httpx.Response(200, json={})

    async def scenario():
        async with _client(handler) as client:
            with pytest.raises(NetworkError):
                await difficulty.refresh_current_difficulty(client, TODAY)
        return await DifficultySample.all().count()

    assert run_db(scenario) == 0


def test_lookup_falls_back_to_default(run_db):
    async def scenario():
        before = await difficulty.difficulty_for_date(date(2025, 1, 1))
        await DifficultySample.create(sample_date=date(2025, 3, 10), difficulty=112149504190349)
        after = await difficulty.difficulty_for_date(TODAY)
        return before, after

    before, after = run_db(scenario)
    assert before == (config.DEFAULT_DIFFICULTY, "default")
    assert after[0] == 112149504190349
