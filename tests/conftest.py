"""Shared fixtures: in-memory database, fake settlement API, test registry."""
import asyncio
import os

os.environ["DB_URL"] = "sqlite://:memory:"
os.environ["SCHEDULER_ENABLED"] = "0"

import httpx
import pytest
from tortoise import Tortoise

from services.reference import WindFarmRegistry

BMU_ROWS = [
    {"elexonBmUnit": "T_SGRWO-1", "leadPartyName": "Seagreen Wind Energy Limited", "fuelType": "WIND"},
    {"elexonBmUnit": "T_SGRWO-2", "leadPartyName": "Seagreen Wind Energy Limited", "fuelType": "WIND"},
    {"elexonBmUnit": "T_MOWWO-1", "leadPartyName": "Moray Offshore Wind West Ltd", "fuelType": "wind"},
    {"elexonBmUnit": "T_DRAXX-1", "leadPartyName": "Drax Power Limited", "fuelType": "BIOMASS"},
]


def entry(bmu="T_SGRWO-1", volume=-5.2, price=45.0, so=True, cadl=False, final=None):
    return {
        "id": bmu,
        "volume": volume,
        "soFlag": so,
        "cadlFlag": cadl,
        "originalPrice": price,
        "finalPrice": price if final is None else final,
    }


async def no_sleep(_seconds):
    return None


class FakeElexon:
    """
    Serves /balancing/settlement/stack/all/{side}/{date}/{period}.
    stacks[(side, date_iso, period)] -> rows; failures[...] -> status code or "timeout".
    """

    def __init__(self):
        self.stacks = {}
        self.failures = {}
        self.calls = []

    def set(self, side, d, period, rows):
        self.stacks[(side, str(d), period)] = rows

    def fail(self, side, d, period, status=503):
        self.failures[(side, str(d), period)] = status

    def handler(self, request: httpx.Request) -> httpx.Response:
        side, d, period = request.url.path.rstrip("/").split("/")[-3:]
        key = (side, d, int(period))
        self.calls.append(key)
        status = self.failures.get(key)
        if status == "timeout":
            raise httpx.ReadTimeout("timed out", request=request)
        if status:
            return httpx.Response(status, json={"error": "unavailable"})
        return httpx.Response(200, json={"data": self.stacks.get(key, [])})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def registry():
    return WindFarmRegistry.from_rows(BMU_ROWS)


@pytest.fixture
def fake_api():
    return FakeElexon()


@pytest.fixture
def run_db():
    """Run an async scenario against a fresh in-memory schema."""
    def _run(scenario, *args, **kwargs):
        async def _wrapped():
            await Tortoise.init(db_url="sqlite://:memory:", modules={"models": ["models"]})
            await Tortoise.generate_schemas()
            try:
                return await scenario(*args, **kwargs)
            finally:
                await Tortoise.close_connections()
        return asyncio.run(_wrapped())
    return _run
