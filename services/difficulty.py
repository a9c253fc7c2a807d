from __future__ import annotations
import logging
from datetime import date
from typing import Optional, Tuple

import httpx

from models import DifficultySample
from services import config
from services.errors import NetworkError

logger = logging.getLogger(__name__)


async def sample_for_date(settlement_date: date) -> Optional[DifficultySample]:
    """Most recent sample on or before settlement_date."""
    return await DifficultySample.filter(sample_date__lte=settlement_date).order_by("-sample_date").first()


async def difficulty_for_date(settlement_date: date) -> Tuple[float, str]:
    """
    Returns (difficulty, source). Falls back to DEFAULT_DIFFICULTY when no
    sample covers the date.
    """
    s = await sample_for_date(settlement_date)
    if s is None:
        logger.warning(f"[difficulty] no sample on or before {settlement_date}; using default {config.DEFAULT_DIFFICULTY:.0f}")
        return config.DEFAULT_DIFFICULTY, "default"
    return s.difficulty, f"{s.source}:{s.sample_date.isoformat()}"


async def _get(client: httpx.AsyncClient, path: str) -> dict:
    url = f"{config.MEMPOOL_BASE_URL.rstrip('/')}{path}"
    try:
        response = await client.get(url)
        response.raise_for_status()
        data = response.json()
    except httpx.HTTPStatusError as e:
        raise NetworkError(f"[difficulty] {url} HTTP {e.response.status_code}", status_code=e.response.status_code) from e
    except httpx.TimeoutException as e:
        raise NetworkError(f"[difficulty] {url} timeout", timeout=True) from e
    except (httpx.HTTPError, ValueError) as e:
        raise NetworkError(f"[difficulty] {url} failed: {e}") from e
    if not isinstance(data, dict):
        raise NetworkError(f"[difficulty] {url} unexpected payload")
    return data


async def refresh_current_difficulty(client: httpx.AsyncClient, today: date | None = None) -> DifficultySample:
    """Pull current difficulty and BTC price from mempool.space and upsert today's sample."""
    today = today or date.today()
    mining = await _get(client, "/api/v1/mining/hashrate/3d")
    difficulty = mining.get("currentDifficulty")
    if not difficulty or float(difficulty) <= 0:
        raise NetworkError("[difficulty] currentDifficulty missing from mempool response")

    # price is optional; a failed price lookup keeps the difficulty
    try:
        prices = await _get(client, "/api/v1/prices")
    except NetworkError as e:
        logger.warning(f"{e}; storing difficulty without price")
        prices = {}

    obj, created = await DifficultySample.update_or_create(
        defaults=dict(
            difficulty=float(difficulty),
            price_usd=prices.get("USD"),
            price_gbp=prices.get("GBP"),
            source="mempool",
        ),
        sample_date=today,
    )
    logger.info(f"[difficulty] {'stored' if created else 'updated'} {today}: {float(difficulty):.0f}")
    return obj
