"""
Settlement stack fetcher for the Elexon BMRS API.

Each (date, period) needs two calls, the bid stack and the offer stack, issued
concurrently. A side that still fails after retries contributes an empty list;
only when both sides fail is the period reported as a NetworkError.
"""
from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from services import config
from services.errors import NetworkError
from services.rate_limit import SlidingWindowRateLimiter

logger = logging.getLogger(__name__)

SIDES = ("bid", "offer")
RETRYABLE_STATUS = {429, 500, 502, 503, 504}


@dataclass
class StackFetch:
    """Raw entries for one (date, period); failed_sides lists sides that gave up."""
    settlement_date: date
    settlement_period: int
    entries: List[Dict[str, Any]] = field(default_factory=list)
    failed_sides: List[str] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def partial(self) -> bool:
        return 0 < len(self.failed_sides) < len(SIDES)

    @property
    def failed(self) -> bool:
        return len(self.failed_sides) == len(SIDES)


class SettlementFetcher:
    def __init__(
        self,
        client: httpx.AsyncClient,
        limiter: SlidingWindowRateLimiter,
        *,
        base_url: str | None = None,
        max_retries: int | None = None,
        retry_base_seconds: float | None = None,
        rate_limit_pause_seconds: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.limiter = limiter
        self.base_url = (base_url or config.ELEXON_BASE_URL).rstrip("/")
        self.max_retries = config.ELEXON_MAX_RETRIES if max_retries is None else max_retries
        self.retry_base_seconds = (
            config.ELEXON_RETRY_BASE_SECONDS if retry_base_seconds is None else retry_base_seconds
        )
        self.rate_limit_pause_seconds = (
            config.ELEXON_RATE_LIMIT_PAUSE_SECONDS if rate_limit_pause_seconds is None else rate_limit_pause_seconds
        )
        self._sleep = sleep
        self.requests_made = 0

    def stack_url(self, side: str, settlement_date: date, period: int) -> str:
        return f"{self.base_url}/balancing/settlement/stack/all/{side}/{settlement_date.isoformat()}/{period}"

    async def _get_json(self, url: str, tag: str) -> Any:
        attempt = 0
        while True:
            await self.limiter.acquire()
            self.requests_made += 1
            try:
                resp = await self.client.get(url, headers={"Accept": "application/json"})
            except httpx.TimeoutException as e:
                err = NetworkError(f"{tag} timeout: {e}", timeout=True)
                pause = self.retry_base_seconds * (2 ** attempt)
            except httpx.TransportError as e:
                err = NetworkError(f"{tag} transport error: {e}")
                pause = self.retry_base_seconds * (2 ** attempt)
            else:
                if resp.status_code < 400:
                    try:
                        return resp.json()
                    except ValueError as e:
                        raise NetworkError(f"{tag} invalid JSON body: {e}") from e
                if resp.status_code not in RETRYABLE_STATUS:
                    raise NetworkError(f"{tag} HTTP {resp.status_code}", status_code=resp.status_code)
                err = NetworkError(f"{tag} HTTP {resp.status_code}", status_code=resp.status_code)
                if resp.status_code == 429:
                    pause = self.rate_limit_pause_seconds
                else:
                    pause = self.retry_base_seconds * (2 ** attempt)

            if attempt >= self.max_retries:
                raise err
            attempt += 1
            logger.info(f"{tag} {err}; retry {attempt}/{self.max_retries} in {pause:g}s")
            await self._sleep(pause)

    async def fetch_side(self, side: str, settlement_date: date, period: int) -> List[Dict[str, Any]]:
        tag = f"[{settlement_date} P{period} {side}]"
        payload = await self._get_json(self.stack_url(side, settlement_date, period), tag)
        rows = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(rows, list):
            raise NetworkError(f"{tag} invalid API response format")
        out = []
        for r in rows:
            if isinstance(r, dict):
                out.append({**r, "side": side})
        return out

    async def fetch(self, settlement_date: date, period: int) -> StackFetch:
        """Concurrent bid + offer fetch; raises NetworkError only if both sides fail."""
        result = StackFetch(settlement_date=settlement_date, settlement_period=period)
        outcomes = await asyncio.gather(
            *(self.fetch_side(side, settlement_date, period) for side in SIDES),
            return_exceptions=True,
        )
        for side, out in zip(SIDES, outcomes):
            if isinstance(out, NetworkError):
                result.failed_sides.append(side)
                result.errors[side] = str(out)
                logger.warning(f"[{settlement_date} P{period}] {side} stack unavailable: {out}")
            elif isinstance(out, BaseException):
                raise out
            else:
                result.entries.extend(out)

        if result.failed:
            first = result.errors.get("bid") or result.errors.get("offer")
            raise NetworkError(f"[{settlement_date} P{period}] both stacks failed: {first}")
        return result


def build_client(transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=config.ELEXON_TIMEOUT_SECONDS, transport=transport)
