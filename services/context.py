from __future__ import annotations
import asyncio
import contextlib
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable, List, Optional

import httpx

from services import config
from services.elexon import SettlementFetcher, build_client
from services.rate_limit import SlidingWindowRateLimiter
from services.reference import WindFarmRegistry, load_registry


@dataclass
class RunContext:
    """Per-run state: HTTP client, rate limiter, reference data, write lock."""
    client: httpx.AsyncClient
    limiter: SlidingWindowRateLimiter
    registry: WindFarmRegistry
    fetcher: SettlementFetcher
    miner_models: List[str] = field(default_factory=lambda: list(config.MINER_MODELS))
    batch_size: int = config.PERIOD_BATCH_SIZE
    batch_delay_seconds: float = config.BATCH_DELAY_SECONDS
    accept_partial: bool = config.ACCEPT_PARTIAL_FETCH
    tolerance: float = config.RECONCILE_TOLERANCE
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    # partition writes go through one at a time; fetches stay concurrent
    write_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @classmethod
    @contextlib.asynccontextmanager
    async def open(
        cls,
        *,
        registry: Optional[WindFarmRegistry] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        miner_models: Optional[List[str]] = None,
        clock: Optional[Callable[[], float]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        **overrides,
    ) -> AsyncIterator["RunContext"]:
        """
        Build a fresh context; the registry is loaded from disk unless passed in
        (a missing mapping raises FatalError before anything is fetched).
        """
        if registry is None:
            registry = load_registry()
        limiter_kwargs = {"sleep": sleep}
        if clock is not None:
            limiter_kwargs["clock"] = clock
        limiter = SlidingWindowRateLimiter(config.ELEXON_MAX_REQUESTS, config.ELEXON_WINDOW_SECONDS, **limiter_kwargs)

        client = build_client(transport)
        try:
            ctx = cls(
                client=client,
                limiter=limiter,
                registry=registry,
                fetcher=SettlementFetcher(client, limiter, sleep=sleep),
                sleep=sleep,
                **overrides,
            )
            if miner_models:
                ctx.miner_models = list(miner_models)
            yield ctx
        finally:
            await client.aclose()
