# main.py (full, lifespan-based)
from __future__ import annotations

import asyncio, logging, contextlib
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.routing import APIRoute
from tortoise import Tortoise

from routers import admin_tasks, bitcoin, curtailment_records, summaries

# Background pieces
from scheduler import Scheduler
from services import config
from services.background import run_lookback, run_refresh_difficulty, run_update_today
from services.errors import FatalError
from services.reference import load_registry
from services.seeder import seed_if_empty

logger = logging.getLogger("uvicorn")


# ----- scheduled jobs -----
async def _job_update(app: FastAPI):
    report = await run_update_today(registry=app.state.registry, transport=app.state.http_transport)
    return {"run_id": report.run_id, "status": report.status, "periods_ok": report.periods_succeeded}

async def _job_lookback(app: FastAPI):
    return await run_lookback(registry=app.state.registry, transport=app.state.http_transport)

async def _job_difficulty(app: FastAPI):
    return await run_refresh_difficulty(app.state.http_transport)


# ----- lifespan -----
@asynccontextmanager
async def lifespan(app: FastAPI):
    # 1) DB init
    await Tortoise.init(
        db_url=config.DB_URL,
        modules={"models": ["models"]},
    )
    await Tortoise.generate_schemas()

    # 2) Seeds + reference data (loaded once for the app lifetime)
    await seed_if_empty(logger=logger.info)
    try:
        app.state.registry = load_registry()
    except FatalError as e:
        logger.error(f"[startup] {e}")
        app.state.registry = None
    if not hasattr(app.state, "http_transport"):
        app.state.http_transport = None

    # 3) Scheduler
    sched = Scheduler()
    app.state.scheduler = sched
    sched_task = None
    if config.SCHEDULER_ENABLED and app.state.registry is not None:
        sched.every(config.UPDATE_INTERVAL_SECONDS, "update-today", _job_update, app)
        sched.every(config.VERIFY_INTERVAL_SECONDS, "lookback", _job_lookback, app)
        sched.every(config.VERIFY_INTERVAL_SECONDS, "difficulty", _job_difficulty, app)
        sched_task = asyncio.create_task(sched.run_forever())
    try:
        yield
    finally:
        if sched_task and not sched_task.done():
            sched_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sched_task
        await Tortoise.close_connections()

# ----- app & routers -----
app = FastAPI(lifespan=lifespan, title="Wind Curtailment API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Range", "X-Total-Count"],
)

app.include_router(curtailment_records.router)
app.include_router(summaries.router)
app.include_router(bitcoin.router)
app.include_router(admin_tasks.router)


@app.get("/health")
async def health():
    return {
        "status": "ok" if app.state.registry is not None else "degraded",
        "wind_farms": len(app.state.registry) if app.state.registry is not None else 0,
        "scheduler": bool(app.state.scheduler.jobs),
    }


for route in app.routes:
    if isinstance(route, APIRoute):
        logger.info("%s -> %s", list(route.methods), route.path)
