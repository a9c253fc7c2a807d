from __future__ import annotations
from datetime import date

from fastapi import APIRouter, HTTPException, Query, Request, Response

from models import ReconciliationRun
from schemas import BitcoinRequest, BitcoinRunStats, ReconcileRequest, ReconciliationRunRead, RunReport, VerifyResponse
from services import integrity, orchestrator
from services.background import run_refresh_difficulty
from services.context import RunContext
from services.errors import FatalError, NetworkError

router = APIRouter(prefix="/admin/tasks", tags=["admin-tasks"])


def _ctx_kwargs(request: Request) -> dict:
    state = request.app.state
    return {
        "registry": getattr(state, "registry", None),
        "transport": getattr(state, "http_transport", None),
    }


@router.post("/reconcile", response_model=RunReport)
async def reconcile(payload: ReconcileRequest, request: Request):
    try:
        return await orchestrator.run_reconciliation(
            payload.start_date,
            payload.end_date,
            payload.start_period,
            payload.end_period,
            expected_total=payload.expected_total,
            sequential=payload.sequential,
            trigger="manual",
            **_ctx_kwargs(request),
        )
    except ValueError as e:
        raise HTTPException(400, str(e))
    except FatalError as e:
        raise HTTPException(503, str(e))


@router.post("/bitcoin", response_model=BitcoinRunStats)
async def bitcoin(payload: BitcoinRequest):
    try:
        return await orchestrator.run_bitcoin(payload.start_date, payload.end_date, payload.miner_models)
    except ValueError as e:
        raise HTTPException(400, str(e))


@router.get("/verify/{settlement_date}", response_model=VerifyResponse)
async def verify(settlement_date: date, request: Request):
    try:
        async with RunContext.open(**_ctx_kwargs(request)) as ctx:
            return await integrity.verify_date(ctx, settlement_date)
    except FatalError as e:
        raise HTTPException(503, str(e))


@router.post("/difficulty/refresh")
async def refresh_difficulty(request: Request):
    try:
        return await run_refresh_difficulty(getattr(request.app.state, "http_transport", None))
    except NetworkError as e:
        raise HTTPException(502, str(e))


@router.get("/runs", response_model=list[ReconciliationRunRead])
async def list_runs(
    response: Response,
    status: str | None = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    q = ReconciliationRun.all()
    if status:
        q = q.filter(status=status)
    total = await q.count()
    rows = await q.order_by("-started_at", "-id").offset(offset).limit(limit)
    response.headers["X-Total-Count"] = str(total)
    return [ReconciliationRunRead.model_validate(r) for r in rows]
