# routers/bitcoin.py
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from api_utils import RAListParams, paginate_and_respond, parse_sort
from models import BitcoinDailySummary, BitcoinMonthlySummary, BitcoinYearlySummary
from schemas import BitcoinEstimate, BitcoinSummaryRead
from services import bitcoin, difficulty
from services.errors import InvalidDifficultyError, InvalidModelError

router = APIRouter(prefix="/bitcoin", tags=["bitcoin"])

SORTS = {"miner_model", "bitcoin_mined"}


def _list(model_cls, key: str, params: RAListParams, miner_model: Optional[str]):
    qs = model_cls.all()
    if miner_model:
        qs = qs.filter(miner_model=miner_model)
    return paginate_and_respond(
        qs=qs,
        skip=params.skip,
        limit=params.limit,
        order=parse_sort(params.sort, SORTS, default=key),
        to_pydantic=lambda m: BitcoinSummaryRead(
            period_key=str(getattr(m, key)),
            miner_model=m.miner_model,
            bitcoin_mined=m.bitcoin_mined,
        ),
    )


@router.get("/summaries/daily", response_model=list[BitcoinSummaryRead])
async def list_daily(params: RAListParams = Depends(), miner_model: Optional[str] = Query(None)):
    return await _list(BitcoinDailySummary, "summary_date", params, miner_model)


@router.get("/summaries/monthly", response_model=list[BitcoinSummaryRead])
async def list_monthly(params: RAListParams = Depends(), miner_model: Optional[str] = Query(None)):
    return await _list(BitcoinMonthlySummary, "year_month", params, miner_model)


@router.get("/summaries/yearly", response_model=list[BitcoinSummaryRead])
async def list_yearly(params: RAListParams = Depends(), miner_model: Optional[str] = Query(None)):
    return await _list(BitcoinYearlySummary, "year", params, miner_model)


@router.get("/calculate", response_model=BitcoinEstimate)
async def calculate(
    energy_mwh: float = Query(..., ge=0),
    miner_model: str = Query("S19J_PRO"),
    settlement_date: Optional[date] = Query(None, alias="date"),
    difficulty_override: Optional[float] = Query(None, alias="difficulty"),
):
    d = settlement_date or date.today()
    if difficulty_override is None:
        diff, _ = await difficulty.difficulty_for_date(d)
    else:
        diff = difficulty_override
    reward = bitcoin.block_reward_for_date(d)
    try:
        mined = bitcoin.compute(energy_mwh, miner_model, diff, reward)
    except (InvalidModelError, InvalidDifficultyError) as e:
        raise HTTPException(400, str(e))
    return BitcoinEstimate(
        energy_mwh=energy_mwh,
        miner_model=miner_model,
        settlement_date=d,
        difficulty=diff,
        block_reward=reward,
        bitcoin_mined=mined,
    )
