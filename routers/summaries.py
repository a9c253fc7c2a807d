# routers/summaries.py
from datetime import date

from fastapi import APIRouter, Depends, HTTPException

from api_utils import RAListParams, apply_filter_map, as_date, paginate_and_respond, parse_sort, respond_item
from models import DailySummary, MonthlySummary, YearlySummary
from schemas import DailySummaryRead, MonthlySummaryRead, YearlySummaryRead

router = APIRouter(prefix="/summaries", tags=["summaries"])

TOTAL_SORTS = {"total_curtailed_energy", "total_payment", "last_updated"}


@router.get("/daily", response_model=list[DailySummaryRead])
async def list_daily(params: RAListParams = Depends()):
    fmap = {
        "date_from": lambda q, v: q.filter(summary_date__gte=as_date(v)) if as_date(v) else q,
        "date_to":   lambda q, v: q.filter(summary_date__lte=as_date(v)) if as_date(v) else q,
    }
    qs = apply_filter_map(DailySummary.all(), params.filters, fmap)
    return await paginate_and_respond(
        qs=qs,
        skip=params.skip,
        limit=params.limit,
        order=parse_sort(params.sort, TOTAL_SORTS | {"record_count"}, default="summary_date"),
        to_pydantic=lambda m: DailySummaryRead.model_validate(m),
    )


@router.get("/daily/{summary_date}", response_model=DailySummaryRead)
async def get_daily(summary_date: date):
    obj = await DailySummary.get_or_none(summary_date=summary_date)
    if not obj:
        raise HTTPException(404, f"No curtailment summary for {summary_date}")
    return respond_item(obj, lambda m: DailySummaryRead.model_validate(m))


@router.get("/monthly", response_model=list[MonthlySummaryRead])
async def list_monthly(params: RAListParams = Depends()):
    fmap = {
        "year": lambda q, v: q.filter(year_month__startswith=f"{v}-"),
    }
    qs = apply_filter_map(MonthlySummary.all(), params.filters, fmap)
    return await paginate_and_respond(
        qs=qs,
        skip=params.skip,
        limit=params.limit,
        order=parse_sort(params.sort, TOTAL_SORTS, default="year_month"),
        to_pydantic=lambda m: MonthlySummaryRead.model_validate(m),
    )


@router.get("/yearly", response_model=list[YearlySummaryRead])
async def list_yearly(params: RAListParams = Depends()):
    return await paginate_and_respond(
        qs=YearlySummary.all(),
        skip=params.skip,
        limit=params.limit,
        order=parse_sort(params.sort, TOTAL_SORTS, default="year"),
        to_pydantic=lambda m: YearlySummaryRead.model_validate(m),
    )
