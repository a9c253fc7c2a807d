# routers/curtailment_records.py
from fastapi import APIRouter, Depends, HTTPException
from tortoise.queryset import QuerySet

from api_utils import RAListParams, apply_filter_map, as_date, as_int, paginate_and_respond, parse_sort, respond_item
from models import CurtailmentRecord
from schemas import CurtailmentRecordRead

router = APIRouter(prefix="/curtailment-records", tags=["curtailment-records"])

ALLOWED_SORTS = {
    "id", "settlement_date", "settlement_period", "farm_id", "lead_party_name",
    "volume", "payment", "original_price", "created_at",
}


@router.get("", response_model=list[CurtailmentRecordRead])
async def list_records(params: RAListParams = Depends()):
    qs: QuerySet[CurtailmentRecord] = CurtailmentRecord.all()

    fmap = {
        "settlement_date":   lambda q, v: q.filter(settlement_date=as_date(v)) if as_date(v) else q,
        "date_from":         lambda q, v: q.filter(settlement_date__gte=as_date(v)) if as_date(v) else q,
        "date_to":           lambda q, v: q.filter(settlement_date__lte=as_date(v)) if as_date(v) else q,
        "settlement_period": lambda q, v: q.filter(settlement_period=as_int(v)) if as_int(v) is not None else q,
        "farm_id":           lambda q, v: q.filter(farm_id=str(v)),
        "lead_party_name":   lambda q, v: q.filter(lead_party_name__icontains=str(v)),
    }
    qs = apply_filter_map(qs, params.filters, fmap)

    return await paginate_and_respond(
        qs=qs,
        skip=params.skip,
        limit=params.limit,
        order=parse_sort(params.sort, ALLOWED_SORTS),
        to_pydantic=lambda m: CurtailmentRecordRead.model_validate(m),
    )


@router.get("/{record_id}", response_model=CurtailmentRecordRead)
async def get_record(record_id: int):
    obj = await CurtailmentRecord.get_or_none(id=record_id)
    if not obj:
        raise HTTPException(404, "Curtailment record not found")
    return respond_item(obj, lambda m: CurtailmentRecordRead.model_validate(m))
