# api_utils.py
import json
from datetime import date
from typing import Any, Callable, Iterable, Optional
from fastapi import HTTPException, Query
from fastapi.responses import JSONResponse
from tortoise.queryset import QuerySet

# ---------- React-Admin param parsing ----------
def parse_range(range_param: str) -> tuple[int, int]:
    try:
        start, end = json.loads(range_param)
        skip = max(int(start), 0)
        limit = int(end) - skip + 1
    except (TypeError, ValueError):
        raise HTTPException(400, f"invalid range: {range_param!r}")
    if limit < 1:
        raise HTTPException(400, f"invalid range: {range_param!r}")
    return skip, min(limit, 1000)

def parse_sort(sort_param: str, allowed_fields: Iterable[str], default: str = "id") -> str:
    allowed = set(allowed_fields) | {default}
    try:
        field, order = json.loads(sort_param)
    except Exception:
        field, order = (default, "ASC")
    field = field if field in allowed else default
    prefix = "-" if str(order).upper() == "DESC" else ""
    return f"{prefix}{field}"

def parse_filter(filter_param: str | None) -> dict:
    try:
        out = json.loads(filter_param or "{}")
    except Exception:
        return {}
    return out if isinstance(out, dict) else {}

def as_int(v) -> Optional[int]:
    try:
        return int(v)
    except Exception:
        return None

def as_date(v) -> Optional[date]:
    try:
        return date.fromisoformat(str(v))
    except Exception:
        return None

# ---------- Query helpers ----------
def apply_filter_map(qs: QuerySet, filters: dict, fmap: dict[str, Callable[[QuerySet, Any], QuerySet]]) -> QuerySet:
    for key, fn in fmap.items():
        if key in filters and filters[key] is not None:
            qs = fn(qs, filters[key])
    return qs

async def paginate_and_respond(
    qs: QuerySet,
    skip: int,
    limit: int,
    order: str,
    to_pydantic: Callable[[Any], Any],
) -> JSONResponse:
    total = await qs.count()
    items = await qs.order_by(order).offset(skip).limit(limit)
    end_real = skip + max(len(items) - 1, 0)

    # model_dump_json handles date/datetime
    content = [json.loads(to_pydantic(it).model_dump_json()) for it in items]

    return JSONResponse(
        status_code=206 if total > len(items) else 200,
        content=content,
        headers={"Content-Range": f"items {skip}-{end_real}/{total}", "X-Total-Count": str(total)},
    )

def respond_item(model_obj: Any, to_pydantic: Callable[[Any], Any], status_code: int = 200) -> JSONResponse:
    payload = json.loads(to_pydantic(model_obj).model_dump_json())
    return JSONResponse(status_code=status_code, content=payload)

# ---------- RA params container ----------
class RAListParams:
    def __init__(
        self,
        range: str = Query("[0,49]"),
        sort: str = Query("[]"),
        filter: str = Query("{}"),
    ):
        self.skip, self.limit = parse_range(range)
        self.filters = parse_filter(filter)
        self.sort = sort
