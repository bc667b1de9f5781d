"""POST/GET /query/mrrpv -- run one MRRpV aggregation directly (no language model)."""
from __future__ import annotations

from typing import Any, Literal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from mrrpv_copilot.api.deps import raise_http, require_api_key
from mrrpv_copilot.copilot.service import run_query
from mrrpv_copilot.copilot.shaping import METRIC_COLUMNS, pivot_by_period
from mrrpv_copilot.copilot.spec import QueryResult
from mrrpv_copilot.core.errors import CopilotError
from mrrpv_copilot.core.logging import get_logger
from mrrpv_copilot.governance.source_registry import load_registry

logger = get_logger(__name__)
router = APIRouter(dependencies=[Depends(require_api_key)])


class MrrpvRequest(BaseModel):
    data_source: str | None = Field(None, description="fleet | first_purchase | upsell")
    time_window: str | list[str] | None = Field(None, description="\"FY26 Q4\" or comma-separated quarters")
    group_by: str | None = Field(None, description="industry | segment | geo | geo_segment")
    include_product: list[str] | None = None
    include_account_count: bool | None = None
    include_avg_deal_size: bool | None = None
    include_acv: bool | None = None
    region: str | None = None
    regions: list[str] | None = None
    exclude_regions: list[str] | None = None
    segment: str | None = None
    segments: list[str] | None = None
    exclude_segments: list[str] | None = None
    industry: str | None = None
    industries: list[str] | None = None
    exclude_industries: list[str] | None = None
    view_type: Literal["bridge"] | None = None
    preset_id: str | None = None
    pivot: bool = Field(False, description="Also return quarters-as-columns per group")


class MrrpvResponse(BaseModel):
    success: bool = True
    data_source: str | None
    columns: list[str]
    data: list[dict[str, Any]]
    row_count: int
    overall: dict[str, Any] | None
    view_type: str | None = None
    grand_totals: dict[str, Any] | None = None
    sql: str
    params: dict[str, Any]
    pivot: dict[str, Any] | None = None


def _pivot(result: QueryResult, source_key: str | None) -> dict[str, Any] | None:
    registry = load_registry()
    time_col = registry.describe(source_key or registry.default_source).time_col
    group_keys = [c for c in result.columns if c not in METRIC_COLUMNS and c != time_col]
    return pivot_by_period(result.data, group_keys, time_col)


def _run(req: MrrpvRequest) -> MrrpvResponse:
    args = req.model_dump(exclude_none=True, exclude={"pivot"})
    source = args.pop("data_source", None)
    if source is not None:
        source = source.strip().lower()
    try:
        result = run_query(args, source)
    except CopilotError as exc:
        raise_http(exc)
    return MrrpvResponse(
        data_source=source,
        columns=result.columns,
        data=result.data,
        row_count=result.row_count,
        overall=result.overall,
        view_type=result.view_type,
        grand_totals=result.grand_totals,
        sql=result.sql,
        params=args,
        pivot=_pivot(result, source) if req.pivot and args.get("group_by") and not result.view_type else None,
    )


@router.post("/mrrpv", response_model=MrrpvResponse)
def query_mrrpv(req: MrrpvRequest) -> MrrpvResponse:
    """Run get_mrrpv with an explicit parameter body."""
    return _run(req)


@router.get("/mrrpv", response_model=MrrpvResponse)
def query_mrrpv_get(
    data_source: str | None = None,
    time_window: str | None = None,
    group_by: str | None = None,
    region: str | None = None,
    segment: str | None = None,
    industry: str | None = None,
    include_product: str | None = Query(None, description="Comma-separated product keys"),
    include_account_count: bool | None = None,
    include_avg_deal_size: bool | None = None,
) -> MrrpvResponse:
    """Query-string form of POST /query/mrrpv (single-valued filters only)."""
    products = [p.strip() for p in include_product.split(",") if p.strip()] if include_product else None
    return _run(MrrpvRequest(
        data_source=data_source,
        time_window=time_window,
        group_by=group_by,
        region=region,
        segment=segment,
        industry=industry,
        include_product=products,
        include_account_count=include_account_count,
        include_avg_deal_size=include_avg_deal_size,
    ))
