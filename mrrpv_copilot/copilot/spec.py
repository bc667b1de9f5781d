"""
Typed parameter records that flow through the copilot.

MetricQuery  -- the validated query the compiler consumes; built once by
                build_query() and trusted downstream.
CurrentView  -- the caller-held record of the last-applied parameters.
QueryResult  -- normalised rows + the weighted Overall summary.
"""
from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from mrrpv_copilot.core.errors import InvalidParameter
from mrrpv_copilot.governance.filters import (
    FILTER_ARGS,
    FilterClause,
    check_filters_supported,
    parse_time_window,
    resolve_filters,
    resolve_products,
)
from mrrpv_copilot.governance.source_registry import SourceDescriptor

BRIDGE_PRESET_ID = "first-purchase-bridge"

ViewType = Literal["bridge"]


class MetricQuery(BaseModel):
    """A validated MRRpV query against one source."""

    model_config = ConfigDict(frozen=True)

    source: str
    time_window: tuple[str, ...] = ()
    group_by: str | None = None
    filters: tuple[FilterClause, ...] = ()
    products: tuple[str, ...] = ()
    include_account_count: bool = False
    include_avg_deal_size: bool = False
    include_acv: bool = True
    preset_id: str | None = None
    view_type: ViewType | None = None

    @property
    def is_bridge(self) -> bool:
        return self.view_type == "bridge"


def _flag(args: dict[str, Any], name: str, default: bool) -> bool:
    value = args.get(name)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise InvalidParameter(f"{name} must be true or false, got {value!r}")
    return value


def build_query(args: dict[str, Any], source: SourceDescriptor) -> MetricQuery:
    """Validate raw tool/HTTP arguments into a MetricQuery for *source*.

    Raises InvalidParameter (or a subclass) naming the allowed values.
    """
    preset_id = args.get("preset_id") or None
    view_type = args.get("view_type") or None
    if view_type not in (None, "bridge"):
        raise InvalidParameter.not_allowed("view_type", view_type, ["bridge"])
    if preset_id == BRIDGE_PRESET_ID:
        view_type = "bridge"

    group_by = args.get("group_by") or None
    if group_by is not None and not isinstance(group_by, str):
        raise InvalidParameter(f"group_by must be a string, got {group_by!r}")
    if view_type == "bridge":
        # The bridge is always one row per quarter.
        group_by = None
    elif group_by is not None:
        source.group_columns(group_by)

    filters = resolve_filters(args)
    check_filters_supported(filters, source)

    return MetricQuery(
        source=source.key,
        time_window=parse_time_window(args.get("time_window")),
        group_by=group_by,
        filters=tuple(filters),
        products=resolve_products(args.get("include_product"), source),
        include_account_count=_flag(args, "include_account_count", False),
        include_avg_deal_size=_flag(args, "include_avg_deal_size", False),
        include_acv=_flag(args, "include_acv", True),
        preset_id=preset_id,
        view_type=view_type,
    )


class CurrentView(BaseModel):
    """Last-applied parameters for a conversation, echoed back by the client."""

    model_config = ConfigDict(extra="ignore")

    preset_id: str | None = None
    label: str | None = None
    time_window: str | None = None
    group_by: str | None = None
    region: str | None = None
    regions: list[str] | None = None
    exclude_regions: list[str] | None = None
    segment: str | None = None
    segments: list[str] | None = None
    exclude_segments: list[str] | None = None
    industry: str | None = None
    industries: list[str] | None = None
    exclude_industries: list[str] | None = None
    include_product: list[str] | None = None
    include_acv: bool | None = None
    view_type: ViewType | None = None

    @field_validator("time_window", mode="before")
    @classmethod
    def _join_quarters(cls, value: Any) -> Any:
        if isinstance(value, (list, tuple)):
            return ",".join(str(v).strip() for v in value if str(v).strip()) or None
        return value

    def to_args(self) -> dict[str, Any]:
        """Tool-argument form, without empty fields."""
        out: dict[str, Any] = {}
        for key, value in self.model_dump(exclude={"label"}).items():
            if value is None or value == [] or value == "":
                continue
            out[key] = list(value) if isinstance(value, list) else value
        return out

    @classmethod
    def from_args(cls, args: dict[str, Any], label: str | None = None) -> "CurrentView":
        fields = {k: v for k, v in args.items() if k in cls.model_fields}
        if label:
            fields["label"] = label
        return cls(**fields)

    def filter_args(self) -> dict[str, Any]:
        names = [n for triple in FILTER_ARGS.values() for n in triple] + ["include_product"]
        return {k: v for k, v in self.to_args().items() if k in names}


class QueryResult(BaseModel):
    """Normalised result of one compiled query."""

    columns: list[str]
    data: list[dict[str, Any]]
    row_count: int
    overall: dict[str, Any] | None = None
    view_type: ViewType | None = None
    grand_totals: dict[str, Any] | None = None
    sql: str = Field("", description="Executed SQL with bound-parameter placeholders")

    def to_tool_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": True,
            "data": self.data,
            "columns": self.columns,
            "row_count": self.row_count,
            "overall": self.overall,
        }
        if self.view_type:
            payload["view_type"] = self.view_type
        if self.grand_totals is not None:
            payload["grand_totals"] = self.grand_totals
        return payload
