"""
Copilot service -- resolve -> compile -> execute -> reshape -> summarise.

The one place results are computed.  Callers (the tool-call loop, the HTTP
routes) only route parameters in and results out.
"""
from __future__ import annotations

from typing import Any

from mrrpv_copilot.copilot.shaping import compute_overall, derive_bridge, reshape
from mrrpv_copilot.copilot.spec import BRIDGE_PRESET_ID, MetricQuery, QueryResult, build_query
from mrrpv_copilot.copilot.sql_generator import generate_bridge_sql, generate_sql
from mrrpv_copilot.core.config import Settings, get_settings
from mrrpv_copilot.core.errors import InvalidParameter
from mrrpv_copilot.core.logging import get_logger
from mrrpv_copilot.core.utils import timer
from mrrpv_copilot.db.executor import execute_readonly
from mrrpv_copilot.governance.source_registry import load_registry

logger = get_logger(__name__)


def compile_and_run(
    source_key: str,
    params: MetricQuery | dict[str, Any],
    settings: Settings | None = None,
) -> QueryResult:
    """Run one MRRpV aggregation against *source_key*.

    Raises InvalidParameter, ExecutionError or QueryTimeout.
    """
    if settings is None:
        settings = get_settings()
    source = load_registry().describe(source_key)
    query = params if isinstance(params, MetricQuery) else build_query(params, source)
    if query.source != source.key:
        raise InvalidParameter(f"Query was built for source '{query.source}', not '{source.key}'")

    compiled = generate_sql(query, source, settings)
    with timer() as t:
        raw_columns, raw_rows = execute_readonly(
            compiled.sql, compiled.params, compiled.expanding, settings.query_timeout_seconds,
        )
    columns, data = reshape(raw_columns, raw_rows, compiled.expected_columns)
    overall = compute_overall(data)
    logger.info(
        "compile_and_run | source=%s | group_by=%s | periods=%d | rows=%d | %dms",
        source.key, query.group_by, len(query.time_window), len(data), t["elapsed_ms"],
    )
    return QueryResult(
        columns=columns,
        data=data,
        row_count=len(data),
        overall=overall,
        sql=compiled.sql,
    )


def run_bridge(query: MetricQuery, settings: Settings | None = None) -> QueryResult:
    """MRRpV Bridge: per-quarter ASP, attach rates and contributions (first purchase)."""
    if settings is None:
        settings = get_settings()
    source = load_registry().describe(query.source)
    compiled = generate_bridge_sql(query, source, settings)
    with timer() as t:
        raw_columns, raw_rows = execute_readonly(
            compiled.sql, compiled.params, compiled.expanding, settings.query_timeout_seconds,
        )
    _, data = reshape(raw_columns, raw_rows, compiled.expected_columns)
    columns, rows, grand_totals = derive_bridge(data, source.bridge, source.time_col)
    logger.info("run_bridge | periods=%d | rows=%d | %dms", len(query.time_window), len(rows), t["elapsed_ms"])
    return QueryResult(
        columns=columns,
        data=rows,
        row_count=len(rows),
        overall=None,
        view_type="bridge",
        grand_totals=grand_totals,
        sql=compiled.sql,
    )


def run_query(args: dict[str, Any], source_key: str | None = None, settings: Settings | None = None) -> QueryResult:
    """Validate raw tool/HTTP arguments once and dispatch to the right view."""
    registry = load_registry()
    source_key = source_key or args.get("data_source") or registry.default_source
    source = registry.describe(str(source_key).lower())
    if args.get("view_type") == "bridge" or args.get("preset_id") == BRIDGE_PRESET_ID:
        # The bridge always reads the source carrying component ACV columns.
        source = registry.bridge_source() or source
    query = build_query(args, source)
    if query.is_bridge:
        return run_bridge(query, settings)
    return compile_and_run(source.key, query, settings)


def run_preset(
    preset_id: str,
    source_key: str | None = None,
    overrides: dict[str, Any] | None = None,
    settings: Settings | None = None,
) -> tuple[dict[str, Any], QueryResult]:
    """Run a preset with its defaults (no filters).  Returns (effective args, result).

    Only the preset's overridable fields may be overridden.
    """
    preset = load_registry().get_preset(preset_id)
    args: dict[str, Any] = {k: v for k, v in preset.default_params.items() if v is not None}
    args["preset_id"] = preset.id
    if preset.view_type:
        args["view_type"] = preset.view_type
    for key, value in (overrides or {}).items():
        if not preset.allows_override(key):
            raise InvalidParameter.not_allowed("override", key, preset.overridable, context=f"preset '{preset.id}'")
        args[key] = value
    source = source_key or args.pop("data_source", None) or preset.data_source
    args.pop("data_source", None)
    return args, run_query(args, source, settings)
