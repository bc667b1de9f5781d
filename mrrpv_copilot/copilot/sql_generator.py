"""
SQL Generator -- turns a validated MetricQuery into a parameterised
aggregation SELECT against one MRRpV source.

Identifiers (table and column names) come only from the source registry,
which validates them on load.  Every user-supplied value is a bound
parameter; list values use SQLAlchemy expanding parameters.

Rate expression per source shape:
  per-row monthly metric  ->  SUM(value * count) / SUM(count)
  annual revenue          -> (SUM(arr) / SUM(count)) / 12
  non-annual revenue      ->  SUM(arr) / SUM(count)
These are not equivalent when group sizes vary, so the shape is kept
exactly as the source stores it.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from mrrpv_copilot.copilot.spec import MetricQuery
from mrrpv_copilot.core.config import Settings, get_settings
from mrrpv_copilot.core.errors import InvalidParameter
from mrrpv_copilot.core.logging import get_logger
from mrrpv_copilot.governance.source_registry import SourceDescriptor

logger = get_logger(__name__)

RATE_COLUMN = "fleet_mrrpv"
CONSTANT_GROUP_COLUMN = "_grp"
BRIDGE_ROW_LIMIT = 100

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_SQL_OPS = {"in": "IN", "not_in": "NOT IN", "eq": "="}


@dataclass
class CompiledQuery:
    sql: str
    params: dict[str, Any] = field(default_factory=dict)
    expanding: tuple[str, ...] = ()
    expected_columns: list[str] = field(default_factory=list)
    constant_group: bool = False


def _table_ref(source: SourceDescriptor, settings: Settings) -> str:
    ref = settings.qualified_table(source.table)
    for part in ref.split("."):
        if not _IDENTIFIER_RE.match(part):
            raise ValueError(f"Invalid catalog/schema identifier in {ref!r}")
    return ref


# ── Expression builders ──────────────────────────────────

def rate_expression(source: SourceDescriptor) -> str:
    c = source.count_col
    if source.value_col:
        v = source.value_col
        return f"ROUND(SUM({v} * {c}) * 1.0 / NULLIF(SUM({c}), 0), 2)"
    per_unit = f"SUM({source.arr_col}) * 1.0 / NULLIF(SUM({c}), 0)"
    if source.annual:
        return f"ROUND(({per_unit}) / 12, 2)"
    return f"ROUND({per_unit}, 2)"


def _metric_columns(query: MetricQuery, source: SourceDescriptor) -> list[tuple[str, str]]:
    """(expression, output name) pairs for the rate and auxiliary aggregates."""
    cols = [
        (rate_expression(source), RATE_COLUMN),
        (f"SUM({source.count_col})", "vehicle_count"),
    ]
    if query.include_acv and source.acv_col:
        cols.append((f"SUM({source.acv_col})", "acv"))
    account = source.account_id_col
    if query.include_account_count or query.include_avg_deal_size:
        if not account:
            raise InvalidParameter(
                f"Source '{source.key}' has no account_id_col; account count and average deal size are unavailable"
            )
        cols.append((f"COUNT(DISTINCT {account})", "account_count"))
    if query.include_avg_deal_size and source.acv_col:
        cols.append((
            f"ROUND(SUM({source.acv_col}) * 1.0 / NULLIF(COUNT(DISTINCT {account}), 0), 2)",
            "avg_deal_size",
        ))
    return cols


def _where_clause(query: MetricQuery, source: SourceDescriptor) -> tuple[list[str], dict[str, Any], list[str]]:
    where: list[str] = []
    params: dict[str, Any] = {}
    expanding: list[str] = []

    periods = query.time_window
    if len(periods) == 1:
        where.append(f"{source.time_col} = :p_time")
        params["p_time"] = periods[0]
    elif periods:
        where.append(f"{source.time_col} IN :p_time")
        params["p_time"] = list(periods)
        expanding.append("p_time")

    for clause in query.filters:
        col = source.filter_column(clause.dimension)
        name = f"p_{clause.dimension}"
        op = _SQL_OPS[clause.op]
        if clause.op == "eq":
            where.append(f"({col} = :{name})")
            params[name] = clause.values[0]
        else:
            where.append(f"({col} {op} :{name})")
            params[name] = list(clause.values)
            expanding.append(name)

    for product in query.products:
        where.append(f"({source.product_column(product)} > 0)")

    return where, params, expanding


# ── SQL builders ─────────────────────────────────────────

def generate_sql(
    query: MetricQuery,
    source: SourceDescriptor,
    settings: Settings | None = None,
) -> CompiledQuery:
    """Build the aggregation SELECT for a (non-bridge) MetricQuery."""
    if settings is None:
        settings = get_settings()

    metrics = _metric_columns(query, source)
    metric_sql = [f"{expr} AS {name}" for expr, name in metrics]
    metric_names = [name for _, name in metrics]
    time_col = source.time_col

    constant_group = False
    if query.group_by:
        group_cols = list(source.group_columns(query.group_by))
        if len(group_cols) == 1 and group_cols[0] != query.group_by:
            dim_select = [f"{group_cols[0]} AS {query.group_by}"]
            dim_names = [query.group_by]
        else:
            dim_select = list(group_cols)
            dim_names = list(group_cols)
        select = dim_select + metric_sql + [time_col]
        expected = dim_names + metric_names + [time_col]
        group_by = group_cols + [time_col]
        order_by = group_cols + [time_col]
    elif query.time_window:
        select = [time_col] + metric_sql
        expected = [time_col] + metric_names
        group_by = [time_col]
        order_by = [time_col]
    else:
        # Some engines reject an empty GROUP BY; a constant group still
        # collapses the table to exactly one row.
        constant_group = True
        select = [f"1 AS {CONSTANT_GROUP_COLUMN}"] + metric_sql + [f"MAX({time_col}) AS {time_col}"]
        expected = [CONSTANT_GROUP_COLUMN] + metric_names + [time_col]
        group_by = ["1"]
        order_by = []

    where, params, expanding = _where_clause(query, source)

    lines = ["SELECT", "  " + ",\n  ".join(select), f"FROM {_table_ref(source, settings)}"]
    if where:
        lines.append("WHERE " + "\n  AND ".join(where))
    lines.append("GROUP BY " + ", ".join(group_by))
    if order_by:
        lines.append("ORDER BY " + ", ".join(order_by))
    lines.append(f"LIMIT {int(settings.sql_row_limit)}")

    sql = "\n".join(lines)
    logger.info("Generated SQL:\n%s", sql)
    return CompiledQuery(
        sql=sql,
        params=params,
        expanding=tuple(expanding),
        expected_columns=expected,
        constant_group=constant_group,
    )


def bridge_source_columns(source: SourceDescriptor) -> list[str]:
    """Summed component columns the bridge query selects, in output order."""
    if source.bridge is None:
        return []
    cols: list[str] = []
    for acv_col, count_col in source.bridge.asp.values():
        for c in (acv_col, count_col):
            if c not in cols:
                cols.append(c)
    for acv_col in source.bridge.contributions.values():
        if acv_col not in cols:
            cols.append(acv_col)
    return cols


def generate_bridge_sql(
    query: MetricQuery,
    source: SourceDescriptor,
    settings: Settings | None = None,
) -> CompiledQuery:
    """One row per quarter with the sums the bridge view derives its metrics from."""
    if settings is None:
        settings = get_settings()
    if source.bridge is None:
        raise InvalidParameter(
            f"The MRRpV Bridge view is only available for sources with bridge columns "
            f"(not '{source.key}'). Use data_source 'first_purchase'."
        )
    if not query.time_window:
        raise InvalidParameter(
            "The MRRpV Bridge view requires time_window (e.g. 'FY26 Q2,FY26 Q3,FY26 Q4,FY27 Q1')"
        )

    time_col = source.time_col
    components = bridge_source_columns(source)
    select = [
        time_col,
        f"SUM({source.count_col}) AS vehicle_count",
        f"SUM({source.acv_col}) AS acv",
        f"{rate_expression(source)} AS {RATE_COLUMN}",
    ] + [f"SUM({c}) AS {c}" for c in components]
    expected = [time_col, "vehicle_count", "acv", RATE_COLUMN] + components

    where, params, expanding = _where_clause(query, source)
    limit = min(BRIDGE_ROW_LIMIT, int(settings.sql_row_limit))
    lines = [
        "SELECT",
        "  " + ",\n  ".join(select),
        f"FROM {_table_ref(source, settings)}",
        "WHERE " + "\n  AND ".join(where),
        f"GROUP BY {time_col}",
        f"ORDER BY {time_col}",
        f"LIMIT {limit}",
    ]
    sql = "\n".join(lines)
    logger.info("Generated bridge SQL:\n%s", sql)
    return CompiledQuery(sql=sql, params=params, expanding=tuple(expanding), expected_columns=expected)
