"""
Result shaping -- engine rows to row-of-objects, plus the derived
vehicle-weighted summaries.

Whenever several rows are combined (Overall, per-group period totals, bridge
grand totals) the rate is weighted by vehicle count:

    rate = round(sum(rate_i * vehicles_i) / sum(vehicles_i), 2)

never a plain average of the row rates.
"""
from __future__ import annotations

from typing import Any, Sequence

from mrrpv_copilot.core.utils import round2, to_number
from mrrpv_copilot.governance.source_registry import BridgeColumns

RATE = "fleet_mrrpv"
WEIGHT = "vehicle_count"
CONSTANT_GROUP_COLUMN = "_grp"
METRIC_COLUMNS = frozenset({RATE, WEIGHT, "acv", "account_count", "avg_deal_size"})


def _chunk_flat(rows: list[Any], width: int) -> list[Any]:
    """Some drivers hand back one flat value list; regroup it by column count."""
    if width and rows and not isinstance(rows[0], (list, tuple, dict)) and len(rows) % width == 0:
        return [rows[i:i + width] for i in range(0, len(rows), width)]
    return rows


def reshape(
    columns: Sequence[str],
    rows: Sequence[Any],
    expected_columns: Sequence[str],
) -> tuple[list[str], list[dict[str, Any]]]:
    """Normalise engine output to ``(column names, list of row dicts)``.

    Falls back to *expected_columns* when the engine reports no column
    metadata, and drops the constant-group helper column.
    """
    raw_names = list(columns) if columns else list(expected_columns)
    raw_rows = _chunk_flat(list(rows), len(raw_names))
    out_names = [n for n in raw_names if n != CONSTANT_GROUP_COLUMN]

    data: list[dict[str, Any]] = []
    for row in raw_rows:
        if isinstance(row, dict):
            data.append({n: row.get(n) for n in out_names if n in row})
            continue
        obj: dict[str, Any] = {}
        for idx, name in enumerate(raw_names):
            if name == CONSTANT_GROUP_COLUMN or idx >= len(row):
                continue
            obj[name] = row[idx]
        data.append(obj)
    return out_names, data


def _has(data: list[dict[str, Any]], key: str) -> bool:
    return any(r.get(key) is not None for r in data)


def _sum(data: list[dict[str, Any]], key: str) -> float:
    return sum(to_number(r.get(key)) or 0.0 for r in data)


def weighted_rate(data: list[dict[str, Any]], rate_key: str = RATE, weight_key: str = WEIGHT) -> float | None:
    total = _sum(data, weight_key)
    if total <= 0:
        return None
    weighted = sum((to_number(r.get(rate_key)) or 0.0) * (to_number(r.get(weight_key)) or 0.0) for r in data)
    return round2(weighted / total)


def compute_overall(data: list[dict[str, Any]]) -> dict[str, Any] | None:
    """Vehicle-weighted summary of *data*; the row itself for one row; None for none."""
    if not data:
        return None

    if len(data) == 1:
        overall = dict(data[0])
        for key in METRIC_COLUMNS:
            if key in overall:
                overall[key] = to_number(overall[key])
        return overall

    overall = {RATE: weighted_rate(data), WEIGHT: _sum(data, WEIGHT)}
    total_acv = _sum(data, "acv") if _has(data, "acv") else None
    if total_acv is not None:
        overall["acv"] = total_acv
    if _has(data, "account_count"):
        overall["account_count"] = _sum(data, "account_count")
    if _has(data, "avg_deal_size") and total_acv is not None and overall.get("account_count"):
        overall["avg_deal_size"] = round2(total_acv / overall["account_count"])
    return overall


def pivot_by_period(
    data: list[dict[str, Any]],
    group_keys: Sequence[str],
    time_col: str,
) -> dict[str, Any]:
    """Pivot one-row-per-group-per-period results into periods-as-columns.

    Each group gets its per-period metrics plus a weighted total across
    periods; the grand total row is weighted across groups per period.
    """
    periods: list[str] = []
    groups: dict[tuple, list[dict[str, Any]]] = {}
    for row in data:
        period = row.get(time_col)
        if period not in periods:
            periods.append(period)
        key = tuple(row.get(k) for k in group_keys)
        groups.setdefault(key, []).append(row)

    def _summary(rows: list[dict[str, Any]]) -> dict[str, Any]:
        out = {RATE: weighted_rate(rows), WEIGHT: _sum(rows, WEIGHT)}
        if _has(rows, "acv"):
            out["acv"] = _sum(rows, "acv")
        return out

    pivot_rows = []
    for key, rows in groups.items():
        by_period = {p: _summary([r for r in rows if r.get(time_col) == p]) for p in periods}
        pivot_rows.append({
            **dict(zip(group_keys, key)),
            "by_period": by_period,
            "total": _summary(rows),
        })

    grand_total = {
        "by_period": {p: _summary([r for r in data if r.get(time_col) == p]) for p in periods},
        "total": _summary(data),
    }
    return {"periods": periods, "rows": pivot_rows, "grand_total": grand_total}


# ── Bridge view ──────────────────────────────────────────

def _ratio(numer: float | None, denom: float | None, scale: float = 1.0, digits: int = 2) -> float | None:
    if numer is None or not denom:
        return None
    return round(numer * scale / denom, digits)


def _bridge_metrics(row: dict[str, Any], bridge: BridgeColumns, vehicles: float | None) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for product, (acv_col, count_col) in bridge.asp.items():
        count = to_number(row.get(count_col))
        acv = to_number(row.get(acv_col))
        out[f"{product}_asp"] = _ratio(acv, count, 1 / 12) if count and count > 0 else None
    for product, (_, count_col) in bridge.asp.items():
        out[f"{product}_attach_pct"] = _ratio(to_number(row.get(count_col)), vehicles, 100, 1)
    for component, acv_col in bridge.contributions.items():
        out[f"{component}_contribution"] = _ratio(to_number(row.get(acv_col)), vehicles, 1 / 12)
    return out


def derive_bridge(
    data: list[dict[str, Any]],
    bridge: BridgeColumns,
    time_col: str,
) -> tuple[list[str], list[dict[str, Any]], dict[str, Any]]:
    """Per-quarter ASP, attach rates and MRRpV contributions, plus grand totals.

    ASP is monthly component ACV per licensed unit; contributions are monthly
    component ACV per vehicle, so the contributions of a quarter sum to its
    MRRpV up to rounding.
    """
    out_rows: list[dict[str, Any]] = []
    for row in data:
        vehicles = to_number(row.get(WEIGHT))
        vehicles = vehicles if vehicles and vehicles > 0 else None
        out_rows.append({
            time_col: row.get(time_col),
            WEIGHT: round(vehicles) if vehicles is not None else None,
            "acv": to_number(row.get("acv")),
            RATE: to_number(row.get(RATE)),
            **_bridge_metrics(row, bridge, vehicles),
        })

    component_cols = {c for pair in bridge.asp.values() for c in pair} | set(bridge.contributions.values())
    totals = {c: _sum(data, c) for c in component_cols}
    total_vehicles = _sum(data, WEIGHT)
    total_acv = _sum(data, "acv")
    vc = total_vehicles if total_vehicles > 0 else None
    grand_totals = {
        WEIGHT: round(vc) if vc is not None else None,
        "acv": total_acv if total_acv > 0 else None,
        RATE: weighted_rate(data),
        **_bridge_metrics(totals, bridge, vc),
    }

    columns = [time_col, WEIGHT, "acv", RATE]
    columns += [f"{p}_asp" for p in bridge.asp]
    columns += [f"{p}_attach_pct" for p in bridge.asp]
    columns += [f"{c}_contribution" for c in bridge.contributions]
    return columns, out_rows, grand_totals
