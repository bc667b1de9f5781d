"""
Unit tests -- SQL generator: rate expressions, grouping shapes, bound filters.
"""
import dataclasses

import pytest

from mrrpv_copilot.copilot.spec import build_query
from mrrpv_copilot.copilot.sql_generator import (
    BRIDGE_ROW_LIMIT,
    generate_bridge_sql,
    generate_sql,
    rate_expression,
)
from mrrpv_copilot.core.config import Settings
from mrrpv_copilot.core.errors import InvalidParameter
from mrrpv_copilot.governance.source_registry import describe


# ── Helper ───────────────────────────────────────────────

def _compile(source_key: str, settings, **args):
    source = describe(source_key)
    return generate_sql(build_query(args, source), source, settings)


# ── Rate expression ─────────────────────────────────────

def test_annual_source_divides_by_12():
    expr = rate_expression(describe("fleet"))
    assert expr == "ROUND((SUM(fleet_arr) * 1.0 / NULLIF(SUM(vehicle_count), 0)) / 12, 2)"


def test_per_row_metric_is_vehicle_weighted():
    expr = rate_expression(describe("first_purchase"))
    assert expr == "ROUND(SUM(mrrpv * vehicle_count) * 1.0 / NULLIF(SUM(vehicle_count), 0), 2)"
    assert "/ 12" not in expr


def test_upsell_uses_its_own_columns():
    expr = rate_expression(describe("upsell"))
    assert "upsell_fleet_arr" in expr and "upsell_vehicle_count" in expr


# ── Shapes ───────────────────────────────────────────────

def test_no_group_no_window_collapses_to_one_row(settings):
    q = _compile("first_purchase", settings)
    assert "1 AS _grp" in q.sql
    assert "MAX(close_quarter) AS close_quarter" in q.sql
    assert "GROUP BY 1" in q.sql
    assert "ORDER BY" not in q.sql
    assert "WHERE" not in q.sql
    assert q.constant_group is True


def test_window_without_group_groups_by_period(settings):
    q = _compile("fleet", settings, time_window="FY26 Q3,FY26 Q4")
    assert q.sql.startswith("SELECT\n  close_quarter,")
    assert "GROUP BY close_quarter" in q.sql
    assert "close_quarter IN :p_time" in q.sql
    assert q.params["p_time"] == ["FY26 Q3", "FY26 Q4"]
    assert "p_time" in q.expanding


def test_single_period_uses_equality(settings):
    q = _compile("fleet", settings, time_window="FY26 Q4")
    assert "close_quarter = :p_time" in q.sql
    assert q.params["p_time"] == "FY26 Q4"
    assert q.expanding == ()


def test_group_by_geo_segment(settings):
    q = _compile("first_purchase", settings, group_by="geo_segment", time_window="FY26 Q4")
    assert "GROUP BY geo, segment, close_quarter" in q.sql
    assert "ORDER BY geo, segment, close_quarter" in q.sql
    assert q.expected_columns[:2] == ["geo", "segment"]


def test_group_by_rejected_for_source(settings):
    with pytest.raises(InvalidParameter, match="segment, geo"):
        _compile("fleet", settings, group_by="industry")


def test_optional_metric_columns(settings):
    q = _compile("first_purchase", settings, include_avg_deal_size=True, include_acv=False)
    assert "COUNT(DISTINCT account_id) AS account_count" in q.sql
    assert "AS avg_deal_size" in q.sql
    assert "AS acv" not in q.sql


def test_metric_column_order(settings):
    q = _compile("first_purchase", settings, time_window="FY26 Q4", include_account_count=True)
    assert q.expected_columns == ["close_quarter", "fleet_mrrpv", "vehicle_count", "acv", "account_count"]


def test_limit_from_settings():
    settings = Settings(warehouse_url="sqlite://", sql_row_limit=250)
    q = _compile("fleet", settings)
    assert q.sql.rstrip().endswith("LIMIT 250")


# ── Filters ──────────────────────────────────────────────

def test_filters_are_bound_parameters(settings):
    q = _compile(
        "first_purchase", settings,
        exclude_regions=["UK", "x'); DROP TABLE t; --"],
        segment="MM",
        industries=["Construction"],
    )
    assert "(geo NOT IN :p_geo)" in q.sql
    assert "(segment = :p_segment)" in q.sql
    assert "(industry IN :p_industry)" in q.sql
    assert "DROP TABLE" not in q.sql
    assert q.params["p_geo"] == ["UK", "x'); DROP TABLE t; --"]
    assert set(q.expanding) == {"p_geo", "p_industry"}


def test_products_are_anded(settings):
    q = _compile("first_purchase", settings, include_product=["cm", "vg"])
    assert "(cm_count > 0)" in q.sql
    assert "(vg_count > 0)" in q.sql
    assert "(cm_count > 0)\n  AND (vg_count > 0)" in q.sql


def test_catalog_and_schema_qualification():
    settings = Settings(warehouse_url="databricks://token:x@host?http_path=/sql/1.0/warehouses/abc")
    q = _compile("fleet", settings)
    assert "FROM businessdbs.epofinance_prod.mrrpv_fleet" in q.sql


def test_bad_schema_identifier_rejected():
    settings = Settings(warehouse_url="databricks://token:x@host", warehouse_schema="prod; drop")
    with pytest.raises(ValueError):
        _compile("fleet", settings)


# ── Bridge ───────────────────────────────────────────────

def test_bridge_sql(settings):
    source = describe("first_purchase")
    query = build_query({"view_type": "bridge", "time_window": "FY26 Q3,FY26 Q4"}, source)
    q = generate_bridge_sql(query, source, settings)
    assert "SUM(vg_core_acv) AS vg_core_acv" in q.sql
    assert "SUM(subsidy_acv) AS subsidy_acv" in q.sql
    assert "GROUP BY close_quarter" in q.sql
    assert f"LIMIT {BRIDGE_ROW_LIMIT}" in q.sql


def test_bridge_requires_window(settings):
    source = describe("first_purchase")
    query = build_query({"view_type": "bridge"}, source)
    with pytest.raises(InvalidParameter, match="time_window"):
        generate_bridge_sql(query, source, settings)


def test_bridge_requires_bridge_columns(settings):
    source = describe("fleet")
    query = build_query({"view_type": "bridge", "time_window": "FY26 Q4"}, source)
    with pytest.raises(InvalidParameter, match="first_purchase"):
        generate_bridge_sql(query, source, settings)


def test_account_metrics_need_an_account_column(settings):
    source = dataclasses.replace(describe("first_purchase"), account_id_col=None)
    query = build_query({"include_account_count": True}, source)
    with pytest.raises(InvalidParameter, match="account_id_col"):
        generate_sql(query, source, settings)
    # without account metrics the source still compiles
    assert "COUNT(DISTINCT" not in generate_sql(build_query({}, source), source, settings).sql
