"""
Unit tests -- keyword planner behind the mock LLM provider.
"""
from mrrpv_copilot.copilot.planner import extract_time_window, plan_args


def test_not_an_mrrpv_request():
    assert plan_args("hello there") is None
    assert plan_args("") is None


def test_overall_request_has_no_group_by():
    args = plan_args("What is MRRpV?")
    assert args == {}


def test_group_by_and_fiscal_year():
    args = plan_args("MRRpV by industry for FY26")
    assert args["group_by"] == "industry"
    assert args["time_window"] == "FY26 Q1,FY26 Q2,FY26 Q3,FY26 Q4"


def test_geo_segment_keyword_wins_over_segment():
    assert plan_args("MRRpV by geo and segment")["group_by"] == "geo_segment"


def test_single_quarter():
    assert extract_time_window("mrrpv in FY26 Q4") == "FY26 Q4"
    assert extract_time_window("Q3 FY26 and FY26 Q4") == "FY26 Q3,FY26 Q4"


def test_quarter_range_crosses_fiscal_year():
    assert extract_time_window("from FY26 Q3 to FY27 Q1") == "FY26 Q3,FY26 Q4,FY27 Q1"


def test_no_time_window():
    assert extract_time_window("mrrpv by segment") is None


def test_exclude_region_phrase():
    args = plan_args("exclude EMEA")
    assert args["exclude_regions"] == ["UK", "DACH", "FR", "BNL"]


def test_exclude_public_sector_gives_both_spellings():
    args = plan_args("remove public sector")
    assert args["exclude_regions"] == ["US - SLED", "US-SLED"]


def test_exclude_clause_stops_at_time():
    args = plan_args("exclude MM for FY26 Q4")
    assert args["exclude_segments"] == ["MM"]
    assert args["time_window"] == "FY26 Q4"
    assert "exclude_regions" not in args


def test_only_region():
    assert plan_args("only US accounts")["regions"] == ["US"]


def test_restore_leaves_filters_to_reconciler():
    args = plan_args("add EMEA back")
    assert "exclude_regions" not in args
    assert "regions" not in args


def test_products_need_a_trigger():
    assert plan_args("deals that included AIM4")["include_product"] == ["aim4"]
    assert plan_args("only deals with safety and telematics")["include_product"] == ["vg", "cm"]


def test_bridge():
    args = plan_args("show the MRRpV bridge for FY26 Q4")
    assert args["view_type"] == "bridge"
    assert args["preset_id"] == "first-purchase-bridge"
    assert "group_by" not in args


def test_flags():
    assert plan_args("mrrpv with account count")["include_account_count"] is True
    assert plan_args("average deal size by segment")["include_avg_deal_size"] is True
    assert plan_args("hide ACV")["include_acv"] is False
