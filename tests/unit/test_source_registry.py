"""
Unit tests -- source registry: parsing, validation, lookups, presets.
"""
import pytest

from mrrpv_copilot.core.errors import InvalidParameter, UnknownProduct
from mrrpv_copilot.governance.source_registry import (
    RegistryError,
    SourceRegistry,
    _parse_registry,
    describe,
    get_preset,
    get_presets,
    load_registry,
)


def test_loads_without_error():
    registry = load_registry()
    assert isinstance(registry, SourceRegistry)
    assert registry.get_source_names() == ["fleet", "first_purchase", "upsell"]
    assert registry.default_source == "fleet"


def test_source_shapes():
    fleet = describe("fleet")
    assert fleet.annual is True and fleet.arr_col == "fleet_arr" and fleet.value_col is None
    fp = describe("first_purchase")
    assert fp.value_col == "mrrpv" and fp.annual is False
    upsell = describe("upsell")
    assert upsell.count_col == "upsell_vehicle_count"


def test_unknown_source_lists_allowed():
    with pytest.raises(InvalidParameter, match="fleet, first_purchase, upsell"):
        describe("pipeline")


def test_fleet_has_no_industry():
    fleet = describe("fleet")
    assert fleet.allowed_group_by == ("segment", "geo")
    with pytest.raises(InvalidParameter, match="segment, geo"):
        fleet.group_columns("industry")
    with pytest.raises(InvalidParameter):
        fleet.filter_column("industry")


def test_geo_segment_expands_to_two_columns():
    assert describe("first_purchase").group_columns("geo_segment") == ("geo", "segment")


def test_product_columns():
    assert describe("fleet").product_column("aim4") == "total_am"
    assert describe("upsell").product_column("cm") == "cm_upsell_qty"
    with pytest.raises(UnknownProduct, match="Allowed: vg, cm"):
        describe("upsell").product_column("aim4")


def test_only_first_purchase_has_bridge():
    registry = load_registry()
    assert registry.bridge_source().key == "first_purchase"
    assert describe("first_purchase").bridge.asp["vg"] == ("vg_core_acv", "vg_count")


def test_presets_in_yaml_order():
    ids = [p.id for p in get_presets()]
    assert ids == [
        "first-purchase-overall",
        "first-purchase-by-industry",
        "first-purchase-by-geo-segment",
        "first-purchase-bridge",
    ]


def test_preset_defaults_and_overrides():
    preset = get_preset("first-purchase-by-industry")
    assert preset.data_source == "first_purchase"
    assert preset.default_time_window == "FY26 Q2,FY26 Q3,FY26 Q4,FY27 Q1"
    assert preset.allows_override("group_by")
    assert preset.allows_override("exclude_regions")  # covered by "filters"
    assert not preset.allows_override("data_source")


def test_bridge_preset_cannot_override_group_by():
    preset = get_preset("first-purchase-bridge")
    assert preset.view_type == "bridge"
    assert not preset.allows_override("group_by")
    assert preset.to_dict()["viewType"] == "bridge"


def test_unknown_preset():
    with pytest.raises(InvalidParameter, match="first-purchase-bridge"):
        get_preset("asp-investigation")


def _raw(**source_overrides):
    source = {
        "key": "s", "table": "t", "time_col": "q", "count_col": "c",
        "arr_col": "a", "annual": True,
    }
    source.update(source_overrides)
    return {"sources": [source], "default_source": "s"}


def test_rejects_bad_identifier():
    with pytest.raises(RegistryError, match="Invalid identifier"):
        _parse_registry(_raw(table="t; DROP TABLE x"))


def test_rejects_source_without_rate_columns():
    raw = _raw()
    del raw["sources"][0]["arr_col"]
    with pytest.raises(RegistryError, match="value_col"):
        _parse_registry(raw)


def test_rejects_allowed_group_by_without_columns():
    with pytest.raises(RegistryError, match="allowed_group_by"):
        _parse_registry(_raw(allowed_group_by=["geo"]))


def test_rejects_unknown_default_source():
    raw = _raw()
    raw["default_source"] = "nope"
    with pytest.raises(RegistryError, match="default_source"):
        _parse_registry(raw)
