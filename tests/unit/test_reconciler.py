"""
Unit tests -- view-state reconciler: conversational edits keep the view.
"""
import copy

from mrrpv_copilot.copilot.intents import Intent
from mrrpv_copilot.copilot.reconciler import reconcile
from mrrpv_copilot.copilot.spec import CurrentView
from mrrpv_copilot.core.errors import ReconciliationAmbiguous

EMEA = ["UK", "DACH", "FR", "BNL"]
PUBLIC_SECTOR = ["US - SLED", "US-SLED"]
DEFAULT_WINDOW = "FY26 Q2,FY26 Q3,FY26 Q4,FY27 Q1"


def _industry_view(**extra) -> CurrentView:
    return CurrentView(
        preset_id="first-purchase-by-industry",
        label="First Purchase MRRpV by Industry",
        time_window=DEFAULT_WINDOW,
        group_by="industry",
        **extra,
    )


class _Fixed:
    """Classifier stub returning fixed tags."""

    def __init__(self, *tags):
        self.tags = frozenset(tags)

    def classify(self, utterance):
        return self.tags


def test_no_current_view_passes_through():
    proposed = {"group_by": "segment", "time_window": "FY26 Q4"}
    out = reconcile(None, proposed, "MRRpV by segment")
    assert out.args == proposed
    assert out.rule == "no_current_view"


def test_filter_only_forces_structure():
    out = reconcile(_industry_view(), {"group_by": "segment", "exclude_regions": EMEA}, "exclude EMEA")
    assert out.args["group_by"] == "industry"
    assert out.args["time_window"] == DEFAULT_WINDOW
    assert out.args["preset_id"] == "first-purchase-by-industry"
    assert out.args["exclude_regions"] == EMEA
    assert "group_by" in out.forced_fields
    assert out.ambiguous is False


def test_filter_only_fills_omitted_window():
    out = reconcile(_industry_view(), {"exclude_regions": EMEA}, "remove EMEA")
    assert out.args["time_window"] == DEFAULT_WINDOW


def test_exclude_lists_are_unioned():
    view = _industry_view(exclude_regions=["UK"])
    out = reconcile(view, {"exclude_regions": ["DACH"]}, "exclude DACH")
    assert out.args["exclude_regions"] == ["UK", "DACH"]


def test_include_restore_removes_resolved_values():
    view = _industry_view(exclude_regions=EMEA + PUBLIC_SECTOR)
    # model forgot to drop the restored values
    out = reconcile(view, {"exclude_regions": EMEA + PUBLIC_SECTOR}, "include public sector again")
    assert out.args["exclude_regions"] == EMEA
    assert Intent.INCLUDE_RESTORE in out.intents


def test_restore_when_model_omits_exclude_list():
    view = _industry_view(exclude_regions=EMEA)
    out = reconcile(view, {}, "add UK back")
    assert out.args["exclude_regions"] == ["DACH", "FR", "BNL"]


def test_restoring_everything_drops_the_key():
    view = _industry_view(exclude_segments=["CML"])
    out = reconcile(view, {"exclude_segments": ["CML"]}, "include CML again")
    assert "exclude_segments" not in out.args


def test_restore_of_literal_industry_value():
    view = _industry_view(exclude_industries=["Construction", "Field Services"])
    out = reconcile(view, {}, "include Construction again")
    assert out.args["exclude_industries"] == ["Field Services"]


def test_include_lists_carried_forward():
    view = _industry_view(segments=["MM"], region="US")
    out = reconcile(view, {"exclude_industries": ["Construction"]}, "exclude Construction rows")
    assert out.args["segments"] == ["MM"]
    assert out.args["region"] == "US"


def test_add_product_is_a_union():
    view = _industry_view(include_product=["vg"])
    out = reconcile(view, {"include_product": ["cm"]}, "also accounts that had CM")
    assert out.args["include_product"] == ["vg", "cm"]


def test_products_replaced_without_add_intent():
    view = _industry_view(include_product=["vg"])
    out = reconcile(view, {"include_product": ["aim4"]}, "only include accounts with AIM4")
    assert out.args["include_product"] == ["aim4"]


def test_products_carried_when_omitted():
    view = _industry_view(include_product=["vg"])
    out = reconcile(view, {"exclude_regions": EMEA}, "exclude EMEA")
    assert out.args["include_product"] == ["vg"]


def test_restore_unfiltered_clears_filters_and_resets_window():
    view = _industry_view(exclude_regions=EMEA, segments=["MM"], include_product=["vg"])
    view = view.model_copy(update={"time_window": "FY26 Q4"})
    out = reconcile(view, {"exclude_regions": EMEA, "time_window": "FY26 Q4"}, "restore the original table")
    assert out.rule == "restore_unfiltered"
    for key in ("exclude_regions", "segments", "include_product"):
        assert key not in out.args
    assert out.args["time_window"] == DEFAULT_WINDOW
    assert out.args["group_by"] == "industry"


def test_view_change_passes_through():
    out = reconcile(_industry_view(), {"group_by": "segment", "time_window": "FY26 Q4"}, "show me by segment")
    assert out.rule == "view_change"
    assert out.args["group_by"] == "segment"


def test_time_change_keeps_model_window():
    out = reconcile(_industry_view(), {"time_window": "FY26 Q4", "exclude_regions": EMEA}, "exclude EMEA for FY26 Q4")
    assert out.args["time_window"] == "FY26 Q4"
    assert out.args["group_by"] == "industry"


def test_unclear_intent_with_drift_is_ambiguous():
    out = reconcile(_industry_view(), {"group_by": "segment"}, "hmm, what about that?")
    assert out.ambiguous is True
    assert isinstance(out.warning, ReconciliationAmbiguous)
    assert out.args["group_by"] == "industry"
    assert out.args["time_window"] == DEFAULT_WINDOW


def test_unclear_intent_without_drift_is_not_ambiguous():
    out = reconcile(_industry_view(), {"group_by": "industry", "time_window": DEFAULT_WINDOW}, "and now?")
    assert out.ambiguous is False
    assert out.rule == "pass_through"


def test_bridge_view_forces_view_type_and_drops_group_by():
    view = CurrentView(preset_id="first-purchase-bridge", time_window=DEFAULT_WINDOW, view_type="bridge")
    out = reconcile(view, {"group_by": "geo", "exclude_regions": EMEA}, "exclude EMEA")
    assert out.args["view_type"] == "bridge"
    assert "group_by" not in out.args
    assert out.args["preset_id"] == "first-purchase-bridge"


def test_view_without_group_by_drops_proposed_group_by():
    view = CurrentView(preset_id="first-purchase-overall", time_window=DEFAULT_WINDOW, group_by=None)
    out = reconcile(view, {"group_by": "segment", "exclude_segments": ["CML"]}, "exclude CML")
    assert "group_by" not in out.args


def test_include_acv_carried_over():
    out = reconcile(_industry_view(include_acv=False), {"exclude_regions": EMEA}, "exclude EMEA")
    assert out.args["include_acv"] is False


def test_accepts_view_as_dict():
    out = reconcile({"group_by": "geo", "time_window": "FY26 Q4"}, {"group_by": "segment"}, "exclude CML", _Fixed(Intent.FILTER_ONLY))
    assert out.args["group_by"] == "geo"
    assert out.args["time_window"] == "FY26 Q4"


def test_inputs_are_not_mutated():
    view = _industry_view(exclude_regions=["UK"], include_product=["vg"])
    proposed = {"exclude_regions": ["DACH"], "include_product": ["cm"], "group_by": "segment"}
    view_before = view.model_dump()
    proposed_before = copy.deepcopy(proposed)
    reconcile(view, proposed, "also exclude DACH")
    assert view.model_dump() == view_before
    assert proposed == proposed_before


def test_reconcile_is_deterministic():
    view = _industry_view(exclude_regions=EMEA)
    first = reconcile(view, {"exclude_segments": ["MM"]}, "exclude MM")
    second = reconcile(view, {"exclude_segments": ["MM"]}, "exclude MM")
    assert first.args == second.args


def test_negated_include_keeps_the_exclusion():
    out = reconcile(_industry_view(), {"exclude_regions": EMEA}, "don't include EMEA")
    assert out.args["exclude_regions"] == EMEA
    assert Intent.INCLUDE_RESTORE not in out.intents


def test_negated_include_adds_to_existing_exclusions():
    view = _industry_view(exclude_segments=["CML"])
    out = reconcile(view, {"exclude_regions": EMEA}, "do not include EMEA")
    assert out.args["exclude_regions"] == EMEA
    assert out.args["exclude_segments"] == ["CML"]


def test_pronoun_us_does_not_restore_the_us_geo():
    view = _industry_view(exclude_regions=["US"], exclude_segments=["CML"])
    out = reconcile(view, {"exclude_regions": ["US"]}, "add CML back for us")
    assert out.args["exclude_regions"] == ["US"]
    assert "exclude_segments" not in out.args


def test_capitalised_us_is_restored():
    view = _industry_view(exclude_regions=["US", "UK"])
    out = reconcile(view, {}, "add US back")
    assert out.args["exclude_regions"] == ["UK"]
