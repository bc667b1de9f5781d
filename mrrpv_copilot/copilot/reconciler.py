"""
View-state reconciler -- keeps a conversational refinement from silently
changing the user's current view.

Given the current view, the parameters the language model proposed and the
user's utterance, produce the parameters that actually run.  The model's
drift on group_by / preset / time window is the main failure this guards
against, so when intent is unclear the current view's structure wins.

Rules, in order:
  1. no current view               -> proposal passes through
  2. explicit view change          -> proposal passes through
  3. filter-only / restore-all     -> group_by, preset and time window forced
                                      from the current view (preset defaults
                                      fill gaps); bridge forces view_type
  4. exclude lists                 -> unioned with the current view's; an
                                      include/restore removes the resolved
                                      values; an empty list is dropped
  5. "also <product>"              -> product filter is a union
  6. restore unfiltered            -> every row/product filter cleared, time
                                      window back to the preset default
  7. no recognised intent, but the proposal moves group_by / preset / time
     window                        -> ambiguous: structure preserved, logged

reconcile() is pure: neither the current view nor the proposal is mutated.
"""
from __future__ import annotations

import copy
import re
from dataclasses import dataclass, field
from typing import Any

from mrrpv_copilot.copilot.intents import Intent, IntentClassifier, IntentSet, default_classifier, restore_clause
from mrrpv_copilot.copilot.spec import BRIDGE_PRESET_ID, CurrentView
from mrrpv_copilot.core.errors import ReconciliationAmbiguous
from mrrpv_copilot.core.logging import get_logger
from mrrpv_copilot.governance.glossary import Glossary, load_glossary
from mrrpv_copilot.governance.source_registry import Preset, load_registry

logger = get_logger(__name__)

# exclude-list arg -> glossary dimension
EXCLUDE_ARGS = {
    "exclude_regions": "geo",
    "exclude_segments": "segment",
    "exclude_industries": "industry",
}
INCLUDE_ARGS = ("regions", "segments", "industries")
SCALAR_ARGS = ("region", "segment", "industry")
ROW_FILTER_ARGS = tuple(EXCLUDE_ARGS) + INCLUDE_ARGS + SCALAR_ARGS


@dataclass
class Reconciliation:
    args: dict[str, Any]
    intents: IntentSet = frozenset()
    forced_fields: tuple[str, ...] = ()
    ambiguous: bool = False
    warning: ReconciliationAmbiguous | None = None
    rule: str = "pass_through"
    notes: list[str] = field(default_factory=list)


# ── Helpers ──────────────────────────────────────────────

def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value if v is not None and str(v).strip()]
    text = str(value).strip()
    return [text] if text else []


def _union(first: list[str], second: list[str]) -> list[str]:
    out = list(first)
    for v in second:
        if v not in out:
            out.append(v)
    return out


def _set_or_drop(args: dict[str, Any], key: str, values: list[str]) -> None:
    if values:
        args[key] = values
    else:
        args.pop(key, None)


def _windows_equal(a: Any, b: Any) -> bool:
    return _as_list(str(a).split(",") if isinstance(a, str) else a) == _as_list(
        str(b).split(",") if isinstance(b, str) else b
    )


def _named_literally(values: list[str], utterance: str, glossary: Glossary) -> set[str]:
    """Table values that the utterance spells out verbatim.

    Case-insensitive, except for codes that double as English words ("US"),
    which must be written in capitals.
    """
    named = set()
    for v in values:
        flags = 0 if glossary.is_upper_only(v) else re.IGNORECASE
        if re.search(rf"(?<![\w-]){re.escape(v)}(?![\w-])", utterance, flags):
            named.add(v)
    return named


def _product_keys(values: Any, glossary: Glossary) -> list[str]:
    keys: list[str] = []
    for v in _as_list(values):
        key = glossary.resolve_product_key(v) or v.lower()
        if key not in keys:
            keys.append(key)
    return keys


def _lookup_preset(preset_id: str | None) -> Preset | None:
    if not preset_id:
        return None
    return load_registry().presets.get(preset_id)


def _structure(view: CurrentView, preset: Preset | None) -> tuple[str | None, str | None, bool]:
    """(time window, group_by, is_bridge) of the current view, preset defaults filling gaps."""
    time_window = view.time_window
    group_by = view.group_by
    if preset is not None:
        if not time_window:
            time_window = preset.default_time_window
        if group_by is None and "group_by" not in view.model_fields_set:
            group_by = preset.default_params.get("group_by")
    is_bridge = view.view_type == "bridge" or view.preset_id == BRIDGE_PRESET_ID
    return time_window, group_by, is_bridge


# ── Rule implementations ─────────────────────────────────

def _force_structure(
    args: dict[str, Any],
    view: CurrentView,
    preset: Preset | None,
    *,
    keep_model_time: bool,
) -> list[str]:
    forced: list[str] = []
    time_window, group_by, is_bridge = _structure(view, preset)

    if not keep_model_time and time_window and args.get("time_window") != time_window:
        args["time_window"] = time_window
        forced.append("time_window")
    if view.preset_id and args.get("preset_id") != view.preset_id:
        args["preset_id"] = view.preset_id
        forced.append("preset_id")

    if is_bridge:
        if args.get("view_type") != "bridge":
            forced.append("view_type")
        args["view_type"] = "bridge"
        if args.pop("group_by", None) is not None:
            forced.append("group_by")
    else:
        if args.pop("view_type", None) is not None:
            forced.append("view_type")
        if group_by:
            if args.get("group_by") != group_by:
                args["group_by"] = group_by
                forced.append("group_by")
        elif args.pop("group_by", None) is not None:
            forced.append("group_by")
    return forced


def _merge_row_filters(
    args: dict[str, Any],
    view: CurrentView,
    intents: IntentSet,
    utterance: str,
    glossary: Glossary,
) -> list[str]:
    notes: list[str] = []
    current = view.to_args()
    restoring = Intent.INCLUDE_RESTORE in intents
    # Only phrases after the include/restore verb name what comes back.
    clause = (restore_clause(utterance) or utterance) if restoring else ""
    named = glossary.find_all(clause) if restoring else {}

    for key, dimension in EXCLUDE_ARGS.items():
        cur = _as_list(current.get(key))
        merged = _union(cur, _as_list(args.get(key)))
        if restoring:
            restored = set(named.get(dimension, []))
            restored |= _named_literally(merged, clause, glossary)
            if restored & set(merged):
                notes.append(f"{key}: restored {sorted(restored & set(merged))}")
            merged = [v for v in merged if v not in restored]
        _set_or_drop(args, key, merged)

    # Include lists and scalars the model left out are carried forward.
    for key in INCLUDE_ARGS + SCALAR_ARGS:
        if key not in args and current.get(key):
            args[key] = copy.deepcopy(current[key])
    return notes


def _merge_products(
    args: dict[str, Any],
    view: CurrentView,
    intents: IntentSet,
    glossary: Glossary,
) -> None:
    current = _product_keys(view.include_product, glossary)
    proposed = _product_keys(args.get("include_product"), glossary)
    if Intent.ADD_PRODUCT in intents and current:
        _set_or_drop(args, "include_product", _union(current, proposed))
    elif "include_product" not in args and current:
        args["include_product"] = current
    else:
        _set_or_drop(args, "include_product", proposed)


def _restore_unfiltered(args: dict[str, Any], view: CurrentView, preset: Preset | None, keep_model_time: bool) -> None:
    for key in ROW_FILTER_ARGS + ("include_product",):
        args.pop(key, None)
    if keep_model_time:
        return
    default_window = preset.default_time_window if preset is not None else None
    if default_window:
        args["time_window"] = default_window
    elif view.time_window:
        args["time_window"] = view.time_window


def _structural_drift(args: dict[str, Any], view: CurrentView, preset: Preset | None, intents: IntentSet) -> list[str]:
    time_window, group_by, is_bridge = _structure(view, preset)
    drift: list[str] = []
    if is_bridge:
        if args.get("group_by") or args.get("view_type") not in (None, "bridge"):
            drift.append("group_by")
    elif (args.get("group_by") or None) != (group_by or None):
        drift.append("group_by")
    if args.get("preset_id") and view.preset_id and args["preset_id"] != view.preset_id:
        drift.append("preset_id")
    if Intent.TIME_CHANGE not in intents and time_window and not _windows_equal(args.get("time_window"), time_window):
        drift.append("time_window")
    return drift


# ── Public API ───────────────────────────────────────────

def reconcile(
    current_view: CurrentView | dict[str, Any] | None,
    proposed_args: dict[str, Any],
    utterance: str,
    classifier: IntentClassifier | None = None,
) -> Reconciliation:
    """Return the effective parameters for one tool call."""
    args = copy.deepcopy(dict(proposed_args or {}))
    if current_view is None:
        return Reconciliation(args=args, rule="no_current_view")
    view = current_view if isinstance(current_view, CurrentView) else CurrentView.model_validate(current_view)

    intents = (classifier or default_classifier).classify(utterance)
    glossary = load_glossary()
    preset = _lookup_preset(view.preset_id)

    if "include_acv" not in args and view.include_acv is not None:
        args["include_acv"] = view.include_acv

    restore_all = Intent.RESTORE_UNFILTERED in intents
    keep_model_time = Intent.TIME_CHANGE in intents and "time_window" in args

    if Intent.VIEW_CHANGE in intents and not restore_all:
        logger.info("Reconcile: view change requested, proposal passes through")
        return Reconciliation(args=args, intents=intents, rule="view_change")

    filter_edit = restore_all or bool(
        intents & {Intent.FILTER_ONLY, Intent.INCLUDE_RESTORE, Intent.ADD_PRODUCT}
    )

    if filter_edit:
        forced = _force_structure(args, view, preset, keep_model_time=keep_model_time)
        notes: list[str] = []
        if restore_all:
            _restore_unfiltered(args, view, preset, keep_model_time)
            rule = "restore_unfiltered"
        else:
            notes = _merge_row_filters(args, view, intents, utterance, glossary)
            _merge_products(args, view, intents, glossary)
            rule = "filter_edit"
        logger.info("Reconcile: %s | intents=%s | forced=%s", rule, sorted(i.value for i in intents), forced)
        return Reconciliation(
            args=args, intents=intents, forced_fields=tuple(forced), rule=rule, notes=notes,
        )

    drift = _structural_drift(args, view, preset, intents)
    if drift:
        warning = ReconciliationAmbiguous(
            f"Could not tell whether {', '.join(drift)} should change for utterance {utterance!r}; "
            "kept the current view"
        )
        forced = _force_structure(args, view, preset, keep_model_time=keep_model_time)
        logger.warning("ReconciliationAmbiguous: %s | forced=%s", warning, forced)
        return Reconciliation(
            args=args, intents=intents, forced_fields=tuple(forced),
            ambiguous=True, warning=warning, rule="ambiguous",
        )

    return Reconciliation(args=args, intents=intents)
