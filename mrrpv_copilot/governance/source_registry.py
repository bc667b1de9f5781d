"""
Loads, validates, and caches the MRRpV source registry from YAML.

The registry is the closed set of identifiers the compiler may interpolate
into SQL:
  - source tables and their time / rate / count / ACV / account columns
  - grouping dimensions and the physical column(s) behind each
  - row-filter columns per dimension
  - product key -> license-count column
  - named presets (default parameter templates)

Every identifier is checked against a strict pattern at load time, so no
user-controlled string can ever reach an identifier position.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

from mrrpv_copilot.core.errors import InvalidParameter, UnknownProduct

_SEMANTIC_PATH = Path(__file__).resolve().parents[1] / "semantic_layer" / "semantic_model.yml"

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

FILTER_ARG_NAMES = frozenset({
    "region", "regions", "exclude_regions",
    "segment", "segments", "exclude_segments",
    "industry", "industries", "exclude_industries",
})


class RegistryError(ValueError):
    """The semantic model YAML is self-inconsistent."""


# ── Typed domain objects ─────────────────────────────────

@dataclass(frozen=True)
class BridgeColumns:
    asp: dict[str, tuple[str, str]] = field(default_factory=dict)  # product -> (acv col, count col)
    contributions: dict[str, str] = field(default_factory=dict)    # component -> acv col


@dataclass(frozen=True)
class SourceDescriptor:
    key: str
    table: str
    time_col: str
    count_col: str
    arr_col: str | None = None
    value_col: str | None = None
    annual: bool = False
    acv_col: str | None = None
    account_id_col: str | None = None
    group_by_columns: dict[str, tuple[str, ...]] = field(default_factory=dict)
    allowed_group_by: tuple[str, ...] = ()
    filter_columns: dict[str, str] = field(default_factory=dict)
    product_columns: dict[str, str] = field(default_factory=dict)
    bridge: BridgeColumns | None = None

    def group_columns(self, group_by: str) -> tuple[str, ...]:
        """Physical columns behind *group_by*; rejects dimensions this source lacks."""
        if group_by not in self.allowed_group_by:
            raise InvalidParameter.not_allowed(
                "group_by", group_by, self.allowed_group_by, context=f"source '{self.key}'"
            )
        return self.group_by_columns[group_by]

    def filter_column(self, dimension: str) -> str:
        col = self.filter_columns.get(dimension)
        if col is None:
            raise InvalidParameter.not_allowed(
                "filter dimension", dimension, self.filter_columns, context=f"source '{self.key}'"
            )
        return col

    def product_column(self, product_key: str) -> str:
        col = self.product_columns.get(product_key)
        if col is None:
            raise UnknownProduct(
                f"Unknown product for source '{self.key}': {product_key!r}. "
                f"Allowed: {', '.join(self.product_columns)}"
            )
        return col

    def to_dict(self) -> dict[str, Any]:
        """Catalog view (for API responses)."""
        return {
            "key": self.key,
            "allowed_group_by": list(self.allowed_group_by),
            "filters": list(self.filter_columns),
            "products": list(self.product_columns),
            "annual": self.annual,
            "supports_bridge": self.bridge is not None,
        }


@dataclass(frozen=True)
class Preset:
    id: str
    label: str
    description: str
    default_params: dict[str, Any]
    overridable: tuple[str, ...] = ()
    view_type: str | None = None

    @property
    def data_source(self) -> str:
        return self.default_params.get("data_source", "first_purchase")

    @property
    def default_time_window(self) -> str | None:
        return self.default_params.get("time_window")

    def allows_override(self, arg: str) -> bool:
        """``filters`` in the overridable list covers every row-filter argument."""
        if arg in self.overridable:
            return True
        return "filters" in self.overridable and arg in FILTER_ARG_NAMES

    def to_dict(self) -> dict[str, Any]:
        out = {
            "id": self.id,
            "label": self.label,
            "description": self.description,
            "defaultParams": dict(self.default_params),
            "overridable": list(self.overridable),
        }
        if self.view_type:
            out["viewType"] = self.view_type
        return out


@dataclass
class SourceRegistry:
    """Fully parsed semantic layer."""

    version: int
    sources: dict[str, SourceDescriptor]   # keyed by source key
    presets: dict[str, Preset]             # keyed by preset id, in YAML order
    default_source: str

    def describe(self, source_key: str) -> SourceDescriptor:
        desc = self.sources.get(source_key)
        if desc is None:
            raise InvalidParameter.not_allowed("data_source", source_key, self.sources)
        return desc

    def get_preset(self, preset_id: str) -> Preset:
        preset = self.presets.get(preset_id)
        if preset is None:
            raise InvalidParameter.not_allowed("preset_id", preset_id, self.presets)
        return preset

    def bridge_source(self) -> SourceDescriptor | None:
        return next((s for s in self.sources.values() if s.bridge is not None), None)

    def get_source_names(self) -> list[str]:
        return list(self.sources.keys())

    def all_group_by(self) -> list[str]:
        seen: list[str] = []
        for s in self.sources.values():
            for g in s.allowed_group_by:
                if g not in seen:
                    seen.append(g)
        return seen

    def all_products(self) -> list[str]:
        seen: list[str] = []
        for s in self.sources.values():
            for p in s.product_columns:
                if p not in seen:
                    seen.append(p)
        return seen


# ── Parsing ──────────────────────────────────────────────

def _ident(value: Any, where: str) -> str:
    if not isinstance(value, str) or not _IDENTIFIER_RE.match(value):
        raise RegistryError(f"Invalid identifier {value!r} in {where}")
    return value


def _opt_ident(value: Any, where: str) -> str | None:
    return None if value is None else _ident(value, where)


def _parse_bridge(raw: dict[str, Any] | None, where: str) -> BridgeColumns | None:
    if not raw:
        return None
    asp = {
        _ident(k, where): (_ident(v["acv"], where), _ident(v["count"], where))
        for k, v in (raw.get("asp") or {}).items()
    }
    contributions = {_ident(k, where): _ident(v, where) for k, v in (raw.get("contributions") or {}).items()}
    return BridgeColumns(asp=asp, contributions=contributions)


def _parse_source(raw: dict[str, Any]) -> SourceDescriptor:
    key = raw.get("key")
    where = f"source '{key}'"
    if not raw.get("count_col"):
        raise RegistryError(f"{where}: count_col is required")
    has_arr = bool(raw.get("arr_col")) and raw.get("annual") is not None
    if not (has_arr or raw.get("value_col")):
        raise RegistryError(f"{where}: needs arr_col + annual, or value_col")

    group_by_columns = {
        _ident(dim, where): tuple(_ident(c, where) for c in cols)
        for dim, cols in (raw.get("group_by") or {}).items()
    }
    allowed = tuple(raw.get("allowed_group_by") or group_by_columns.keys())
    missing = [g for g in allowed if g not in group_by_columns]
    if missing:
        raise RegistryError(f"{where}: allowed_group_by without columns: {missing}")

    return SourceDescriptor(
        key=_ident(key, where),
        table=_ident(raw["table"], where),
        time_col=_ident(raw["time_col"], where),
        count_col=_ident(raw["count_col"], where),
        arr_col=_opt_ident(raw.get("arr_col"), where),
        value_col=_opt_ident(raw.get("value_col"), where),
        annual=bool(raw.get("annual", False)),
        acv_col=_opt_ident(raw.get("acv_col"), where),
        account_id_col=_opt_ident(raw.get("account_id_col"), where),
        group_by_columns=group_by_columns,
        allowed_group_by=allowed,
        filter_columns={_ident(d, where): _ident(c, where) for d, c in (raw.get("filters") or {}).items()},
        product_columns={_ident(p, where): _ident(c, where) for p, c in (raw.get("products") or {}).items()},
        bridge=_parse_bridge(raw.get("bridge"), where),
    )


def _parse_preset(raw: dict[str, Any]) -> Preset:
    return Preset(
        id=raw["id"],
        label=raw.get("label", raw["id"]),
        description=raw.get("description", ""),
        default_params=dict(raw.get("defaults") or {}),
        overridable=tuple(raw.get("overridable") or ()),
        view_type=raw.get("view_type"),
    )


def _parse_registry(raw_yaml: dict[str, Any]) -> SourceRegistry:
    sources = {}
    for s in raw_yaml.get("sources", []):
        desc = _parse_source(s)
        sources[desc.key] = desc
    presets = {p["id"]: _parse_preset(p) for p in raw_yaml.get("presets", [])}
    for p in presets.values():
        if p.data_source not in sources:
            raise RegistryError(f"preset '{p.id}' references unknown source '{p.data_source}'")
    default_source = raw_yaml.get("default_source", "fleet")
    if default_source not in sources:
        raise RegistryError(f"default_source '{default_source}' is not a configured source")
    return SourceRegistry(
        version=raw_yaml.get("version", 1),
        sources=sources,
        presets=presets,
        default_source=default_source,
    )


# ── Public API ───────────────────────────────────────────

@lru_cache
def load_registry() -> SourceRegistry:
    """Load and cache the source registry from YAML."""
    with open(_SEMANTIC_PATH) as f:
        raw = yaml.safe_load(f)
    return _parse_registry(raw)


def describe(source_key: str) -> SourceDescriptor:
    return load_registry().describe(source_key)


def get_presets() -> list[Preset]:
    return list(load_registry().presets.values())


def get_preset(preset_id: str) -> Preset:
    return load_registry().get_preset(preset_id)
