"""
Translates user-facing filter arguments into WHERE-clause semantics.

Per dimension (geo, segment, industry) a caller may send a single scalar,
an include-list or an exclude-list.  Precedence is deterministic:

    include-list  >  exclude-list  >  scalar

Size and length caps are hard rejections (FilterTooLarge).  Truncating
silently would run a query that looks valid but answers a different
question than the one asked.
"""
from __future__ import annotations

from typing import Any, Iterable, Literal

from pydantic import BaseModel, ConfigDict

from mrrpv_copilot.core.errors import FilterTooLarge, InvalidParameter
from mrrpv_copilot.governance.glossary import load_glossary
from mrrpv_copilot.governance.source_registry import SourceDescriptor

MAX_LIST_ENTRIES = 50
MAX_VALUE_LENGTH = 100
MAX_TIME_WINDOW_LENGTH = 400

# dimension -> (scalar arg, include-list arg, exclude-list arg)
FILTER_ARGS: dict[str, tuple[str, str, str]] = {
    "geo": ("region", "regions", "exclude_regions"),
    "segment": ("segment", "segments", "exclude_segments"),
    "industry": ("industry", "industries", "exclude_industries"),
}


class FilterClause(BaseModel):
    """One conjunctive predicate on a dimension column."""

    model_config = ConfigDict(frozen=True)

    dimension: str
    op: Literal["in", "not_in", "eq"]
    values: tuple[str, ...]


def _check_value(name: str, value: Any) -> str:
    if not isinstance(value, (str, int, float)) or isinstance(value, bool):
        raise InvalidParameter(f"{name} values must be strings, got {type(value).__name__}")
    text = str(value).strip()
    if len(text) > MAX_VALUE_LENGTH:
        raise FilterTooLarge(
            f"{name} value is {len(text)} characters; the maximum is {MAX_VALUE_LENGTH}: {text[:40]!r}..."
        )
    return text


def _clean_list(name: str, values: Any) -> list[str]:
    if values is None:
        return []
    if isinstance(values, (str, int, float)):
        values = [values]
    if not isinstance(values, (list, tuple)):
        raise InvalidParameter(f"{name} must be a list of strings")
    if len(values) > MAX_LIST_ENTRIES:
        raise FilterTooLarge(
            f"{name} has {len(values)} entries; the maximum is {MAX_LIST_ENTRIES}"
        )
    out: list[str] = []
    for v in values:
        text = _check_value(name, v)
        if text and text not in out:
            out.append(text)
    return out


def resolve(
    dimension: str,
    *,
    value: Any = None,
    include: Any = None,
    exclude: Any = None,
) -> FilterClause | None:
    """Resolve one dimension's raw arguments to a clause, or None for "no filter"."""
    if dimension not in FILTER_ARGS:
        raise InvalidParameter.not_allowed("filter dimension", dimension, FILTER_ARGS)
    scalar_name, include_name, exclude_name = FILTER_ARGS[dimension]

    # Validate everything that was sent, even the branches precedence discards.
    inc = _clean_list(include_name, include)
    exc = _clean_list(exclude_name, exclude)
    scalar = _check_value(scalar_name, value) if value is not None else ""

    if inc:
        return FilterClause(dimension=dimension, op="in", values=tuple(inc))
    if exc:
        return FilterClause(dimension=dimension, op="not_in", values=tuple(exc))
    if scalar:
        return FilterClause(dimension=dimension, op="eq", values=(scalar,))
    return None


def resolve_filters(raw_args: dict[str, Any]) -> list[FilterClause]:
    """Map tool-call arguments to clauses for geo, segment and industry."""
    clauses: list[FilterClause] = []
    for dimension, (scalar_name, include_name, exclude_name) in FILTER_ARGS.items():
        clause = resolve(
            dimension,
            value=raw_args.get(scalar_name),
            include=raw_args.get(include_name),
            exclude=raw_args.get(exclude_name),
        )
        if clause is not None:
            clauses.append(clause)
    return clauses


def check_filters_supported(clauses: Iterable[FilterClause], source: SourceDescriptor) -> None:
    for clause in clauses:
        source.filter_column(clause.dimension)


def resolve_products(phrases: Any, source: SourceDescriptor) -> tuple[str, ...]:
    """Resolve product phrases to ordered unique keys the source can filter on."""
    names = _clean_list("include_product", phrases)
    glossary = load_glossary()
    keys: list[str] = []
    for name in names:
        key = glossary.resolve_product_key(name) or name.lower()
        source.product_column(key)
        if key not in keys:
            keys.append(key)
    return tuple(keys)


def parse_time_window(window: Any) -> tuple[str, ...]:
    """Split a comma-joined (or list) time window into unique period labels."""
    if window is None:
        return ()
    if isinstance(window, (list, tuple)):
        parts = _clean_list("time_window", window)
        joined = ",".join(parts)
    elif isinstance(window, str):
        joined = window
        parts = None
    else:
        raise InvalidParameter("time_window must be a string of comma-separated quarters, e.g. 'FY26 Q4'")
    if len(joined) > MAX_TIME_WINDOW_LENGTH:
        raise FilterTooLarge(
            f"time_window is {len(joined)} characters; the maximum is {MAX_TIME_WINDOW_LENGTH}"
        )
    if parts is None:
        parts = _clean_list("time_window", [p for p in joined.split(",") if p.strip()])
    return tuple(parts)
