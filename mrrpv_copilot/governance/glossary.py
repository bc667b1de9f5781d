"""
Dimension glossary -- plain-English phrases to the exact values stored in
the MRRpV tables, and product phrases to product keys.

Matching is case-insensitive.  A phrase may resolve to a SET of table values
("public sector" -> both historical spellings of the public-sector geo code),
so every resolver here returns lists.  Unmapped phrases fall back to the
caller's literal value, since callers often already pass exact table values.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

_GLOSSARY_PATH = Path(__file__).resolve().parents[1] / "semantic_layer" / "glossary.yml"

DIMENSIONS = ("geo", "segment", "industry")


@lru_cache(maxsize=512)
def _phrase_pattern(phrase: str, upper_only: bool = False) -> re.Pattern:
    # Hyphens count as word characters: "us-sled" must not match inside "us-sled-mm".
    if upper_only:
        return re.compile(rf"(?<![\w-]){re.escape(phrase.upper())}(?![\w-])")
    return re.compile(rf"(?<![\w-]){re.escape(phrase)}(?![\w-])", re.IGNORECASE)


@dataclass(frozen=True)
class Glossary:
    dimension_phrases: dict[str, dict[str, tuple[str, ...]]]
    product_phrases: dict[str, str]
    product_labels: dict[str, str]
    metric_terms: dict[str, str] = field(default_factory=dict)
    # Phrases that are also common words ("us"); they only count when typed in capitals.
    upper_only: frozenset[str] = frozenset()

    def is_upper_only(self, phrase: str) -> bool:
        return str(phrase).strip().lower() in self.upper_only

    # ── Dimension values ─────────────────────────────

    def resolve_dimension_values(self, dimension: str, phrase: str) -> list[str]:
        """Return every table value *phrase* stands for, or ``[phrase]`` when unmapped."""
        literal = str(phrase).strip()
        mapped = self.dimension_phrases.get(dimension, {}).get(literal.lower())
        return list(mapped) if mapped else [literal]

    def resolve_dimension_value(self, dimension: str, phrase: str) -> str | list[str]:
        values = self.resolve_dimension_values(dimension, phrase)
        return values[0] if len(values) == 1 else values

    def match_phrases(self, dimension: str, text: str) -> tuple[list[str], str]:
        """Table values of every glossary phrase in *text*, and the text left unmatched.

        Longer phrases are matched first and consumed, so "public sector mm"
        does not also count as "mm".
        """
        remaining = text
        out: list[str] = []
        phrases = self.dimension_phrases.get(dimension, {})
        for phrase in sorted(phrases, key=len, reverse=True):
            pattern = _phrase_pattern(phrase, phrase in self.upper_only)
            if not pattern.search(remaining):
                continue
            remaining = pattern.sub(" ", remaining)
            for v in phrases[phrase]:
                if v not in out:
                    out.append(v)
        return out, remaining

    def find_phrase_values(self, dimension: str, text: str) -> list[str]:
        return self.match_phrases(dimension, text)[0]

    def find_all(self, text: str) -> dict[str, list[str]]:
        """Values per dimension named in *text*.

        Segments go first: composite segment phrases ("public sector mm")
        contain geo phrases and must win over them.
        """
        out: dict[str, list[str]] = {}
        remaining = text
        for dim in ("segment", "geo", "industry"):
            out[dim], remaining = self.match_phrases(dim, remaining)
        return out

    # ── Products ─────────────────────────────────────

    def resolve_product_key(self, phrase: str) -> str | None:
        if not phrase or not isinstance(phrase, str):
            return None
        return self.product_phrases.get(phrase.strip().lower())

    def find_products(self, text: str) -> list[str]:
        """Product keys named anywhere in *text* (longest phrase first)."""
        remaining = text.lower()
        keys: list[str] = []
        for phrase in sorted(self.product_phrases, key=len, reverse=True):
            pattern = _phrase_pattern(phrase)
            if pattern.search(remaining):
                remaining = pattern.sub(" ", remaining)
                key = self.product_phrases[phrase]
                if key not in keys:
                    keys.append(key)
        return keys

    def product_label(self, key: str) -> str:
        if not key:
            return ""
        return self.product_labels.get(key.lower(), key)


def _parse_glossary(raw: dict[str, Any]) -> Glossary:
    dims_raw = raw.get("dimensions") or {}
    dimension_phrases: dict[str, dict[str, tuple[str, ...]]] = {}
    for dim in DIMENSIONS:
        entries = dims_raw.get(dim) or {}
        dimension_phrases[dim] = {
            str(phrase).lower(): tuple(str(v) for v in values)
            for phrase, values in entries.items()
        }
    products = raw.get("products") or {}
    return Glossary(
        dimension_phrases=dimension_phrases,
        product_phrases={str(k).lower(): str(v) for k, v in (products.get("phrases") or {}).items()},
        product_labels={str(k).lower(): str(v) for k, v in (products.get("labels") or {}).items()},
        metric_terms=dict(raw.get("metric_terms") or {}),
        upper_only=frozenset(str(p).lower() for p in raw.get("upper_case_only") or ()),
    )


@lru_cache
def load_glossary() -> Glossary:
    """Load and cache the glossary from YAML."""
    with open(_GLOSSARY_PATH) as f:
        raw = yaml.safe_load(f)
    return _parse_glossary(raw)


def resolve_dimension_value(dimension: str, phrase: str) -> str | list[str]:
    return load_glossary().resolve_dimension_value(dimension, phrase)


def resolve_product_key(phrase: str) -> str | None:
    return load_glossary().resolve_product_key(phrase)
