"""
Planner -- deterministic keyword extraction from an utterance to get_mrrpv
arguments.

Backs the ``mock`` LLM provider (no API key needed, great for tests and
offline dev).  It reads only the utterance; the reconciler fills in the
current view's structure afterwards.
"""
from __future__ import annotations

import re
from typing import Any

from mrrpv_copilot.copilot.spec import BRIDGE_PRESET_ID
from mrrpv_copilot.core.logging import get_logger
from mrrpv_copilot.governance.glossary import Glossary, load_glossary

logger = get_logger(__name__)

# ── Keyword maps ─────────────────────────────────────────

_GROUP_BY_KEYWORDS: list[tuple[str, list[str]]] = [
    # most specific first
    ("geo_segment", ["geo-segment", "geo_segment", "geo segment", "by geo and segment", "by region and segment"]),
    ("industry",    ["by industry", "per industry", "industry view"]),
    ("segment",     ["by segment", "per segment", "segment view"]),
    ("geo",         ["by geo", "by region", "per region", "per geo", "geo view", "by country"]),
]

_MRRPV_TERMS_RE = re.compile(
    r"\b(mrrpv|mrr|revenue|acv|arr|vehicles?|deals?|accounts?|bridge|asp|exclude|include|remove|restore|add|"
    r"only|drop|filter|breakdown|fy\s*\d{2}|q[1-4]|quarters?|industry|segment|geo|region)\b",
    re.IGNORECASE,
)

_QUARTER_RE = re.compile(r"\bFY\s*(\d{2})\s*Q([1-4])\b|\bQ([1-4])\s*FY\s*(\d{2})\b", re.IGNORECASE)
_FISCAL_YEAR_RE = re.compile(r"\b(?:FY\s*|fiscal\s+year\s+|year\s+)(\d{2})\b(?!\s*Q[1-4])", re.IGNORECASE)
_RANGE_RE = re.compile(
    r"\b(?:from|between)\s+(FY\s*\d{2}\s*Q[1-4])\s+(?:to|and|through|-)\s+(FY\s*\d{2}\s*Q[1-4])\b",
    re.IGNORECASE,
)

_EXCLUDE_RE = re.compile(
    r"\b(?:exclude|excluding|remove|drop|without|don'?t\s+include|except)\s+(.+)",
    re.IGNORECASE,
)
_ONLY_RE = re.compile(r"\b(?:only|just|restrict\s+to|limited\s+to|filter\s+to)\s+(.+)", re.IGNORECASE)
_RESTORE_RE = re.compile(r"\b(?:restore|add\s+.+\s+back|show\s+.+\s+again|bring\s+.*back|include\s+.+\s+again)\b", re.IGNORECASE)
_PRODUCT_TRIGGER_RE = re.compile(
    r"\b(?:deals?|accounts?)\s+(?:that\s+)?(?:also\s+)?(?:included?|had|have|with)\b|\bwith\b|\balso\b|"
    r"\bincluded\b|\badd\b",
    re.IGNORECASE,
)

_ACCOUNT_COUNT_RE = re.compile(
    r"\b(?:account|deal)\s+counts?\b|\bnumber\s+of\s+(?:unique\s+)?(?:accounts|deals)\b|"
    r"\bhow\s+many\s+(?:accounts|deals)\b|\bunique\s+accounts\b",
    re.IGNORECASE,
)
_AVG_DEAL_RE = re.compile(
    r"\b(?:average|avg)\s+(?:deal|account)\s+size\b|\bacv\s+per\s+account\b",
    re.IGNORECASE,
)
_HIDE_ACV_RE = re.compile(r"\b(?:remove|hide|drop|without)\s+(?:the\s+)?acv\b", re.IGNORECASE)
_SHOW_ACV_RE = re.compile(r"\b(?:show|add|include)\s+(?:the\s+)?acv\b", re.IGNORECASE)


# ── Time window ──────────────────────────────────────────

def _quarter_label(fy: int, q: int) -> str:
    return f"FY{fy:02d} Q{q}"


def _quarters_between(start: tuple[int, int], end: tuple[int, int]) -> list[str]:
    if start > end:
        start, end = end, start
    out = []
    fy, q = start
    while (fy, q) <= end:
        out.append(_quarter_label(fy, q))
        fy, q = (fy + 1, 1) if q == 4 else (fy, q + 1)
    return out


def _parse_quarter(label: str) -> tuple[int, int]:
    m = _QUARTER_RE.search(label)
    assert m is not None
    if m.group(1):
        return int(m.group(1)), int(m.group(2))
    return int(m.group(4)), int(m.group(3))


def extract_time_window(text: str) -> str | None:
    """Comma-joined quarter labels named in *text*, or None."""
    m = _RANGE_RE.search(text)
    if m:
        return ",".join(_quarters_between(_parse_quarter(m.group(1)), _parse_quarter(m.group(2))))

    labels: list[str] = []
    spans: list[tuple[int, int]] = []
    for m in _QUARTER_RE.finditer(text):
        spans.append(m.span())
        fy, q = (m.group(1), m.group(2)) if m.group(1) else (m.group(4), m.group(3))
        label = _quarter_label(int(fy), int(q))
        if label not in labels:
            labels.append(label)
    for m in _FISCAL_YEAR_RE.finditer(text):
        # "Q3 FY26" already named its quarter
        if any(start <= m.start() < end for start, end in spans):
            continue
        for q in range(1, 5):
            label = _quarter_label(int(m.group(1)), q)
            if label not in labels:
                labels.append(label)
    return ",".join(labels) or None


# ── Filters ──────────────────────────────────────────────

_CLAUSE_END_RE = re.compile(r"\b(?:only|just|but|restrict)\b|\b(?:for|in|during)\s+(?:FY|Q[1-4])|[;.]", re.IGNORECASE)


def _clause(fragment: str) -> str:
    """Cut a filter fragment where the next instruction starts."""
    m = _CLAUSE_END_RE.search(fragment)
    return fragment[:m.start()] if m else fragment


def _extract_row_filters(text: str, glossary: Glossary) -> dict[str, list[str]]:
    out: dict[str, list[str]] = {}
    if _RESTORE_RE.search(text):
        # Restores are applied against the current view by the reconciler.
        return out

    m = _EXCLUDE_RE.search(text)
    if m:
        found = glossary.find_all(_clause(m.group(1)))
        if found["geo"]:
            out["exclude_regions"] = found["geo"]
        if found["segment"]:
            out["exclude_segments"] = found["segment"]

    m = _ONLY_RE.search(text)
    if m:
        found = glossary.find_all(_clause(m.group(1)))
        if found["geo"]:
            out["regions"] = found["geo"]
        if found["segment"]:
            out["segments"] = found["segment"]
    return out


# ── Public API ───────────────────────────────────────────

def plan_args(utterance: str) -> dict[str, Any] | None:
    """Map *utterance* to get_mrrpv arguments; None when it is not an MRRpV request."""
    text = (utterance or "").strip()
    if not text or not _MRRPV_TERMS_RE.search(text):
        return None
    q = text.lower()
    glossary = load_glossary()
    args: dict[str, Any] = {}

    window = extract_time_window(text)
    if window:
        args["time_window"] = window

    if "bridge" in q:
        args["view_type"] = "bridge"
        args["preset_id"] = BRIDGE_PRESET_ID
    else:
        for name, keywords in _GROUP_BY_KEYWORDS:
            if any(kw in q for kw in keywords):
                args["group_by"] = name
                break

    args.update(_extract_row_filters(text, glossary))

    if _PRODUCT_TRIGGER_RE.search(text):
        products = glossary.find_products(text)
        if products:
            args["include_product"] = products

    if _ACCOUNT_COUNT_RE.search(text):
        args["include_account_count"] = True
    if _AVG_DEAL_RE.search(text):
        args["include_avg_deal_size"] = True
    if _HIDE_ACV_RE.search(text):
        args["include_acv"] = False
    elif _SHOW_ACV_RE.search(text):
        args["include_acv"] = True

    logger.info("Planner[mock] -> %s", args)
    return args
