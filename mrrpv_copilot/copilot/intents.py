"""
Utterance -> intent tags for the view-state reconciler.

The reconciler only depends on the IntentClassifier protocol; the regex
heuristics below are one implementation and can be swapped or tested on
their own.
"""
from __future__ import annotations

import re
from enum import Enum
from typing import FrozenSet, Protocol


class Intent(str, Enum):
    FILTER_ONLY = "filter_only"
    VIEW_CHANGE = "view_change"
    TIME_CHANGE = "time_change"
    INCLUDE_RESTORE = "include_restore"
    RESTORE_UNFILTERED = "restore_unfiltered"
    ADD_PRODUCT = "add_product"


IntentSet = FrozenSet[Intent]


class IntentClassifier(Protocol):
    def classify(self, utterance: str) -> IntentSet: ...


# ââ Regex heuristics âââââââââââââââââââââââââââââââââââââ

_DIM_WORDS = r"(?:rows?|emea|europe|na|north\s+america|government|public\s+sector|mm|mid[\s-]?market|cml|segments?|regions?|geos?|industr(?:y|ies))"

VIEW_CHANGE_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\bby\s+industry\b",
        r"\bby\s+segment\b",
        r"\bby\s+geo\b",
        r"\bby\s+region\b",
        r"\bby\s+geo[-_\s]segment\b",
        r"\bbreakdown\s+by\b",
        r"\bbroken\s+down\s+by\b",
        r"\bswitch\s+to\b",
        r"\bshow\s+me\s+by\b",
        r"\bchange\s+(?:to\s+)?(?:the\s+)?(?:view|breakdown)\b",
        r"\bdifferent\s+view\b",
        r"\bdifferently\s+by\b",
        r"\bgroup(?:ed)?\s+by\b",
        r"\b(?:industry|geo|segment|bridge|overall)\s+view\b",
        r"\bno\s+breakdown\b",
    )
]

FILTER_ONLY_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        rf"\bremove\s+(?:the\s+)?{_DIM_WORDS}",
        rf"\bexclude\s+(?:the\s+)?{_DIM_WORDS}",
        rf"\binclude\s+(?:the\s+)?{_DIM_WORDS}",
        rf"\bdrop\s+(?:the\s+)?{_DIM_WORDS}",
        r"\b(?:add|show|bring)\s+.+\s+(?:back|again)\b",
        r"\brestore\s+",
        r"\bonly\s+(?:us|na|emea|show|display)\b",
        r"\bonly\s+include\s+accounts\b",
        r"\bonly\s+.+\s+(?:deals?|accounts?)\b",
        r"\bdeals?\s+that\s+included\s+",
        r"\brestrict\s+to\s+.+\s+accounts?\b",
        r"\bdon'?t\s+include\s+",
        r"\bwithout\s+",
        r"\b(?:filter|restrict)\s+(?:to|by)\b",
    )
]

# Short imperative filter phrases ("exclude CML") with no view-change signal.
_SHORT_FILTER_RE = re.compile(r"^(?:remove|exclude|include|only|drop)\s+", re.IGNORECASE)
_SHORT_FILTER_MAX = 120

TIME_CHANGE_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\bFY\s*\d{2}\b",
        r"\b(?:fiscal\s+)?year\s+\d{2}\b",
        r"\bQ[1-4]\s+FY\d{2}\b",
        r"\blast\s+\d+\s+quarters?\b",
        r"\b(?:quarter|period)\b",
        r"\b(?:from|between|since)\s+.+\s+(?:to|through|onwards?|and)\b",
        r"\bsince\s+\S+",
    )
]

INCLUDE_RESTORE_RE = re.compile(
    r"\b(include|restore|add\s+.+\s+back|show\s+.+\s+again|bring\s+.*back)\b",
    re.IGNORECASE,
)

# "don't include EMEA" asks for an exclusion, not a restore.
_NEGATION_RE = re.compile(r"\b(?:don['’]?t|do\s+not|never|without|not|no\s+longer)\s+$", re.IGNORECASE)


def restore_clause(utterance: str) -> str | None:
    """Text from the first non-negated include/restore verb onwards; None when there is none."""
    text = utterance or ""
    for m in INCLUDE_RESTORE_RE.finditer(text):
        if not _NEGATION_RE.search(text[: m.start()]):
            return text[m.start():]
    return None


RESTORE_UNFILTERED_RE = re.compile(
    r"\b(restore\s+(?:the\s+)?(?:original\s+)?(?:unfiltered\s+)?(?:table|view|data)"
    r"|remove\s+all\s+(?:the\s+)?filters?"
    r"|clear\s+(?:all\s+)?(?:the\s+)?filters?"
    r"|reset\s+(?:all\s+)?(?:the\s+)?filters?"
    r"|show\s+(?:the\s+)?(?:full|unfiltered)\s+(?:table|view|data)"
    r"|unfiltered\s+(?:table|view))\b",
    re.IGNORECASE,
)

ADD_PRODUCT_RE = re.compile(
    r"\b(also"
    r"|in\s+addition"
    r"|as\s+well"
    r"|add\s+(?:aim4|vg|cm|telematics|safety|camera|st|flapps|cc|cw|ct|cnav|moby|rp|cam|qual|sat)\b"
    r"|(?:accounts?|deals?)\s+that\s+also\s+had?)\b",
    re.IGNORECASE,
)


class RegexIntentClassifier:
    """Keyword/regex heuristics over the raw user utterance."""

    def classify(self, utterance: str) -> IntentSet:
        text = (utterance or "").strip()
        if not text:
            return frozenset()

        tags: set[Intent] = set()
        if RESTORE_UNFILTERED_RE.search(text):
            tags.add(Intent.RESTORE_UNFILTERED)

        if any(p.search(text) for p in VIEW_CHANGE_PATTERNS):
            tags.add(Intent.VIEW_CHANGE)
        elif any(p.search(text) for p in FILTER_ONLY_PATTERNS) or (
            _SHORT_FILTER_RE.match(text) and len(text) < _SHORT_FILTER_MAX
        ):
            tags.add(Intent.FILTER_ONLY)

        if any(p.search(text) for p in TIME_CHANGE_PATTERNS):
            tags.add(Intent.TIME_CHANGE)
        if restore_clause(text) is not None:
            tags.add(Intent.INCLUDE_RESTORE)
        if ADD_PRODUCT_RE.search(text):
            tags.add(Intent.ADD_PRODUCT)
        return frozenset(tags)


default_classifier = RegexIntentClassifier()
