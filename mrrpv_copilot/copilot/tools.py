"""
The single tool exposed to the language model, and its dispatcher.

The model only chooses parameters; every number in a reply comes from the
compiler's output.
"""
from __future__ import annotations

import json
from typing import Any

from mrrpv_copilot.copilot.service import run_query
from mrrpv_copilot.copilot.spec import QueryResult
from mrrpv_copilot.core.config import Settings
from mrrpv_copilot.core.errors import InvalidParameter
from mrrpv_copilot.core.logging import get_logger

logger = get_logger(__name__)

TOOL_NAME = "get_mrrpv"

_LIST = {"type": "array", "items": {"type": "string"}}

MRRPV_TOOL: dict[str, Any] = {
    "type": "function",
    "function": {
        "name": TOOL_NAME,
        "description": (
            "Get MRRpV (Monthly Recurring Revenue per Vehicle) with vehicles, ACV and optional "
            "account metrics. Call for every MRRpV question. Pass time_window as one quarter "
            "(\"FY26 Q4\") or comma-separated quarters. Omit group_by for an overall total. "
            "When refining the current view, pass ALL existing filters plus the new one and keep "
            "the same preset_id, group_by and time_window. The data source is chosen by the user "
            "in the app."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "time_window": {
                    "type": "string",
                    "description": (
                        "One quarter (\"FY26 Q4\") or comma-separated quarters. \"FY26\" means "
                        "\"FY26 Q1,FY26 Q2,FY26 Q3,FY26 Q4\". Use the current view's window when "
                        "only filtering; omitting it returns every quarter."
                    ),
                },
                "group_by": {
                    "type": "string",
                    "enum": ["industry", "segment", "geo", "geo_segment"],
                    "description": (
                        "Breakdown dimension. Leave unset for one overall row. Only change it when "
                        "the user explicitly asks for a different breakdown."
                    ),
                },
                "include_product": {
                    **_LIST,
                    "description": (
                        "Product keys; only rows where ALL listed products have license count > 0. "
                        "When the view already filters on products and the user says 'also X', pass "
                        "the union."
                    ),
                },
                "include_account_count": {"type": "boolean", "description": "Add distinct account count."},
                "include_avg_deal_size": {"type": "boolean", "description": "Add ACV per distinct account."},
                "include_acv": {
                    "type": "boolean",
                    "description": "False hides the ACV column. Preserve from the current view.",
                },
                "region": {"type": "string", "description": "Single geo value, e.g. \"US\"."},
                "regions": {**_LIST, "description": "Include only these geos. Overrides region."},
                "exclude_regions": {
                    **_LIST,
                    "description": (
                        "Exclude these geos (exact table values). To restore geos pass the current "
                        "list with those values removed; omit when empty."
                    ),
                },
                "segment": {"type": "string", "description": "Single segment value."},
                "segments": {**_LIST, "description": "Include only these segments."},
                "exclude_segments": {**_LIST, "description": "Exclude these segments (exact table values)."},
                "industry": {"type": "string", "description": "Single industry value."},
                "industries": {**_LIST, "description": "Include only these industries."},
                "exclude_industries": {**_LIST, "description": "Exclude these industries."},
                "view_type": {
                    "type": "string",
                    "enum": ["bridge"],
                    "description": "Set to \"bridge\" only when refining the MRRpV Bridge view; never with group_by.",
                },
                "preset_id": {
                    "type": "string",
                    "description": "The current preset id when refining a preset view.",
                },
            },
            "required": [],
        },
    },
}

TOOLS = [MRRPV_TOOL]


def parse_arguments(raw: Any) -> dict[str, Any]:
    """Tool-call arguments arrive as a JSON string (OpenAI) or an object (Anthropic)."""
    if raw is None or raw == "":
        return {}
    if isinstance(raw, dict):
        return dict(raw)
    try:
        parsed = json.loads(raw)
    except (TypeError, json.JSONDecodeError) as exc:
        raise InvalidParameter(f"Tool arguments are not valid JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise InvalidParameter("Tool arguments must be a JSON object")
    return parsed


def run_tool(
    name: str,
    args: dict[str, Any],
    source_key: str | None = None,
    settings: Settings | None = None,
) -> QueryResult:
    if name != TOOL_NAME:
        raise InvalidParameter.not_allowed("tool", name, [TOOL_NAME])
    logger.info("Tool %s | source=%s | args=%s", name, source_key, json.dumps(args, sort_keys=True))
    return run_query(args, source_key, settings)


def execute_tool(
    name: str,
    args: dict[str, Any],
    source_key: str | None = None,
    settings: Settings | None = None,
) -> dict[str, Any]:
    """Run a tool call and return the payload the model sees.  Raises CopilotError."""
    return run_tool(name, args, source_key, settings).to_tool_payload()
