"""
Conversational tool-call loop -- one user turn in, one reply out.

Flow:
  1. system prompt + history + tool schema -> LLM (zero or more tool calls)
  2. each get_mrrpv call -> reconciler -> compiler -> tool output
     (structured error dict on failure)
  3. tool outputs -> LLM -> final natural-language reply

The loop only routes parameters and results; every number in a reply was
computed by the compiler.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable

from mrrpv_copilot.copilot import llm_client
from mrrpv_copilot.copilot.intents import IntentClassifier, default_classifier
from mrrpv_copilot.copilot.reconciler import reconcile
from mrrpv_copilot.copilot.spec import BRIDGE_PRESET_ID, CurrentView, QueryResult
from mrrpv_copilot.copilot.tools import TOOL_NAME, TOOLS, parse_arguments, run_tool
from mrrpv_copilot.core.config import Settings, get_settings
from mrrpv_copilot.core.errors import CopilotError
from mrrpv_copilot.core.logging import get_logger
from mrrpv_copilot.core.utils import timer
from mrrpv_copilot.governance.source_registry import load_registry

logger = get_logger(__name__)

ChatFn = Callable[..., llm_client.LLMResponse]


@dataclass
class AgentContext:
    """Everything a turn needs besides the conversation itself."""
    settings: Settings = field(default_factory=get_settings)
    source_key: str | None = None
    classifier: IntentClassifier = default_classifier
    llm: ChatFn = llm_client.chat


@dataclass
class ToolInvocation:
    name: str
    proposed: dict[str, Any]
    effective: dict[str, Any]
    success: bool
    forced_fields: tuple[str, ...] = ()
    ambiguous: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "args": self.effective,
            "proposed_args": self.proposed,
            "success": self.success,
            "forced_fields": list(self.forced_fields),
            "ambiguous": self.ambiguous,
        }


@dataclass
class TurnResult:
    reply: str
    tool_calls: list[ToolInvocation] = field(default_factory=list)
    effective_params: dict[str, Any] | None = None
    result: QueryResult | None = None
    error: dict[str, Any] | None = None
    latency_ms: int = 0


# ── System prompt ────────────────────────────────────────

_DIMENSION_RULE = (
    "Dimension values: pass exact table values for region/segment/industry filters. "
    "\"Public sector\" means BOTH geo values US-SLED and US - SLED; \"MM\" means every "
    "mid-market segment. When unsure, pass the user's phrase; the server resolves it.\n"
)

_TOOL_RULES = (
    "Rules for get_mrrpv:\n"
    "- Always call the tool for MRRpV questions; never ask the user for a grouping or period.\n"
    "- Omit group_by for one overall row. Omit time_window only when no period is in scope.\n"
    "- Never compute numbers yourself. Quote the tool's 'overall' object (MRRpV, vehicles, "
    "ACV, account count, avg deal size when present) in your reply.\n"
    "- Set include_account_count for deal/account counts and include_avg_deal_size for "
    "average deal size.\n"
    "- On a tool error, explain it and suggest a valid alternative from its message.\n"
)


def _preset_prompt() -> str:
    registry = load_registry()
    lines = ["Preset views (the user may say 'the bridge' or a preset name):"]
    for preset in registry.presets.values():
        lines.append(f"- {preset.id}: {preset.label}. {preset.description}".rstrip())
    return "\n".join(lines) + "\n"


def current_view_prompt(view: CurrentView | None) -> str:
    """Instructions pinning the model to the view the user is looking at."""
    if view is None:
        return ""
    label = view.label or view.preset_id or "current view"
    is_bridge = view.view_type == "bridge" or view.preset_id == BRIDGE_PRESET_ID
    parts = [f"The user is viewing: {label}."]
    if view.preset_id:
        parts.append(f"Pass preset_id: \"{view.preset_id}\".")
    if is_bridge:
        parts.append("This is the MRRpV Bridge: pass view_type: \"bridge\" and never group_by.")
    if view.time_window:
        parts.append(
            f"Time: {view.time_window}. Pass this exact time_window when the user only filters rows."
        )
    if view.group_by and not is_bridge:
        parts.append(f"Group by: {view.group_by}. Keep it unless the user asks for a different breakdown.")
    filters = view.filter_args()
    if filters:
        parts.append(
            "Active filters (pass them all, plus any new one): "
            + json.dumps(filters, sort_keys=True) + "."
        )
    if view.include_acv is False:
        parts.append("ACV is hidden: pass include_acv: false.")
    return "Current view: " + " ".join(parts) + "\n\n"


def build_system_prompt(view: CurrentView | None, settings: Settings) -> str:
    return (
        _DIMENSION_RULE + "\n"
        + _preset_prompt() + "\n"
        + current_view_prompt(view)
        + _TOOL_RULES
        + (("\n" + settings.system_prompt) if settings.system_prompt else "")
    )


# ── Turn ─────────────────────────────────────────────────

def _last_user_message(history: list[dict[str, Any]]) -> str:
    for msg in reversed(history):
        if msg.get("role") == "user":
            return str(msg.get("content") or "")
    return ""


def _tool_message(call_id: str, payload: dict[str, Any]) -> dict[str, Any]:
    return {"role": "tool", "tool_call_id": call_id, "content": json.dumps(payload, default=str)}


def run_turn(
    history: list[dict[str, Any]],
    current_view: CurrentView | dict[str, Any] | None = None,
    context: AgentContext | None = None,
) -> TurnResult:
    """Run one conversational turn.

    *history* is the user/assistant message list ending with the new user
    message.  Neither *history* nor *current_view* is modified.  Raises
    LLMError / LLMTimeout when the language model fails; query failures are
    reported back to the model and on ``TurnResult.error``.
    """
    ctx = context or AgentContext()
    view = current_view
    if view is not None and not isinstance(view, CurrentView):
        view = CurrentView.model_validate(view)
    utterance = _last_user_message(history)

    messages: list[dict[str, Any]] = [{"role": "system", "content": build_system_prompt(view, ctx.settings)}]
    messages.extend({"role": m["role"], "content": m.get("content")} for m in history)

    with timer() as t:
        first = ctx.llm(messages, tools=TOOLS, settings=ctx.settings)
        if not first.tool_calls:
            turn = TurnResult(reply=first.content or "No response.")
        else:
            turn = TurnResult(reply="")
            messages.append(first.to_message())
            for call in first.tool_calls:
                messages.append(_tool_message(call.id, _invoke(call, view, utterance, ctx, turn)))
            final = ctx.llm(messages, tools=TOOLS, allow_tools=False, settings=ctx.settings)
            turn.reply = final.content or "Done."

    turn.latency_ms = t["elapsed_ms"]
    logger.info(
        "Turn usage | latency=%dms | tool_calls=%s | rows=%s | success=%s",
        turn.latency_ms,
        [c.name for c in turn.tool_calls],
        turn.result.row_count if turn.result else None,
        turn.error is None,
    )
    return turn


def _invoke(
    call: llm_client.ToolCall,
    view: CurrentView | None,
    utterance: str,
    ctx: AgentContext,
    turn: TurnResult,
) -> dict[str, Any]:
    """Reconcile and execute one tool call; returns the tool output payload."""
    try:
        proposed = parse_arguments(call.arguments)
    except CopilotError as exc:
        proposed = {}
        payload = exc.to_dict()
        turn.tool_calls.append(ToolInvocation(call.name, proposed, proposed, success=False))
        turn.error = turn.error or payload
        return payload

    if call.name == TOOL_NAME:
        outcome = reconcile(view, proposed, utterance, ctx.classifier)
        effective = outcome.args
        invocation = ToolInvocation(
            call.name, proposed, effective, success=False,
            forced_fields=outcome.forced_fields, ambiguous=outcome.ambiguous,
        )
    else:
        effective = proposed
        invocation = ToolInvocation(call.name, proposed, effective, success=False)
    turn.tool_calls.append(invocation)

    try:
        result = run_tool(call.name, effective, ctx.source_key, ctx.settings)
    except CopilotError as exc:
        logger.warning("Tool %s failed: [%s] %s", call.name, exc.code, exc.message)
        payload = exc.to_dict()
        turn.error = turn.error or payload
        return payload

    invocation.success = True
    if turn.result is None:
        turn.result = result
        turn.effective_params = effective
    return result.to_tool_payload()
