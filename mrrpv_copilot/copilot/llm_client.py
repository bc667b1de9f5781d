"""
LLM client abstraction -- provider-agnostic chat with tool calling.

Supported providers:
  mock      -- keyword planner emits get_mrrpv calls (tests / offline dev)
  openai    -- OpenAI Chat Completions (gpt-4o-mini default)
  anthropic -- Anthropic Messages (claude-3-haiku default)

Messages use the OpenAI chat format throughout (system / user / assistant
with ``tool_calls`` / tool); the Anthropic adapter translates on the way in
and out.  Configuration is read from Settings (env / .env).
"""
from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from typing import Any

from mrrpv_copilot.copilot.planner import plan_args
from mrrpv_copilot.copilot.tools import TOOL_NAME
from mrrpv_copilot.core.config import Settings, get_settings
from mrrpv_copilot.core.errors import LLMError, LLMTimeout
from mrrpv_copilot.core.logging import get_logger

logger = get_logger(__name__)


_OPENAI_DEFAULT_MODEL = "gpt-4o-mini"
_ANTHROPIC_DEFAULT_MODEL = "claude-3-haiku-20240307"


@dataclass
class ToolCall:
    id: str
    name: str
    arguments: dict[str, Any] | str

    def to_message(self) -> dict[str, Any]:
        args = self.arguments if isinstance(self.arguments, str) else json.dumps(self.arguments)
        return {"id": self.id, "type": "function", "function": {"name": self.name, "arguments": args}}


@dataclass
class LLMResponse:
    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)

    def to_message(self) -> dict[str, Any]:
        """Assistant message to append to the history before tool outputs."""
        msg: dict[str, Any] = {"role": "assistant", "content": self.content or None}
        if self.tool_calls:
            msg["tool_calls"] = [tc.to_message() for tc in self.tool_calls]
        return msg


# ── Mock ─────────────────────────────────────────────────

def _summarise_tool_output(content: str) -> str:
    try:
        payload = json.loads(content)
    except (TypeError, json.JSONDecodeError):
        return "The query returned an unreadable result."
    if not payload.get("success"):
        return f"I couldn't run that query: {payload.get('error', 'unknown error')}"
    overall = payload.get("overall") or {}
    rows = payload.get("row_count", 0)
    if payload.get("view_type") == "bridge":
        totals = payload.get("grand_totals") or {}
        return f"Here is the MRRpV Bridge ({rows} quarters). Overall MRRpV: {totals.get('fleet_mrrpv')}."
    if not overall:
        return "No rows matched those filters."
    return (
        f"MRRpV is {overall.get('fleet_mrrpv')} per vehicle across "
        f"{overall.get('vehicle_count')} vehicles ({rows} rows)."
    )


def _call_mock(messages: list[dict[str, Any]], tools: list[dict[str, Any]] | None, allow_tools: bool, settings: Settings) -> LLMResponse:
    last = messages[-1] if messages else {}
    if last.get("role") == "tool":
        outputs = []
        for msg in reversed(messages):
            if msg.get("role") != "tool":
                break
            outputs.append(_summarise_tool_output(msg.get("content", "")))
        return LLMResponse(content=" ".join(reversed(outputs)))

    utterance = str(last.get("content") or "")
    args = plan_args(utterance) if (tools and allow_tools) else None
    if args is None:
        return LLMResponse(content="Ask me about MRRpV, e.g. \"MRRpV by industry for FY26\".")
    logger.info("LLM mock mode -- planned tool call")
    return LLMResponse(tool_calls=[ToolCall(id=f"call_{uuid.uuid4().hex[:12]}", name=TOOL_NAME, arguments=args)])


# ── OpenAI ───────────────────────────────────────────────

def _call_openai(messages: list[dict[str, Any]], tools: list[dict[str, Any]] | None, allow_tools: bool, settings: Settings) -> LLMResponse:
    """Call OpenAI Chat Completions with tool definitions."""
    api_key = settings.openai_api_key
    if not api_key:
        raise LLMError(
            "openai_api_key is not set.  "
            "Set OPENAI_API_KEY in your .env file or environment."
        )

    try:
        import openai  # type: ignore[import-untyped]
    except ImportError as exc:
        raise LLMError(
            "The 'openai' package is not installed.  "
            "Run: pip install openai"
        ) from exc

    client = openai.OpenAI(api_key=api_key, timeout=settings.llm_timeout_seconds)
    kwargs: dict[str, Any] = {
        "model": settings.llm_model or _OPENAI_DEFAULT_MODEL,
        "messages": messages,
        "temperature": settings.llm_temperature,
        "max_tokens": settings.llm_max_tokens,
    }
    if tools:
        kwargs["tools"] = tools
        kwargs["tool_choice"] = "auto" if allow_tools else "none"
    try:
        response = client.chat.completions.create(**kwargs)
    except openai.APITimeoutError as exc:
        raise LLMTimeout(f"OpenAI did not answer within {settings.llm_timeout_seconds:g}s") from exc
    except openai.OpenAIError as exc:
        raise LLMError(f"OpenAI request failed: {exc}") from exc

    message = response.choices[0].message
    calls = [
        ToolCall(id=tc.id, name=tc.function.name, arguments=tc.function.arguments)
        for tc in (message.tool_calls or [])
    ]
    text = message.content or ""
    logger.info("OpenAI response (%d chars, %d tool calls)", len(text), len(calls))
    return LLMResponse(content=text, tool_calls=calls)


# ── Anthropic ────────────────────────────────────────────

def to_anthropic(messages: list[dict[str, Any]]) -> tuple[str, list[dict[str, Any]]]:
    """Translate OpenAI-format messages to (system, Anthropic messages)."""
    system_parts: list[str] = []
    out: list[dict[str, Any]] = []

    def _append(role: str, blocks: list[dict[str, Any]]) -> None:
        # Anthropic requires alternating roles; merge consecutive turns.
        if out and out[-1]["role"] == role:
            out[-1]["content"].extend(blocks)
        else:
            out.append({"role": role, "content": blocks})

    for msg in messages:
        role = msg.get("role")
        if role == "system":
            system_parts.append(str(msg.get("content") or ""))
        elif role == "user":
            _append("user", [{"type": "text", "text": str(msg.get("content") or "")}])
        elif role == "assistant":
            blocks: list[dict[str, Any]] = []
            if msg.get("content"):
                blocks.append({"type": "text", "text": str(msg["content"])})
            for tc in msg.get("tool_calls") or []:
                fn = tc["function"]
                args = fn.get("arguments") or {}
                blocks.append({
                    "type": "tool_use",
                    "id": tc["id"],
                    "name": fn["name"],
                    "input": json.loads(args) if isinstance(args, str) else args,
                })
            if blocks:
                _append("assistant", blocks)
        elif role == "tool":
            _append("user", [{
                "type": "tool_result",
                "tool_use_id": msg["tool_call_id"],
                "content": str(msg.get("content") or ""),
            }])
    return "\n\n".join(p for p in system_parts if p), out


def _anthropic_tools(tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [
        {
            "name": t["function"]["name"],
            "description": t["function"].get("description", ""),
            "input_schema": t["function"]["parameters"],
        }
        for t in tools
    ]


def _call_anthropic(messages: list[dict[str, Any]], tools: list[dict[str, Any]] | None, allow_tools: bool, settings: Settings) -> LLMResponse:
    """Call Anthropic Messages with tool definitions."""
    api_key = settings.anthropic_api_key
    if not api_key:
        raise LLMError(
            "anthropic_api_key is not set.  "
            "Set ANTHROPIC_API_KEY in your .env file or environment."
        )

    try:
        import anthropic  # type: ignore[import-untyped]
    except ImportError as exc:
        raise LLMError(
            "The 'anthropic' package is not installed.  "
            "Run: pip install anthropic"
        ) from exc

    system, converted = to_anthropic(messages)
    client = anthropic.Anthropic(api_key=api_key, timeout=settings.llm_timeout_seconds)
    kwargs: dict[str, Any] = {
        "model": settings.llm_model or _ANTHROPIC_DEFAULT_MODEL,
        "max_tokens": settings.llm_max_tokens,
        "temperature": settings.llm_temperature,
        "messages": converted,
    }
    if system:
        kwargs["system"] = system
    if tools:
        kwargs["tools"] = _anthropic_tools(tools)
        kwargs["tool_choice"] = {"type": "auto" if allow_tools else "none"}
    try:
        response = client.messages.create(**kwargs)
    except anthropic.APITimeoutError as exc:
        raise LLMTimeout(f"Anthropic did not answer within {settings.llm_timeout_seconds:g}s") from exc
    except anthropic.APIError as exc:
        raise LLMError(f"Anthropic request failed: {exc}") from exc

    texts: list[str] = []
    calls: list[ToolCall] = []
    for block in response.content or []:
        if block.type == "text":
            texts.append(block.text)
        elif block.type == "tool_use":
            calls.append(ToolCall(id=block.id, name=block.name, arguments=dict(block.input or {})))
    text = "".join(texts)
    logger.info("Anthropic response (%d chars, %d tool calls)", len(text), len(calls))
    return LLMResponse(content=text, tool_calls=calls)


_PROVIDERS: dict[str, Any] = {
    "mock": _call_mock,
    "openai": _call_openai,
    "anthropic": _call_anthropic,
}


def chat(
    messages: list[dict[str, Any]],
    tools: list[dict[str, Any]] | None = None,
    provider: str | None = None,
    allow_tools: bool = True,
    settings: Settings | None = None,
) -> LLMResponse:
    """Send *messages* (and tool definitions) to the configured LLM provider.

    Parameters
    ----------
    messages : list[dict]
        OpenAI-format chat messages, system prompt first.
    tools : list[dict], optional
        OpenAI function-tool definitions.
    provider : str, optional
        Override the provider from settings.  One of: mock, openai, anthropic.
    allow_tools : bool
        False asks for a plain-text answer even when tools are supplied.
    """
    if settings is None:
        settings = get_settings()
    if provider is None:
        provider = settings.llm_provider.lower()

    fn = _PROVIDERS.get(provider)
    if fn is None:
        raise LLMError(
            f"LLM provider '{provider}' is not supported.  "
            f"Choose from: {', '.join(_PROVIDERS)}"
        )

    logger.info("Calling LLM provider=%s  messages=%d  tools=%d", provider, len(messages), len(tools or []))
    return fn(messages, tools, allow_tools, settings)
