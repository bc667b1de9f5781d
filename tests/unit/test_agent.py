"""
Unit tests -- conversational turn: tool routing, reconciliation, replies.
"""
import json

import pytest

from mrrpv_copilot.copilot.agent import AgentContext, build_system_prompt, current_view_prompt, run_turn
from mrrpv_copilot.copilot.llm_client import LLMResponse, ToolCall
from mrrpv_copilot.copilot.spec import CurrentView
from mrrpv_copilot.core.errors import LLMError

EMEA = ["UK", "DACH", "FR", "BNL"]
DEFAULT_WINDOW = "FY26 Q2,FY26 Q3,FY26 Q4,FY27 Q1"

INDUSTRY_VIEW = CurrentView(
    preset_id="first-purchase-by-industry",
    label="First Purchase MRRpV by Industry",
    time_window=DEFAULT_WINDOW,
    group_by="industry",
)


class ScriptedLLM:
    """Returns canned responses in order and records what it was sent."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def __call__(self, messages, tools=None, provider=None, allow_tools=True, settings=None):
        self.calls.append({"messages": [dict(m) for m in messages], "allow_tools": allow_tools})
        return self.responses.pop(0)


def _context(settings, llm, source="first_purchase"):
    return AgentContext(settings=settings, source_key=source, llm=llm)


def _user(text):
    return [{"role": "user", "content": text}]


def test_text_reply_without_tool_call(settings):
    llm = ScriptedLLM(LLMResponse(content="Hello! Ask me about MRRpV."))
    turn = run_turn(_user("hi"), context=_context(settings, llm))
    assert turn.reply == "Hello! Ask me about MRRpV."
    assert turn.tool_calls == []
    assert turn.result is None
    assert len(llm.calls) == 1


def test_tool_call_then_reply(seeded, settings):
    llm = ScriptedLLM(
        LLMResponse(tool_calls=[ToolCall("call_1", "get_mrrpv", '{"time_window": "FY26 Q4"}')]),
        LLMResponse(content="MRRpV was 34.0."),
    )
    turn = run_turn(_user("MRRpV for FY26 Q4"), context=_context(settings, llm))
    assert turn.reply == "MRRpV was 34.0."
    assert turn.error is None
    assert turn.effective_params == {"time_window": "FY26 Q4"}
    assert turn.result.overall["vehicle_count"] == 90

    second = llm.calls[1]
    assert second["allow_tools"] is False
    tool_msg = second["messages"][-1]
    assert tool_msg["role"] == "tool" and tool_msg["tool_call_id"] == "call_1"
    assert json.loads(tool_msg["content"])["success"] is True


def test_filter_edit_keeps_the_current_grouping(seeded, settings):
    llm = ScriptedLLM(
        LLMResponse(tool_calls=[ToolCall("c1", "get_mrrpv", {"group_by": "segment", "exclude_regions": EMEA})]),
        LLMResponse(content="Done."),
    )
    turn = run_turn(_user("exclude EMEA"), current_view=INDUSTRY_VIEW, context=_context(settings, llm))
    invocation = turn.tool_calls[0]
    assert invocation.proposed["group_by"] == "segment"
    assert invocation.effective["group_by"] == "industry"
    assert "group_by" in invocation.forced_fields
    assert turn.effective_params["time_window"] == DEFAULT_WINDOW
    assert turn.result.row_count == 2
    assert {r["industry"] for r in turn.result.data} == {"Construction", "Field Services"}


def test_tool_error_is_reported_to_the_model(seeded, settings):
    llm = ScriptedLLM(
        LLMResponse(tool_calls=[ToolCall("c1", "get_mrrpv", {"group_by": "country"})]),
        LLMResponse(content="Country is not a valid grouping."),
    )
    turn = run_turn(_user("MRRpV by country"), context=_context(settings, llm))
    assert turn.error["success"] is False
    assert turn.error["code"] == "invalid_parameter"
    assert turn.result is None
    assert turn.tool_calls[0].success is False
    tool_payload = json.loads(llm.calls[1]["messages"][-1]["content"])
    assert "group_by" in tool_payload["error"]


def test_bad_tool_arguments(settings):
    llm = ScriptedLLM(
        LLMResponse(tool_calls=[ToolCall("c1", "get_mrrpv", "{oops")]),
        LLMResponse(content="Sorry."),
    )
    turn = run_turn(_user("MRRpV"), context=_context(settings, llm))
    assert turn.error is not None
    assert turn.reply == "Sorry."


def test_history_is_not_mutated(seeded, settings):
    history = _user("MRRpV for FY26 Q4")
    snapshot = json.loads(json.dumps(history))
    llm = ScriptedLLM(
        LLMResponse(tool_calls=[ToolCall("c1", "get_mrrpv", {"time_window": "FY26 Q4"})]),
        LLMResponse(content="ok"),
    )
    run_turn(history, context=_context(settings, llm))
    assert history == snapshot


def test_llm_failure_propagates(settings):
    def broken(*args, **kwargs):
        raise LLMError("provider down")

    with pytest.raises(LLMError):
        run_turn(_user("hi"), context=_context(settings, broken))


def test_mock_provider_end_to_end(seeded, settings):
    turn = run_turn(_user("What is MRRpV by geo for FY26 Q4?"), context=AgentContext(settings=settings, source_key="fleet"))
    assert turn.effective_params["group_by"] == "geo"
    assert turn.result.overall["fleet_mrrpv"] == 43.33
    assert "43.33" in turn.reply


def test_system_prompt_pins_current_view(settings):
    prompt = build_system_prompt(INDUSTRY_VIEW, settings)
    assert "first-purchase-by-industry" in prompt
    assert "Group by: industry" in prompt
    assert "US-SLED" in prompt


def test_bridge_view_prompt():
    text = current_view_prompt(CurrentView(preset_id="first-purchase-bridge", time_window="FY26 Q4"))
    assert "view_type: \"bridge\"" in text
    assert "Group by" not in text
    assert current_view_prompt(None) == ""
