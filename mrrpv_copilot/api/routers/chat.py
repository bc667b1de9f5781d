"""POST /chat -- one conversational turn against the MRRpV tool."""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from mrrpv_copilot.api.deps import raise_http, require_api_key
from mrrpv_copilot.copilot.agent import AgentContext, TurnResult, run_turn
from mrrpv_copilot.copilot.conversations import RateLimiter, get_store
from mrrpv_copilot.copilot.spec import CurrentView
from mrrpv_copilot.copilot.tools import TOOL_NAME
from mrrpv_copilot.core.config import get_settings
from mrrpv_copilot.core.errors import CopilotError
from mrrpv_copilot.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(dependencies=[Depends(require_api_key)])

limiter = RateLimiter(get_settings().rate_limit_per_minute)


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=2000, description="The user's message")
    conversation_id: str | None = None
    data_source: str | None = Field(None, description="fleet | first_purchase | upsell")
    current_view: CurrentView | None = Field(None, description="The view the user is looking at")


class ChatResponse(BaseModel):
    reply: str
    conversation_id: str
    tool_calls: list[dict[str, Any]]
    query_summary: dict[str, Any] | None = None
    result: dict[str, Any] | None = None
    error: dict[str, Any] | None = None
    effective_view: dict[str, Any] | None = None
    latency_ms: int = 0


def _effective_view(turn: TurnResult, current: CurrentView | None) -> dict[str, Any] | None:
    if turn.effective_params is None:
        return None
    label = None
    if current is not None and current.preset_id and current.preset_id == turn.effective_params.get("preset_id"):
        label = current.label
    return CurrentView.from_args(turn.effective_params, label=label).model_dump(exclude_none=True)


def _query_summary(turn: TurnResult, data_source: str | None) -> dict[str, Any] | None:
    call = next((c for c in turn.tool_calls if c.name == TOOL_NAME), None)
    if call is None:
        return None
    return {"tool": TOOL_NAME, "data_source": data_source, **call.effective}


@router.post("", response_model=ChatResponse)
def chat_endpoint(req: ChatRequest, request: Request) -> ChatResponse:
    store = get_store()
    message = req.message.strip()
    if not message:
        raise HTTPException(status_code=400, detail="message is required")

    rate_key = req.conversation_id or (request.client.host if request.client else "anon")
    if not limiter.check(rate_key):
        raise HTTPException(status_code=429, detail="Too many requests; try again in a minute.")

    conv_id, history = store.get_or_create(req.conversation_id)
    user_msg = {"role": "user", "content": message}
    context = AgentContext(settings=get_settings(), source_key=req.data_source)
    try:
        turn = run_turn(history + [user_msg], req.current_view, context)
    except CopilotError as exc:
        logger.info("Chat turn failed | conversation=%s | %s", conv_id, exc.code)
        raise_http(exc)

    store.append(conv_id, user_msg, {"role": "assistant", "content": turn.reply})
    return ChatResponse(
        reply=turn.reply,
        conversation_id=conv_id,
        tool_calls=[c.to_dict() for c in turn.tool_calls],
        query_summary=_query_summary(turn, req.data_source),
        result=turn.result.to_tool_payload() if turn.result else None,
        error=turn.error,
        effective_view=_effective_view(turn, req.current_view),
        latency_ms=turn.latency_ms,
    )
