"""
Shared request dependencies and error mapping for the routers.
"""
from __future__ import annotations

import hmac
from typing import NoReturn

from fastapi import Header, HTTPException

from mrrpv_copilot.core.config import get_settings
from mrrpv_copilot.core.errors import (
    CopilotError,
    ExecutionError,
    InvalidParameter,
    LLMError,
    OperationTimeout,
)
from mrrpv_copilot.core.logging import get_logger

logger = get_logger(__name__)


def require_api_key(x_api_key: str | None = Header(None)) -> None:
    """Check the X-API-Key header when a shared secret is configured."""
    secret = get_settings().api_shared_secret
    if not secret:
        return
    if not x_api_key or not hmac.compare_digest(x_api_key, secret):
        raise HTTPException(status_code=401, detail="Invalid or missing X-API-Key")


def status_for(exc: CopilotError) -> int:
    if isinstance(exc, InvalidParameter):
        return 400
    if isinstance(exc, OperationTimeout):
        return 504
    if isinstance(exc, (ExecutionError, LLMError)):
        return 502
    return 500


def raise_http(exc: CopilotError) -> NoReturn:
    status = status_for(exc)
    if status >= 500:
        logger.error("Request failed [%s]: %s", exc.code, exc.message)
    raise HTTPException(status_code=status, detail=exc.to_dict()) from exc
