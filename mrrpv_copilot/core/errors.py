"""
Error taxonomy for the MRRpV copilot.

Every failure that can reach a caller (HTTP client or language model) is one
of these types.  Messages carry the allowed values or the violated constraint
so the caller can correct itself without reading logs.

  InvalidParameter    -- bad source / groupBy / preset / window / product
    FilterTooLarge    -- list or value over the size caps
    UnknownProduct    -- product key without a count column for the source
  ExecutionError      -- the warehouse rejected or failed the query
  OperationTimeout    -- base for QueryTimeout and LLMTimeout
  LLMError            -- provider failure or missing credentials
  ReconciliationAmbiguous -- warning only, never raised to callers
"""
from __future__ import annotations

from typing import Any, Iterable


class CopilotError(Exception):
    """Base class for every structured copilot failure."""

    code = "copilot_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"success": False, "error": self.message, "code": self.code}


class InvalidParameter(CopilotError):
    code = "invalid_parameter"

    @classmethod
    def not_allowed(cls, what: str, value: Any, allowed: Iterable[str], context: str = "") -> "InvalidParameter":
        where = f" for {context}" if context else ""
        return cls(f"Invalid {what}: {value!r}. Allowed{where}: {', '.join(allowed) or 'none'}")


class FilterTooLarge(InvalidParameter):
    code = "filter_too_large"


class UnknownProduct(InvalidParameter):
    code = "unknown_product"


class ExecutionError(CopilotError):
    code = "execution_error"


class OperationTimeout(CopilotError):
    code = "timeout"


class QueryTimeout(OperationTimeout):
    code = "query_timeout"


class LLMTimeout(OperationTimeout):
    code = "llm_timeout"


class LLMError(CopilotError):
    code = "llm_error"


class ReconciliationAmbiguous(UserWarning):
    """Intent could not be determined; structural view fields were preserved."""
