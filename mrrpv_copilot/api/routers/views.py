"""GET /views, POST /views/run-default -- preset views."""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from mrrpv_copilot.api.deps import raise_http, require_api_key
from mrrpv_copilot.copilot.service import run_preset
from mrrpv_copilot.copilot.spec import CurrentView
from mrrpv_copilot.core.errors import CopilotError
from mrrpv_copilot.governance.source_registry import get_presets

router = APIRouter(dependencies=[Depends(require_api_key)])


class RunDefaultRequest(BaseModel):
    preset_id: str = Field(..., min_length=1)
    data_source: str | None = None
    overrides: dict[str, Any] = Field(default_factory=dict, description="Only the preset's overridable fields")


class RunDefaultResponse(BaseModel):
    preset_id: str
    params: dict[str, Any]
    current_view: dict[str, Any]
    columns: list[str]
    data: list[dict[str, Any]]
    row_count: int
    overall: dict[str, Any] | None
    view_type: str | None = None
    grand_totals: dict[str, Any] | None = None


@router.get("")
def list_views() -> dict:
    """Preset views with their defaults and overridable fields."""
    return {"views": [p.to_dict() for p in get_presets()]}


@router.post("/run-default", response_model=RunDefaultResponse)
def run_default(req: RunDefaultRequest) -> RunDefaultResponse:
    """Run a preset with its default parameters (no filters)."""
    try:
        args, result = run_preset(req.preset_id, req.data_source, req.overrides)
    except CopilotError as exc:
        raise_http(exc)
    preset = next(p for p in get_presets() if p.id == req.preset_id)
    view = CurrentView.from_args(args, label=preset.label)
    return RunDefaultResponse(
        preset_id=req.preset_id,
        params=args,
        current_view=view.model_dump(exclude_none=True),
        columns=result.columns,
        data=result.data,
        row_count=result.row_count,
        overall=result.overall,
        view_type=result.view_type,
        grand_totals=result.grand_totals,
    )
