"""
GET /catalog -- sources, breakdowns and products the copilot can query.
"""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter
from pydantic import BaseModel

from mrrpv_copilot.core.config import get_settings
from mrrpv_copilot.governance.glossary import load_glossary
from mrrpv_copilot.governance.source_registry import load_registry

router = APIRouter()


class ProductItem(BaseModel):
    key: str
    label: str


class CatalogResponse(BaseModel):
    version: int
    default_source: str
    sources: list[dict[str, Any]]
    group_by: list[str]
    products: list[ProductItem]
    row_limit: int


@router.get("/catalog", response_model=CatalogResponse)
def full_catalog() -> CatalogResponse:
    """Return the registry catalog for UI pickers."""
    registry = load_registry()
    glossary = load_glossary()
    return CatalogResponse(
        version=registry.version,
        default_source=registry.default_source,
        sources=[registry.describe(name).to_dict() for name in registry.get_source_names()],
        group_by=registry.all_group_by(),
        products=[ProductItem(key=k, label=glossary.product_label(k)) for k in registry.all_products()],
        row_limit=get_settings().sql_row_limit,
    )
