"""
FastAPI application entry-point.
"""
from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mrrpv_copilot.api.routers import catalog, chat, query, views
from mrrpv_copilot.core.config import get_settings

app = FastAPI(
    title="MRRpV Copilot",
    version="0.1.0",
    description="Conversational MRRpV (Monthly Recurring Revenue per Vehicle) analytics over a governed query compiler",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(query.router, prefix="/query", tags=["Query"])
app.include_router(chat.router, prefix="/chat", tags=["Copilot"])
app.include_router(views.router, prefix="/views", tags=["Views"])
app.include_router(catalog.router, tags=["Catalog"])


@app.get("/health")
def health():
    return {"status": "ok", "warehouse_configured": get_settings().databricks_configured}


def main() -> None:
    """Run the API with uvicorn on the configured port."""
    import uvicorn

    uvicorn.run("mrrpv_copilot.api.main:app", host="0.0.0.0", port=get_settings().api_port)


if __name__ == "__main__":
    main()
