"""
Centralised application settings loaded from environment / .env file.
"""
from __future__ import annotations

import re
from pathlib import Path
from functools import lru_cache
from urllib.parse import quote_plus

from pydantic_settings import BaseSettings
from dotenv import load_dotenv

# Load .env from project root (two levels up from this file)
_ENV_PATH = Path(__file__).resolve().parents[2] / ".env"
load_dotenv(_ENV_PATH)

_WAREHOUSE_ID_RE = re.compile(r"/warehouses/([A-Za-z0-9_-]+)")


class Settings(BaseSettings):
    # ── Warehouse ────────────────────────────────────────
    warehouse_url: str = ""  # explicit SQLAlchemy URL, wins over everything else
    databricks_host: str = ""
    databricks_token: str = ""
    databricks_http_path: str = ""
    warehouse_catalog: str = "businessdbs"
    warehouse_schema: str = "epofinance_prod"
    dev_sqlite_path: str = "data/mrrpv_dev.db"

    # ── LLM ──────────────────────────────────────────────
    llm_provider: str = "mock"  # mock | openai | anthropic
    llm_model: str = ""
    llm_temperature: float = 0.2
    llm_max_tokens: int = 1024
    llm_timeout_seconds: float = 60.0
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    system_prompt: str = ""

    # ── Query ────────────────────────────────────────────
    query_timeout_seconds: float = 60.0
    sql_row_limit: int = 5000

    # ── App ──────────────────────────────────────────────
    api_port: int = 8000
    log_level: str = "INFO"
    rate_limit_per_minute: int = 0  # 0 disables the limiter
    api_shared_secret: str = ""

    @property
    def warehouse_id(self) -> str | None:
        path = self.databricks_http_path.strip()
        path = re.sub(r"^https?://[^/]+", "", path)
        m = _WAREHOUSE_ID_RE.search(path)
        if m:
            return m.group(1)
        if path and re.fullmatch(r"[A-Za-z0-9_-]+", path):
            return path
        return None

    @property
    def databricks_configured(self) -> bool:
        return bool(self.databricks_host.strip() and self.databricks_token.strip() and self.warehouse_id)

    @property
    def database_url(self) -> str:
        if self.warehouse_url:
            return self.warehouse_url
        if self.databricks_configured:
            host = re.sub(r"^https?://", "", self.databricks_host.strip()).rstrip("/")
            return (
                f"databricks://token:{quote_plus(self.databricks_token.strip())}@{host}"
                f"?http_path={quote_plus(self.databricks_http_path.strip())}"
                f"&catalog={self.warehouse_catalog}&schema={self.warehouse_schema}"
            )
        return f"sqlite:///{self.dev_sqlite_path}"

    def qualified_table(self, table: str) -> str:
        """Join catalog, schema and table, skipping empty parts.

        SQLite has no catalogs or schemas, so the dev database uses bare names.
        """
        if self.database_url.startswith("sqlite"):
            return table
        parts = [p for p in (self.warehouse_catalog, self.warehouse_schema, table) if p]
        return ".".join(parts)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    return Settings()
