"""
Shared fixtures -- an in-memory SQLite warehouse seeded with a small,
hand-computed MRRpV dataset, and settings pinned to it.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import pytest
from sqlalchemy import MetaData, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from mrrpv_copilot.core.config import Settings, get_settings
from mrrpv_copilot.db.connection import set_engine
from mrrpv_copilot.db.schema import create_tables


# first_purchase: per-deal MRRpV (monthly), not annual
FIRST_PURCHASE_ROWS = [
    dict(close_quarter="FY26 Q3", account_id="A1", geo="US", segment="CML", industry="Construction",
         vehicle_count=10, mrrpv=30, fleet_acv=3600, vg_count=10, cm_count=0, aim4_count=0,
         vg_core_acv=1200, cm_core_acv=0),
    dict(close_quarter="FY26 Q4", account_id="A2", geo="UK", segment="MM", industry="Construction",
         vehicle_count=30, mrrpv=50, fleet_acv=18000, vg_count=30, cm_count=30, aim4_count=5,
         vg_core_acv=8400, cm_core_acv=5400),
    dict(close_quarter="FY26 Q4", account_id="A3", geo="US-SLED", segment="US - SLED-MM", industry="Field Services",
         vehicle_count=20, mrrpv=40, fleet_acv=9600, vg_count=0, cm_count=20, aim4_count=0,
         vg_core_acv=0, cm_core_acv=4320),
    dict(close_quarter="FY26 Q4", account_id="A4", geo="US - SLED", segment="US - SLED-MM", industry="Field Services",
         vehicle_count=40, mrrpv=20, fleet_acv=9600, vg_count=40, cm_count=40, aim4_count=0,
         vg_core_acv=4200, cm_core_acv=2160),
]

# fleet: annual ARR, divided by 12 in the rate
FLEET_ROWS = [
    dict(close_quarter="FY26 Q4", account_id="F1", geo="US", segment="CML",
         vehicle_count=100, fleet_arr=60000, total_vg=100, total_cm=50),
    dict(close_quarter="FY26 Q4", account_id="F2", geo="UK", segment="MM",
         vehicle_count=50, fleet_arr=18000, total_vg=50, total_cm=0),
]

UPSELL_ROWS = [
    dict(close_quarter="FY26 Q4", account_id="U1", geo="US", segment="CML", industry="Construction",
         upsell_vehicle_count=20, upsell_fleet_arr=7200, vg_upsell_qty=20, cm_upsell_qty=0),
]


@dataclass
class Warehouse:
    engine: Engine
    metadata: MetaData

    def insert(self, table: str, rows: list[dict[str, Any]]) -> None:
        tbl = self.metadata.tables[table]
        with self.engine.begin() as conn:
            for row in rows:
                conn.execute(tbl.insert(), {c.name: row.get(c.name) for c in tbl.columns})


@pytest.fixture(autouse=True)
def _pinned_settings(request, monkeypatch):
    """Keep a developer's .env from pointing tests at a real warehouse or LLM."""
    if request.node.get_closest_marker("live"):
        yield
        return
    monkeypatch.setenv("WAREHOUSE_URL", "sqlite://")
    monkeypatch.setenv("LLM_PROVIDER", "mock")
    monkeypatch.setenv("API_SHARED_SECRET", "")
    monkeypatch.setenv("RATE_LIMIT_PER_MINUTE", "0")
    monkeypatch.setenv("SYSTEM_PROMPT", "")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest.fixture
def warehouse():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    metadata = create_tables(engine)
    set_engine(engine)
    yield Warehouse(engine, metadata)
    set_engine(None)
    engine.dispose()


@pytest.fixture
def seeded(warehouse):
    warehouse.insert("mrrpv_first_purchase", FIRST_PURCHASE_ROWS)
    warehouse.insert("mrrpv_fleet", FLEET_ROWS)
    warehouse.insert("mrrpv_upsell", UPSELL_ROWS)
    return warehouse
