"""
Seed data generator -- creates realistic MRRpV source tables for local dev.

Generates, per fiscal quarter FY25 Q1 .. FY27 Q1:
  - first purchase deals (per-deal MRRpV, vehicles, ACV, product counts and
    the ACV components behind the MRRpV Bridge)
  - fleet rows (annual fleet ARR, installed product totals)
  - upsell deals (annual upsell ARR, VG/CM upsell quantities)

Accounts carry a stable geo / segment / industry, including both spellings
of the public-sector geo code.  Data goes to the configured database
(SQLite file by default).
Run:  python -m pipelines.seed.seed_data
"""
from __future__ import annotations

import random
from pathlib import Path

from dotenv import load_dotenv
from faker import Faker
from sqlalchemy import Table, create_engine

from mrrpv_copilot.core.config import get_settings
from mrrpv_copilot.db.schema import create_tables
from mrrpv_copilot.governance.source_registry import SourceDescriptor, load_registry

# ── Load .env from project root ─────────────────────────
_PROJECT_ROOT = Path(__file__).resolve().parents[2]
load_dotenv(_PROJECT_ROOT / ".env")

fake = Faker()
Faker.seed(42)
random.seed(42)

# ── Tunables ─────────────────────────────────────────────
NUM_ACCOUNTS = 600
DEALS_PER_QUARTER = 150
FLEET_ROWS_PER_QUARTER = 300
UPSELL_DEALS_PER_QUARTER = 80

QUARTERS = [f"FY{fy} Q{q}" for fy in (25, 26) for q in range(1, 5)] + ["FY27 Q1"]

GEO_SEGMENTS = {
    "US": ["CML", "MM", "ENT - COR", "ENT - SEL", "ENT - STR"],
    "CA": ["CML", "MM", "ENT - COR"],
    "MX": ["CML", "MM"],
    "US - SLED": ["US - SLED-MM", "US - SLED-ENT - SEL"],
    "US-SLED": ["US - SLED-MM", "US - SLED-ENT - SEL"],
    "UK": ["CML", "MM", "ENT - COR"],
    "DACH": ["CML", "MM"],
    "FR": ["CML", "MM"],
    "BNL": ["CML", "MM"],
}
GEO_WEIGHTS = [0.40, 0.08, 0.05, 0.06, 0.04, 0.15, 0.09, 0.07, 0.06]

INDUSTRIES = [
    "Transportation & Warehousing", "Construction", "Field Services",
    "Wholesale Trade", "Retail Trade", "Manufacturing", "Utilities & Energy",
    "Food & Beverage", "Public Sector", "Passenger Transit",
]

BRIDGE_SHARES = {
    "vg_core_acv": 0.34, "cm_core_acv": 0.22, "vgcm_core_acv": 0.12,
    "vgcm_addon_acv": 0.06, "st_acv": 0.09, "flapps_acv": 0.07,
    "cc_acv": 0.05, "other_acv": 0.03, "subsidy_acv": 0.02,
}


# ── Generators ───────────────────────────────────────────

def gen_accounts() -> list[dict]:
    geos = list(GEO_SEGMENTS)
    rows = []
    for _ in range(NUM_ACCOUNTS):
        geo = random.choices(geos, weights=GEO_WEIGHTS, k=1)[0]
        rows.append({
            "account_id": fake.unique.bothify("001??##########").upper(),
            "geo": geo,
            "segment": random.choice(GEO_SEGMENTS[geo]),
            "industry": random.choice(INDUSTRIES),
        })
    return rows


def _dims(source: SourceDescriptor, account: dict) -> dict:
    row = {source.account_id_col: account["account_id"]} if source.account_id_col else {}
    for dim in ("geo", "segment", "industry"):
        col = source.filter_columns.get(dim)
        if col:
            row[col] = account[dim]
    for cols in source.group_by_columns.values():
        for col in cols:
            row.setdefault(col, account.get(col))
    return row


def _product_counts(source: SourceDescriptor, vehicles: int, adoption: float = 0.5) -> dict:
    out = {}
    for key, col in source.product_columns.items():
        if key in ("vg", "cm"):
            share = random.uniform(0.6, 1.0) if random.random() < 0.85 else 0.0
        else:
            share = random.uniform(0.1, 0.8) if random.random() < adoption else 0.0
        out[col] = float(round(vehicles * share))
    return out


def gen_first_purchase(source: SourceDescriptor, accounts: list[dict]) -> list[dict]:
    rows = []
    for quarter in QUARTERS:
        for account in random.sample(accounts, DEALS_PER_QUARTER):
            vehicles = random.randint(5, 400)
            mrrpv = round(random.uniform(22.0, 58.0), 2)
            acv = round(mrrpv * vehicles * 12, 2)
            row = {source.time_col: quarter, **_dims(source, account)}
            row[source.count_col] = float(vehicles)
            row[source.value_col] = mrrpv
            row[source.acv_col] = acv
            row.update(_product_counts(source, vehicles, adoption=0.35))
            if source.bridge is not None:
                for col in source.bridge.contributions.values():
                    row[col] = round(acv * BRIDGE_SHARES.get(col, 0.0), 2)
            rows.append(row)
    return rows


def gen_fleet(source: SourceDescriptor, accounts: list[dict]) -> list[dict]:
    rows = []
    for quarter in QUARTERS:
        for account in random.sample(accounts, FLEET_ROWS_PER_QUARTER):
            vehicles = random.randint(10, 2500)
            arr = round(vehicles * random.uniform(25.0, 55.0) * 12, 2)
            row = {source.time_col: quarter, **_dims(source, account)}
            row[source.count_col] = float(vehicles)
            row[source.arr_col] = arr
            row.update(_product_counts(source, vehicles, adoption=0.5))
            rows.append(row)
    return rows


def gen_upsell(source: SourceDescriptor, accounts: list[dict]) -> list[dict]:
    rows = []
    for quarter in QUARTERS:
        for account in random.sample(accounts, UPSELL_DEALS_PER_QUARTER):
            vehicles = random.randint(1, 250)
            row = {source.time_col: quarter, **_dims(source, account)}
            row[source.count_col] = float(vehicles)
            row[source.arr_col] = round(vehicles * random.uniform(15.0, 45.0) * 12, 2)
            row.update(_product_counts(source, vehicles, adoption=1.0))
            rows.append(row)
    return rows


GENERATORS = {
    "first_purchase": gen_first_purchase,
    "fleet": gen_fleet,
    "upsell": gen_upsell,
}


# ── Bulk insert helper ───────────────────────────────────

def _bulk_insert(engine, table: Table, rows: list[dict], batch_size: int = 2000):
    """Insert rows into *table* in batches (executemany)."""
    if not rows:
        return
    with engine.begin() as conn:
        for i in range(0, len(rows), batch_size):
            conn.execute(table.insert(), rows[i : i + batch_size])
    print(f"  ✓ {table.name}: {len(rows):,} rows")


# ── Main ─────────────────────────────────────────────────

def main():
    print("═══ MRRpV Seed Data Generator ═══")
    settings = get_settings()
    url = settings.database_url
    if url.startswith("sqlite:///"):
        Path(url.removeprefix("sqlite:///")).parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(url, echo=False)
    registry = load_registry()
    metadata = create_tables(engine, registry)

    # Clear existing data for idempotency
    print("Clearing MRRpV tables …")
    with engine.begin() as conn:
        for table in metadata.tables.values():
            conn.execute(table.delete())

    print("Generating data …")
    accounts = gen_accounts()
    total = 0
    for key in registry.get_source_names():
        source = registry.describe(key)
        rows = GENERATORS[key](source, accounts)
        _bulk_insert(engine, metadata.tables[source.table], rows)
        total += len(rows)

    print(f"\nDone -- seeded {len(accounts):,} accounts, {total:,} rows across {len(QUARTERS)} quarters.")


if __name__ == "__main__":
    main()
