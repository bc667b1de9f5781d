"""
SQLAlchemy table definitions for the MRRpV source tables.

Derived from the semantic layer so the dev database (and the test fixtures)
always carry exactly the columns the compiler can reference.  Production
tables live in the warehouse and are never created from here.
"""
from __future__ import annotations

from sqlalchemy import Column, Float, MetaData, String, Table
from sqlalchemy.engine import Engine

from mrrpv_copilot.core.logging import get_logger
from mrrpv_copilot.governance.source_registry import SourceDescriptor, SourceRegistry, load_registry

logger = get_logger(__name__)


def dimension_columns(source: SourceDescriptor) -> list[str]:
    cols: list[str] = []
    for physical in list(source.filter_columns.values()) + [
        c for group in source.group_by_columns.values() for c in group
    ]:
        if physical not in cols:
            cols.append(physical)
    return cols


def numeric_columns(source: SourceDescriptor) -> list[str]:
    cols: list[str] = []
    candidates = [source.count_col, source.arr_col, source.value_col, source.acv_col]
    candidates += list(source.product_columns.values())
    if source.bridge is not None:
        for acv, count in source.bridge.asp.values():
            candidates += [acv, count]
        candidates += list(source.bridge.contributions.values())
    for c in candidates:
        if c and c not in cols:
            cols.append(c)
    return cols


def source_table(source: SourceDescriptor, metadata: MetaData) -> Table:
    columns = [Column(source.time_col, String(16), nullable=False)]
    if source.account_id_col:
        columns.append(Column(source.account_id_col, String(32)))
    columns += [Column(c, String(64)) for c in dimension_columns(source)]
    columns += [Column(c, Float) for c in numeric_columns(source)]
    return Table(source.table, metadata, *columns)


def build_metadata(registry: SourceRegistry | None = None) -> MetaData:
    registry = registry or load_registry()
    metadata = MetaData()
    for name in registry.get_source_names():
        source_table(registry.describe(name), metadata)
    return metadata


def create_tables(engine: Engine, registry: SourceRegistry | None = None) -> MetaData:
    """Create (if missing) every source table on *engine*.  Returns the metadata."""
    metadata = build_metadata(registry)
    metadata.create_all(engine)
    logger.info("Ensured MRRpV tables: %s", ", ".join(metadata.tables))
    return metadata
