"""Tests for idempotent snapshot table creation."""

from __future__ import annotations

from datetime import date

import pytest
import sqlalchemy as sa

from options_pipeline.ingestion.derive import derive_row
from options_pipeline.ingestion.schema import MANAGED_TABLES, TableManager
from options_pipeline.ingestion.upsert import UpsertEngine


async def _table_names(factory) -> set[str]:
    async with factory() as session:
        conn = await session.connection()
        return set(await conn.run_sync(lambda sync_conn: sa.inspect(sync_conn).get_table_names()))


@pytest.mark.asyncio
async def test_creates_both_tables(empty_session_factory):
    manager = TableManager(empty_session_factory)
    created = await manager.ensure_tables()

    assert created == ["option_snapshots", "option_snapshots_staging"]
    assert manager.ensured is True
    assert {t.name for t in MANAGED_TABLES} <= await _table_names(empty_session_factory)


@pytest.mark.asyncio
async def test_second_call_is_a_no_op(empty_session_factory):
    manager = TableManager(empty_session_factory)
    await manager.ensure_tables()

    assert await manager.ensure_tables() == []


@pytest.mark.asyncio
async def test_forced_recheck_finds_existing_tables(empty_session_factory):
    await TableManager(empty_session_factory).ensure_tables()

    # A second process (new manager) sees the tables already in place
    fresh = TableManager(empty_session_factory)
    assert await fresh.ensure_tables(force=True) == []
    assert fresh.ensured is True


@pytest.mark.asyncio
async def test_existing_table_keeps_its_rows(session_factory, read_snapshots, make_contract):
    row = derive_row(make_contract(), "call", "XYZ", date(2025, 6, 16))
    await UpsertEngine(session_factory, concurrency=1).upsert_batch([row])

    await TableManager(session_factory).ensure_tables(force=True)
    assert len(await read_snapshots(session_factory)) == 1
