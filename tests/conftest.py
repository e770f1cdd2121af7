"""Root pytest configuration and shared fixtures.

Provides common test fixtures used across all test modules:
- make_session_factory: callable building a file-backed SQLite session factory
- empty_session_factory: SQLite database without any tables
- session_factory: SQLite database with the snapshot tables created
- read_snapshots: async callable returning stored snapshot rows
- make_contract: callable building a v3 snapshot contract payload
- no_backoff: zero retry waits for connector tests
"""

from __future__ import annotations

import asyncio
from datetime import date, datetime, timezone
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest
import sqlalchemy as sa
from sqlalchemy.pool import NullPool

from options_pipeline.connectors.polygon_options import PolygonOptionsConnector
from options_pipeline.core.database import create_engine_for_url, create_session_factory
from options_pipeline.core.models import OptionSnapshot, option_snapshots_staging
from options_pipeline.ingestion.schema import TableManager

TRADING_DATE = date(2025, 6, 16)
# Monday 2025-06-16 11:00 America/New_York
MARKET_OPEN_UTC = datetime(2025, 6, 16, 15, 0, tzinfo=timezone.utc)
# 2025-06-16 15:00 UTC in nanoseconds
SIP_NS = 1750086000000000000


# ---------------------------------------------------------------------------
# Storage fixtures
# ---------------------------------------------------------------------------
def _run_sync(coro: Any) -> Any:
    """Run ``coro`` to completion, also when called from inside a running loop."""
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    with ThreadPoolExecutor(max_workers=1) as pool:
        return pool.submit(asyncio.run, coro).result()


@pytest.fixture
def make_session_factory(tmp_path: Path) -> Any:
    """Return a callable that builds a session factory on a new SQLite file.

    Usage::

        def test_something(make_session_factory):
            factory = make_session_factory("other.db", with_tables=True)
    """
    engines = []

    def _make(name: str = "options.db", with_tables: bool = False):
        engine = create_engine_for_url(
            f"sqlite+aiosqlite:///{tmp_path / name}",
            poolclass=NullPool,
            connect_args={"timeout": 30},
        )
        engines.append(engine)
        factory = create_session_factory(engine)
        if with_tables:
            _run_sync(TableManager(factory).ensure_tables())
        return factory

    yield _make

    for engine in engines:
        _run_sync(engine.dispose())


@pytest.fixture
def empty_session_factory(make_session_factory):
    """Session factory on a SQLite database with no tables."""
    return make_session_factory("empty.db")


@pytest.fixture
def session_factory(make_session_factory):
    """Session factory on a SQLite database with the snapshot tables created."""
    return make_session_factory("options.db", with_tables=True)


@pytest.fixture
def read_snapshots() -> Any:
    """Return an async callable listing stored rows, ordered by key.

    Usage::

        rows = await read_snapshots(session_factory)
        staged = await read_snapshots(session_factory, staging=True)
    """
    async def _read(factory, staging: bool = False) -> list[dict[str, Any]]:
        table = option_snapshots_staging if staging else OptionSnapshot.__table__
        async with factory() as session:
            result = await session.execute(
                sa.select(table).order_by(table.c.date, table.c.contract_id)
            )
            return [dict(row) for row in result.mappings().all()]
    return _read


# ---------------------------------------------------------------------------
# Payload fixtures
# ---------------------------------------------------------------------------
def option_ticker(underlying: str, expiration: str, contract_type: str, strike: float) -> str:
    """Build an OCC-style ticker, e.g. O:XYZ250620C00100000."""
    yymmdd = expiration[2:4] + expiration[5:7] + expiration[8:10]
    side = "C" if contract_type == "call" else "P"
    return f"O:{underlying}{yymmdd}{side}{int(round(strike * 1000)):08d}"


def snapshot_contract(
    underlying: str = "XYZ",
    contract_type: str = "call",
    strike: float = 100.0,
    expiration: str = "2025-06-20",
    bid: float | None = 1.0,
    ask: float | None = 1.2,
    **overrides: Any,
) -> dict[str, Any]:
    """Return a v3 snapshot payload; top-level keys in ``overrides`` replace defaults."""
    payload: dict[str, Any] = {
        "break_even_price": strike + 1.1,
        "day": {
            "close": 1.1,
            "high": 1.3,
            "low": 0.9,
            "open": 1.0,
            "previous_close": 1.05,
            "volume": 120,
            "vwap": 1.08,
            "last_updated": SIP_NS,
        },
        "details": {
            "contract_type": contract_type,
            "exercise_style": "american",
            "expiration_date": expiration,
            "shares_per_contract": 100,
            "strike_price": strike,
            "ticker": option_ticker(underlying, expiration, contract_type, strike),
        },
        "greeks": {"delta": 0.5, "gamma": 0.02, "theta": -0.15, "vega": 0.08},
        "implied_volatility": 0.65,
        "last_quote": {
            "ask": ask,
            "ask_size": 10,
            "bid": bid,
            "bid_size": 12,
            "last_updated": SIP_NS,
        },
        "last_trade": {
            "price": 1.15,
            "size": 2,
            "exchange": 65,
            "conditions": [209],
            "sip_timestamp": SIP_NS,
        },
        "open_interest": 1500,
        "underlying_asset": {"price": 145.0, "ticker": underlying, "last_updated": SIP_NS},
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def make_contract() -> Any:
    """Return the v3 snapshot payload builder."""
    return snapshot_contract


@pytest.fixture
def no_backoff():
    """Zero the connector retry waits so retry tests run instantly."""
    with patch.object(PolygonOptionsConnector, "RETRY_INITIAL_WAIT", 0), \
            patch.object(PolygonOptionsConnector, "RETRY_MAX_WAIT", 0), \
            patch.object(PolygonOptionsConnector, "RETRY_JITTER", 0):
        yield
