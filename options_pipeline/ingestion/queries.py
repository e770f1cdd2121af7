"""Read-side queries over ``option_snapshots`` for the trigger surface."""

from __future__ import annotations

from datetime import date
from typing import Any

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from options_pipeline.core.models import OptionSnapshot
from options_pipeline.ingestion.errors import StorageError

SNAPSHOTS: sa.Table = OptionSnapshot.__table__

# raw_data is audit payload only; it is never served back
_SERVED_COLUMNS = [col for col in SNAPSHOTS.columns if col.name != "raw_data"]

MAX_OPTION_ROWS = 1000


class OptionsQueries:
    """Lookups used by the get-* actions.

    Args:
        session_factory: Async session factory for the snapshot database.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def _fetch(self, stmt: sa.Select) -> list[dict[str, Any]]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return [dict(row) for row in result.mappings().all()]
        except SQLAlchemyError as exc:
            raise StorageError(f"query: {exc}") from exc

    async def expiry_dates(self, underlying_asset: str) -> list[date]:
        """Distinct stored expiration dates for an underlying, ascending."""
        stmt = (
            sa.select(SNAPSHOTS.c.expiration_date)
            .where(
                SNAPSHOTS.c.underlying_asset == underlying_asset,
                SNAPSHOTS.c.expiration_date.is_not(None),
            )
            .distinct()
            .order_by(SNAPSHOTS.c.expiration_date.asc())
        )
        rows = await self._fetch(stmt)
        return [row["expiration_date"] for row in rows]

    async def options_data(
        self, underlying_asset: str, expiry: date, limit: int = MAX_OPTION_ROWS
    ) -> list[dict[str, Any]]:
        """Stored snapshots for one expiration, calls before puts, by strike."""
        stmt = (
            sa.select(*_SERVED_COLUMNS)
            .where(
                SNAPSHOTS.c.underlying_asset == underlying_asset,
                SNAPSHOTS.c.expiration_date == expiry,
            )
            .order_by(
                SNAPSHOTS.c.contract_type.asc(),
                SNAPSHOTS.c.strike_price.asc(),
                SNAPSHOTS.c.date.desc(),
            )
            .limit(limit)
        )
        return await self._fetch(stmt)

    async def latest_underlying_price(self, underlying_asset: str) -> dict[str, Any] | None:
        """Most recent non-null underlying price captured on any contract row."""
        stmt = (
            sa.select(
                SNAPSHOTS.c.underlying_price,
                SNAPSHOTS.c.underlying_timestamp,
                SNAPSHOTS.c.last_updated,
                SNAPSHOTS.c.contract_id,
                SNAPSHOTS.c.contract_type,
                SNAPSHOTS.c.strike_price,
                SNAPSHOTS.c.expiration_date,
            )
            .where(
                SNAPSHOTS.c.underlying_asset == underlying_asset,
                SNAPSHOTS.c.underlying_price.is_not(None),
            )
            .order_by(SNAPSHOTS.c.date.desc(), SNAPSHOTS.c.last_updated.desc())
            .limit(1)
        )
        rows = await self._fetch(stmt)
        return rows[0] if rows else None
