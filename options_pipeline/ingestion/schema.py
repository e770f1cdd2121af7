"""Idempotent creation of the option snapshot tables.

TableManager makes sure ``option_snapshots`` and ``option_snapshots_staging``
exist before the first upsert of a process. Each table is checked and, if
absent, created in its own transaction so a concurrent creator only costs an
"already exists" error, which is treated as success. On PostgreSQL both
tables are then converted to TimescaleDB hypertables partitioned on 'date'
with 1-day chunks.

Alembic migration 001 creates the same objects for managed deployments;
this path covers cold starts against an empty database.
"""

from __future__ import annotations

import sqlalchemy as sa
import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from options_pipeline.core.models import OptionSnapshot, option_snapshots_staging
from options_pipeline.ingestion.errors import StorageError

logger = structlog.get_logger(__name__)

MANAGED_TABLES: tuple[sa.Table, ...] = (OptionSnapshot.__table__, option_snapshots_staging)

HYPERTABLE_SQL = """
    SELECT create_hypertable(
        '{table}', 'date',
        chunk_time_interval => INTERVAL '1 day',
        if_not_exists => TRUE,
        migrate_data => TRUE
    );
"""


def _already_exists(exc: BaseException) -> bool:
    return "already exists" in str(exc).lower()


class TableManager:
    """Create the snapshot tables on first use.

    Args:
        session_factory: Async session factory bound to the target database.
            Defaults to the application factory.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        if session_factory is None:
            from options_pipeline.core.database import async_session_factory as session_factory
        self._session_factory = session_factory
        self.ensured = False

    async def ensure_tables(self, force: bool = False) -> list[str]:
        """Create any missing managed table.

        Args:
            force: Re-check even if this manager already ensured the tables.

        Returns:
            Names of the tables created by this call.

        Raises:
            StorageError: If creation fails for any reason other than the
                table already existing.
        """
        if self.ensured and not force:
            return []

        created: list[str] = []
        for table in MANAGED_TABLES:
            if await self._ensure_table(table):
                created.append(table.name)

        self.ensured = True
        logger.info("tables_ensured", created=created, managed=[t.name for t in MANAGED_TABLES])
        return created

    async def _ensure_table(self, table: sa.Table) -> bool:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    conn = await session.connection()
                    exists = await conn.run_sync(
                        lambda sync_conn: sa.inspect(sync_conn).has_table(table.name)
                    )
                    if not exists:
                        await conn.run_sync(table.create, checkfirst=True)
                        logger.info("table_created", table=table.name)
                    dialect = conn.dialect.name
        except SQLAlchemyError as exc:
            if _already_exists(exc):
                logger.info("table_exists_concurrently", table=table.name)
                return False
            raise StorageError(f"creating table {table.name}: {exc}") from exc

        if dialect == "postgresql":
            await self._make_hypertable(table)
        return not exists

    async def _make_hypertable(self, table: sa.Table) -> None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await session.execute(sa.text(HYPERTABLE_SQL.format(table=table.name)))
        except SQLAlchemyError as exc:
            if _already_exists(exc):
                return
            raise StorageError(f"converting {table.name} to hypertable: {exc}") from exc
