"""Idempotent snapshot upserts keyed by (date, contract_id).

Two persistence paths sit behind UpsertEngine.upsert_batch():

ROW_WISE
    One ``INSERT ... ON CONFLICT (date, contract_id) DO UPDATE`` per row, in
    its own transaction, executed by a bounded pool of asyncio workers that
    pull from a shared index. A failing row does not stop the others; the
    failures are summarised in a single StorageError once all rows ran.

STAGED
    All rows are appended to ``option_snapshots_staging`` in chunks, then a
    single set-based statement ranks the rows staged by this call per key
    by (last_updated DESC, staged_at DESC), keeps rank 1, and upserts them
    into ``option_snapshots``. Staging rows from earlier trading dates are
    pruned afterwards.

Both paths replace every mutable column and keep ``insert_timestamp`` from
the first insert. An update only applies when the incoming ``last_updated``
is not older than the stored one, so whichever path writes last, the
freshest snapshot wins and both converge on the same final state. Statements are built with SQLAlchemy Core from the table
metadata; the dialect-specific ``insert`` (PostgreSQL or SQLite) provides
``on_conflict_do_update``.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Mapping, Sequence
from datetime import date, datetime, timezone
from typing import Any, Callable

import sqlalchemy as sa
import structlog
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from options_pipeline.core.config import settings
from options_pipeline.core.enums import UpsertStrategy
from options_pipeline.core.models import (
    KEY_COLUMNS,
    SNAPSHOT_COLUMNS,
    OptionSnapshot,
    option_snapshots_staging,
)
from options_pipeline.ingestion.derive import OptionSnapshotRow
from options_pipeline.ingestion.errors import StorageError

logger = structlog.get_logger(__name__)

SNAPSHOTS: sa.Table = OptionSnapshot.__table__
STAGING: sa.Table = option_snapshots_staging

# insert_timestamp is first-seen time and never overwritten
UPDATE_COLUMNS: tuple[str, ...] = tuple(
    name for name in SNAPSHOT_COLUMNS if name not in KEY_COLUMNS and name != "insert_timestamp"
)

_DIALECT_INSERTS: dict[str, Callable[..., Any]] = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def _dialect_insert(dialect_name: str) -> Callable[..., Any]:
    try:
        return _DIALECT_INSERTS[dialect_name]
    except KeyError:
        raise StorageError(f"no upsert support for dialect '{dialect_name}'") from None


def build_upsert(dialect_name: str, source: sa.Select | None = None) -> Any:
    """Build the ON CONFLICT upsert into ``option_snapshots``.

    Args:
        dialect_name: SQLAlchemy dialect name of the target connection.
        source: Optional SELECT producing SNAPSHOT_COLUMNS; without it the
            statement takes one row of named bind parameters.
    """
    stmt = _dialect_insert(dialect_name)(SNAPSHOTS)
    if source is not None:
        stmt = stmt.from_select(list(SNAPSHOT_COLUMNS), source)
    return stmt.on_conflict_do_update(
        index_elements=list(KEY_COLUMNS),
        set_={name: stmt.excluded[name] for name in UPDATE_COLUMNS},
        # Never replace a stored snapshot with an older one
        where=SNAPSHOTS.c.last_updated <= stmt.excluded.last_updated,
    )


def build_staged_merge(
    dialect_name: str, trading_dates: Sequence[date], staged_at: datetime
) -> Any:
    """Build the INSERT ... SELECT that merges the freshest staged row per key.

    Only rows staged at ``staged_at`` take part, so rows left in staging by
    earlier calls are never merged again.
    """
    rank = (
        sa.func.row_number()
        .over(
            partition_by=(STAGING.c.date, STAGING.c.contract_id),
            order_by=(STAGING.c.last_updated.desc(), STAGING.c.staged_at.desc()),
        )
        .label("rn")
    )
    ranked = (
        sa.select(*(STAGING.c[name] for name in SNAPSHOT_COLUMNS), rank)
        .where(
            STAGING.c.staged_at == staged_at,
            STAGING.c.date.in_(list(trading_dates)),
        )
        .subquery("ranked")
    )
    # The WHERE clause also disambiguates ON CONFLICT after SELECT on SQLite
    source = sa.select(*(ranked.c[name] for name in SNAPSHOT_COLUMNS)).where(ranked.c.rn == 1)
    return build_upsert(dialect_name, source)


def existing_key_query(record: Mapping[str, Any]) -> sa.Select:
    """SELECT 1 for the stored row with the same (date, contract_id), if any."""
    return (
        sa.select(sa.literal(1))
        .select_from(SNAPSHOTS)
        .where(
            SNAPSHOTS.c.date == record["date"],
            SNAPSHOTS.c.contract_id == record["contract_id"],
        )
        .limit(1)
    )


class UpsertEngine:
    """Persist snapshot rows through the row-wise or staged path.

    Args:
        session_factory: Async session factory for the target database.
        concurrency: Row-wise worker count (default ``settings.upsert_concurrency``).
        progress_every: Row-wise progress log interval.
        staging_chunk_size: Rows per staging insert.
        bulk_threshold: Batch size from which STAGED is auto-selected.
        probe_duplicates: Check for an existing row before each row-wise
            write, to report inserts and updates separately (default
            ``settings.upsert_probe_duplicates``).
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        concurrency: int | None = None,
        progress_every: int | None = None,
        staging_chunk_size: int | None = None,
        bulk_threshold: int | None = None,
        probe_duplicates: bool | None = None,
    ) -> None:
        if session_factory is None:
            from options_pipeline.core.database import async_session_factory as session_factory
        self._session_factory = session_factory
        self.concurrency = max(1, concurrency or settings.upsert_concurrency)
        self.progress_every = max(1, progress_every or settings.upsert_progress_every)
        self.staging_chunk_size = max(1, staging_chunk_size or settings.staging_chunk_size)
        self.bulk_threshold = bulk_threshold or settings.bulk_upsert_threshold
        if probe_duplicates is None:
            probe_duplicates = settings.upsert_probe_duplicates
        self.probe_duplicates = probe_duplicates
        self.last_stats: dict[str, int] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def select_strategy(
        self, row_count: int, requested: UpsertStrategy | str | None = None
    ) -> UpsertStrategy:
        """Resolve the path for a batch of ``row_count`` rows."""
        if requested is not None:
            return UpsertStrategy(requested)
        if row_count >= self.bulk_threshold:
            return UpsertStrategy.STAGED
        return UpsertStrategy.ROW_WISE

    async def upsert_batch(
        self,
        rows: Sequence[OptionSnapshotRow | Mapping[str, Any]],
        strategy: UpsertStrategy | str | None = None,
    ) -> int:
        """Insert or update a batch of snapshot rows.

        Args:
            rows: Derived rows or column-name mappings.
            strategy: Force a path; None picks one by batch size.

        Returns:
            Number of rows inserted or updated.

        Raises:
            StorageError: If records are malformed or the write fails.
        """
        records = self._prepare(rows)
        if not records:
            self.last_stats = {"rows": 0}
            return 0

        chosen = self.select_strategy(len(records), strategy)
        logger.info(
            "upsert_started",
            rows=len(records),
            collapsed=len(rows) - len(records),
            strategy=chosen.value,
        )

        t0 = time.monotonic()
        if chosen is UpsertStrategy.STAGED:
            written = await self._upsert_staged(records)
        else:
            written = await self._upsert_row_wise(records)

        logger.info(
            "upsert_completed",
            rows=written,
            strategy=chosen.value,
            duration=f"{time.monotonic() - t0:.2f}s",
        )
        return written

    # ------------------------------------------------------------------
    # Record preparation
    # ------------------------------------------------------------------
    def _prepare(
        self, rows: Sequence[OptionSnapshotRow | Mapping[str, Any]]
    ) -> list[dict[str, Any]]:
        """Validate records and collapse duplicate keys (last occurrence wins)."""
        allowed = set(SNAPSHOT_COLUMNS)
        by_key: dict[tuple[Any, ...], dict[str, Any]] = {}

        for row in rows:
            record = row.to_record() if isinstance(row, OptionSnapshotRow) else dict(row)
            unknown = set(record) - allowed
            if unknown:
                raise StorageError(f"unknown columns {sorted(unknown)}")
            key = tuple(record.get(name) for name in KEY_COLUMNS)
            if any(part is None for part in key):
                raise StorageError(f"record missing key columns {KEY_COLUMNS}")
            # Uniform key sets so executemany sees one parameter shape
            full = {name: record.get(name) for name in SNAPSHOT_COLUMNS}
            by_key.pop(key, None)
            by_key[key] = full

        return list(by_key.values())

    # ------------------------------------------------------------------
    # Row-wise path
    # ------------------------------------------------------------------
    async def _upsert_row_wise(self, records: list[dict[str, Any]]) -> int:
        total = len(records)
        next_index = 0
        processed = 0
        updated = 0
        failures: list[tuple[str, str]] = []

        async def worker() -> None:
            nonlocal next_index, processed, updated
            while next_index < total:
                record = records[next_index]
                next_index += 1
                try:
                    if self.probe_duplicates and await self._probe_existing(record):
                        updated += 1
                    await self._upsert_one(record)
                except Exception as exc:
                    failures.append((str(record["contract_id"]), str(exc)))
                    logger.warning(
                        "row_upsert_failed",
                        contract_id=record["contract_id"],
                        date=str(record["date"]),
                        error=str(exc),
                    )
                processed += 1
                if processed % self.progress_every == 0:
                    logger.info("upsert_progress", processed=processed, total=total)

        await asyncio.gather(*(worker() for _ in range(min(self.concurrency, total))))

        written = total - len(failures)
        self.last_stats = {"rows": written, "failed": len(failures)}
        if self.probe_duplicates:
            self.last_stats.update(updated=updated, inserted=max(0, written - updated))

        if failures:
            contract_id, error = failures[0]
            raise StorageError(
                f"{len(failures)} of {total} row upserts failed "
                f"(first: {contract_id}: {error})"
            )
        return written

    async def _upsert_one(self, record: dict[str, Any]) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                conn = await session.connection()
                await session.execute(build_upsert(conn.dialect.name), record)

    async def _probe_existing(self, record: Mapping[str, Any]) -> bool:
        """Return True if the key already exists; a failed probe counts as False."""
        try:
            async with self._session_factory() as session:
                found = await session.scalar(existing_key_query(record))
            return found is not None
        except Exception as exc:
            logger.warning(
                "duplicate_probe_failed",
                contract_id=record.get("contract_id"),
                error=str(exc),
            )
            return False

    # ------------------------------------------------------------------
    # Staged path
    # ------------------------------------------------------------------
    async def _upsert_staged(self, records: list[dict[str, Any]]) -> int:
        trading_dates = sorted({record["date"] for record in records})
        staged_at = datetime.now(timezone.utc)

        try:
            async with self._session_factory() as session:
                async with session.begin():
                    conn = await session.connection()
                    dialect_name = conn.dialect.name

                    for start in range(0, len(records), self.staging_chunk_size):
                        chunk = [
                            {**record, "staged_at": staged_at}
                            for record in records[start : start + self.staging_chunk_size]
                        ]
                        await session.execute(sa.insert(STAGING), chunk)
                    logger.debug("rows_staged", rows=len(records), chunk_size=self.staging_chunk_size)

                    await session.execute(build_staged_merge(dialect_name, trading_dates, staged_at))

                    pruned = await session.execute(
                        sa.delete(STAGING).where(STAGING.c.date < trading_dates[0])
                    )
        except StorageError:
            raise
        except Exception as exc:
            raise StorageError(f"staged merge: {exc}") from exc

        logger.debug("staging_pruned", rows=pruned.rowcount, before=str(trading_dates[0]))
        self.last_stats = {"rows": len(records), "staged": len(records)}
        return len(records)
