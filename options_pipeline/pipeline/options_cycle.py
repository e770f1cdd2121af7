"""Options ingestion cycle -- gate, fetch, filter, derive, upsert.

OptionsIngestionCycle runs one hourly refresh of an underlying's options
chain as a small state machine::

    IDLE -> GATE_CHECK -> CLOSED_EXIT
                       -> FETCHING -> FILTERING -> DERIVING -> UPSERTING -> DONE

Any failure while fetching or upserting (or a configuration problem) moves
the cycle to FAILED and is re-raised as an IngestionError carrying the
partial CycleResult. There is no retry within a cycle; the next scheduled
cycle simply runs again, which is safe because every write is an
idempotent upsert keyed by (date, contract_id).

``force`` bypasses the market-hours gate. ``dry_run`` (fetch-only) stops
after DERIVING without touching storage.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from options_pipeline.connectors.base import ConfigurationError, ConnectorError
from options_pipeline.connectors.polygon_options import PolygonOptionsConnector
from options_pipeline.core.config import settings
from options_pipeline.core.enums import ContractType, CycleState, UpsertStrategy
from options_pipeline.core.utils.calendars import MarketCalendar, trading_date
from options_pipeline.core.utils.parsing import to_date
from options_pipeline.ingestion.derive import OptionSnapshotRow, derive_rows
from options_pipeline.ingestion.errors import (
    ConfigurationFailure,
    FetchFailure,
    IngestionError,
)
from options_pipeline.ingestion.payloads import ContractSnapshot
from options_pipeline.ingestion.schema import TableManager
from options_pipeline.ingestion.upsert import UpsertEngine

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# CycleResult dataclass
# ---------------------------------------------------------------------------
@dataclass
class CycleResult:
    """Output of one ingestion cycle.

    Attributes:
        run_id: Unique UUID for this cycle.
        underlying: Underlying ticker that was refreshed.
        trading_date: Exchange-local trading date used as the row key.
        expiry: Expiration filter, or None for the whole chain.
        state: Terminal CycleState (CLOSED_EXIT, DONE or FAILED).
        forced: Whether the market-hours gate was bypassed.
        dry_run: Whether storage was skipped.
        market_open: Gate verdict at cycle start.
        local_time: Exchange-local wall-clock time at cycle start.
        next_market_open: Next session open when the gate was closed.
        options_fetched: Contracts returned by the upstream chain.
        filtered: Contracts left after the expiry filter.
        calls / puts: Filtered contracts per side.
        rows_derived: Rows produced by derivation.
        rows_expired: Contracts dropped as already expired.
        rows_skipped: Contracts dropped as unusable.
        rows_upserted: Rows written by the upsert engine.
        strategy: Upsert path used, if any.
        step_timings: Per-step wall-clock seconds.
        duration_seconds: Total wall-clock seconds.
        error: Failure message when state is FAILED.
    """

    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    underlying: str = ""
    trading_date: date | None = None
    expiry: date | None = None
    state: CycleState = CycleState.IDLE
    forced: bool = False
    dry_run: bool = False
    market_open: bool = False
    local_time: datetime | None = None
    next_market_open: datetime | None = None
    options_fetched: int = 0
    filtered: int = 0
    calls: int = 0
    puts: int = 0
    rows_derived: int = 0
    rows_expired: int = 0
    rows_skipped: int = 0
    rows_upserted: int = 0
    strategy: str | None = None
    step_timings: dict[str, float] = field(default_factory=dict)
    duration_seconds: float = 0.0
    error: str | None = None
    sample_contract: dict[str, Any] | None = field(default=None, repr=False)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def filter_contracts(
    contracts: list[Mapping[str, Any]], expiry: date | None
) -> tuple[list[Mapping[str, Any]], list[Mapping[str, Any]], list[Mapping[str, Any]]]:
    """Apply the expiry filter and split by contract side.

    Returns:
        (filtered, calls, puts). Contracts of any other side are kept in
        ``filtered`` but belong to neither split.
    """
    filtered: list[Mapping[str, Any]] = []
    calls: list[Mapping[str, Any]] = []
    puts: list[Mapping[str, Any]] = []

    for raw in contracts:
        snap = ContractSnapshot.from_payload(raw)
        if expiry is not None and to_date(snap.detail("expiration_date")) != expiry:
            continue
        filtered.append(raw)
        side = str(snap.detail("contract_type") or "").lower()
        if side == ContractType.CALL.value:
            calls.append(raw)
        elif side == ContractType.PUT.value:
            puts.append(raw)

    return filtered, calls, puts


# ---------------------------------------------------------------------------
# OptionsIngestionCycle
# ---------------------------------------------------------------------------
class OptionsIngestionCycle:
    """Run one gated refresh of an underlying's options chain.

    Collaborators are injected so tests can hand in a SQLite-backed session
    factory, a fixed calendar, or a stub connector.

    Args:
        session_factory: Async session factory for the snapshot store.
        calendar: Market-hours gate (default built from settings).
        table_manager: Shared TableManager; tables are ensured on the first
            upsert of each manager.
        upsert_engine: Upsert engine (default bound to ``session_factory``).
        connector_factory: Callable returning an async-context connector.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        calendar: MarketCalendar | None = None,
        table_manager: TableManager | None = None,
        upsert_engine: UpsertEngine | None = None,
        connector_factory: Callable[[], PolygonOptionsConnector] = PolygonOptionsConnector,
    ) -> None:
        if session_factory is None:
            from options_pipeline.core.database import async_session_factory as session_factory
        self.calendar = calendar or MarketCalendar.from_settings()
        self.table_manager = table_manager or TableManager(session_factory)
        self.upsert_engine = upsert_engine or UpsertEngine(session_factory)
        self.connector_factory = connector_factory

        self._result = CycleResult()
        self._contracts: list[Mapping[str, Any]] = []
        self._calls: list[Mapping[str, Any]] = []
        self._puts: list[Mapping[str, Any]] = []
        self._rows: list[OptionSnapshotRow] = []

    @property
    def state(self) -> CycleState:
        return self._result.state

    def _transition(self, state: CycleState) -> None:
        logger.debug("cycle_state", run_id=self._result.run_id, state=state.value)
        self._result.state = state

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def run(
        self,
        underlying: str | None = None,
        expiry: date | None = None,
        force: bool = False,
        dry_run: bool = False,
        strategy: UpsertStrategy | str | None = None,
        now_utc: datetime | None = None,
    ) -> CycleResult:
        """Execute one cycle.

        Args:
            underlying: Underlying ticker (default ``settings.options_underlying``).
            expiry: Keep only contracts expiring on this date.
            force: Bypass the market-hours gate.
            dry_run: Fetch, filter and derive, but do not write.
            strategy: Force the upsert path (default: chosen by batch size).
            now_utc: Clock override for the gate and trading date.

        Returns:
            CycleResult in state CLOSED_EXIT or DONE.

        Raises:
            IngestionError: On configuration, fetch or storage failure
                (state FAILED; the partial result is attached as ``.result``).
        """
        now_utc = now_utc or datetime.now(timezone.utc)
        symbol = (underlying or settings.options_underlying).upper()
        self._result = CycleResult(
            underlying=symbol,
            expiry=expiry,
            forced=force,
            dry_run=dry_run,
            strategy=UpsertStrategy(strategy).value if strategy else None,
        )
        t0 = time.monotonic()

        # Gate
        self._transition(CycleState.GATE_CHECK)
        self._result.market_open = self.calendar.is_market_open(now_utc)
        self._result.local_time = self.calendar.local_now(now_utc)

        if not self._result.market_open and not force:
            if self._result.local_time is not None:
                self._result.next_market_open = self.calendar.next_market_open(
                    self._result.local_time
                )
            self._transition(CycleState.CLOSED_EXIT)
            self._result.duration_seconds = round(time.monotonic() - t0, 3)
            logger.info(
                "market_closed",
                underlying=symbol,
                local_time=str(self._result.local_time),
                next_market_open=str(self._result.next_market_open),
            )
            return self._result

        if force and not self._result.market_open:
            logger.info("market_gate_bypassed", underlying=symbol)

        self._result.trading_date = trading_date(now_utc, self.calendar.tz_name)

        steps: list[tuple[CycleState, Callable[[], Awaitable[None]]]] = [
            (CycleState.FETCHING, self._step_fetch),
            (CycleState.FILTERING, self._step_filter),
            (CycleState.DERIVING, self._step_derive),
        ]
        if not dry_run:
            steps.append((CycleState.UPSERTING, lambda: self._step_upsert(strategy)))

        try:
            for state, fn in steps:
                await self._run_step(state, fn)
        except Exception as exc:
            self._transition(CycleState.FAILED)
            self._result.error = str(exc)
            self._result.duration_seconds = round(time.monotonic() - t0, 3)
            if isinstance(exc, IngestionError):
                exc.result = self._result
            logger.error(
                "cycle_failed",
                run_id=self._result.run_id,
                underlying=symbol,
                error=str(exc),
            )
            raise

        self._transition(CycleState.DONE)
        self._result.duration_seconds = round(time.monotonic() - t0, 3)
        logger.info(
            "cycle_completed",
            run_id=self._result.run_id,
            underlying=symbol,
            trading_date=str(self._result.trading_date),
            fetched=self._result.options_fetched,
            calls=self._result.calls,
            puts=self._result.puts,
            upserted=self._result.rows_upserted,
            duration=f"{self._result.duration_seconds:.1f}s",
        )
        return self._result

    # ------------------------------------------------------------------
    # Step execution wrapper
    # ------------------------------------------------------------------
    async def _run_step(self, state: CycleState, fn: Callable[[], Awaitable[None]]) -> None:
        """Enter ``state``, time the step and map errors into IngestionError."""
        self._transition(state)
        name = state.value.lower()
        t0 = time.monotonic()
        try:
            await fn()
        except ConfigurationError as exc:
            raise ConfigurationFailure(str(exc)) from exc
        except ConnectorError as exc:
            raise FetchFailure(str(exc)) from exc
        finally:
            self._result.step_timings[name] = round(time.monotonic() - t0, 3)

    # ------------------------------------------------------------------
    # Cycle steps
    # ------------------------------------------------------------------
    async def _step_fetch(self) -> None:
        async with self.connector_factory() as conn:
            self._contracts = await conn.fetch_all_contracts(self._result.underlying)
        self._result.options_fetched = len(self._contracts)

    async def _step_filter(self) -> None:
        filtered, self._calls, self._puts = filter_contracts(self._contracts, self._result.expiry)
        self._result.filtered = len(filtered)
        self._result.calls = len(self._calls)
        self._result.puts = len(self._puts)
        self._result.sample_contract = dict(filtered[0]) if filtered else None
        logger.info(
            "contracts_filtered",
            underlying=self._result.underlying,
            expiry=str(self._result.expiry) if self._result.expiry else "all",
            total=self._result.options_fetched,
            filtered=self._result.filtered,
            calls=self._result.calls,
            puts=self._result.puts,
        )

    async def _step_derive(self) -> None:
        now = datetime.now(timezone.utc)
        self._rows = []
        for side, contracts in ((ContractType.CALL, self._calls), (ContractType.PUT, self._puts)):
            report = derive_rows(
                contracts, side, self._result.underlying, self._result.trading_date, now=now
            )
            self._rows.extend(report.rows)
            self._result.rows_expired += report.expired
            self._result.rows_skipped += report.skipped
        self._result.rows_derived = len(self._rows)

    async def _step_upsert(self, strategy: UpsertStrategy | str | None) -> None:
        await self.table_manager.ensure_tables()
        if not self._rows:
            logger.warning("no_rows_to_upsert", underlying=self._result.underlying)
            return
        chosen = self.upsert_engine.select_strategy(len(self._rows), strategy)
        self._result.strategy = chosen.value
        self._result.rows_upserted = await self.upsert_engine.upsert_batch(self._rows, chosen)
