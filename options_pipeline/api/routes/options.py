"""Options trigger endpoint -- scheduler and manual entry point.

``GET|POST /`` (also ``/options``) dispatches on ``action``:

- ``health-check`` (default): configuration and readiness summary
- ``fetch-and-store``: run a full ingestion cycle
- ``fetch-only``: fetch, filter and derive without writing
- ``get-expiry-dates``: stored expiration dates for the symbol
- ``get-options-data``: stored rows for one ``expiry``
- ``get-underlying-price``: latest stored underlying price

Parameters come from the query string first, then the JSON body. Every
action is gated on market hours unless ``force_test=true``; a closed market
is a successful short-circuit, not an error.
"""

import json
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from options_pipeline.api.deps import (
    get_market_calendar,
    get_session_factory,
    get_table_manager,
    limiter,
)
from options_pipeline.connectors.base import ConnectorError
from options_pipeline.core.config import settings
from options_pipeline.core.enums import MarketStatus, UpsertStrategy
from options_pipeline.core.utils.calendars import MarketCalendar
from options_pipeline.ingestion.errors import (
    ConfigurationFailure,
    FetchFailure,
    IngestionError,
    StorageError,
)
from options_pipeline.ingestion.queries import OptionsQueries
from options_pipeline.ingestion.schema import TableManager
from options_pipeline.pipeline.options_cycle import CycleResult, OptionsIngestionCycle

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["Options"])

ACTIONS = (
    "health-check",
    "fetch-and-store",
    "fetch-only",
    "get-expiry-dates",
    "get-options-data",
    "get-underlying-price",
)

_ERROR_LABELS: dict[type[Exception], str] = {
    ConfigurationFailure: "Configuration error",
    FetchFailure: "Upstream fetch failed",
    StorageError: "Storage failed",
}

PREVIEW_SIZE = 5


class InvalidRequest(ValueError):
    """Raised for unknown actions or malformed parameters."""


@dataclass
class TriggerParams:
    action: str
    symbol: str
    expiry: date | None
    force_test: bool
    strategy: UpsertStrategy | None


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _error_response(status_code: int, error: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": error,
            "message": message,
            "timestamp": _now_iso(),
        },
    )


async def _read_params(request: Request) -> TriggerParams:
    """Merge query string and JSON body parameters and validate them."""
    body: dict[str, Any] = {}
    if request.method == "POST":
        raw = await request.body()
        if raw.strip():
            try:
                parsed = json.loads(raw)
            except ValueError:
                raise InvalidRequest("request body is not valid JSON") from None
            if isinstance(parsed, dict):
                body = parsed

    def param(name: str) -> Any:
        value = request.query_params.get(name)
        if value in (None, ""):
            value = body.get(name)
        return value

    action = str(param("action") or "health-check")
    if action not in ACTIONS:
        raise InvalidRequest(f"Unknown action: {action}")

    expiry = None
    raw_expiry = param("expiry")
    if raw_expiry:
        try:
            expiry = date.fromisoformat(str(raw_expiry))
        except ValueError:
            raise InvalidRequest(f"expiry must be an ISO date (YYYY-MM-DD), got {raw_expiry!r}") from None
    if action == "get-options-data" and expiry is None:
        raise InvalidRequest("expiry is required for get-options-data")

    strategy = None
    raw_strategy = param("strategy")
    if raw_strategy:
        try:
            strategy = UpsertStrategy(str(raw_strategy))
        except ValueError:
            raise InvalidRequest(
                f"strategy must be one of {[s.value for s in UpsertStrategy]}"
            ) from None

    force = param("force_test")
    return TriggerParams(
        action=action,
        symbol=str(param("symbol") or settings.options_underlying).upper(),
        expiry=expiry,
        force_test=str(force).lower() == "true",
        strategy=strategy,
    )


# ---------------------------------------------------------------------------
# Action handlers
# ---------------------------------------------------------------------------
def _health_result(market_status: MarketStatus) -> dict[str, Any]:
    return {
        "status": "healthy",
        "message": "Options snapshot ingestion is ready",
        "marketStatus": market_status.value,
        "services": {
            "polygonAPI": "configured" if settings.polygon_api_key else "not-configured",
            "timeseriesStorage": "ready",
        },
    }


def _store_result(result: CycleResult) -> dict[str, Any]:
    return {
        "runId": result.run_id,
        "state": result.state.value,
        "tradingDate": result.trading_date,
        "optionsFetched": result.options_fetched,
        "optionsStored": result.rows_upserted,
        "filtered": result.filtered,
        "calls": result.calls,
        "puts": result.puts,
        "rowsDerived": result.rows_derived,
        "rowsExpired": result.rows_expired,
        "rowsSkipped": result.rows_skipped,
        "strategy": result.strategy,
        "durationSeconds": result.duration_seconds,
        "stepTimings": result.step_timings,
        "message": (
            f"Fetched {result.options_fetched} {result.underlying} contracts and "
            f"stored {result.rows_upserted} rows"
        ),
        "sampleContract": result.sample_contract,
    }


def _fetch_only_result(result: CycleResult) -> dict[str, Any]:
    return {
        "runId": result.run_id,
        "tradingDate": result.trading_date,
        "optionsCount": result.filtered,
        "totalAvailable": result.options_fetched,
        "calls": result.calls,
        "puts": result.puts,
        "rowsDerived": result.rows_derived,
        "rowsExpired": result.rows_expired,
        "message": f"Fetched {result.filtered} {result.underlying} contracts (not stored)",
        "sampleContract": result.sample_contract,
    }


async def _dispatch(
    params: TriggerParams,
    market_status: MarketStatus,
    now: datetime,
    session_factory: async_sessionmaker[AsyncSession],
    calendar: MarketCalendar,
    table_manager: TableManager,
) -> dict[str, Any]:
    if params.action == "health-check":
        return _health_result(market_status)

    if params.action in ("fetch-and-store", "fetch-only"):
        cycle = OptionsIngestionCycle(
            session_factory=session_factory,
            calendar=calendar,
            table_manager=table_manager,
        )
        dry_run = params.action == "fetch-only"
        result = await cycle.run(
            underlying=params.symbol,
            expiry=params.expiry,
            force=params.force_test,
            dry_run=dry_run,
            strategy=params.strategy,
            now_utc=now,
        )
        return _fetch_only_result(result) if dry_run else _store_result(result)

    queries = OptionsQueries(session_factory)
    await table_manager.ensure_tables()

    if params.action == "get-expiry-dates":
        dates = await queries.expiry_dates(params.symbol)
        return {
            "dates": dates,
            "message": f"Found {len(dates)} expiry dates for {params.symbol}",
        }

    if params.action == "get-options-data":
        rows = await queries.options_data(params.symbol, params.expiry)
        return {
            "rows": rows,
            "message": f"Retrieved {len(rows)} {params.symbol} contracts for expiry {params.expiry}",
            "data": {
                "totalRows": len(rows),
                "calls": sum(1 for row in rows if row["contract_type"] == "call"),
                "puts": sum(1 for row in rows if row["contract_type"] == "put"),
                "sampleData": rows[:PREVIEW_SIZE],
            },
        }

    latest = await queries.latest_underlying_price(params.symbol)
    return {
        "underlying_price": latest["underlying_price"] if latest else None,
        "timestamp": latest["last_updated"] if latest else None,
        "message": (
            f"Retrieved latest {params.symbol} underlying price"
            if latest
            else f"No {params.symbol} underlying price found"
        ),
        "data": latest,
    }


# ---------------------------------------------------------------------------
# Endpoint
# ---------------------------------------------------------------------------
@router.api_route("/", methods=["GET", "POST"])
@router.api_route("/options", methods=["GET", "POST"])
@limiter.limit(settings.api_rate_limit)
async def trigger(
    request: Request,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    calendar: MarketCalendar = Depends(get_market_calendar),
    table_manager: TableManager = Depends(get_table_manager),
):
    """Gate on market hours, then run the requested action."""
    now = datetime.now(timezone.utc)
    try:
        params = await _read_params(request)
    except InvalidRequest as exc:
        logger.warning("invalid_request", error=str(exc))
        return _error_response(400, "Invalid request", str(exc))

    market_open = calendar.is_market_open(now)
    if not market_open and not params.force_test:
        local = calendar.local_now(now)
        next_open = calendar.next_market_open(now)
        logger.info("market_closed", action=params.action, local_time=str(local))
        return {
            "success": True,
            "message": "Market is closed - no data processing needed",
            "timestamp": now.isoformat(),
            "marketStatus": MarketStatus.CLOSED.value,
            "currentLocalTime": local.isoformat() if local else None,
            "nextMarketOpen": next_open.isoformat() if next_open else None,
        }

    market_status = MarketStatus.TESTING if params.force_test else MarketStatus.OPEN
    if params.force_test:
        logger.info("testing_mode", action=params.action)

    try:
        result = await _dispatch(params, market_status, now, session_factory, calendar, table_manager)
    except (IngestionError, ConnectorError) as exc:
        label = next(
            (text for cls, text in _ERROR_LABELS.items() if isinstance(exc, cls)),
            "Internal server error",
        )
        logger.error("trigger_failed", action=params.action, error=str(exc))
        return _error_response(500, label, str(exc))

    return {
        "success": True,
        "message": f"{params.action} completed successfully",
        "timestamp": now.isoformat(),
        "symbol": params.symbol,
        "expiryDate": params.expiry,
        "action": params.action,
        "marketStatus": market_status.value,
        "testingMode": params.force_test,
        "result": jsonable_encoder(result),
    }
