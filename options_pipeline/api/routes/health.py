"""Ungated liveness endpoint with market status."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from options_pipeline.api.deps import get_db, get_market_calendar
from options_pipeline.core.config import settings
from options_pipeline.core.enums import MarketStatus
from options_pipeline.core.utils.calendars import MarketCalendar

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check(
    session: AsyncSession = Depends(get_db),
    calendar: MarketCalendar = Depends(get_market_calendar),
) -> dict:
    """Liveness probe -- verifies the database connection and reports the gate."""
    db_status = "disconnected"
    try:
        await session.execute(text("SELECT 1"))
        db_status = "connected"
    except Exception as exc:
        db_status = f"disconnected: {exc}"

    now = datetime.now(timezone.utc)
    market_open = calendar.is_market_open(now)
    next_open = None if market_open else calendar.next_market_open(now)

    return {
        "status": "ok" if db_status == "connected" else "degraded",
        "database": db_status,
        "marketStatus": (MarketStatus.OPEN if market_open else MarketStatus.CLOSED).value,
        "nextMarketOpen": next_open.isoformat() if next_open else None,
        "polygonAPI": "configured" if settings.polygon_api_key else "not-configured",
        "timestamp": now.isoformat(),
    }
