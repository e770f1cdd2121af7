"""FastAPI dependency injection for storage, calendar and rate limiting."""

from collections.abc import AsyncGenerator
from functools import lru_cache

from fastapi import Depends, Request
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from options_pipeline.core.config import settings
from options_pipeline.core.utils.calendars import MarketCalendar
from options_pipeline.ingestion.schema import TableManager

limiter = Limiter(key_func=get_remote_address, default_limits=[settings.api_rate_limit])


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the application session factory."""
    from options_pipeline.core.database import async_session_factory

    return async_session_factory


async def get_db(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> AsyncGenerator[AsyncSession, None]:
    """Yield an async DB session; auto-rollback on error."""
    async with session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


@lru_cache(maxsize=1)
def get_market_calendar() -> MarketCalendar:
    """Process-wide market calendar; the holiday set is built once."""
    return MarketCalendar.from_settings()


def get_table_manager(
    request: Request,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> TableManager:
    """Process-wide TableManager so tables are ensured once per cold start."""
    manager = getattr(request.app.state, "table_manager", None)
    if manager is None:
        manager = TableManager(session_factory)
        request.app.state.table_manager = manager
    return manager
