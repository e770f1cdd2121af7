"""Database engine layer for the options snapshot pipeline.

Provides the async engine (asyncpg) used at application runtime by the
FastAPI app and the ingestion cycle. Alembic builds its own sync engine
from ``settings.sync_database_url``. Session factories are configured with
autoflush=False and expire_on_commit=False for explicit transaction control.

Components never import the session factory directly: it is passed to
their constructors, so tests can hand in a factory bound to SQLite.
"""

from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .config import settings


def create_engine_for_url(url: str, **overrides: Any) -> AsyncEngine:
    """Create an async engine, applying pool settings only where supported.

    Args:
        url: SQLAlchemy async database URL.
        **overrides: Extra keyword arguments for create_async_engine.

    Returns:
        The configured AsyncEngine.
    """
    kwargs: dict[str, Any] = {"echo": settings.debug}
    if not url.startswith("sqlite"):
        kwargs.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=settings.db_pool_pre_ping,
        )
    kwargs.update(overrides)
    return create_async_engine(url, **kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Build an async session factory bound to ``engine``."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,
    )


# ---------------------------------------------------------------------------
# Async engine (for application runtime -- asyncpg)
# ---------------------------------------------------------------------------
async_engine = create_engine_for_url(settings.async_database_url)

# Async session factory
async_session_factory = create_session_factory(async_engine)
