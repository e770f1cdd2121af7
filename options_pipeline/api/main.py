"""FastAPI application entry-point for the options snapshot trigger surface.

Configures permissive CORS, rate limiting, lifespan startup/shutdown, and
mounts the route modules.
Run with:  uvicorn options_pipeline.api.main:app --host 0.0.0.0 --port 8080
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text

from options_pipeline.api.deps import limiter
from options_pipeline.api.routes import health, options
from options_pipeline.core.config import settings
from options_pipeline.core.utils.logging_config import configure_logging

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan -- run once at startup / shutdown
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Test the database connection on startup; dispose engine on shutdown."""
    from options_pipeline.core.database import async_engine

    configure_logging(debug=settings.debug, log_format=settings.log_format)

    # Startup
    try:
        async with async_engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("Database connection verified")
    except Exception as exc:
        logger.error("Database connection failed: %s", exc)

    yield
    # Shutdown
    await async_engine.dispose()
    logger.info("Database engine disposed")


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------
openapi_tags = [
    {"name": "Health", "description": "Liveness and market status"},
    {"name": "Options", "description": "Options chain ingestion trigger and stored data"},
]

app = FastAPI(
    title="Options Snapshot Pipeline API",
    version="0.1.0",
    description=(
        "Trigger surface for the options snapshot pipeline. Runs gated "
        "ingestion cycles and serves stored option snapshots."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    openapi_tags=openapi_tags,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------
_allowed_origins = [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]

CORS_HEADERS = {
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}


def _allow_origin(request: Request) -> str:
    if not _allowed_origins or "*" in _allowed_origins:
        return "*"
    origin = request.headers.get("origin", "")
    return origin if origin in _allowed_origins else _allowed_origins[0]


@app.middleware("http")
async def permissive_cors(request: Request, call_next) -> Response:
    """Answer preflight with 204 and stamp CORS headers on every response."""
    if request.method == "OPTIONS":
        response = Response(status_code=204)
    else:
        response = await call_next(request)
    response.headers["Access-Control-Allow-Origin"] = _allow_origin(request)
    response.headers.update(CORS_HEADERS)
    return response


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
app.include_router(health.router)
app.include_router(options.router)
