"""Pydantic-settings configuration for the options snapshot pipeline.

Loads storage connection parameters, upstream credentials, market-hours
settings and upsert tuning from the environment (or a .env file) with
sensible defaults for local development. Computed fields produce
fully-formed connection URLs.
"""

from datetime import date, time

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # Project
    project_name: str = "Options Snapshot Pipeline"
    debug: bool = False
    log_format: str = "console"  # "json" for log collectors

    # TimescaleDB / PostgreSQL
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "options_data"
    postgres_user: str = "options_user"
    postgres_password: str = ""

    # Full async URL override (e.g. "sqlite+aiosqlite://" for local runs)
    database_url: str = ""

    # SQLAlchemy pool settings
    db_pool_size: int = 20
    db_max_overflow: int = 10
    db_pool_pre_ping: bool = True
    db_sslmode: str = "prefer"  # Set to "require" in production

    # Upstream quote provider
    polygon_api_key: str = ""
    polygon_base_url: str = "https://api.polygon.io"

    # Options chain ingestion
    options_underlying: str = "MSTR"
    options_page_size: int = 100
    options_max_pages: int = 50
    options_page_delay_seconds: float = 0.2

    # Market calendar
    market_timezone: str = "America/New_York"
    market_open: time = time(9, 30)
    market_close: time = time(16, 0)
    market_holidays: str = ""  # Comma-separated ISO dates; empty = exchange calendar

    # Upsert engine
    upsert_concurrency: int = 20
    upsert_progress_every: int = 200
    staging_chunk_size: int = 500
    bulk_upsert_threshold: int = 200
    upsert_probe_duplicates: bool = False  # Row-wise read-before-write insert/update counts

    # Trigger surface
    allowed_origins: str = "*"  # Comma-separated CORS origins; "*" = any
    api_rate_limit: str = "120/minute"

    @computed_field
    @property
    def async_database_url(self) -> str:
        """Async connection string for asyncpg."""
        if self.database_url:
            return self.database_url
        base = (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )
        if self.db_sslmode and self.db_sslmode != "disable":
            return f"{base}?ssl={self.db_sslmode}"
        return base

    @computed_field
    @property
    def sync_database_url(self) -> str:
        """Sync connection string for psycopg2 (used by Alembic)."""
        base = (
            f"postgresql+psycopg2://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )
        if self.db_sslmode and self.db_sslmode != "disable":
            return f"{base}?sslmode={self.db_sslmode}"
        return base

    @property
    def holiday_overrides(self) -> frozenset[date]:
        """Parse MARKET_HOLIDAYS into a set of dates (empty when unset)."""
        return frozenset(
            date.fromisoformat(part.strip())
            for part in self.market_holidays.split(",")
            if part.strip()
        )


# Singleton instance
settings = Settings()
