"""Alembic environment for the option snapshot schema.

Migrations run over the synchronous psycopg2 URL built by settings. The
reflection filter hides TimescaleDB catalog schemas and the time index that
``create_hypertable`` adds to every managed table, so autogenerate only
diffs objects declared on ``Base.metadata``.
"""

from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool

from alembic import context

from options_pipeline.core.config import settings
from options_pipeline.core.models import Base
from options_pipeline.ingestion.schema import MANAGED_TABLES

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# ConfigParser treats % as interpolation
config.set_main_option("sqlalchemy.url", settings.sync_database_url.replace("%", "%%"))

target_metadata = Base.metadata

# Partition column of every hypertable
HYPERTABLE_TIME_COLUMN = "date"

TIMESCALE_INTERNAL_SCHEMAS = frozenset({
    "_timescaledb_cache",
    "_timescaledb_catalog",
    "_timescaledb_config",
    "_timescaledb_internal",
    "timescaledb_experimental",
    "timescaledb_information",
})

HYPERTABLE_TIME_INDEXES = frozenset(
    f"{table.name}_{HYPERTABLE_TIME_COLUMN}_idx" for table in MANAGED_TABLES
)


def include_name(name, type_, parent_names):
    if type_ == "schema":
        return name not in TIMESCALE_INTERNAL_SCHEMAS
    if type_ == "index":
        return name not in HYPERTABLE_TIME_INDEXES
    return True


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        include_name=include_name,
        compare_type=True,
        **kwargs,
    )


def run_migrations_offline() -> None:
    """Render the migration SQL without connecting."""
    _configure(
        url=config.get_main_option("sqlalchemy.url"),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    engine = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with engine.connect() as connection:
        _configure(connection=connection)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
