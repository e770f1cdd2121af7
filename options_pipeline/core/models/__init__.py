"""SQLAlchemy 2.0 ORM models for the options snapshot pipeline.

Re-exports Base, the OptionSnapshot hypertable model and the staging table.
"""

from .base import Base
from .option_snapshots import (
    KEY_COLUMNS,
    SNAPSHOT_COLUMNS,
    OptionSnapshot,
    option_snapshots_staging,
)

__all__ = [
    "Base",
    "KEY_COLUMNS",
    "SNAPSHOT_COLUMNS",
    "OptionSnapshot",
    "option_snapshots_staging",
]
