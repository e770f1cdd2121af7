"""Options snapshot ingestion: payload normalization, schema and upserts.

Usage::

    from options_pipeline.ingestion import UpsertEngine, derive_rows
    report = derive_rows(contracts, "call", "MSTR", trading_date)
    await UpsertEngine(session_factory).upsert_batch(report.rows)
"""

from options_pipeline.ingestion.derive import (
    DeriveReport,
    OptionSnapshotRow,
    compute_score,
    derive_row,
    derive_rows,
)
from options_pipeline.ingestion.errors import (
    ConfigurationFailure,
    FetchFailure,
    IngestionError,
    StorageError,
)
from options_pipeline.ingestion.payloads import ContractSnapshot, classify_payload
from options_pipeline.ingestion.queries import OptionsQueries
from options_pipeline.ingestion.schema import TableManager
from options_pipeline.ingestion.upsert import UpsertEngine

__all__ = [
    "ConfigurationFailure",
    "ContractSnapshot",
    "DeriveReport",
    "FetchFailure",
    "IngestionError",
    "OptionSnapshotRow",
    "OptionsQueries",
    "StorageError",
    "TableManager",
    "UpsertEngine",
    "classify_payload",
    "compute_score",
    "derive_row",
    "derive_rows",
]
