"""Exception hierarchy for the ingestion cycle and persistence layer.

- IngestionError: base for all ingestion errors; carries the partial cycle result
- ConfigurationFailure: the cycle cannot run with the current settings
- FetchFailure: the upstream chain could not be fetched completely
- StorageError: a storage operation failed; message prefixed "storage failed: "
"""

from typing import Any


class IngestionError(Exception):
    """Base exception for ingestion cycle and persistence errors."""

    prefix: str = ""

    def __init__(self, detail: str, result: Any = None) -> None:
        super().__init__(f"{self.prefix}{detail}")
        self.detail = detail
        self.result = result


class ConfigurationFailure(IngestionError):
    """Raised when required configuration (e.g. credentials) is missing."""

    prefix = "configuration error: "


class FetchFailure(IngestionError):
    """Raised when fetching the upstream chain aborts."""

    prefix = "fetch failed: "


class StorageError(IngestionError):
    """Raised when creating tables, staging or merging rows fails."""

    prefix = "storage failed: "
