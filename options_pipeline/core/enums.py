"""Shared enumerations used across models and modules.

All enums use the (str, Enum) mixin pattern so their values are
serializable strings, compatible with database storage and JSON output.
"""

from enum import Enum


class ContractType(str, Enum):
    """Option contract side."""

    CALL = "call"
    PUT = "put"


class PayloadVariant(str, Enum):
    """Known shapes of an upstream option contract snapshot."""

    SNAPSHOT_V3 = "SNAPSHOT_V3"  # v3 snapshot: details / greeks / last_quote / day
    UNIFIED = "UNIFIED"  # consolidated: contract / nbbo / greeks
    CHAIN = "CHAIN"  # chain snapshot: contract / last_quote / greeks
    FLAT = "FLAT"  # all fields at the top level


class UpsertStrategy(str, Enum):
    """Persistence path used by the upsert engine."""

    ROW_WISE = "row-wise"
    STAGED = "staged"


class CycleState(str, Enum):
    """States of one ingestion cycle."""

    IDLE = "IDLE"
    GATE_CHECK = "GATE_CHECK"
    CLOSED_EXIT = "CLOSED_EXIT"
    FETCHING = "FETCHING"
    FILTERING = "FILTERING"
    DERIVING = "DERIVING"
    UPSERTING = "UPSERTING"
    DONE = "DONE"
    FAILED = "FAILED"


class MarketStatus(str, Enum):
    """Market status reported by the trigger surface."""

    OPEN = "open"
    CLOSED = "closed"
    TESTING = "testing"
