"""Option snapshot hypertable and its staging table.

``option_snapshots`` holds one row per (trading date, contract): the latest
known state of a contract as of that trading date. TimescaleDB hypertable
partitioned on 'date' with 1-day chunks; the composite primary key
(date, contract_id) doubles as the clustering index for point lookups and
date-range scans.

``option_snapshots_staging`` has the same columns plus ``staged_at`` and no
uniqueness constraint. Bulk writes land there before a single set-based
merge reconciles them into ``option_snapshots``.
"""

import datetime as dt
from typing import Any, Optional

from sqlalchemy import (
    BigInteger,
    Column,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Table,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, JsonType


class OptionSnapshot(Base):
    __tablename__ = "option_snapshots"

    # Composite primary key
    date: Mapped[dt.date] = mapped_column(Date, primary_key=True, nullable=False)
    contract_id: Mapped[str] = mapped_column(String(64), primary_key=True, nullable=False)

    # Contract details
    underlying_asset: Mapped[str] = mapped_column(String(20), nullable=False)
    contract_type: Mapped[str] = mapped_column(String(4), nullable=False)
    strike_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    expiration_date: Mapped[Optional[dt.date]] = mapped_column(Date, nullable=True)
    exercise_style: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    shares_per_contract: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    primary_exchange: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    currency: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)

    # Underlying asset
    underlying_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    underlying_timestamp: Mapped[Optional[dt.datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Quote (NBBO)
    bid: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    ask: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    bid_size: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    ask_size: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    mid_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    spread: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    spread_percentage: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    quote_timestamp: Mapped[Optional[dt.datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Last trade
    last_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    last_size: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    exchange: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    conditions: Mapped[Optional[list[Any]]] = mapped_column(JsonType, nullable=True)
    trade_timestamp: Mapped[Optional[dt.datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Greeks
    delta: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    gamma: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    theta: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    vega: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    rho: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    charm: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    vanna: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    volga: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Market
    volume: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    open_interest: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    implied_volatility: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    break_even_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Previous day
    prev_day_open: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    prev_day_high: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    prev_day_low: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    prev_day_close: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    prev_day_vwap: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    prev_day_volume: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    # Derived analytics
    days_to_expiration: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Metadata
    data_source: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    insert_timestamp: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    last_updated: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    raw_data: Mapped[Optional[dict[str, Any]]] = mapped_column(JsonType, nullable=True)

    __table_args__ = (
        Index("ix_option_snapshots_underlying_expiration", "underlying_asset", "expiration_date"),
        {"comment": "TimescaleDB hypertable partitioned on date"},
    )


# Columns every snapshot write must carry, in table order
SNAPSHOT_COLUMNS: tuple[str, ...] = tuple(c.name for c in OptionSnapshot.__table__.columns)

# Composite key used as the ON CONFLICT target
KEY_COLUMNS: tuple[str, ...] = ("date", "contract_id")


def _staging_columns() -> list[Column]:
    """Copy the snapshot column set, without keys or constraints."""
    return [
        Column(col.name, col.type, nullable=col.name not in KEY_COLUMNS and col.nullable)
        for col in OptionSnapshot.__table__.columns
    ]


option_snapshots_staging = Table(
    "option_snapshots_staging",
    Base.metadata,
    *_staging_columns(),
    Column("staged_at", DateTime(timezone=True), nullable=False),
    Index("ix_option_snapshots_staging_date_contract", "date", "contract_id"),
    comment="Transient landing area for bulk snapshot writes; no uniqueness",
)
