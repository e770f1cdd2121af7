"""Create option_snapshots hypertable and its staging table.

- option_snapshots: one row per (date, contract_id), hypertable on 'date'
- option_snapshots_staging: same columns plus staged_at, no uniqueness
- Both tables use 1-day chunks

Revision ID: 0c1a7e52b9d4
Revises: None
Create Date: 2025-06-16

"""
from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0c1a7e52b9d4"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _snapshot_columns() -> list[sa.Column]:
    return [
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("contract_id", sa.String(64), nullable=False),
        # contract details
        sa.Column("underlying_asset", sa.String(20), nullable=False),
        sa.Column("contract_type", sa.String(4), nullable=False),
        sa.Column("strike_price", sa.Float(), nullable=True),
        sa.Column("expiration_date", sa.Date(), nullable=True),
        sa.Column("exercise_style", sa.String(20), nullable=True),
        sa.Column("shares_per_contract", sa.Integer(), nullable=True),
        sa.Column("primary_exchange", sa.String(20), nullable=True),
        sa.Column("currency", sa.String(10), nullable=True),
        # underlying
        sa.Column("underlying_price", sa.Float(), nullable=True),
        sa.Column("underlying_timestamp", sa.DateTime(timezone=True), nullable=True),
        # quote
        sa.Column("bid", sa.Float(), nullable=True),
        sa.Column("ask", sa.Float(), nullable=True),
        sa.Column("bid_size", sa.BigInteger(), nullable=True),
        sa.Column("ask_size", sa.BigInteger(), nullable=True),
        sa.Column("mid_price", sa.Float(), nullable=True),
        sa.Column("spread", sa.Float(), nullable=True),
        sa.Column("spread_percentage", sa.Float(), nullable=True),
        sa.Column("quote_timestamp", sa.DateTime(timezone=True), nullable=True),
        # last trade
        sa.Column("last_price", sa.Float(), nullable=True),
        sa.Column("last_size", sa.BigInteger(), nullable=True),
        sa.Column("exchange", sa.Integer(), nullable=True),
        sa.Column("conditions", JSONB(), nullable=True),
        sa.Column("trade_timestamp", sa.DateTime(timezone=True), nullable=True),
        # greeks
        sa.Column("delta", sa.Float(), nullable=True),
        sa.Column("gamma", sa.Float(), nullable=True),
        sa.Column("theta", sa.Float(), nullable=True),
        sa.Column("vega", sa.Float(), nullable=True),
        sa.Column("rho", sa.Float(), nullable=True),
        sa.Column("charm", sa.Float(), nullable=True),
        sa.Column("vanna", sa.Float(), nullable=True),
        sa.Column("volga", sa.Float(), nullable=True),
        # market
        sa.Column("volume", sa.BigInteger(), nullable=True),
        sa.Column("open_interest", sa.BigInteger(), nullable=True),
        sa.Column("implied_volatility", sa.Float(), nullable=True),
        sa.Column("break_even_price", sa.Float(), nullable=True),
        # previous day
        sa.Column("prev_day_open", sa.Float(), nullable=True),
        sa.Column("prev_day_high", sa.Float(), nullable=True),
        sa.Column("prev_day_low", sa.Float(), nullable=True),
        sa.Column("prev_day_close", sa.Float(), nullable=True),
        sa.Column("prev_day_vwap", sa.Float(), nullable=True),
        sa.Column("prev_day_volume", sa.BigInteger(), nullable=True),
        # derived
        sa.Column("days_to_expiration", sa.Integer(), nullable=True),
        sa.Column("score", sa.Float(), nullable=True),
        # metadata
        sa.Column("data_source", sa.String(20), nullable=True),
        sa.Column("insert_timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_updated", sa.DateTime(timezone=True), nullable=False),
        sa.Column("raw_data", JSONB(), nullable=True),
    ]


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS timescaledb CASCADE;")

    op.create_table(
        "option_snapshots",
        *_snapshot_columns(),
        sa.PrimaryKeyConstraint("date", "contract_id", name="pk_option_snapshots"),
        comment="TimescaleDB hypertable partitioned on date",
    )
    op.create_index(
        "ix_option_snapshots_underlying_expiration",
        "option_snapshots",
        ["underlying_asset", "expiration_date"],
    )

    op.create_table(
        "option_snapshots_staging",
        *_snapshot_columns(),
        sa.Column("staged_at", sa.DateTime(timezone=True), nullable=False),
        comment="Transient landing area for bulk snapshot writes; no uniqueness",
    )
    op.create_index(
        "ix_option_snapshots_staging_date_contract",
        "option_snapshots_staging",
        ["date", "contract_id"],
    )

    # Daily snapshots: 1-day chunks keep the latest day's chunk hot
    for table in ("option_snapshots", "option_snapshots_staging"):
        op.execute(f"""
            SELECT create_hypertable(
                '{table}', 'date',
                chunk_time_interval => INTERVAL '1 day',
                if_not_exists => TRUE
            );
        """)


def downgrade() -> None:
    op.drop_index("ix_option_snapshots_staging_date_contract", table_name="option_snapshots_staging")
    op.drop_table("option_snapshots_staging")

    op.drop_index("ix_option_snapshots_underlying_expiration", table_name="option_snapshots")
    op.drop_table("option_snapshots")
