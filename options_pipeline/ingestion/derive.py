"""Normalize raw contract snapshots into option snapshot rows.

derive_row() maps one upstream payload (any PayloadVariant) onto the
canonical ``option_snapshots`` column set and computes the derived analytics:
mid price, spread, days to expiration and the ranking score. Contracts
already expired on the trading date produce no row.

The ranking score favours premium income and yield while penalising
directional, convexity and volatility exposure::

    score = |theta| * 100
          + (bid / strike) * (365 / max(dte, 1)) * 2
          - delta * 50 - gamma * 1000 - vega * 10

rounded to 2 decimals. Missing Greeks count as zero; a missing or
non-finite bid or strike (or a zero strike, or no expiration) leaves the
score undefined (None) instead of ranking incomplete data.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from typing import Any

import structlog

from options_pipeline.core.enums import ContractType
from options_pipeline.core.utils.parsing import epoch_to_datetime, to_date, to_float, to_int
from options_pipeline.ingestion.payloads import ContractSnapshot, first_present

logger = structlog.get_logger(__name__)

DATA_SOURCE = "polygon"


# ---------------------------------------------------------------------------
# Row dataclass
# ---------------------------------------------------------------------------
@dataclass
class OptionSnapshotRow:
    """One (trading date, contract) snapshot, shaped like ``option_snapshots``."""

    date: date
    contract_id: str
    underlying_asset: str
    contract_type: str
    expiration_date: date
    insert_timestamp: datetime
    last_updated: datetime

    strike_price: float | None = None
    exercise_style: str | None = None
    shares_per_contract: int | None = None
    primary_exchange: str | None = None
    currency: str | None = None

    underlying_price: float | None = None
    underlying_timestamp: datetime | None = None

    bid: float | None = None
    ask: float | None = None
    bid_size: int | None = None
    ask_size: int | None = None
    mid_price: float | None = None
    spread: float | None = None
    spread_percentage: float | None = None
    quote_timestamp: datetime | None = None

    last_price: float | None = None
    last_size: int | None = None
    exchange: int | None = None
    conditions: list[Any] | None = None
    trade_timestamp: datetime | None = None

    delta: float | None = None
    gamma: float | None = None
    theta: float | None = None
    vega: float | None = None
    rho: float | None = None
    charm: float | None = None
    vanna: float | None = None
    volga: float | None = None

    volume: int | None = None
    open_interest: int | None = None
    implied_volatility: float | None = None
    break_even_price: float | None = None

    prev_day_open: float | None = None
    prev_day_high: float | None = None
    prev_day_low: float | None = None
    prev_day_close: float | None = None
    prev_day_vwap: float | None = None
    prev_day_volume: int | None = None

    days_to_expiration: int | None = None
    score: float | None = None

    data_source: str = DATA_SOURCE
    raw_data: dict[str, Any] | None = field(default=None, repr=False)

    @property
    def key(self) -> tuple[date, str]:
        return (self.date, self.contract_id)

    def to_record(self) -> dict[str, Any]:
        """Return a column-name -> value dict for insertion."""
        return asdict(self)


@dataclass
class DeriveReport:
    """Outcome of deriving a batch of raw contracts."""

    rows: list[OptionSnapshotRow] = field(default_factory=list)
    expired: int = 0
    skipped: int = 0


class _Expired(Exception):
    pass


class _Unusable(Exception):
    pass


# ---------------------------------------------------------------------------
# Score
# ---------------------------------------------------------------------------
def _finite(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def compute_score(
    theta: float | None,
    gamma: float | None,
    delta: float | None,
    vega: float | None,
    bid: float | None,
    strike_price: float | None,
    days_to_expiration: int | None,
) -> float | None:
    """Ranking score for one contract, or None when it is undefined.

    Examples:
        >>> compute_score(-0.15, 0.02, 0.5, 0.08, 45.50, 100, 30)
        -19.73
        >>> compute_score(-0.15, 0.02, 0.5, 0.08, None, 100, 30)  # returns None
    """
    if not _finite(bid) or not _finite(strike_price) or strike_price == 0:
        return None
    if days_to_expiration is None:
        return None

    theta = theta if _finite(theta) else 0.0
    gamma = gamma if _finite(gamma) else 0.0
    delta = delta if _finite(delta) else 0.0
    vega = vega if _finite(vega) else 0.0

    theta_income = abs(theta) * 100
    premium_yield = (bid / strike_price) * (365 / max(days_to_expiration, 1)) * 2
    delta_risk = delta * 50
    gamma_risk = gamma * 1000
    vega_risk = vega * 10

    return round(theta_income + premium_yield - delta_risk - gamma_risk - vega_risk, 2)


# ---------------------------------------------------------------------------
# Derivation
# ---------------------------------------------------------------------------
def _build_row(
    raw: Mapping[str, Any],
    contract_type: ContractType | str,
    underlying_asset: str,
    trading_date: date,
    now: datetime,
) -> OptionSnapshotRow:
    snap = ContractSnapshot.from_payload(raw)

    contract_id = snap.contract_id
    if not contract_id:
        raise _Unusable("missing contract_id")

    expiration_date = to_date(snap.detail("expiration_date"))
    if expiration_date is None:
        raise _Unusable("missing expiration_date")
    if trading_date > expiration_date:
        raise _Expired(str(contract_id))

    quote, trade, day, greeks, root = snap.quote, snap.trade, snap.day, snap.greeks, snap.root
    day_close = to_float(day.get("close"))

    bid = first_present(to_float(quote.get("bid")), day_close)
    ask = first_present(to_float(quote.get("ask")), day_close)
    both = bid is not None and ask is not None
    spread = ask - bid if both else None

    strike_price = to_float(snap.detail("strike_price"))
    dte = max(0, (expiration_date - trading_date).days)

    theta = to_float(greeks.get("theta"))
    gamma = to_float(greeks.get("gamma"))
    delta = to_float(greeks.get("delta"))
    vega = to_float(greeks.get("vega"))

    conditions = trade.get("conditions")
    if conditions is not None and not isinstance(conditions, list):
        conditions = [conditions]

    return OptionSnapshotRow(
        date=trading_date,
        contract_id=str(contract_id),
        underlying_asset=underlying_asset,
        contract_type=ContractType(contract_type).value,
        expiration_date=expiration_date,
        insert_timestamp=now,
        last_updated=now,
        strike_price=strike_price,
        exercise_style=snap.detail("exercise_style"),
        shares_per_contract=to_int(snap.detail("shares_per_contract")),
        primary_exchange=snap.detail("primary_exchange"),
        currency=snap.detail("currency"),
        underlying_price=to_float(snap.underlying.get("price")),
        underlying_timestamp=epoch_to_datetime(snap.underlying.get("last_updated")),
        bid=bid,
        ask=ask,
        bid_size=to_int(quote.get("bid_size")),
        ask_size=to_int(quote.get("ask_size")),
        mid_price=(bid + ask) / 2 if both else None,
        spread=spread,
        spread_percentage=spread / bid * 100 if both and bid > 0 else None,
        quote_timestamp=epoch_to_datetime(
            first_present(quote.get("last_updated"), quote.get("timestamp"), day.get("last_updated"))
        ),
        last_price=first_present(to_float(trade.get("price")), day_close),
        last_size=to_int(trade.get("size")),
        exchange=to_int(trade.get("exchange")),
        conditions=conditions,
        trade_timestamp=epoch_to_datetime(
            first_present(trade.get("sip_timestamp"), trade.get("timestamp"), day.get("last_updated"))
        ),
        delta=delta,
        gamma=gamma,
        theta=theta,
        vega=vega,
        rho=to_float(greeks.get("rho")),
        charm=to_float(greeks.get("charm")),
        vanna=to_float(greeks.get("vanna")),
        volga=to_float(greeks.get("volga")),
        volume=to_int(first_present(day.get("volume"), root.get("volume"))),
        open_interest=to_int(root.get("open_interest")),
        implied_volatility=to_float(root.get("implied_volatility")),
        break_even_price=to_float(root.get("break_even_price")),
        prev_day_open=to_float(first_present(root.get("prev_day_open"), day.get("open"))),
        prev_day_high=to_float(first_present(root.get("prev_day_high"), day.get("high"))),
        prev_day_low=to_float(first_present(root.get("prev_day_low"), day.get("low"))),
        prev_day_close=to_float(first_present(root.get("prev_day_close"), day.get("previous_close"))),
        prev_day_vwap=to_float(first_present(root.get("prev_day_vwap"), day.get("vwap"))),
        prev_day_volume=to_int(first_present(root.get("prev_day_volume"), day.get("volume"))),
        days_to_expiration=dte,
        score=compute_score(theta, gamma, delta, vega, bid, strike_price, dte),
        raw_data=dict(raw),
    )


def derive_row(
    raw: Mapping[str, Any],
    contract_type: ContractType | str,
    underlying_asset: str,
    trading_date: date,
    now: datetime | None = None,
) -> OptionSnapshotRow | None:
    """Normalize one raw contract snapshot.

    Args:
        raw: Upstream contract payload (any PayloadVariant).
        contract_type: "call" or "put", as decided by the caller's split.
        underlying_asset: Underlying ticker stored on the row.
        trading_date: Exchange-local trading date (row key).
        now: Capture time for insert/last_updated (default: now, UTC).

    Returns:
        The derived row, or None if the contract is expired on
        ``trading_date`` or lacks a contract id or expiration date.
    """
    now = now or datetime.now(timezone.utc)
    try:
        return _build_row(raw, contract_type, underlying_asset, trading_date, now)
    except _Expired:
        return None
    except _Unusable as exc:
        logger.warning("contract_skipped", reason=str(exc), underlying=underlying_asset)
        return None


def derive_rows(
    contracts: Iterable[Mapping[str, Any]],
    contract_type: ContractType | str,
    underlying_asset: str,
    trading_date: date,
    now: datetime | None = None,
) -> DeriveReport:
    """Derive a batch, counting expired and skipped contracts.

    A contract whose derivation fails for any reason is logged and skipped;
    it never aborts the batch.
    """
    now = now or datetime.now(timezone.utc)
    report = DeriveReport()

    for raw in contracts:
        try:
            report.rows.append(
                _build_row(raw, contract_type, underlying_asset, trading_date, now)
            )
        except _Expired:
            report.expired += 1
        except _Unusable as exc:
            report.skipped += 1
            logger.warning("contract_skipped", reason=str(exc), underlying=underlying_asset)
        except Exception as exc:
            report.skipped += 1
            logger.warning(
                "contract_derive_failed",
                error=str(exc),
                underlying=underlying_asset,
            )

    return report
