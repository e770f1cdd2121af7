"""Market-hours gate and trading-date utilities.

MarketCalendar decides whether the ingestion pipeline may run: the market
is open on exchange-local weekdays that are not listed holidays, between
the open and close times inclusive (second resolution). Any clock or
timezone failure is treated as "closed".

The holiday set is static for the life of the process. By default it is
derived from the exchange_calendars XNYS calendar (weekdays that are not
trading sessions); MARKET_HOLIDAYS overrides it.

Examples::

    >>> from datetime import datetime, timezone
    >>> cal = MarketCalendar()
    >>> cal.is_market_open(datetime(2025, 6, 14, 15, 0, tzinfo=timezone.utc))  # Saturday
    False
    >>> trading_date(datetime(2025, 6, 17, 2, 0, tzinfo=timezone.utc))
    datetime.date(2025, 6, 16)
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

import exchange_calendars as xcals
import pandas as pd
import structlog

logger = structlog.get_logger(__name__)

DEFAULT_TIMEZONE = "America/New_York"

# ---------------------------------------------------------------------------
# Lazy exchange calendar singletons
# ---------------------------------------------------------------------------
_exchange_cals: dict[str, xcals.ExchangeCalendar] = {}


def _get_exchange(code: str) -> xcals.ExchangeCalendar:
    """Return the exchange calendar for ``code``, loading on first call."""
    if code not in _exchange_cals:
        _exchange_cals[code] = xcals.get_calendar(code)
    return _exchange_cals[code]


def exchange_holidays(years: Iterable[int], exchange: str = "XNYS") -> frozenset[date]:
    """Return full-day closures on weekdays for the given calendar years.

    Args:
        years: Calendar years to cover.
        exchange: exchange_calendars code (default NYSE).

    Returns:
        Weekday dates on which the exchange holds no session. Years outside
        the calendar's bounds contribute nothing.
    """
    years = sorted(set(years))
    if not years:
        return frozenset()

    cal = _get_exchange(exchange)
    start = max(pd.Timestamp(date(years[0], 1, 1)), cal.first_session)
    end = min(pd.Timestamp(date(years[-1], 12, 31)), cal.last_session)
    if start > end:
        return frozenset()

    weekdays = pd.bdate_range(start, end)
    sessions = cal.sessions_in_range(start, end)
    return frozenset(
        ts.date() for ts in weekdays.difference(sessions) if ts.year in years
    )


def trading_date(now_utc: datetime, tz_name: str = DEFAULT_TIMEZONE) -> date:
    """Return the exchange-local calendar date for a UTC instant.

    Naive datetimes are interpreted as UTC.
    """
    if now_utc.tzinfo is None:
        now_utc = now_utc.replace(tzinfo=timezone.utc)
    return now_utc.astimezone(ZoneInfo(tz_name)).date()


# ---------------------------------------------------------------------------
# Market calendar gate
# ---------------------------------------------------------------------------
class MarketCalendar:
    """Exchange-hours gate.

    Args:
        tz_name: IANA timezone of the exchange.
        open_time: Local session open (inclusive).
        close_time: Local session close (inclusive).
        holidays: Local dates on which the market is closed all day.
    """

    def __init__(
        self,
        tz_name: str = DEFAULT_TIMEZONE,
        open_time: time = time(9, 30),
        close_time: time = time(16, 0),
        holidays: Iterable[date] = (),
    ) -> None:
        self.tz_name = tz_name
        self.open_time = open_time
        self.close_time = close_time
        self.holidays = frozenset(holidays)

    @classmethod
    def from_settings(cls, settings_obj=None) -> MarketCalendar:
        """Build the gate from application settings.

        Uses MARKET_HOLIDAYS when set, otherwise the exchange calendar for
        the current and next year. If the exchange calendar cannot be
        loaded the holiday set is left empty and a warning is logged.
        """
        if settings_obj is None:
            from options_pipeline.core.config import settings as settings_obj

        holidays = settings_obj.holiday_overrides
        if not holidays:
            this_year = datetime.now(timezone.utc).year
            try:
                holidays = exchange_holidays((this_year, this_year + 1))
            except Exception as exc:
                logger.warning("holiday_calendar_unavailable", error=str(exc))
                holidays = frozenset()

        return cls(
            tz_name=settings_obj.market_timezone,
            open_time=settings_obj.market_open,
            close_time=settings_obj.market_close,
            holidays=holidays,
        )

    def local_now(self, now_utc: datetime | None = None) -> datetime | None:
        """Convert a UTC instant (default: now) to exchange-local time.

        Returns None if the conversion fails.
        """
        if now_utc is None:
            now_utc = datetime.now(timezone.utc)
        elif now_utc.tzinfo is None:
            now_utc = now_utc.replace(tzinfo=timezone.utc)
        try:
            return now_utc.astimezone(ZoneInfo(self.tz_name))
        except Exception as exc:
            logger.warning("local_time_conversion_failed", tz=self.tz_name, error=str(exc))
            return None

    def is_trading_day(self, day: date) -> bool:
        """True on weekdays that are not listed holidays."""
        return day.weekday() < 5 and day not in self.holidays

    def is_market_open(self, now_utc: datetime | None = None) -> bool:
        """Return True if the market is open at ``now_utc``.

        Fails closed: any conversion error yields False.
        """
        try:
            local = self.local_now(now_utc)
            if local is None:
                return False
            if not self.is_trading_day(local.date()):
                return False
            tod = local.time().replace(microsecond=0)
            return self.open_time <= tod <= self.close_time
        except Exception as exc:
            logger.warning("market_hours_check_failed", error=str(exc))
            return False

    def next_market_open(self, now_local: datetime) -> datetime | None:
        """Return the next session open at or after ``now_local``.

        Rolls forward one day when past the close, then skips weekends and
        holidays. Returns None if the computation fails.

        Args:
            now_local: Current time; naive values are taken as exchange-local.
        """
        try:
            tz = ZoneInfo(self.tz_name)
            if now_local.tzinfo is None:
                now_local = now_local.replace(tzinfo=tz)
            else:
                now_local = now_local.astimezone(tz)

            day = now_local.date()
            if now_local.time().replace(microsecond=0) > self.close_time:
                day += timedelta(days=1)
            while not self.is_trading_day(day):
                day += timedelta(days=1)
            return datetime.combine(day, self.open_time, tzinfo=tz)
        except Exception as exc:
            logger.warning("next_market_open_failed", error=str(exc))
            return None
