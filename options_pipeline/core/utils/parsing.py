"""Value coercion utilities for upstream JSON payloads.

Upstream snapshots mix numbers, numeric strings, ISO dates and epoch
timestamps of varying precision. These helpers coerce them into Python
values, returning None for anything absent or unusable rather than raising.

Examples::

    >>> to_float("45.50")
    45.5
    >>> to_float(float("nan"))  # returns None
    >>> to_int("1,200")
    1200
    >>> to_date("2025-06-20")
    datetime.date(2025, 6, 20)
    >>> epoch_to_datetime(1750420800000)  # milliseconds
    datetime.datetime(2025, 6, 20, 12, 0, tzinfo=datetime.timezone.utc)
"""

from __future__ import annotations

import math
from datetime import date, datetime, timezone
from typing import Any


def to_float(raw: Any) -> float | None:
    """Coerce a payload value to a finite float.

    Args:
        raw: Number or numeric string (commas as thousands separators).

    Returns:
        The float value, or None for missing, non-numeric, boolean or
        non-finite input.
    """
    if raw is None or isinstance(raw, bool):
        return None

    if isinstance(raw, str):
        stripped = raw.strip().replace(",", "")
        if stripped in ("", "-", "."):
            return None
        raw = stripped

    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    return value if math.isfinite(value) else None


def to_int(raw: Any) -> int | None:
    """Coerce a payload value to an int (truncating), or None."""
    value = to_float(raw)
    return int(value) if value is not None else None


def to_date(raw: Any) -> date | None:
    """Parse an ISO ``YYYY-MM-DD`` string (or date/datetime) into a date."""
    if raw is None:
        return None
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    try:
        return date.fromisoformat(str(raw).strip()[:10])
    except ValueError:
        return None


def epoch_to_datetime(raw: Any) -> datetime | None:
    """Convert an epoch timestamp or ISO string into an aware UTC datetime.

    Numeric precision is inferred from magnitude: nanoseconds (SIP
    timestamps), microseconds, milliseconds, or seconds.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, datetime):
        return raw if raw.tzinfo else raw.replace(tzinfo=timezone.utc)

    if isinstance(raw, str) and not raw.strip().lstrip("-").isdigit():
        try:
            parsed = datetime.fromisoformat(raw.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)

    value = to_float(raw)
    if value is None or value <= 0:
        return None

    if value >= 1e17:
        seconds = value / 1e9
    elif value >= 1e14:
        seconds = value / 1e6
    elif value >= 1e11:
        seconds = value / 1e3
    else:
        seconds = value

    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None
