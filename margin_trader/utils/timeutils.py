"""
Timezone and holding-time utilities.

All timestamps inside the trading core are timezone-aware UTC.  Price
history coming from CSV files or exchange candles is normalised here
so that the live coordinator and the backtest compare like with like
when they compute holding times and cooldown windows.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
import pandas as pd


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_utc(ts: Any) -> datetime:
    """Convert a timestamp-like value to an aware UTC `datetime`.

    Strings, epoch milliseconds, naive datetimes and pandas timestamps
    are accepted.  A naive value is assumed to already be in UTC.
    """
    if isinstance(ts, datetime) and not isinstance(ts, pd.Timestamp):
        if ts.tzinfo is None:
            return ts.replace(tzinfo=timezone.utc)
        return ts.astimezone(timezone.utc)
    if isinstance(ts, (int, float)):
        stamp = pd.Timestamp(ts, unit="ms")
    else:
        stamp = pd.Timestamp(ts)
    if stamp.tzinfo is None:
        stamp = stamp.tz_localize("UTC")
    else:
        stamp = stamp.tz_convert("UTC")
    return stamp.to_pydatetime()


def minutes_between(start: datetime, end: datetime) -> float:
    """Return the number of minutes elapsed from `start` to `end`."""
    return (to_utc(end) - to_utc(start)).total_seconds() / 60.0


def isoformat(ts: datetime) -> str:
    return to_utc(ts).isoformat(timespec="microseconds")
