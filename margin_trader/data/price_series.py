"""
Price series container.

A `PriceSeries` is the ordered, append-only list of ``(price,
timestamp)`` samples of one symbol.  Strategies only ever see a
series (or a window of one); the live coordinator builds it from
exchange candles and the backtest from stored price history.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple
import pandas as pd

from ..utils.timeutils import to_utc


class PriceSeries:
    """Ordered sequence of prices and their timestamps for one symbol."""

    def __init__(
        self,
        symbol: str,
        prices: Optional[Sequence[float]] = None,
        timestamps: Optional[Sequence[datetime]] = None,
    ) -> None:
        prices = list(prices or [])
        timestamps = list(timestamps or [])
        if len(prices) != len(timestamps):
            raise ValueError("prices and timestamps must have the same length")
        self.symbol = symbol
        self._prices: List[float] = []
        self._timestamps: List[datetime] = []
        for price, ts in zip(prices, timestamps):
            self.append(price, ts)

    def append(self, price: float, timestamp: datetime) -> None:
        """Append one sample; timestamps may not go backwards."""
        ts = to_utc(timestamp)
        if self._timestamps and ts < self._timestamps[-1]:
            raise ValueError(
                f"Out-of-order sample for {self.symbol}: {ts} < {self._timestamps[-1]}"
            )
        self._prices.append(float(price))
        self._timestamps.append(ts)

    @property
    def prices(self) -> List[float]:
        return list(self._prices)

    @property
    def timestamps(self) -> List[datetime]:
        return list(self._timestamps)

    @property
    def last_price(self) -> float:
        if not self._prices:
            raise IndexError(f"Price series for {self.symbol} is empty")
        return self._prices[-1]

    @property
    def last_timestamp(self) -> datetime:
        if not self._timestamps:
            raise IndexError(f"Price series for {self.symbol} is empty")
        return self._timestamps[-1]

    def window(self, end: int, size: Optional[int] = None) -> "PriceSeries":
        """Return the samples ``[end - size, end)`` as a new series.

        With ``size=None`` the window starts at the first sample.
        """
        start = 0 if size is None else max(0, end - size)
        window = PriceSeries(self.symbol)
        window._prices = self._prices[start:end]
        window._timestamps = self._timestamps[start:end]
        return window

    def __len__(self) -> int:
        return len(self._prices)

    def __iter__(self) -> Iterator[Tuple[float, datetime]]:
        return iter(zip(self._prices, self._timestamps))

    @classmethod
    def from_pairs(cls, symbol: str, pairs: Iterable[Tuple[float, datetime]]) -> "PriceSeries":
        series = cls(symbol)
        for price, ts in pairs:
            series.append(price, ts)
        return series

    @classmethod
    def from_frame(cls, symbol: str, frame: pd.DataFrame) -> "PriceSeries":
        """Build a series from a frame with a ``price`` column and a
        ``recorded_at`` column or datetime index."""
        if "recorded_at" in frame.columns:
            frame = frame.set_index("recorded_at")
        frame = frame.sort_index()
        return cls(symbol, frame["price"].astype(float).tolist(), list(frame.index))

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            {"price": self._prices},
            index=pd.DatetimeIndex(self._timestamps, name="recorded_at"),
        )
