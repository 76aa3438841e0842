"""
Indicator math shared by every strategy.

The live coordinator and the backtest both call these functions, so
a strategy produces the same signal for the same window whichever
path drives it.  All helpers return ``None`` instead of raising when
the window is too short.
"""

from __future__ import annotations

from typing import Optional, Sequence, Tuple


def sma(prices: Sequence[float], period: int) -> Optional[float]:
    """Simple moving average of the last `period` prices."""
    if period < 1 or len(prices) < period:
        return None
    window = prices[-period:]
    return sum(window) / period


def rsi(prices: Sequence[float], period: int) -> Optional[float]:
    """Relative strength index over the last `period` price changes.

    Gains and losses are averaged with a simple mean (no Wilder
    smoothing).  When there is no loss in the window the RSI is 100.
    The result is rounded to two decimals.

    Parameters
    ----------
    prices : sequence of float
        Prices, oldest first.  At least ``period + 1`` are required.
    period : int
        Number of price changes to average.
    """
    if period < 1 or len(prices) < period + 1:
        return None
    window = prices[-(period + 1):]
    gains = 0.0
    losses = 0.0
    for prev, cur in zip(window[:-1], window[1:]):
        change = cur - prev
        if change > 0:
            gains += change
        else:
            losses -= change
    avg_gain = gains / period
    avg_loss = losses / period
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return round(100.0 - 100.0 / (1.0 + rs), 2)


def breakout_levels(prices: Sequence[float], lookback: int) -> Optional[Tuple[float, float]]:
    """Highest and lowest of the `lookback` prices before the current one."""
    if lookback < 1 or len(prices) < lookback + 1:
        return None
    history = prices[-(lookback + 1):-1]
    return max(history), min(history)
