"""
Performance metrics calculations.

This module aggregates closed trades into a `BacktestResult`: trade
count, wins and losses, win rate, total and average PnL, profit
factor and the maximum drawdown of cumulative realised PnL.  The
same helpers back single backtest reports and the optimizer
rankings.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from ..execution.models import ClosedTrade


# Profit factor reported when there are winning trades and no losses.
PROFIT_FACTOR_CAP = 999.0


@dataclass
class BacktestResult:
    """Aggregate statistics of one backtest run.

    ``win_rate`` is expressed in percent.  ``max_drawdown`` is the
    largest peak-to-trough decline of cumulative realised PnL, in
    quote currency.
    """

    total_trades: int = 0
    wins: int = 0
    losses: int = 0
    win_rate: float = 0.0
    total_pnl: float = 0.0
    avg_pnl: float = 0.0
    profit_factor: float = 0.0
    max_drawdown: float = 0.0
    exit_reasons: Dict[str, int] = field(default_factory=dict)
    trades: List[ClosedTrade] = field(default_factory=list)
    equity_curve: List[Tuple[datetime, float]] = field(default_factory=list)

    @property
    def risk_adjusted(self) -> float:
        """Total PnL per unit of drawdown; 0 when there was no drawdown."""
        if self.max_drawdown == 0:
            return 0.0
        return self.total_pnl / abs(self.max_drawdown)

    def summary(self) -> Dict[str, Any]:
        return {
            "total_trades": self.total_trades,
            "wins": self.wins,
            "losses": self.losses,
            "win_rate": self.win_rate,
            "total_pnl": self.total_pnl,
            "avg_pnl": self.avg_pnl,
            "profit_factor": self.profit_factor,
            "max_drawdown": self.max_drawdown,
            "risk_adjusted": self.risk_adjusted,
            "exit_reasons": dict(self.exit_reasons),
        }


class DrawdownTracker:
    """Running peak of cumulative realised PnL and the worst drop from it."""

    def __init__(self) -> None:
        self.cumulative = 0.0
        self.peak = 0.0
        self.max_drawdown = 0.0

    def add(self, pnl: float) -> None:
        self.cumulative += pnl
        self.update()

    def update(self) -> None:
        if self.cumulative > self.peak:
            self.peak = self.cumulative
        drawdown = self.peak - self.cumulative
        if drawdown > self.max_drawdown:
            self.max_drawdown = drawdown


def profit_factor(total_win: float, total_loss: float, wins: int) -> float:
    if total_loss > 0:
        return total_win / total_loss
    return PROFIT_FACTOR_CAP if wins > 0 else 0.0


def summarize(
    trades: List[ClosedTrade],
    max_drawdown: Optional[float] = None,
    equity_curve: Optional[List[Tuple[datetime, float]]] = None,
) -> BacktestResult:
    """Compute a `BacktestResult` from closed trades.

    Parameters
    ----------
    trades : list of ClosedTrade
        Closed trades in closing order.
    max_drawdown : float, optional
        Drawdown tracked during the run.  When omitted it is computed
        from the trades' cumulative PnL in the given order.
    equity_curve : list of (datetime, float), optional
        Cumulative realised PnL after each close.
    """
    if max_drawdown is None:
        tracker = DrawdownTracker()
        for trade in trades:
            tracker.add(trade.pnl)
        max_drawdown = tracker.max_drawdown
    if equity_curve is None:
        equity_curve = []
        running = 0.0
        for trade in trades:
            running += trade.pnl
            equity_curve.append((trade.exit_time, running))

    if not trades:
        return BacktestResult(max_drawdown=max_drawdown, equity_curve=equity_curve)

    winning = [t.pnl for t in trades if t.pnl > 0]
    losing = [t.pnl for t in trades if t.pnl <= 0]
    total_pnl = sum(t.pnl for t in trades)
    total_win = sum(winning)
    total_loss = abs(sum(losing))

    return BacktestResult(
        total_trades=len(trades),
        wins=len(winning),
        losses=len(losing),
        win_rate=len(winning) / len(trades) * 100,
        total_pnl=total_pnl,
        avg_pnl=total_pnl / len(trades),
        profit_factor=profit_factor(total_win, total_loss, len(winning)),
        max_drawdown=max_drawdown,
        exit_reasons=dict(Counter(t.reason for t in trades)),
        trades=list(trades),
        equity_curve=equity_curve,
    )
