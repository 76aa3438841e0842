"""
Report generation utilities.

This module turns backtest results into human-readable artefacts:
console tables for single runs and optimizer rankings, and on request
CSV files of trades and cumulative PnL, a JSON summary and a PNG chart
of the PnL curve.
"""

from __future__ import annotations

import json
import os
import sys
from typing import Any, Dict, List, Optional, TextIO

import pandas as pd
import matplotlib

# Use non-interactive backend for environments without display
matplotlib.use("Agg")
import matplotlib.pyplot as plt

from ..execution.optimizer import RANKINGS, OptimizationReport
from .metrics import BacktestResult


RANKING_TITLES = {
    "total_pnl": "Top by total PnL",
    "win_rate": "Top by win rate",
    "profit_factor": "Top by profit factor",
    "risk_adjusted": "Top by PnL / max drawdown",
}


def trades_frame(result: BacktestResult) -> pd.DataFrame:
    rows = [
        {
            "entry_time": t.entry_time.isoformat(),
            "exit_time": t.exit_time.isoformat(),
            "symbol": t.symbol,
            "side": t.side,
            "quantity": t.quantity,
            "entry": t.entry_price,
            "exit": t.exit_price,
            "fees": t.entry_fee + t.exit_fee,
            "pnl": t.pnl,
            "reason": t.reason,
        }
        for t in result.trades
    ]
    return pd.DataFrame(
        rows,
        columns=["entry_time", "exit_time", "symbol", "side", "quantity",
                 "entry", "exit", "fees", "pnl", "reason"],
    )


def print_backtest_summary(
    result: BacktestResult,
    title: str = "Backtest result",
    last_n: int = 10,
    out: Optional[TextIO] = None,
) -> None:
    """Print summary statistics, exit reasons and the last trades."""
    out = out or sys.stdout
    print(f"=== {title} ===", file=out)
    print(f"Total trades:  {result.total_trades}", file=out)
    print(f"Wins / losses: {result.wins} / {result.losses}", file=out)
    print(f"Win rate:      {result.win_rate:.2f}%", file=out)
    print(f"Total PnL:     {result.total_pnl:.4f}", file=out)
    print(f"Average PnL:   {result.avg_pnl:.4f}", file=out)
    print(f"Profit factor: {result.profit_factor:.2f}", file=out)
    print(f"Max drawdown:  {result.max_drawdown:.4f}", file=out)

    if result.exit_reasons:
        print("\nExit reasons:", file=out)
        for reason, count in sorted(result.exit_reasons.items(), key=lambda kv: -kv[1]):
            print(f"  {reason:<20} {count}", file=out)

    if result.trades:
        print(f"\nLast {min(last_n, len(result.trades))} trades:", file=out)
        frame = trades_frame(result).tail(last_n)
        print(frame.to_string(index=False), file=out)


def rankings_frames(report: OptimizationReport) -> Dict[str, pd.DataFrame]:
    frames: Dict[str, pd.DataFrame] = {}
    for key in RANKINGS:
        rows: List[Dict[str, Any]] = []
        for run in report.rankings.get(key, []):
            row = dict(run.overrides)
            row.update(
                trades=run.result.total_trades,
                win_rate=round(run.result.win_rate, 2),
                total_pnl=round(run.result.total_pnl, 4),
                profit_factor=round(run.result.profit_factor, 2),
                max_drawdown=round(run.result.max_drawdown, 4),
                pnl_per_dd=round(run.result.risk_adjusted, 2),
            )
            rows.append(row)
        frames[key] = pd.DataFrame(rows)
    return frames


def print_rankings(report: OptimizationReport, out: Optional[TextIO] = None) -> None:
    out = out or sys.stdout
    print(
        f"Evaluated {report.evaluated} combinations; "
        f"{len(report.qualified)} met the minimum trade count.",
        file=out,
    )
    for key, frame in rankings_frames(report).items():
        print(f"\n=== {RANKING_TITLES[key]} ===", file=out)
        if frame.empty:
            print("(no qualifying combinations)", file=out)
        else:
            print(frame.to_string(index=False), file=out)


def generate_backtest_report(
    result: BacktestResult,
    out_dir: str = "results",
    params: Optional[Dict[str, Any]] = None,
) -> None:
    """Generate report files for a backtest run.

    Creates the output directory if it does not exist and writes the
    following files:

    - `trades.csv` - closed trades
    - `equity_curve.csv` - cumulative realised PnL after each close
    - `summary.json` - statistics and the parameters used
    - `equity_curve.png` - line chart of the cumulative PnL
    """
    os.makedirs(out_dir, exist_ok=True)

    trades_frame(result).to_csv(os.path.join(out_dir, "trades.csv"), index=False)

    df_eq = pd.DataFrame(
        [{"timestamp": ts.isoformat(), "cumulative_pnl": pnl} for ts, pnl in result.equity_curve],
        columns=["timestamp", "cumulative_pnl"],
    )
    df_eq.to_csv(os.path.join(out_dir, "equity_curve.csv"), index=False)

    summary = result.summary()
    if params is not None:
        summary["parameters"] = params
    with open(os.path.join(out_dir, "summary.json"), "w", encoding="utf-8") as fh:
        json.dump(summary, fh, indent=2, ensure_ascii=False, default=str)

    fig, ax = plt.subplots(figsize=(10, 4))
    if not df_eq.empty:
        ax.plot(pd.to_datetime(df_eq["timestamp"]), df_eq["cumulative_pnl"], linewidth=1.5)
        ax.set_title("Cumulative realised PnL")
        ax.set_xlabel("Time")
        ax.set_ylabel("PnL")
        fig.autofmt_xdate()
    fig.tight_layout()
    fig.savefig(os.path.join(out_dir, "equity_curve.png"))
    plt.close(fig)
