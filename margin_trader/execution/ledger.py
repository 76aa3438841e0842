"""
Position ledger: stop management, PnL and exit planning.

This module holds the only implementation of the trailing-stop,
stop-loss and PnL arithmetic.  Both the live `ExecutionCoordinator`
and the `BacktestSimulator` call it, so a parameter set behaves the
same in a replay as it does against the exchange.

Per tick and per position the exit checks run in a fixed order and
the first match wins:

1. strategy-defined exit (e.g. RSI take-profit or timeout)
2. trailing-stop ratchet, then trailing-stop breach
3. fixed stop-loss breach

A position therefore closes at most once per tick.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

from ..config.schema import StrategyParameters
from .models import (
    LONG,
    STOP_LOSS,
    TRAILING_STOP,
    Fill,
    PlannedExit,
    Position,
    opposite,
)


logger = logging.getLogger(__name__)


def initial_trailing_stop(side: str, entry_price: float, initial_percent: float) -> float:
    """Trailing stop placed when a position is opened."""
    if side == LONG:
        return entry_price * (1 - initial_percent / 100)
    return entry_price * (1 + initial_percent / 100)


def ratchet_trailing_stop(
    side: str, current_stop: Optional[float], price: float, offset_percent: float
) -> float:
    """Return the stop after one tick at `price`.

    The candidate ``price * (1 -/+ offset/100)`` only replaces the
    current stop when it is more favourable, so a long stop never
    moves down and a short stop never moves up.
    """
    if side == LONG:
        candidate = price * (1 - offset_percent / 100)
        if current_stop is None or candidate > current_stop:
            return candidate
        return current_stop
    candidate = price * (1 + offset_percent / 100)
    if current_stop is None or candidate < current_stop:
        return candidate
    return current_stop


def stop_loss_price(side: str, entry_price: float, stop_loss_percent: float) -> float:
    if side == LONG:
        return entry_price * (1 - stop_loss_percent / 100)
    return entry_price * (1 + stop_loss_percent / 100)


def gross_pnl(side: str, entry_price: float, exit_price: float, quantity: float) -> float:
    if side == LONG:
        return (exit_price - entry_price) * quantity
    return (entry_price - exit_price) * quantity


def net_pnl(
    side: str,
    entry_price: float,
    exit_price: float,
    quantity: float,
    entry_fee: float,
    exit_fee: float,
) -> float:
    return gross_pnl(side, entry_price, exit_price, quantity) - entry_fee - exit_fee


def trailing_stop_breached(position: Position, price: float) -> bool:
    stop = position.trailing_stop_price
    if stop is None:
        return False
    if position.side == LONG:
        return price <= stop
    return price >= stop


def stop_loss_breached(position: Position, price: float, stop_loss_percent: float) -> bool:
    level = stop_loss_price(position.side, position.entry_price, stop_loss_percent)
    if position.side == LONG:
        return price <= level
    return price >= level


def managed_by(positions: Iterable[Position], config_id: Optional[int]) -> List[Position]:
    """Positions whose stops the configuration `config_id` manages.

    A configuration manages its own positions and untagged ones.
    """
    return [p for p in positions if p.config_id is None or p.config_id == config_id]


def plan_exits(
    positions: Iterable[Position],
    price: float,
    params: StrategyParameters,
    strategy_exit: Optional[Callable[[Position], Optional[str]]] = None,
) -> List[PlannedExit]:
    """Ratchet trailing stops and decide which positions close this tick.

    Positions that are not closed by the strategy have their trailing
    stop ratcheted in place before the breach checks.  The caller is
    responsible for persisting ratcheted positions.

    Returns
    -------
    list of PlannedExit
        At most one entry per position, in input order.
    """
    exits: List[PlannedExit] = []
    for position in positions:
        if not position.is_open:
            continue
        reason = strategy_exit(position) if strategy_exit is not None else None
        if reason:
            exits.append(PlannedExit(position, reason))
            continue

        new_stop = ratchet_trailing_stop(
            position.side,
            position.trailing_stop_price,
            price,
            params.trailing_stop_offset_percent,
        )
        if position.trailing_stop_price is None:
            # positions opened without a stop get their entry stop first
            new_stop = initial_trailing_stop(
                position.side, position.entry_price, params.initial_trailing_stop_percent
            )
        if new_stop != position.trailing_stop_price:
            logger.debug(
                "Trailing stop %s %s #%s: %s -> %s",
                position.side, position.symbol, position.id,
                position.trailing_stop_price, new_stop,
            )
            position.ratchet_to(new_stop)

        if trailing_stop_breached(position, price):
            exits.append(
                PlannedExit(position, TRAILING_STOP, f"stop={position.trailing_stop_price:.8g}")
            )
        elif stop_loss_breached(position, price, params.stop_loss_percent):
            level = stop_loss_price(position.side, position.entry_price, params.stop_loss_percent)
            exits.append(PlannedExit(position, STOP_LOSS, f"stop_loss={level:.8g}"))
    return exits


def plan_reversal(positions: Iterable[Position], entry_side: str) -> List[Position]:
    """Open positions that must be liquidated before entering `entry_side`."""
    target = opposite(entry_side)
    return [p for p in positions if p.is_open and p.side == target]


def open_position(
    symbol: str,
    side: str,
    quantity: float,
    fill: Fill,
    opened_at: datetime,
    params: StrategyParameters,
) -> Position:
    """Create the position for an entry fill, with its initial trailing stop."""
    return Position(
        symbol=symbol,
        side=side,
        quantity=quantity,
        entry_price=fill.price,
        entry_fee=fill.fee,
        opened_at=opened_at,
        trailing_stop_price=initial_trailing_stop(
            side, fill.price, params.initial_trailing_stop_percent
        ),
        config_id=params.config_id,
    )


def settle(position: Position, fill: Fill, closed_at: datetime, reason: str) -> float:
    """Close `position` at the fill and return its net PnL."""
    pnl = net_pnl(
        position.side,
        position.entry_price,
        fill.price,
        position.quantity,
        position.entry_fee,
        fill.fee,
    )
    position.close(fill.price, fill.fee, closed_at, reason, pnl)
    return pnl


class SymbolLocks:
    """One lock per symbol; a symbol's positions have a single writer."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)

    def __call__(self, symbol: str) -> threading.Lock:
        with self._guard:
            return self._locks[symbol]
