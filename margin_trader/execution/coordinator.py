"""
Live tick execution.

`ExecutionCoordinator.execute` runs one tick of one strategy
configuration against an exchange gateway:

    fetch prices -> record price -> strategy exit -> trailing ratchet
    -> trailing breach -> fixed stop -> analyze -> (reversal) -> admit
    -> submit -> reconcile -> persist / log / notify

The whole tick runs under the symbol's lock.  Expected outcomes come
back as `Ok`, `Rejected` or `Failed`; an unexpected exception is
logged, recorded as an ``error`` event and returned as `Failed`, so
it never escapes to the scheduler.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Dict, Mapping, Optional

from ..config.schema import StrategyParameters
from ..data.store import TradingStore
from ..exchange.base import ExchangeGateway
from ..notification.notifier import Notifier
from ..strategy.base import BUY, HOLD, SELL, SHORT, Strategy, TradingSignal
from ..strategy.registry import create_strategy
from ..utils.timeutils import utcnow
from .admission import AdmissionControl
from .fills import FillReconciler
from .ledger import SymbolLocks, managed_by, open_position, plan_exits, plan_reversal, settle
from .models import (
    LONG,
    REVERSAL,
    SHORT as SHORT_SIDE,
    SIGNAL_SELL,
    EventRecord,
    Failed,
    Ok,
    Position,
    Rejected,
    TickResult,
    result_to_dict,
)


logger = logging.getLogger(__name__)


class ExecutionCoordinator:
    """Run ticks for strategy configurations against one gateway.

    Parameters
    ----------
    gateway : ExchangeGateway
        Market data and order routing.
    store : TradingStore
        Positions, event log and price history.
    notifier : Notifier
        Receives one notification per entry and exit fill.
    admission : AdmissionControl
        Entry gates.
    reconciler : FillReconciler, optional
        Defaults to one polling `gateway` with the standard budget.
    locks : SymbolLocks, optional
        Shared with other coordinators that touch the same store.
    config_names : mapping of int to str, optional
        Configuration names, used to attribute notifications of
        positions opened by another configuration.
    """

    def __init__(
        self,
        gateway: ExchangeGateway,
        store: TradingStore,
        notifier: Notifier,
        admission: AdmissionControl,
        reconciler: Optional[FillReconciler] = None,
        locks: Optional[SymbolLocks] = None,
        config_names: Optional[Mapping[int, str]] = None,
        candle_limit: int = 100,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.gateway = gateway
        self.store = store
        self.notifier = notifier
        self.admission = admission
        self.reconciler = reconciler or FillReconciler(gateway)
        self.locks = locks or SymbolLocks()
        self.config_names: Dict[int, str] = dict(config_names or {})
        self.candle_limit = candle_limit
        self.clock = clock

    # ------------------------------------------------------------------
    def execute(self, params: StrategyParameters, strategy: Optional[Strategy] = None) -> TickResult:
        """Run one tick for `params` and return its outcome."""
        symbol = params.symbol
        with self.locks(symbol):
            try:
                strategy = strategy or create_strategy(params.strategy)
                return self._tick(params, strategy)
            except Exception as exc:
                logger.error(
                    "Tick failed for %s (%s): %s", symbol, params.name or params.strategy, exc,
                    exc_info=True,
                )
                try:
                    self._log_event(symbol, "error", message=str(exc))
                except Exception:
                    logger.error("Could not record error event for %s", symbol, exc_info=True)
                return Failed("error", str(exc))

    def _tick(self, params: StrategyParameters, strategy: Strategy) -> TickResult:
        symbol = params.symbol
        now = self.clock()
        series = self.gateway.get_market_data(symbol, self.candle_limit)
        price = series.last_price
        self.store.record_price(symbol, price, now)

        managed = managed_by(self.store.open_positions(symbol), params.config_id)
        stops_before = {p.id: p.trailing_stop_price for p in managed}
        exits = plan_exits(
            managed,
            price,
            params,
            lambda p: strategy.exit_decision(p, series, params, now),
        )
        exiting = {planned.position.id for planned in exits}
        for position in managed:
            if position.id in exiting:
                continue
            if position.trailing_stop_price != stops_before[position.id]:
                self.store.update_position(position)
                logger.info(
                    "Trailing stop updated %s %s #%s: %s -> %s",
                    position.side, symbol, position.id,
                    stops_before[position.id], position.trailing_stop_price,
                )
        for planned in exits:
            self._close(planned.position, price, planned.reason, params, now)

        signal = strategy.analyze(series, params)
        if signal.action == HOLD:
            result: TickResult = Ok(HOLD, "hold - no trade")
        elif signal.action in (BUY, SHORT):
            result = self._enter(signal, params, strategy, price, now)
        elif signal.action == SELL:
            result = self._sell_latest_long(params, price, now)
        else:
            result = Failed(signal.action, f"Unknown signal action: {signal.action}")

        self._log_event(
            symbol,
            signal.action,
            quantity=signal.quantity,
            price=signal.price if signal.price is not None else price,
            result=result_to_dict(result),
            message=result.message,
            when=now,
        )
        return result

    # ------------------------------------------------------------------
    def _enter(
        self,
        signal: TradingSignal,
        params: StrategyParameters,
        strategy: Strategy,
        price: float,
        now: datetime,
    ) -> TickResult:
        symbol = params.symbol
        side = LONG if signal.action == BUY else SHORT_SIDE

        opposite = plan_reversal(self.store.open_positions(symbol), side)
        for position in opposite:
            if not self._close(position, price, REVERSAL, params, now):
                return Failed(signal.action, f"reversal of position #{position.id} failed")
        if opposite:
            logger.info(
                "All %d %s position(s) on %s closed, proceeding to %s entry",
                len(opposite), opposite[0].side, symbol, side,
            )

        reference_price = signal.price if signal.price is not None else price
        spread = self.gateway.get_spread(symbol)
        admission = self.admission.evaluate(
            symbol, side, reference_price, spread, params, strategy, now
        )
        if not admission.admitted:
            return Rejected(signal.action, admission.reason)

        submit = self.gateway.buy if side == LONG else self.gateway.sell
        order = submit(symbol, signal.quantity, signal.price)
        if not order.success:
            logger.error("%s entry on %s failed: %s", side, symbol, order.message)
            return Failed(signal.action, order.message or "order rejected")

        fill = self.reconciler.reconcile(order, signal.quantity, price, limit=signal.price is not None)
        if fill is None:
            logger.error("%s entry on %s: order %s was not filled", side, symbol, order.order_id)
            self._log_event(
                symbol, f"open_{side}_failed",
                quantity=signal.quantity, price=reference_price,
                result={"order_id": order.order_id}, message="order not filled", when=now,
            )
            return Failed(signal.action, f"order {order.order_id} not filled")
        position = self.store.create_position(
            open_position(symbol, side, signal.quantity, fill, now, params)
        )
        logger.info(
            "Opened %s %s #%s qty=%s @ %s fee=%s stop=%s",
            side, symbol, position.id, position.quantity, fill.price, fill.fee,
            position.trailing_stop_price,
        )
        self._log_event(
            symbol,
            f"open_{side}",
            quantity=position.quantity,
            price=fill.price,
            result={"order_id": fill.order_id, "fee": fill.fee, "degraded": fill.degraded},
            message=signal.reason,
            when=now,
        )
        self._notify("entry", position, fill.price, None, signal.reason, params)
        return Ok(signal.action, f"{side} position opened", (position.id,), fill.price)

    def _sell_latest_long(self, params: StrategyParameters, price: float, now: datetime) -> TickResult:
        position = self.store.latest_open(params.symbol, LONG)
        if position is None:
            return Ok(SELL, "no open long position to close")
        if not self._close(position, price, SIGNAL_SELL, params, now):
            return Failed(SELL, f"closing position #{position.id} failed")
        return Ok(SELL, "long position closed", (position.id,), position.exit_price)

    def _close(
        self,
        position: Position,
        price: float,
        reason: str,
        params: StrategyParameters,
        now: datetime,
    ) -> bool:
        """Submit the closing market order for `position` and settle it."""
        symbol = position.symbol
        order_side = "sell" if position.side == LONG else "buy"
        submit = self.gateway.sell if position.side == LONG else self.gateway.buy
        order = submit(symbol, position.quantity, None)
        if not order.success:
            logger.error(
                "Closing %s %s #%s (%s) failed: %s",
                position.side, symbol, position.id, reason, order.message,
            )
            self._log_event(
                symbol, f"{reason}_{order_side}_failed",
                quantity=position.quantity, price=price, message=order.message, when=now,
            )
            return False

        fill = self.reconciler.reconcile(order, position.quantity, price)
        if fill is None:
            logger.error(
                "Closing %s %s #%s (%s): order %s was not filled",
                position.side, symbol, position.id, reason, order.order_id,
            )
            self._log_event(
                symbol, f"{reason}_{order_side}_failed",
                quantity=position.quantity, price=price, message="order not filled", when=now,
            )
            return False
        pnl = settle(position, fill, now, reason)
        self.store.update_position(position)
        logger.info(
            "Closed %s %s #%s (%s) @ %s pnl=%.6f",
            position.side, symbol, position.id, reason, fill.price, pnl,
        )
        self._log_event(
            symbol,
            f"{reason}_{order_side}",
            quantity=position.quantity,
            price=fill.price,
            result={"position_id": position.id, "profit_loss": pnl, "fee": fill.fee,
                    "degraded": fill.degraded},
            message=reason,
            when=now,
        )
        self._notify("exit", position, fill.price, pnl, reason, params)
        return True

    # ------------------------------------------------------------------
    def _notify(
        self,
        action: str,
        position: Position,
        price: float,
        pnl: Optional[float],
        reason: str,
        params: StrategyParameters,
    ) -> None:
        name = self.config_names.get(position.config_id) if position.config_id is not None else None
        try:
            self.notifier.notify(
                action,
                position.side,
                position.symbol,
                price,
                position.quantity,
                profit_loss=pnl,
                reason=reason or None,
                strategy_name=name or params.name or params.strategy,
            )
        except Exception:
            logger.error("Failed to send %s notification for %s", action, position.symbol, exc_info=True)

    def _log_event(
        self,
        symbol: str,
        action: str,
        quantity: float = 0.0,
        price: float = 0.0,
        result: Optional[dict] = None,
        message: str = "",
        when: Optional[datetime] = None,
    ) -> None:
        self.store.append_event(
            EventRecord(
                symbol=symbol,
                action=action,
                executed_at=when or self.clock(),
                quantity=quantity or 0.0,
                price=price or 0.0,
                result=result,
                message=message,
            )
        )
