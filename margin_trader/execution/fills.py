"""
Fill reconciliation for submitted orders.

A priced order result (a simulated exchange) is taken as-is.  Orders on
a real exchange return only an order id; their executions are then
polled a bounded number of times with a fixed delay, and the fill
becomes the size-weighted average execution price with the summed fee.

Between polls the order status is checked, and polling stops once the
exchange reports the order canceled or expired.  When the budget runs
out, a limit order is canceled; a market order falls back to the
partial executions seen so far, or to the last known market price with
a zero fee when nothing executed.  Both fallbacks are flagged as
degraded.  An order that ends with no execution at all yields no fill.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, List, Optional

from ..exchange.base import ExchangeGateway, Execution, OrderResult, OrderStatus
from ..errors import ExchangeError
from .models import Fill


logger = logging.getLogger(__name__)

TERMINAL_STATUSES = (OrderStatus.CANCELED, OrderStatus.EXPIRED)


def average_fill(executions: List[Execution]) -> Fill:
    """Size-weighted average price and summed fee of partial fills."""
    size = sum(e.size for e in executions)
    price = sum(e.price * e.size for e in executions) / size
    return Fill(price=price, fee=sum(e.fee for e in executions))


class FillReconciler:
    """Turn an `OrderResult` into a realised `Fill`.

    Parameters
    ----------
    gateway : ExchangeGateway
        Used to poll executions and status by order id.
    attempts : int
        Poll budget per order.
    delay : float
        Seconds to wait before each poll.
    sleep : callable
        Injected for tests; defaults to `time.sleep`.
    """

    def __init__(
        self,
        gateway: ExchangeGateway,
        attempts: int = 5,
        delay: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.gateway = gateway
        self.attempts = attempts
        self.delay = delay
        self.sleep = sleep

    def reconcile(
        self,
        result: OrderResult,
        quantity: float,
        last_price: float,
        limit: bool = False,
    ) -> Optional[Fill]:
        """Return the fill of `result`, or ``None`` when nothing executed.

        `limit` marks a limit order, which is canceled rather than
        booked at `last_price` when it does not fill within the budget.
        """
        if result.price is not None:
            return Fill(price=result.price, fee=result.fee or 0.0, order_id=result.order_id)

        order_id = result.order_id
        seen: List[Execution] = []
        terminal: Optional[OrderStatus] = None
        if order_id:
            for attempt in range(1, self.attempts + 1):
                self.sleep(self.delay)
                try:
                    executions = self.gateway.get_executions_by_order_id(order_id)
                except ExchangeError as exc:
                    logger.debug("Execution poll %d for %s failed: %s", attempt, order_id, exc)
                    continue
                if executions:
                    seen = executions
                    if sum(e.size for e in executions) >= quantity * (1 - 1e-9):
                        fill = average_fill(executions)
                        logger.debug(
                            "Order %s filled after %d poll(s): price=%s fee=%s",
                            order_id, attempt, fill.price, fill.fee,
                        )
                        return Fill(fill.price, fill.fee, order_id)
                status = self.gateway.get_order_status(order_id)
                if status in TERMINAL_STATUSES:
                    terminal = status
                    logger.warning("Order %s ended as %s before filling", order_id, status.value)
                    break

            if limit and terminal is None:
                seen = self._cancel(order_id, seen)

        if seen:
            fill = average_fill(seen)
            executed = sum(e.size for e in seen)
            if executed >= quantity * (1 - 1e-9):
                return Fill(fill.price, fill.fee, order_id)
            logger.warning(
                "Degraded fill for order %s: %s of %s executed, using average price %s fee %s",
                order_id, executed, quantity, fill.price, fill.fee,
            )
            return Fill(fill.price, fill.fee, order_id, degraded=True)

        if limit or terminal is not None:
            logger.error("Order %s was not filled", order_id)
            return None

        logger.warning(
            "Degraded fill for order %s: no execution after %d attempts, "
            "using last price %s with zero fee",
            order_id, self.attempts, last_price,
        )
        return Fill(price=last_price, fee=0.0, order_id=order_id, degraded=True)

    def _cancel(self, order_id: str, seen: List[Execution]) -> List[Execution]:
        """Cancel an unfilled order and return its executions after the cancel."""
        if self.gateway.cancel_order(order_id):
            logger.info("Canceled unfilled order %s", order_id)
        else:
            logger.error("Could not cancel unfilled order %s", order_id)
        try:
            return self.gateway.get_executions_by_order_id(order_id) or seen
        except ExchangeError as exc:
            logger.debug("Execution check after cancel of %s failed: %s", order_id, exc)
            return seen
