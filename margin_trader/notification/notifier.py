"""
Entry and exit notifications.

`LoggingNotifier` writes every notification to the log.
`WebhookNotifier` posts a JSON message to a webhook URL with a small
retry budget and exponential backoff.  `CompositeNotifier` fans out to
several notifiers.  Delivery is best effort: callers log and ignore
any exception raised from `notify`.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

import requests


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    action: str  # 'entry' or 'exit'
    side: str
    symbol: str
    price: float
    quantity: float
    profit_loss: Optional[float] = None
    reason: Optional[str] = None
    strategy_name: Optional[str] = None

    @property
    def profit_loss_percent(self) -> Optional[float]:
        """PnL relative to the notional at the notified price."""
        if self.profit_loss is None or self.price <= 0 or self.quantity <= 0:
            return None
        return self.profit_loss / (self.price * self.quantity) * 100

    def summary(self) -> str:
        text = f"[{self.action.upper()}] {self.side} {self.quantity} {self.symbol} @ {self.price}"
        if self.profit_loss is not None:
            text += f" P/L={self.profit_loss:+.4f} ({self.profit_loss_percent or 0.0:+.2f}%)"
        if self.reason:
            text += f" reason={self.reason}"
        if self.strategy_name:
            text += f" strategy={self.strategy_name}"
        return text


class Notifier(ABC):
    @abstractmethod
    def notify(
        self,
        action: str,
        side: str,
        symbol: str,
        price: float,
        quantity: float,
        profit_loss: Optional[float] = None,
        reason: Optional[str] = None,
        strategy_name: Optional[str] = None,
    ) -> None:
        ...


class LoggingNotifier(Notifier):
    def notify(self, action, side, symbol, price, quantity,
               profit_loss=None, reason=None, strategy_name=None) -> None:
        message = Notification(action, side, symbol, price, quantity, profit_loss, reason, strategy_name)
        logger.info("Trade notification: %s", message.summary())


class WebhookNotifier(Notifier):
    """Post notifications as JSON to a webhook.

    Parameters
    ----------
    webhook_url : str
        Target URL.
    retry_attempts : int
        Number of POST attempts before giving up.
    retry_delay : float
        Base delay in seconds; doubled after every failed attempt.
    """

    def __init__(
        self,
        webhook_url: str,
        retry_attempts: int = 3,
        retry_delay: float = 1.0,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.webhook_url = webhook_url
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self.timeout = timeout
        self.session = session or requests.Session()
        self.sleep = sleep

    def _payload(self, message: Notification) -> Dict[str, Any]:
        payload = asdict(message)
        payload["profit_loss_percent"] = message.profit_loss_percent
        payload["content"] = message.summary()
        return payload

    def notify(self, action, side, symbol, price, quantity,
               profit_loss=None, reason=None, strategy_name=None) -> None:
        message = Notification(action, side, symbol, price, quantity, profit_loss, reason, strategy_name)
        payload = self._payload(message)
        for attempt in range(self.retry_attempts):
            try:
                response = self.session.post(self.webhook_url, json=payload, timeout=self.timeout)
                if response.status_code == 429:
                    logger.warning("Webhook rate limited (attempt %d)", attempt + 1)
                elif response.status_code >= 400:
                    logger.error("Webhook error: %s - %s", response.status_code, response.text[:200])
                    return
                else:
                    logger.debug("Webhook notification sent: %s", message.summary())
                    return
            except requests.exceptions.RequestException as exc:
                logger.warning("Webhook request failed (attempt %d): %s", attempt + 1, exc)
            self.sleep(self.retry_delay * (2 ** attempt))
        logger.error("Webhook notification failed after %d attempts", self.retry_attempts)


class CompositeNotifier(Notifier):
    """Forward every notification to each child; one failure does not stop the rest."""

    def __init__(self, notifiers: Sequence[Notifier]) -> None:
        self.notifiers: List[Notifier] = list(notifiers)

    def notify(self, action, side, symbol, price, quantity,
               profit_loss=None, reason=None, strategy_name=None) -> None:
        for notifier in self.notifiers:
            try:
                notifier.notify(action, side, symbol, price, quantity,
                                profit_loss, reason, strategy_name)
            except Exception:
                logger.error("Notifier %s failed", type(notifier).__name__, exc_info=True)
