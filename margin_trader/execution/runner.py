"""
Scheduled execution of every active strategy configuration.

`TradingRunner.run_once` resolves each active configuration and hands
it to the coordinator, either one after the other or on a thread
pool.  A configuration that fails (unknown strategy, invalid
parameters, unexpected error) is logged and skipped; the others
still run.  `run_forever` repeats the tick on a fixed interval until
interrupted.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List, Optional

from ..config.schema import Config, StrategyConfig
from ..data.store import SQLiteStore, TradingStore
from ..errors import ConfigError, TradingError
from ..exchange.base import ExchangeGateway
from ..exchange.gmo import GMOCoinGateway
from ..exchange.paper import PaperExchange
from ..notification.notifier import CompositeNotifier, LoggingNotifier, Notifier, WebhookNotifier
from ..strategy.registry import canonical_name, create_strategy
from .admission import AdmissionControl
from .coordinator import ExecutionCoordinator
from .fills import FillReconciler
from .ledger import SymbolLocks
from .models import Failed, TickResult


logger = logging.getLogger(__name__)


def strategy_families(config: Config) -> Dict[str, List[int]]:
    """Configuration ids grouped by canonical strategy name.

    Inactive configurations are included; entries with an unknown
    strategy are left out.
    """
    families: Dict[str, List[int]] = {}
    for entry in config.strategies:
        try:
            name = canonical_name(entry.strategy)
        except ConfigError:
            continue
        families.setdefault(name, []).append(entry.id)
    return families


def build_gateway(config: Config) -> ExchangeGateway:
    if config.exchange.name.lower() != "gmo":
        raise ConfigError(f"Unsupported exchange: {config.exchange.name}")
    market = GMOCoinGateway(config.exchange)
    if config.mode == "live":
        return market
    return PaperExchange(
        market,
        config.storage.paper_state_file,
        initial_cash=config.storage.paper_initial_cash,
        fee_rate=config.storage.paper_fee_rate,
        order_history=config.storage.paper_order_history,
    )


def build_notifier(config: Config) -> Notifier:
    notifiers: List[Notifier] = [LoggingNotifier()]
    if config.notification.enabled and config.notification.webhook_url:
        notifiers.append(WebhookNotifier(config.notification.webhook_url))
    return CompositeNotifier(notifiers)


class TradingRunner:
    """Run one tick for every active configuration of a `Config`."""

    def __init__(
        self,
        config: Config,
        coordinator: ExecutionCoordinator,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.coordinator = coordinator
        self.sleep = sleep

    @classmethod
    def from_config(
        cls,
        config: Config,
        gateway: Optional[ExchangeGateway] = None,
        store: Optional[TradingStore] = None,
        notifier: Optional[Notifier] = None,
    ) -> "TradingRunner":
        """Wire the gateway, store, notifier and coordinator from `config`."""
        gateway = gateway or build_gateway(config)
        store = store or SQLiteStore(config.storage.db_path)
        coordinator = ExecutionCoordinator(
            gateway=gateway,
            store=store,
            notifier=notifier or build_notifier(config),
            admission=AdmissionControl(store, strategy_families(config)),
            reconciler=FillReconciler(
                gateway,
                attempts=config.fills.poll_attempts,
                delay=config.fills.poll_delay_seconds,
            ),
            locks=SymbolLocks(),
            config_names={s.id: s.name for s in config.strategies},
            candle_limit=config.exchange.candle_limit,
        )
        return cls(config, coordinator)

    def _run_config(self, entry: StrategyConfig) -> Optional[TickResult]:
        try:
            params = entry.resolve(self.config.defaults)
            strategy = create_strategy(params.strategy)
        except TradingError as exc:
            logger.error("Skipping configuration %s (%s): %s", entry.id, entry.name, exc)
            return None
        result = self.coordinator.execute(params, strategy)
        log = logger.error if isinstance(result, Failed) else logger.info
        log("[%s] %s %s: %s - %s", entry.name, params.symbol, type(result).__name__,
            result.action, result.message)
        return result

    def run_once(self) -> Dict[int, Optional[TickResult]]:
        """Tick every active configuration; returns results by configuration id."""
        entries = self.config.active_strategies()
        if not entries:
            logger.info("No active strategy configurations")
            return {}
        workers = max(1, self.config.schedule.max_workers)
        if workers == 1:
            return {entry.id: self._run_config(entry) for entry in entries}
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {entry.id: pool.submit(self._run_config, entry) for entry in entries}
            return {config_id: future.result() for config_id, future in futures.items()}

    def run_forever(self, max_ticks: Optional[int] = None) -> None:
        """Tick on a fixed interval until interrupted (or `max_ticks` ticks)."""
        ticks = 0
        try:
            while max_ticks is None or ticks < max_ticks:
                started = time.monotonic()
                self.run_once()
                ticks += 1
                if max_ticks is not None and ticks >= max_ticks:
                    break
                elapsed = time.monotonic() - started
                self.sleep(max(0.0, self.config.schedule.interval_seconds - elapsed))
        except KeyboardInterrupt:
            logger.info("Shutting down trading loop...")
