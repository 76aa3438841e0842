"""
Configuration schema and loader.

This module defines dataclasses that mirror the expected structure of
the YAML configuration file (`config.yaml`).  A helper function
`load_config()` reads a YAML file from disk and returns an instance
of `Config` populated with reasonable defaults for any missing
fields.

Strategy configurations are stored as raw `StrategyConfig` entries
and resolved once per tick into an immutable `StrategyParameters`
value (defaults section first, then the entry's own `parameters`).
That value is passed explicitly to every strategy, ledger and
admission call; nothing in the trading core reads configuration
from a global.
"""

from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

import yaml
from dotenv import load_dotenv

from ..errors import ConfigError


@dataclass
class ExchangeConfig:
    """Exchange connection settings.

    Attributes
    ----------
    name : str
        Exchange identifier.  Only ``gmo`` is implemented.
    api_key, api_secret : str
        Credentials for private endpoints.  Usually supplied through the
        ``MARGIN_TRADER_API_KEY`` / ``MARGIN_TRADER_API_SECRET``
        environment variables rather than the YAML file.
    candle_limit : int
        Number of 1-minute closes requested per tick.
    """

    name: str = "gmo"
    api_key: str = ""
    api_secret: str = ""
    public_url: str = "https://api.coin.z.com/public"
    private_url: str = "https://api.coin.z.com/private"
    timeout: float = 10.0
    candle_limit: int = 100


@dataclass
class DefaultsConfig:
    """Fallback strategy knobs applied beneath every strategy configuration."""

    trade_size: float = 0.01
    max_positions: int = 3
    stop_loss_percent: float = 1.0
    max_spread_percent: float = 0.1
    trailing_stop_offset_percent: float = 0.5
    initial_trailing_stop_percent: float = 0.7


@dataclass
class FillsConfig:
    """Market-order fill reconciliation budget."""

    poll_attempts: int = 5
    poll_delay_seconds: float = 1.0


@dataclass
class StorageConfig:
    """Where positions, events, price history and paper state live."""

    db_path: str = "data/margin_trader.db"
    paper_state_file: str = "data/paper_state.json"
    paper_initial_cash: float = 10_000.0
    paper_fee_rate: float = 0.0005
    paper_order_history: int = 500


@dataclass
class NotificationConfig:
    enabled: bool = False
    webhook_url: str = ""


@dataclass
class BacktestConfig:
    """Backtest and optimizer settings.

    Attributes
    ----------
    fee_rate : float
        Flat fee charged on each side of a round trip, as a fraction of
        notional (0.0005 = 0.05 % taker fee).
    spread_percent : float
        Static spread assumption used instead of a live spread quote.
    min_trades : int
        Optimizer combinations with fewer closed trades are discarded.
    """

    fee_rate: float = 0.0005
    spread_percent: float = 0.0
    min_trades: int = 10
    workers: int = 1
    top_n: int = 10


@dataclass
class ScheduleConfig:
    interval_seconds: float = 60.0
    max_workers: int = 1


@dataclass(frozen=True)
class StrategyParameters:
    """Immutable, fully-resolved parameters of one strategy configuration.

    Percentages are expressed in percent (``1.0`` means 1 %).
    """

    symbol: str = "BTC/JPY"
    strategy: str = "breakout"
    name: str = ""
    config_id: Optional[int] = None
    # breakout
    lookback_period: int = 20
    breakout_threshold: float = 0.1
    # rsi contrarian
    rsi_period: int = 14
    rsi_oversold: float = 30.0
    rsi_overbought: float = 70.0
    rsi_exit_long: float = 50.0
    rsi_exit_short: float = 50.0
    max_hold_minutes: float = 60.0
    cooldown_minutes: float = 30.0
    # moving average cross
    short_period: int = 5
    long_period: int = 20
    # sizing, risk and admission
    trade_size: float = 0.01
    max_positions: int = 3
    stop_loss_percent: float = 1.0
    initial_trailing_stop_percent: float = 0.7
    trailing_stop_offset_percent: float = 0.5
    max_spread_percent: float = 0.1

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "StrategyParameters":
        """Build parameters from a plain mapping, coercing numeric types.

        Keys used by older configuration files are accepted:
        ``max_spread`` for ``max_spread_percent`` and
        ``rsi_exit_threshold`` for both RSI exit levels.
        """
        data = dict(values)
        if "max_spread" in data:
            data.setdefault("max_spread_percent", data.pop("max_spread"))
        if "rsi_exit_threshold" in data:
            level = data.pop("rsi_exit_threshold")
            data.setdefault("rsi_exit_long", level)
            data.setdefault("rsi_exit_short", level)
        known = {f.name: f for f in dataclasses.fields(cls)}
        unknown = sorted(set(data) - set(known))
        if unknown:
            raise ConfigError(f"Unknown strategy parameters: {unknown}")
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            default = known[key].default
            try:
                if value is None or isinstance(default, str) or default is None:
                    kwargs[key] = value
                elif isinstance(default, int):
                    kwargs[key] = int(value)
                else:
                    kwargs[key] = float(value)
            except (TypeError, ValueError) as exc:
                raise ConfigError(f"Invalid value for {key}: {value!r}") from exc
        params = cls(**kwargs)
        params.validate()
        return params

    def validate(self) -> None:
        if self.trade_size <= 0:
            raise ConfigError("trade_size must be positive")
        if self.max_positions < 1:
            raise ConfigError("max_positions must be at least 1")
        if self.lookback_period < 1 or self.rsi_period < 1:
            raise ConfigError("lookback_period and rsi_period must be at least 1")
        if self.short_period < 1 or self.long_period < 1:
            raise ConfigError("moving average periods must be at least 1")

    def replace(self, **changes: Any) -> "StrategyParameters":
        return dataclasses.replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


@dataclass
class StrategyConfig:
    """One named strategy configuration as written in the YAML file."""

    id: int
    name: str
    symbol: str
    strategy: str
    parameters: Dict[str, Any] = field(default_factory=dict)
    is_active: bool = True

    def resolve(self, defaults: DefaultsConfig) -> StrategyParameters:
        """Merge defaults and overrides into an immutable parameter set."""
        merged: Dict[str, Any] = dataclasses.asdict(defaults)
        merged.update(self.parameters)
        merged.update(
            symbol=self.symbol,
            strategy=self.strategy,
            name=self.name,
            config_id=self.id,
        )
        return StrategyParameters.from_mapping(merged)


@dataclass
class Config:
    """Root configuration for the trading agent.

    Attributes
    ----------
    mode : str
        ``paper`` (simulated account, real prices) or ``live``.
    strategies : List[StrategyConfig]
        All strategy configurations.  Only active ones are ticked, but
        inactive ones still count as members of their strategy family
        for loss cooldowns.
    """

    mode: str = "paper"
    exchange: ExchangeConfig = field(default_factory=ExchangeConfig)
    defaults: DefaultsConfig = field(default_factory=DefaultsConfig)
    fills: FillsConfig = field(default_factory=FillsConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    notification: NotificationConfig = field(default_factory=NotificationConfig)
    backtest: BacktestConfig = field(default_factory=BacktestConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    strategies: List[StrategyConfig] = field(default_factory=list)

    def active_strategies(self) -> List[StrategyConfig]:
        return [s for s in self.strategies if s.is_active]


def _merge_dict(defaults: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge two dictionaries.

    The values in `override` take precedence over those in `defaults`.
    This helper is used when loading YAML into nested dataclasses.
    """
    result: Dict[str, Any] = defaults.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _merge_dict(result[key], value)
        else:
            result[key] = value
    return result


def _build_section(cls: type, values: Dict[str, Any], section: str) -> Any:
    try:
        return cls(**values)
    except TypeError as exc:
        raise ConfigError(f"Invalid '{section}' section: {exc}") from exc


def _build_strategy(raw: Dict[str, Any], index: int) -> StrategyConfig:
    missing = [key for key in ("symbol", "strategy") if key not in raw]
    if missing:
        raise ConfigError(f"Strategy entry #{index} is missing {missing}")
    return StrategyConfig(
        id=int(raw.get("id", index)),
        name=str(raw.get("name", f"{raw['strategy']}-{raw['symbol']}")),
        symbol=str(raw["symbol"]),
        strategy=str(raw["strategy"]),
        parameters=dict(raw.get("parameters") or {}),
        is_active=bool(raw.get("is_active", True)),
    )


def _apply_environment(merged: Dict[str, Any]) -> None:
    """Let environment variables (or a ``.env`` file) override secrets."""
    load_dotenv()
    env_map = {
        "MARGIN_TRADER_MODE": ("mode", None),
        "MARGIN_TRADER_API_KEY": ("exchange", "api_key"),
        "MARGIN_TRADER_API_SECRET": ("exchange", "api_secret"),
        "MARGIN_TRADER_WEBHOOK_URL": ("notification", "webhook_url"),
    }
    for env_name, (section, key) in env_map.items():
        value = os.environ.get(env_name)
        if not value:
            continue
        if key is None:
            merged[section] = value
        else:
            merged[section][key] = value


def load_config(path: Optional[str]) -> Config:
    """Load a configuration file from the given YAML path.

    Parameters
    ----------
    path : str or None
        Path to the YAML file.  ``None`` yields the defaults (plus any
        environment overrides), which is what backtests use.

    Returns
    -------
    Config
        A populated configuration object.  Missing fields are filled with
        sensible defaults defined in the dataclasses.
    """
    raw: Dict[str, Any] = {}
    if path is not None:
        try:
            with open(path, "r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
        except OSError as exc:
            raise ConfigError(f"Cannot read configuration file {path}: {exc}") from exc
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError("The configuration file must contain a mapping")

    defaults: Dict[str, Any] = dataclasses.asdict(Config())
    defaults.pop("strategies")
    strategies_raw = raw.pop("strategies", None) or []

    merged = _merge_dict(defaults, raw)
    _apply_environment(merged)

    mode = str(merged.get("mode", "paper")).lower()
    if mode not in ("paper", "live"):
        raise ConfigError(f"Unsupported mode: {mode}")

    strategies = [_build_strategy(entry, i + 1) for i, entry in enumerate(strategies_raw)]
    ids = [s.id for s in strategies]
    if len(ids) != len(set(ids)):
        raise ConfigError("Strategy ids must be unique")

    return Config(
        mode=mode,
        exchange=_build_section(ExchangeConfig, merged["exchange"], "exchange"),
        defaults=_build_section(DefaultsConfig, merged["defaults"], "defaults"),
        fills=_build_section(FillsConfig, merged["fills"], "fills"),
        storage=_build_section(StorageConfig, merged["storage"], "storage"),
        notification=_build_section(NotificationConfig, merged["notification"], "notification"),
        backtest=_build_section(BacktestConfig, merged["backtest"], "backtest"),
        schedule=_build_section(ScheduleConfig, merged["schedule"], "schedule"),
        strategies=strategies,
    )
