"""Exception hierarchy for the trading agent."""

from __future__ import annotations


class TradingError(Exception):
    """Base class for all errors raised by margin_trader."""


class ConfigError(TradingError):
    """The configuration file or a strategy configuration is invalid."""


class UnknownStrategyError(ConfigError):
    """A configuration names a strategy identifier that is not registered."""


class ExchangeError(TradingError):
    """An exchange request failed (transport error or API error status)."""


class PositionStateError(TradingError):
    """A closed position was asked to change."""
