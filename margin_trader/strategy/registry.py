"""
Strategy lookup by identifier.

Configurations name their strategy by a short identifier.  The class
names used by older configurations are accepted as aliases, with or
without a namespace prefix.
"""

from __future__ import annotations

from typing import Dict, Type

from ..errors import UnknownStrategyError
from .base import Strategy
from .breakout import BreakoutStrategy
from .ma_cross import MovingAverageCrossStrategy
from .rsi_contrarian import RSIContrarianStrategy


STRATEGIES: Dict[str, Type[Strategy]] = {
    BreakoutStrategy.name: BreakoutStrategy,
    RSIContrarianStrategy.name: RSIContrarianStrategy,
    MovingAverageCrossStrategy.name: MovingAverageCrossStrategy,
}

ALIASES: Dict[str, str] = {
    "highlowbreakoutstrategy": BreakoutStrategy.name,
    "rsicontrarianstrategy": RSIContrarianStrategy.name,
    "simplemovingaveragestrategy": MovingAverageCrossStrategy.name,
}


def canonical_name(identifier: str) -> str:
    """Resolve an identifier or alias to its registry name.

    ``App\\Trading\\Strategy\\RSIContrarianStrategy`` and
    ``RSIContrarianStrategy`` both resolve to ``rsi_contrarian``.
    """
    key = str(identifier).replace("\\", ".").split(".")[-1].strip().lower()
    if key in STRATEGIES:
        return key
    if key in ALIASES:
        return ALIASES[key]
    raise UnknownStrategyError(f"Unknown strategy: {identifier}")


def create_strategy(identifier: str) -> Strategy:
    return STRATEGIES[canonical_name(identifier)]()
