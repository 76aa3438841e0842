"""
Admission control for new entries.

Gates are evaluated in order and the first failing gate rejects the
entry:

1. position cap: open positions on the entry side of the symbol
2. spread: ``spread > price * max_spread_percent / 100``
3. loss cooldown for strategy families that suspend after losses

Exits (stops, strategy exits, reversal liquidations) never pass
through here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Mapping, Optional, Sequence

from ..config.schema import StrategyParameters
from ..data.store import TradingStore
from ..strategy.base import Strategy


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Admission:
    admitted: bool
    reason: str = ""

    @classmethod
    def ok(cls) -> "Admission":
        return cls(True)

    @classmethod
    def reject(cls, reason: str) -> "Admission":
        return cls(False, reason)


class AdmissionControl:
    """Decide whether a new entry may be opened.

    Parameters
    ----------
    store : TradingStore
        Position store queried for open counts and recent losses.
    families : mapping of str to sequence of int
        Configuration ids per canonical strategy name, including
        inactive configurations.  Used to find the losing closes that
        trigger a cooldown.
    verbose : bool
        Log rejections at info/warning level; debug otherwise.
    """

    def __init__(
        self,
        store: TradingStore,
        families: Mapping[str, Sequence[int]],
        verbose: bool = True,
    ) -> None:
        self.store = store
        self.families = families
        # replays reject thousands of entries; keep those at debug level
        self._info = logger.info if verbose else logger.debug
        self._warning = logger.warning if verbose else logger.debug

    def evaluate(
        self,
        symbol: str,
        side: str,
        price: float,
        spread: float,
        params: StrategyParameters,
        strategy: Strategy,
        now: datetime,
    ) -> Admission:
        open_count = len(self.store.open_positions(symbol, side))
        if open_count >= params.max_positions:
            self._info(
                "%s position limit reached on %s (%d/%d)",
                side, symbol, open_count, params.max_positions,
            )
            return Admission.reject(
                f"{side} position limit reached ({open_count}/{params.max_positions})"
            )

        max_spread = price * params.max_spread_percent / 100
        if spread > max_spread:
            spread_pct = spread / price * 100 if price else float("inf")
            self._warning(
                "Spread too wide for %s entry on %s: %.6g (%.4f%% > %.4f%%)",
                side, symbol, spread, spread_pct, params.max_spread_percent,
            )
            return Admission.reject(
                f"spread too wide ({spread:.6g} = {spread_pct:.4f}% > {params.max_spread_percent}%)"
            )

        cooldown = self.cooldown_reason(strategy, params, now)
        if cooldown is not None:
            self._info("Entry on %s skipped: %s", symbol, cooldown)
            return Admission.reject(cooldown)
        return Admission.ok()

    def cooldown_reason(
        self, strategy: Strategy, params: StrategyParameters, now: datetime
    ) -> Optional[str]:
        if not strategy.suspends_after_loss or params.cooldown_minutes <= 0:
            return None
        ids = list(self.families.get(strategy.name, ()))
        if not ids:
            return None
        since = now - timedelta(minutes=params.cooldown_minutes)
        for position in self.store.find_positions(config_ids=ids, closed_since=since):
            if position.profit_loss is not None and position.profit_loss < 0:
                until = position.closed_at + timedelta(minutes=params.cooldown_minutes)
                return (
                    f"{strategy.name} cooldown active after losing position "
                    f"#{position.id} on {position.symbol} (until {until.isoformat()})"
                )
        return None
