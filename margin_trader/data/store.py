"""
Position, event and price-history storage.

Two interchangeable stores are provided:

* `InMemoryStore` keeps everything in Python lists.  The backtest
  uses one fresh instance per run and the unit tests use it in place
  of a database.
* `SQLiteStore` persists the same data in a SQLite file for the live
  and paper trading agent, so positions survive between scheduled
  invocations.

Both expose the same methods; callers only depend on `TradingStore`.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from ..execution.models import OPEN, EventRecord, Position
from ..utils.timeutils import isoformat, to_utc
from .price_series import PriceSeries


logger = logging.getLogger(__name__)


class TradingStore(ABC):
    """Position store, append-only event log and price history."""

    # positions
    @abstractmethod
    def create_position(self, position: Position) -> Position:
        """Persist a new position and assign its id."""

    @abstractmethod
    def update_position(self, position: Position) -> None:
        ...

    @abstractmethod
    def get_position(self, position_id: int) -> Optional[Position]:
        ...

    @abstractmethod
    def find_positions(
        self,
        symbol: Optional[str] = None,
        side: Optional[str] = None,
        status: Optional[str] = None,
        config_ids: Optional[Iterable[int]] = None,
        closed_since: Optional[datetime] = None,
    ) -> List[Position]:
        """Query positions ordered by opening time (oldest first).

        `closed_since` keeps only positions closed at or after the given
        time; it is what the loss cooldown uses.
        """

    def open_positions(self, symbol: str, side: Optional[str] = None) -> List[Position]:
        return self.find_positions(symbol=symbol, side=side, status=OPEN)

    def latest_open(self, symbol: str, side: str) -> Optional[Position]:
        positions = self.open_positions(symbol, side)
        return positions[-1] if positions else None

    # events
    @abstractmethod
    def append_event(self, event: EventRecord) -> None:
        ...

    @abstractmethod
    def events(self, symbol: Optional[str] = None) -> List[EventRecord]:
        ...

    # price history
    @abstractmethod
    def record_price(self, symbol: str, price: float, recorded_at: datetime) -> None:
        ...

    @abstractmethod
    def load_series(self, symbol: str, limit: Optional[int] = None) -> PriceSeries:
        """Return the stored price history of `symbol`, oldest first.

        With `limit` only the most recent samples are returned.
        """

    def close(self) -> None:
        pass


def _matches(
    position: Position,
    symbol: Optional[str],
    side: Optional[str],
    status: Optional[str],
    config_ids: Optional[set],
    closed_since: Optional[datetime],
) -> bool:
    if symbol is not None and position.symbol != symbol:
        return False
    if side is not None and position.side != side:
        return False
    if status is not None and position.status != status:
        return False
    if config_ids is not None and position.config_id not in config_ids:
        return False
    if closed_since is not None:
        if position.closed_at is None or position.closed_at < closed_since:
            return False
    return True


class InMemoryStore(TradingStore):
    """Store holding positions, events and prices in memory.

    Positions are kept by reference: mutating a returned `Position`
    and calling `update_position` is equivalent to writing it back.
    """

    def __init__(self) -> None:
        self._positions: Dict[int, Position] = {}
        self._open: Dict[int, Position] = {}
        self._events: List[EventRecord] = []
        self._prices: Dict[str, PriceSeries] = {}
        self._next_id = 1

    def create_position(self, position: Position) -> Position:
        position.id = self._next_id
        self._next_id += 1
        self._positions[position.id] = position
        if position.is_open:
            self._open[position.id] = position
        return position

    def update_position(self, position: Position) -> None:
        if position.id not in self._positions:
            raise KeyError(f"Unknown position id {position.id}")
        self._positions[position.id] = position
        if position.is_open:
            self._open[position.id] = position
        else:
            self._open.pop(position.id, None)

    def get_position(self, position_id: int) -> Optional[Position]:
        return self._positions.get(position_id)

    def find_positions(
        self,
        symbol: Optional[str] = None,
        side: Optional[str] = None,
        status: Optional[str] = None,
        config_ids: Optional[Iterable[int]] = None,
        closed_since: Optional[datetime] = None,
    ) -> List[Position]:
        ids = set(config_ids) if config_ids is not None else None
        since = to_utc(closed_since) if closed_since is not None else None
        # open positions are indexed separately to keep backtest ticks cheap
        source = self._open.values() if status == OPEN else self._positions.values()
        found = [p for p in source if _matches(p, symbol, side, status, ids, since)]
        found.sort(key=lambda p: (p.opened_at, p.id))
        return found

    def append_event(self, event: EventRecord) -> None:
        self._events.append(event)

    def events(self, symbol: Optional[str] = None) -> List[EventRecord]:
        return [e for e in self._events if symbol is None or e.symbol == symbol]

    def record_price(self, symbol: str, price: float, recorded_at: datetime) -> None:
        series = self._prices.setdefault(symbol, PriceSeries(symbol))
        series.append(price, recorded_at)

    def load_series(self, symbol: str, limit: Optional[int] = None) -> PriceSeries:
        series = self._prices.get(symbol, PriceSeries(symbol))
        return series.window(len(series), limit)


_SCHEMA = """
CREATE TABLE IF NOT EXISTS positions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    config_id INTEGER,
    symbol TEXT NOT NULL,
    side TEXT NOT NULL,
    quantity REAL NOT NULL,
    entry_price REAL NOT NULL,
    entry_fee REAL NOT NULL DEFAULT 0,
    exit_price REAL,
    exit_fee REAL,
    trailing_stop_price REAL,
    status TEXT NOT NULL,
    profit_loss REAL,
    close_reason TEXT,
    opened_at TEXT NOT NULL,
    closed_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_positions_symbol_status ON positions (symbol, status);
CREATE INDEX IF NOT EXISTS idx_positions_config_closed ON positions (config_id, closed_at);

CREATE TABLE IF NOT EXISTS events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    symbol TEXT NOT NULL,
    action TEXT NOT NULL,
    quantity REAL NOT NULL DEFAULT 0,
    price REAL NOT NULL DEFAULT 0,
    result TEXT,
    message TEXT,
    executed_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS price_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    symbol TEXT NOT NULL,
    price REAL NOT NULL,
    recorded_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_price_history_symbol_time ON price_history (symbol, recorded_at);
"""

_POSITION_COLUMNS = (
    "config_id", "symbol", "side", "quantity", "entry_price", "entry_fee",
    "exit_price", "exit_fee", "trailing_stop_price", "status", "profit_loss",
    "close_reason", "opened_at", "closed_at",
)


def _position_values(position: Position) -> List[Any]:
    return [
        position.config_id,
        position.symbol,
        position.side,
        position.quantity,
        position.entry_price,
        position.entry_fee,
        position.exit_price,
        position.exit_fee,
        position.trailing_stop_price,
        position.status,
        position.profit_loss,
        position.close_reason,
        isoformat(position.opened_at),
        isoformat(position.closed_at) if position.closed_at is not None else None,
    ]


def _row_to_position(row: sqlite3.Row) -> Position:
    return Position(
        id=row["id"],
        config_id=row["config_id"],
        symbol=row["symbol"],
        side=row["side"],
        quantity=row["quantity"],
        entry_price=row["entry_price"],
        entry_fee=row["entry_fee"] or 0.0,
        exit_price=row["exit_price"],
        exit_fee=row["exit_fee"],
        trailing_stop_price=row["trailing_stop_price"],
        status=row["status"],
        profit_loss=row["profit_loss"],
        close_reason=row["close_reason"],
        opened_at=to_utc(row["opened_at"]),
        closed_at=to_utc(row["closed_at"]) if row["closed_at"] else None,
    )


class SQLiteStore(TradingStore):
    """SQLite-backed store used by the scheduled trading agent.

    Timestamps are stored as ISO-8601 UTC strings so that lexical order
    matches chronological order.  One connection is shared across
    threads and every statement runs under an internal lock.
    """

    def __init__(self, db_path: str) -> None:
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self.db_path = db_path
        self._lock = threading.Lock()
        self.db = sqlite3.connect(db_path, check_same_thread=False)
        self.db.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self.db.executescript(_SCHEMA)
            self.db.commit()

    def create_position(self, position: Position) -> Position:
        placeholders = ", ".join("?" for _ in _POSITION_COLUMNS)
        sql = f"INSERT INTO positions ({', '.join(_POSITION_COLUMNS)}) VALUES ({placeholders})"
        with self._lock:
            cur = self.db.execute(sql, _position_values(position))
            self.db.commit()
        position.id = cur.lastrowid
        logger.debug("Stored position %s (%s %s)", position.id, position.side, position.symbol)
        return position

    def update_position(self, position: Position) -> None:
        if position.id is None:
            raise KeyError("Cannot update a position that was never stored")
        assignments = ", ".join(f"{col} = ?" for col in _POSITION_COLUMNS)
        with self._lock:
            cur = self.db.execute(
                f"UPDATE positions SET {assignments} WHERE id = ?",
                _position_values(position) + [position.id],
            )
            self.db.commit()
        if cur.rowcount == 0:
            raise KeyError(f"Unknown position id {position.id}")

    def get_position(self, position_id: int) -> Optional[Position]:
        with self._lock:
            row = self.db.execute(
                "SELECT * FROM positions WHERE id = ?", (position_id,)
            ).fetchone()
        return _row_to_position(row) if row else None

    def find_positions(
        self,
        symbol: Optional[str] = None,
        side: Optional[str] = None,
        status: Optional[str] = None,
        config_ids: Optional[Iterable[int]] = None,
        closed_since: Optional[datetime] = None,
    ) -> List[Position]:
        clauses: List[str] = []
        params: List[Any] = []
        if symbol is not None:
            clauses.append("symbol = ?")
            params.append(symbol)
        if side is not None:
            clauses.append("side = ?")
            params.append(side)
        if status is not None:
            clauses.append("status = ?")
            params.append(status)
        if config_ids is not None:
            ids = list(config_ids)
            if not ids:
                return []
            clauses.append(f"config_id IN ({', '.join('?' for _ in ids)})")
            params.extend(ids)
        if closed_since is not None:
            clauses.append("closed_at IS NOT NULL AND closed_at >= ?")
            params.append(isoformat(closed_since))
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._lock:
            rows = self.db.execute(
                f"SELECT * FROM positions{where} ORDER BY opened_at, id", params
            ).fetchall()
        return [_row_to_position(r) for r in rows]

    def append_event(self, event: EventRecord) -> None:
        result = json.dumps(event.result, default=str) if event.result is not None else None
        with self._lock:
            self.db.execute(
                "INSERT INTO events (symbol, action, quantity, price, result, message, executed_at)"
                " VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    event.symbol,
                    event.action,
                    event.quantity,
                    event.price,
                    result,
                    event.message,
                    isoformat(event.executed_at),
                ),
            )
            self.db.commit()

    def events(self, symbol: Optional[str] = None) -> List[EventRecord]:
        sql = "SELECT * FROM events"
        params: List[Any] = []
        if symbol is not None:
            sql += " WHERE symbol = ?"
            params.append(symbol)
        with self._lock:
            rows = self.db.execute(sql + " ORDER BY id", params).fetchall()
        return [
            EventRecord(
                symbol=r["symbol"],
                action=r["action"],
                quantity=r["quantity"],
                price=r["price"],
                result=json.loads(r["result"]) if r["result"] else None,
                message=r["message"] or "",
                executed_at=to_utc(r["executed_at"]),
            )
            for r in rows
        ]

    def record_price(self, symbol: str, price: float, recorded_at: datetime) -> None:
        with self._lock:
            self.db.execute(
                "INSERT INTO price_history (symbol, price, recorded_at) VALUES (?, ?, ?)",
                (symbol, float(price), isoformat(recorded_at)),
            )
            self.db.commit()

    def load_series(self, symbol: str, limit: Optional[int] = None) -> PriceSeries:
        if limit is None:
            sql = "SELECT price, recorded_at FROM price_history WHERE symbol = ? ORDER BY recorded_at, id"
            params: List[Any] = [symbol]
        else:
            sql = (
                "SELECT price, recorded_at FROM ("
                " SELECT id, price, recorded_at FROM price_history WHERE symbol = ?"
                " ORDER BY recorded_at DESC, id DESC LIMIT ?"
                ") ORDER BY recorded_at, id"
            )
            params = [symbol, int(limit)]
        with self._lock:
            rows = self.db.execute(sql, params).fetchall()
        return PriceSeries(symbol, [r["price"] for r in rows], [r["recorded_at"] for r in rows])

    def close(self) -> None:
        with self._lock:
            self.db.close()
