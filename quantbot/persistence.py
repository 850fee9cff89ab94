"""Persistence of equity, positions, trades, orders and bot state, with a SQLite backend."""

from __future__ import annotations

import abc
import sqlite3
import threading
from collections.abc import Iterable
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from os import PathLike

from quantbot.models import (
    ZERO,
    BotState,
    EquitySnapshot,
    OrderRecord,
    OrderStatus,
    Position,
    Side,
    Trade,
)

__all__ = ["Repository", "SQLiteRepository"]

_ZERO_TIME = "0001-01-01 00:00:00.000000"


class Repository(abc.ABC):
    """Storage of trading state that survives a restart."""

    @abc.abstractmethod
    def save_equity_snapshot(self, snapshot: EquitySnapshot) -> None:
        """Store an equity snapshot."""

    @abc.abstractmethod
    def latest_equity_snapshot(self) -> EquitySnapshot | None:
        """The most recent equity snapshot, or None."""

    @abc.abstractmethod
    def equity_history(self, start: datetime, end: datetime) -> list[EquitySnapshot]:
        """Snapshots with a timestamp in [start, end], oldest first."""

    @abc.abstractmethod
    def save_position(self, position: Position) -> None:
        """Insert or replace an open position."""

    @abc.abstractmethod
    def open_positions(self) -> list[Position]:
        """All positions still open."""

    @abc.abstractmethod
    def close_position(self, position_id: str, exit_price: Decimal, exit_time: datetime) -> None:
        """Mark a position as closed."""

    @abc.abstractmethod
    def save_trade(self, trade: Trade) -> None:
        """Store a completed trade."""

    @abc.abstractmethod
    def trades_between(self, start: datetime, end: datetime) -> list[Trade]:
        """Trades exiting in [start, end], newest first."""

    @abc.abstractmethod
    def trades_by_symbol(self, symbol: str, limit: int) -> list[Trade]:
        """The newest trades of a symbol, at most limit of them."""

    @abc.abstractmethod
    def save_order(self, order: OrderRecord) -> None:
        """Store a new order."""

    @abc.abstractmethod
    def pending_orders(self) -> list[OrderRecord]:
        """Orders whose status is not yet final."""

    @abc.abstractmethod
    def update_order_status(
        self, client_order_id: str, status: OrderStatus, fill_price: Decimal
    ) -> None:
        """Change an order's status, recording the fill when it is filled."""

    @abc.abstractmethod
    def save_state(self, state: BotState) -> None:
        """Insert or replace the single bot state row."""

    @abc.abstractmethod
    def state(self) -> BotState | None:
        """The saved bot state, or None."""

    @abc.abstractmethod
    def close(self) -> None:
        """Release the storage."""

    @abc.abstractmethod
    def migrate(self) -> None:
        """Create or update the schema."""


_MIGRATIONS = (
    """CREATE TABLE IF NOT EXISTS equity_snapshots (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        timestamp DATETIME NOT NULL,
        equity TEXT NOT NULL,
        high_water_mark TEXT NOT NULL,
        drawdown TEXT NOT NULL,
        open_positions INTEGER NOT NULL DEFAULT 0,
        daily_pl TEXT NOT NULL DEFAULT '0',
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )""",
    "CREATE INDEX IF NOT EXISTS idx_equity_timestamp ON equity_snapshots(timestamp)",
    """CREATE TABLE IF NOT EXISTS positions (
        id TEXT PRIMARY KEY,
        symbol TEXT NOT NULL,
        side INTEGER NOT NULL,
        contracts INTEGER NOT NULL,
        entry_price TEXT NOT NULL,
        entry_time DATETIME NOT NULL,
        stop_loss TEXT,
        take_profit TEXT,
        exit_price TEXT,
        exit_time DATETIME,
        unrealized_pl TEXT NOT NULL DEFAULT '0',
        realized_pl TEXT NOT NULL DEFAULT '0',
        is_open INTEGER NOT NULL DEFAULT 1,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )""",
    "CREATE INDEX IF NOT EXISTS idx_positions_symbol ON positions(symbol)",
    "CREATE INDEX IF NOT EXISTS idx_positions_is_open ON positions(is_open)",
    """CREATE TABLE IF NOT EXISTS trades (
        id TEXT PRIMARY KEY,
        symbol TEXT NOT NULL,
        side INTEGER NOT NULL,
        contracts INTEGER NOT NULL,
        entry_price TEXT NOT NULL,
        exit_price TEXT NOT NULL,
        entry_time DATETIME NOT NULL,
        exit_time DATETIME NOT NULL,
        gross_pl TEXT NOT NULL,
        commission TEXT NOT NULL,
        net_pl TEXT NOT NULL,
        r_multiple TEXT,
        signal_id TEXT,
        strategy_name TEXT,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )""",
    "CREATE INDEX IF NOT EXISTS idx_trades_symbol ON trades(symbol)",
    "CREATE INDEX IF NOT EXISTS idx_trades_exit_time ON trades(exit_time)",
    """CREATE TABLE IF NOT EXISTS orders (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        client_order_id TEXT UNIQUE NOT NULL,
        symbol TEXT NOT NULL,
        side INTEGER NOT NULL,
        contracts INTEGER NOT NULL,
        entry_price TEXT NOT NULL,
        stop_loss TEXT,
        take_profit TEXT,
        status INTEGER NOT NULL,
        filled_price TEXT,
        filled_at DATETIME,
        signal_id TEXT,
        strategy_name TEXT,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )""",
    "CREATE INDEX IF NOT EXISTS idx_orders_client_order_id ON orders(client_order_id)",
    "CREATE INDEX IF NOT EXISTS idx_orders_status ON orders(status)",
    """CREATE TABLE IF NOT EXISTS bot_state (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        last_updated DATETIME NOT NULL,
        equity TEXT NOT NULL,
        high_water_mark TEXT NOT NULL,
        kill_switch_active INTEGER NOT NULL DEFAULT 0,
        safe_mode_active INTEGER NOT NULL DEFAULT 0,
        total_trades INTEGER NOT NULL DEFAULT 0,
        winning_trades INTEGER NOT NULL DEFAULT 0,
        losing_trades INTEGER NOT NULL DEFAULT 0,
        total_pl TEXT NOT NULL DEFAULT '0'
    )""",
)

_TRADE_COLUMNS = (
    "id, symbol, side, contracts, entry_price, exit_price, entry_time, exit_time, "
    "gross_pl, commission, net_pl, r_multiple, signal_id, strategy_name"
)
_SNAPSHOT_COLUMNS = "id, timestamp, equity, high_water_mark, drawdown, open_positions, daily_pl"


def _to_db_time(value: datetime | None) -> str:
    """Fixed-width UTC text, so that text order is time order; naive times are local."""
    if value is None:
        return _ZERO_TIME
    utc = value.astimezone(timezone.utc).replace(tzinfo=None)
    return utc.isoformat(sep=" ", timespec="microseconds")


def _from_db_time(text: str | None) -> datetime | None:
    if text is None or text == _ZERO_TIME:
        return None
    return datetime.fromisoformat(text).replace(tzinfo=timezone.utc)


def _to_decimal(text: str | None) -> Decimal:
    if not text:
        return ZERO
    try:
        return Decimal(text)
    except InvalidOperation:
        return ZERO


class SQLiteRepository(Repository):
    """Repository kept in a SQLite database file."""

    def __init__(self, path: str | PathLike[str]) -> None:
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._lock = threading.RLock()
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA busy_timeout=5000")
        self.migrate()

    def __enter__(self) -> SQLiteRepository:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _execute(self, query: str, params: Iterable[object] = ()) -> None:
        with self._lock, self._conn:
            self._conn.execute(query, tuple(params))

    def _query(self, query: str, params: Iterable[object] = ()) -> list[tuple]:
        with self._lock:
            return self._conn.execute(query, tuple(params)).fetchall()

    def migrate(self) -> None:
        with self._lock, self._conn:
            for statement in _MIGRATIONS:
                self._conn.execute(statement)

    # Equity

    def save_equity_snapshot(self, snapshot: EquitySnapshot) -> None:
        self._execute(
            "INSERT INTO equity_snapshots "
            "(timestamp, equity, high_water_mark, drawdown, open_positions, daily_pl) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (
                _to_db_time(snapshot.timestamp),
                str(snapshot.equity),
                str(snapshot.high_water_mark),
                str(snapshot.drawdown),
                snapshot.open_positions,
                str(snapshot.daily_pl),
            ),
        )

    @staticmethod
    def _snapshot(row: tuple) -> EquitySnapshot:
        ident, ts, equity, hwm, drawdown, open_positions, daily_pl = row
        return EquitySnapshot(
            id=ident,
            timestamp=_from_db_time(ts),
            equity=_to_decimal(equity),
            high_water_mark=_to_decimal(hwm),
            drawdown=_to_decimal(drawdown),
            open_positions=open_positions,
            daily_pl=_to_decimal(daily_pl),
        )

    def latest_equity_snapshot(self) -> EquitySnapshot | None:
        rows = self._query(
            f"SELECT {_SNAPSHOT_COLUMNS} FROM equity_snapshots "
            "ORDER BY timestamp DESC, id DESC LIMIT 1"
        )
        return self._snapshot(rows[0]) if rows else None

    def equity_history(self, start: datetime, end: datetime) -> list[EquitySnapshot]:
        rows = self._query(
            f"SELECT {_SNAPSHOT_COLUMNS} FROM equity_snapshots "
            "WHERE timestamp BETWEEN ? AND ? ORDER BY timestamp",
            (_to_db_time(start), _to_db_time(end)),
        )
        return [self._snapshot(row) for row in rows]

    # Positions

    def save_position(self, position: Position) -> None:
        self._execute(
            "INSERT OR REPLACE INTO positions "
            "(id, symbol, side, contracts, entry_price, entry_time, stop_loss, take_profit, "
            "unrealized_pl, realized_pl, is_open, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 1, CURRENT_TIMESTAMP)",
            (
                position.id,
                position.symbol,
                int(position.side),
                position.contracts,
                str(position.entry_price),
                _to_db_time(position.entry_time),
                str(position.stop_loss),
                str(position.take_profit),
                str(position.unrealized_pl),
                str(position.realized_pl),
            ),
        )

    def open_positions(self) -> list[Position]:
        rows = self._query(
            "SELECT id, symbol, side, contracts, entry_price, entry_time, stop_loss, "
            "take_profit, unrealized_pl, realized_pl FROM positions WHERE is_open = 1"
        )
        return [
            Position(
                id=ident,
                symbol=symbol,
                side=Side(side),
                contracts=contracts,
                entry_price=_to_decimal(entry_price),
                entry_time=_from_db_time(entry_time),
                stop_loss=_to_decimal(stop_loss),
                take_profit=_to_decimal(take_profit),
                unrealized_pl=_to_decimal(unrealized),
                realized_pl=_to_decimal(realized),
            )
            for (
                ident,
                symbol,
                side,
                contracts,
                entry_price,
                entry_time,
                stop_loss,
                take_profit,
                unrealized,
                realized,
            ) in rows
        ]

    def close_position(self, position_id: str, exit_price: Decimal, exit_time: datetime) -> None:
        self._execute(
            "UPDATE positions SET is_open = 0, exit_price = ?, exit_time = ?, "
            "updated_at = CURRENT_TIMESTAMP WHERE id = ?",
            (str(exit_price), _to_db_time(exit_time), position_id),
        )

    # Trades

    def save_trade(self, trade: Trade) -> None:
        self._execute(
            f"INSERT INTO trades ({_TRADE_COLUMNS}) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                trade.id,
                trade.symbol,
                int(trade.side),
                trade.contracts,
                str(trade.entry_price),
                str(trade.exit_price),
                _to_db_time(trade.entry_time),
                _to_db_time(trade.exit_time),
                str(trade.gross_pl),
                str(trade.commission),
                str(trade.net_pl),
                str(trade.r_multiple),
                trade.signal_id,
                trade.strategy_name,
            ),
        )

    @staticmethod
    def _trade(row: tuple) -> Trade:
        (
            ident,
            symbol,
            side,
            contracts,
            entry_price,
            exit_price,
            entry_time,
            exit_time,
            gross,
            commission,
            net,
            r_multiple,
            signal_id,
            strategy_name,
        ) = row
        return Trade(
            id=ident,
            symbol=symbol,
            side=Side(side),
            contracts=contracts,
            entry_price=_to_decimal(entry_price),
            exit_price=_to_decimal(exit_price),
            entry_time=_from_db_time(entry_time),
            exit_time=_from_db_time(exit_time),
            gross_pl=_to_decimal(gross),
            commission=_to_decimal(commission),
            net_pl=_to_decimal(net),
            r_multiple=_to_decimal(r_multiple),
            signal_id=signal_id or "",
            strategy_name=strategy_name or "",
        )

    def trades_between(self, start: datetime, end: datetime) -> list[Trade]:
        rows = self._query(
            f"SELECT {_TRADE_COLUMNS} FROM trades "
            "WHERE exit_time BETWEEN ? AND ? ORDER BY exit_time DESC",
            (_to_db_time(start), _to_db_time(end)),
        )
        return [self._trade(row) for row in rows]

    def trades_by_symbol(self, symbol: str, limit: int) -> list[Trade]:
        rows = self._query(
            f"SELECT {_TRADE_COLUMNS} FROM trades "
            "WHERE symbol = ? ORDER BY exit_time DESC LIMIT ?",
            (symbol, limit),
        )
        return [self._trade(row) for row in rows]

    # Orders

    def save_order(self, order: OrderRecord) -> None:
        self._execute(
            "INSERT INTO orders "
            "(client_order_id, symbol, side, contracts, entry_price, stop_loss, take_profit, "
            "status, signal_id, strategy_name) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                order.client_order_id,
                order.symbol,
                int(order.side),
                order.contracts,
                str(order.entry_price),
                str(order.stop_loss),
                str(order.take_profit),
                int(order.status),
                order.signal_id,
                order.strategy_name,
            ),
        )

    def pending_orders(self) -> list[OrderRecord]:
        rows = self._query(
            "SELECT id, client_order_id, symbol, side, contracts, entry_price, stop_loss, "
            "take_profit, status, filled_price, filled_at, signal_id, strategy_name, "
            "created_at, updated_at FROM orders WHERE status < ?",
            (int(OrderStatus.FILLED),),
        )
        return [
            OrderRecord(
                id=ident,
                client_order_id=client_order_id,
                symbol=symbol,
                side=Side(side),
                contracts=contracts,
                entry_price=_to_decimal(entry_price),
                stop_loss=_to_decimal(stop_loss),
                take_profit=_to_decimal(take_profit),
                status=OrderStatus(status),
                filled_price=_to_decimal(filled_price),
                filled_at=_from_db_time(filled_at),
                signal_id=signal_id or "",
                strategy_name=strategy_name or "",
                created_at=_from_db_time(created_at),
                updated_at=_from_db_time(updated_at),
            )
            for (
                ident,
                client_order_id,
                symbol,
                side,
                contracts,
                entry_price,
                stop_loss,
                take_profit,
                status,
                filled_price,
                filled_at,
                signal_id,
                strategy_name,
                created_at,
                updated_at,
            ) in rows
        ]

    def update_order_status(
        self, client_order_id: str, status: OrderStatus, fill_price: Decimal
    ) -> None:
        if status == OrderStatus.FILLED:
            self._execute(
                "UPDATE orders SET status = ?, filled_price = ?, filled_at = CURRENT_TIMESTAMP, "
                "updated_at = CURRENT_TIMESTAMP WHERE client_order_id = ?",
                (int(status), str(fill_price), client_order_id),
            )
        else:
            self._execute(
                "UPDATE orders SET status = ?, updated_at = CURRENT_TIMESTAMP "
                "WHERE client_order_id = ?",
                (int(status), client_order_id),
            )

    # Bot state

    def save_state(self, state: BotState) -> None:
        self._execute(
            "INSERT OR REPLACE INTO bot_state "
            "(id, last_updated, equity, high_water_mark, kill_switch_active, safe_mode_active, "
            "total_trades, winning_trades, losing_trades, total_pl) "
            "VALUES (1, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                _to_db_time(state.last_updated),
                str(state.equity),
                str(state.high_water_mark),
                int(state.kill_switch_active),
                int(state.safe_mode_active),
                state.total_trades,
                state.winning_trades,
                state.losing_trades,
                str(state.total_pl),
            ),
        )

    def state(self) -> BotState | None:
        rows = self._query(
            "SELECT id, last_updated, equity, high_water_mark, kill_switch_active, "
            "safe_mode_active, total_trades, winning_trades, losing_trades, total_pl "
            "FROM bot_state WHERE id = 1"
        )
        if not rows:
            return None
        (
            ident,
            last_updated,
            equity,
            hwm,
            kill_switch,
            safe_mode,
            total_trades,
            winning,
            losing,
            total_pl,
        ) = rows[0]
        return BotState(
            id=ident,
            last_updated=_from_db_time(last_updated),
            equity=_to_decimal(equity),
            high_water_mark=_to_decimal(hwm),
            kill_switch_active=kill_switch == 1,
            safe_mode_active=safe_mode == 1,
            total_trades=total_trades,
            winning_trades=winning,
            losing_trades=losing,
            total_pl=_to_decimal(total_pl),
        )

    def close(self) -> None:
        with self._lock:
            self._conn.close()