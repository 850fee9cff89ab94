"""Core trading records: sides, order states, instruments, events, orders, positions and persisted state."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

ZERO = Decimal(0)


class Side(enum.IntEnum):
    """Direction of an order or position."""

    LONG = 1
    SHORT = -1

    def opposite(self) -> Side:
        """Return the other side."""
        return Side.SHORT if self is Side.LONG else Side.LONG

    def __str__(self) -> str:
        return self.name


class OrderStatus(enum.IntEnum):
    """Lifecycle state of an order; every state below FILLED is still pending."""

    PENDING = 0
    SUBMITTED = 1
    PARTIALLY_FILLED = 2
    FILLED = 3
    CANCELLED = 4
    REJECTED = 5

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class InstrumentSpec:
    """Contract specification of a futures instrument."""

    symbol: str
    tick_size: Decimal
    point_value: Decimal

    @property
    def tick_value(self) -> Decimal:
        """Dollar value of one tick move for one contract."""
        return self.tick_size * self.point_value


INSTRUMENT_SPECS: dict[str, InstrumentSpec] = {
    "MES": InstrumentSpec("MES", Decimal("0.25"), Decimal("5")),
    "MGC": InstrumentSpec("MGC", Decimal("0.10"), Decimal("10")),
}


@dataclass
class MarketEvent:
    """One OHLCV bar, optionally enriched with indicator values."""

    symbol: str = ""
    timestamp: datetime | None = None
    open: Decimal = ZERO
    high: Decimal = ZERO
    low: Decimal = ZERO
    close: Decimal = ZERO
    volume: int = 0
    atr: Decimal = ZERO
    std_dev: Decimal = ZERO


@dataclass
class OrderIntent:
    """A sized order ready to be sent for execution."""

    client_order_id: str = ""
    symbol: str = ""
    side: Side = Side.LONG
    contracts: int = 0
    entry_price: Decimal = ZERO
    stop_loss: Decimal = ZERO
    take_profit: Decimal = ZERO
    signal_id: str = ""
    strategy_name: str = ""


@dataclass
class OrderResult:
    """Outcome of an order submission."""

    order_id: str = ""
    client_order_id: str = ""
    status: OrderStatus = OrderStatus.PENDING
    filled_qty: int = 0
    avg_fill_price: Decimal = ZERO
    commission: Decimal = ZERO
    slippage: Decimal = ZERO
    filled_at: datetime | None = None


@dataclass
class Position:
    """An open position in one instrument."""

    id: str = ""
    symbol: str = ""
    side: Side = Side.LONG
    contracts: int = 0
    entry_price: Decimal = ZERO
    entry_time: datetime | None = None
    stop_loss: Decimal = ZERO
    take_profit: Decimal = ZERO
    unrealized_pl: Decimal = ZERO
    realized_pl: Decimal = ZERO


@dataclass
class Trade:
    """A completed round trip."""

    id: str = ""
    symbol: str = ""
    side: Side = Side.LONG
    contracts: int = 0
    entry_price: Decimal = ZERO
    exit_price: Decimal = ZERO
    entry_time: datetime | None = None
    exit_time: datetime | None = None
    gross_pl: Decimal = ZERO
    commission: Decimal = ZERO
    net_pl: Decimal = ZERO
    r_multiple: Decimal = ZERO
    signal_id: str = ""
    strategy_name: str = ""


@dataclass
class EquitySnapshot:
    """Persisted equity state at one moment."""

    timestamp: datetime | None = None
    equity: Decimal = ZERO
    high_water_mark: Decimal = ZERO
    drawdown: Decimal = ZERO
    open_positions: int = 0
    daily_pl: Decimal = ZERO
    id: int = 0


@dataclass
class OrderRecord:
    """Persisted order."""

    client_order_id: str = ""
    symbol: str = ""
    side: Side = Side.LONG
    contracts: int = 0
    entry_price: Decimal = ZERO
    stop_loss: Decimal = ZERO
    take_profit: Decimal = ZERO
    status: OrderStatus = OrderStatus.PENDING
    filled_price: Decimal = ZERO
    filled_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    signal_id: str = ""
    strategy_name: str = ""
    id: int = 0


@dataclass
class BotState:
    """Overall bot state kept for recovery after a restart."""

    last_updated: datetime | None = None
    equity: Decimal = ZERO
    high_water_mark: Decimal = ZERO
    kill_switch_active: bool = False
    safe_mode_active: bool = False
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    total_pl: Decimal = ZERO
    id: int = 0