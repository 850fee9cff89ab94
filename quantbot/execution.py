"""Order execution interface and a simulated executor for backtesting."""

from __future__ import annotations

import abc
import dataclasses
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from quantbot.models import (
    INSTRUMENT_SPECS,
    ZERO,
    InstrumentSpec,
    MarketEvent,
    OrderIntent,
    OrderResult,
    OrderStatus,
    Position,
    Side,
    Trade,
)

__all__ = [
    "DuplicateOrderError",
    "Executor",
    "FillHandler",
    "SimulatedConfig",
    "SimulatedExecutor",
]

FillHandler = Callable[[OrderResult], None]


class DuplicateOrderError(Exception):
    """An order with the same client order id was already submitted."""

    def __init__(self, client_order_id: str = "") -> None:
        super().__init__(f"duplicate order: {client_order_id}")
        self.client_order_id = client_order_id


class Executor(abc.ABC):
    """Something that executes orders."""

    @abc.abstractmethod
    def place_order(self, order: OrderIntent) -> OrderResult:
        """Submit an order for execution."""

    @abc.abstractmethod
    def cancel_order(self, client_order_id: str) -> None:
        """Cancel a pending order."""

    @abc.abstractmethod
    def position(self, symbol: str) -> Position | None:
        """Current position for a symbol, or None when flat."""

    @abc.abstractmethod
    def open_orders(self) -> list[OrderIntent]:
        """All open orders."""

    @abc.abstractmethod
    def shutdown(self) -> None:
        """Shut the executor down gracefully."""


@dataclass
class SimulatedConfig:
    """Settings of the simulated executor."""

    slippage_ticks: int = 1
    commission_per_side: Decimal = field(default_factory=lambda: Decimal("0.62"))
    fill_delay_ms: int = 0


def _new_id() -> str:
    return str(uuid.uuid4())


def _pnl(side: Side, entry: Decimal, exit_: Decimal, spec: InstrumentSpec, contracts: int) -> Decimal:
    move = exit_ - entry if side is Side.LONG else entry - exit_
    return move * spec.point_value * contracts


class SimulatedExecutor(Executor):
    """Fills orders immediately at the last close, with fixed slippage and commission."""

    def __init__(self, config: SimulatedConfig | None = None) -> None:
        self.config = config if config is not None else SimulatedConfig()
        self._lock = threading.RLock()
        self._fill_handler: FillHandler | None = None
        self._current_time: datetime | None = None
        self._clear()

    def _clear(self) -> None:
        self._positions: dict[str, Position] = {}
        self._open_orders: dict[str, OrderIntent] = {}
        self._used_order_ids: set[str] = set()
        self._order_history: list[OrderResult] = []
        self._trades: list[Trade] = []
        self._current_price: dict[str, Decimal] = {}

    def set_fill_handler(self, handler: FillHandler | None) -> None:
        """Set the callback invoked with every fill."""
        with self._lock:
            self._fill_handler = handler

    def _notify(self, results: list[OrderResult]) -> None:
        handler = self._fill_handler
        if handler is None:
            return
        for result in results:
            handler(result)

    def _slippage(self, spec: InstrumentSpec) -> Decimal:
        return spec.tick_size * self.config.slippage_ticks

    def update_market(self, event: MarketEvent) -> list[OrderResult]:
        """Record the latest price and time, and fill any stop loss or take profit hit."""
        with self._lock:
            self._current_time = event.timestamp
            self._current_price[event.symbol] = event.close
            fills: list[OrderResult] = []
            pos = self._positions.get(event.symbol)
            if pos is not None and pos.contracts > 0:
                fills.extend(self._check_exits(event, pos))
        self._notify(fills)
        return fills

    def _check_exits(self, event: MarketEvent, pos: Position) -> list[OrderResult]:
        stop, target = pos.stop_loss, pos.take_profit
        if pos.side is Side.LONG:
            if stop != ZERO and event.low <= stop:
                return [self._close_position(pos, stop, "stop_loss")]
            if target != ZERO and event.high >= target:
                return [self._close_position(pos, target, "take_profit")]
        else:
            if stop != ZERO and event.high >= stop:
                return [self._close_position(pos, stop, "stop_loss")]
            if target != ZERO and event.low <= target:
                return [self._close_position(pos, target, "take_profit")]
        return []

    def _close_position(self, pos: Position, exit_price: Decimal, reason: str) -> OrderResult:
        spec = INSTRUMENT_SPECS[pos.symbol]
        slippage = self._slippage(spec)
        if pos.side is Side.LONG:
            exit_price = exit_price - slippage
        else:
            exit_price = exit_price + slippage

        gross = _pnl(pos.side, pos.entry_price, exit_price, spec, pos.contracts)
        commission = self.config.commission_per_side * pos.contracts
        self._trades.append(
            Trade(
                id=_new_id(),
                symbol=pos.symbol,
                side=pos.side,
                contracts=pos.contracts,
                entry_price=pos.entry_price,
                exit_price=exit_price,
                entry_time=pos.entry_time,
                exit_time=self._current_time,
                gross_pl=gross,
                commission=commission,
                net_pl=gross - commission,
            )
        )
        del self._positions[pos.symbol]

        result = OrderResult(
            order_id=_new_id(),
            client_order_id=f"{reason}-{pos.id}",
            status=OrderStatus.FILLED,
            filled_qty=pos.contracts,
            avg_fill_price=exit_price,
            commission=commission,
            slippage=slippage,
            filled_at=self._current_time,
        )
        self._order_history.append(result)
        return result

    def place_order(self, order: OrderIntent) -> OrderResult:
        """Fill an order at the current price; an opposite order closes the open position.

        Raises DuplicateOrderError for a reused client order id and ValueError for
        an unknown symbol or a symbol without market data.
        """
        with self._lock:
            if order.client_order_id in self._used_order_ids:
                raise DuplicateOrderError(order.client_order_id)
            self._used_order_ids.add(order.client_order_id)

            spec = INSTRUMENT_SPECS.get(order.symbol)
            if spec is None:
                raise ValueError(f"unknown symbol: {order.symbol}")
            price = self._current_price.get(order.symbol)
            if price is None:
                raise ValueError(f"no market data for symbol: {order.symbol}")

            slippage = self._slippage(spec)
            fill_price = price + slippage if order.side is Side.LONG else price - slippage
            commission = self.config.commission_per_side * order.contracts

            existing = self._positions.get(order.symbol)
            if existing is not None and existing.side is order.side.opposite():
                result = self._close_with_order(order, existing, spec, fill_price, commission, slippage)
            else:
                result = self._open_with_order(order, fill_price, commission, slippage)
        self._notify([result])
        return result

    def _open_with_order(
        self, order: OrderIntent, fill_price: Decimal, commission: Decimal, slippage: Decimal
    ) -> OrderResult:
        self._positions[order.symbol] = Position(
            id=_new_id(),
            symbol=order.symbol,
            side=order.side,
            contracts=order.contracts,
            entry_price=fill_price,
            entry_time=self._current_time,
            stop_loss=order.stop_loss,
            take_profit=order.take_profit,
        )
        return self._record_fill(order, fill_price, commission, slippage)

    def _close_with_order(
        self,
        order: OrderIntent,
        pos: Position,
        spec: InstrumentSpec,
        fill_price: Decimal,
        commission: Decimal,
        slippage: Decimal,
    ) -> OrderResult:
        gross = _pnl(pos.side, pos.entry_price, fill_price, spec, pos.contracts)
        self._trades.append(
            Trade(
                id=_new_id(),
                symbol=pos.symbol,
                side=pos.side,
                contracts=pos.contracts,
                entry_price=pos.entry_price,
                exit_price=fill_price,
                entry_time=pos.entry_time,
                exit_time=self._current_time,
                gross_pl=gross,
                commission=commission,
                net_pl=gross - commission,
                signal_id=order.signal_id,
            )
        )
        del self._positions[order.symbol]
        return self._record_fill(order, fill_price, commission, slippage)

    def _record_fill(
        self, order: OrderIntent, fill_price: Decimal, commission: Decimal, slippage: Decimal
    ) -> OrderResult:
        result = OrderResult(
            order_id=_new_id(),
            client_order_id=order.client_order_id,
            status=OrderStatus.FILLED,
            filled_qty=order.contracts,
            avg_fill_price=fill_price,
            commission=commission,
            slippage=slippage,
            filled_at=self._current_time,
        )
        self._order_history.append(result)
        return dataclasses.replace(result)

    def cancel_order(self, client_order_id: str) -> None:
        """Cancel an open order; KeyError if there is none with that id."""
        with self._lock:
            if client_order_id not in self._open_orders:
                raise KeyError(f"order not found: {client_order_id}")
            del self._open_orders[client_order_id]

    def position(self, symbol: str) -> Position | None:
        """A copy of the position in a symbol with its unrealized P&L, or None."""
        with self._lock:
            pos = self._positions.get(symbol)
            if pos is None:
                return None
            copy = dataclasses.replace(pos)
            price = self._current_price.get(symbol)
            if price is not None:
                spec = INSTRUMENT_SPECS[symbol]
                copy.unrealized_pl = _pnl(pos.side, pos.entry_price, price, spec, pos.contracts)
            return copy

    def open_orders(self) -> list[OrderIntent]:
        """Copies of all open orders."""
        with self._lock:
            return [dataclasses.replace(o) for o in self._open_orders.values()]

    def shutdown(self) -> None:
        """Nothing to release."""

    def trades(self) -> list[Trade]:
        """All completed trades, oldest first."""
        with self._lock:
            return list(self._trades)

    def positions(self) -> dict[str, Position]:
        """Copies of all open positions by symbol."""
        with self._lock:
            return {k: dataclasses.replace(v) for k, v in self._positions.items()}

    def reset(self) -> None:
        """Clear positions, orders, trades and prices."""
        with self._lock:
            self._clear()