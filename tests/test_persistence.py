import sqlite3
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from quantbot.models import (
    BotState,
    EquitySnapshot,
    OrderRecord,
    OrderStatus,
    Position,
    Side,
    Trade,
)
from quantbot.persistence import SQLiteRepository


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "test.db"


@pytest.fixture
def repo(db_path):
    repository = SQLiteRepository(db_path)
    yield repository
    repository.close()


def test_equity_snapshot(repo):
    snapshot = EquitySnapshot(
        timestamp=_now(),
        equity=Decimal(10000),
        high_water_mark=Decimal(10000),
        drawdown=Decimal(0),
        open_positions=1,
        daily_pl=Decimal(100),
    )
    repo.save_equity_snapshot(snapshot)
    latest = repo.latest_equity_snapshot()
    assert latest is not None
    assert latest.equity == Decimal(10000)
    assert latest.open_positions == 1
    assert latest.daily_pl == Decimal(100)
    assert latest.timestamp == snapshot.timestamp


def test_equity_history(repo):
    now = _now()
    for i in range(5):
        repo.save_equity_snapshot(
            EquitySnapshot(
                timestamp=now + timedelta(hours=i),
                equity=Decimal(10000 + i * 100),
                high_water_mark=Decimal(10000),
            )
        )
    history = repo.equity_history(now - timedelta(hours=1), now + timedelta(hours=10))
    assert len(history) == 5
    assert [s.equity for s in history] == [Decimal(10000 + i * 100) for i in range(5)]


def test_equity_history_excludes_outside_range(repo):
    now = _now()
    repo.save_equity_snapshot(EquitySnapshot(timestamp=now, equity=Decimal(1)))
    repo.save_equity_snapshot(EquitySnapshot(timestamp=now + timedelta(days=2), equity=Decimal(2)))
    history = repo.equity_history(now - timedelta(minutes=1), now + timedelta(days=1))
    assert [s.equity for s in history] == [Decimal(1)]


def test_position_save_and_close(repo):
    position = Position(
        id="pos-123",
        symbol="MES",
        side=Side.LONG,
        contracts=2,
        entry_price=Decimal(5000),
        entry_time=_now(),
        stop_loss=Decimal(4990),
        take_profit=Decimal(5020),
    )
    repo.save_position(position)
    positions = repo.open_positions()
    assert len(positions) == 1
    assert positions[0].id == "pos-123"
    assert positions[0].entry_price == Decimal(5000)
    assert positions[0].side is Side.LONG
    assert positions[0].stop_loss == Decimal(4990)

    repo.close_position("pos-123", Decimal(5010), _now())
    assert repo.open_positions() == []


def test_trade(repo):
    now = _now()
    trade = Trade(
        id="trade-123",
        symbol="MES",
        side=Side.LONG,
        contracts=1,
        entry_price=Decimal(5000),
        exit_price=Decimal(5010),
        entry_time=now - timedelta(hours=1),
        exit_time=now,
        gross_pl=Decimal(50),
        commission=Decimal("1.24"),
        net_pl=Decimal("48.76"),
        strategy_name="breakout",
    )
    repo.save_trade(trade)

    trades = repo.trades_between(now - timedelta(hours=2), now + timedelta(hours=1))
    assert len(trades) == 1
    assert trades[0].id == "trade-123"
    assert trades[0].net_pl == Decimal("48.76")
    assert trades[0].strategy_name == "breakout"

    by_symbol = repo.trades_by_symbol("MES", 10)
    assert len(by_symbol) == 1
    assert repo.trades_by_symbol("MGC", 10) == []


def test_trades_by_symbol_newest_first_with_limit(repo):
    now = _now()
    for i in range(3):
        repo.save_trade(
            Trade(
                id=f"t{i}",
                symbol="MES",
                side=Side.SHORT,
                contracts=1,
                entry_time=now,
                exit_time=now + timedelta(minutes=i),
            )
        )
    trades = repo.trades_by_symbol("MES", 2)
    assert [t.id for t in trades] == ["t2", "t1"]
    assert trades[0].side is Side.SHORT


def test_order_pending_then_filled(repo):
    order = OrderRecord(
        client_order_id="order-123",
        symbol="MES",
        side=Side.LONG,
        contracts=1,
        entry_price=Decimal(5000),
        stop_loss=Decimal(4990),
        take_profit=Decimal(5020),
        status=OrderStatus.PENDING,
    )
    repo.save_order(order)
    orders = repo.pending_orders()
    assert len(orders) == 1
    assert orders[0].client_order_id == "order-123"
    assert orders[0].status == OrderStatus.PENDING
    assert orders[0].filled_at is None

    repo.update_order_status("order-123", OrderStatus.FILLED, Decimal(5001))
    assert repo.pending_orders() == []


def test_order_status_update_not_filled_stays_pending(repo):
    repo.save_order(OrderRecord(client_order_id="o1", symbol="MES", status=OrderStatus.PENDING))
    repo.update_order_status("o1", OrderStatus.SUBMITTED, Decimal(0))
    orders = repo.pending_orders()
    assert [o.status for o in orders] == [OrderStatus.SUBMITTED]


def test_duplicate_client_order_id_rejected(repo):
    repo.save_order(OrderRecord(client_order_id="dup", symbol="MES"))
    with pytest.raises(sqlite3.IntegrityError):
        repo.save_order(OrderRecord(client_order_id="dup", symbol="MES"))


def test_bot_state_upsert(repo):
    assert repo.state() is None
    new_state = BotState(
        last_updated=_now(),
        equity=Decimal(10500),
        high_water_mark=Decimal(11000),
        total_trades=10,
        winning_trades=6,
        losing_trades=4,
        total_pl=Decimal(500),
    )
    repo.save_state(new_state)
    state = repo.state()
    assert state is not None
    assert state.equity == Decimal(10500)
    assert state.total_trades == 10
    assert state.kill_switch_active is False

    new_state.equity = Decimal(11000)
    new_state.kill_switch_active = True
    repo.save_state(new_state)
    state = repo.state()
    assert state.equity == Decimal(11000)
    assert state.kill_switch_active is True
    assert state.id == 1


def test_no_data(repo):
    assert repo.latest_equity_snapshot() is None
    assert repo.open_positions() == []
    now = _now()
    assert repo.trades_between(now - timedelta(hours=1), now) == []
    assert repo.pending_orders() == []


def test_recovery_state_restored(db_path):
    original = BotState(
        last_updated=_now(),
        equity=Decimal(12500),
        high_water_mark=Decimal(15000),
        total_trades=42,
        winning_trades=25,
        losing_trades=17,
        total_pl=Decimal(2500),
    )
    with SQLiteRepository(db_path) as first:
        first.migrate()
        first.save_state(original)
    with SQLiteRepository(db_path) as second:
        restored = second.state()
    assert restored.equity == Decimal(12500)
    assert restored.high_water_mark == Decimal(15000)
    assert restored.total_trades == 42


def test_recovery_kill_switch_preserved(db_path):
    with SQLiteRepository(db_path) as first:
        first.save_state(
            BotState(
                last_updated=_now(),
                equity=Decimal(7500),
                high_water_mark=Decimal(10000),
                kill_switch_active=True,
                safe_mode_active=True,
                total_pl=Decimal(-2500),
            )
        )
    with SQLiteRepository(db_path) as second:
        restored = second.state()
    assert restored.kill_switch_active is True
    assert restored.safe_mode_active is True
    assert restored.total_pl == Decimal(-2500)


def test_recovery_open_positions_restored(db_path):
    now = _now()
    with SQLiteRepository(db_path) as first:
        first.save_position(
            Position(
                id="pos-1",
                symbol="MES",
                side=Side.LONG,
                contracts=2,
                entry_price=Decimal(5000),
                entry_time=now - timedelta(hours=1),
            )
        )
        first.save_position(
            Position(
                id="pos-2",
                symbol="MGC",
                side=Side.SHORT,
                contracts=1,
                entry_price=Decimal(2000),
                entry_time=now - timedelta(minutes=30),
            )
        )
    with SQLiteRepository(db_path) as second:
        restored = second.open_positions()
    assert len(restored) == 2
    by_symbol = {p.symbol: p for p in restored}
    assert by_symbol["MES"].contracts == 2
    assert by_symbol["MGC"].side is Side.SHORT


def test_recovery_pending_orders_restored(db_path):
    with SQLiteRepository(db_path) as first:
        first.save_order(
            OrderRecord(
                client_order_id="order-1",
                symbol="MES",
                side=Side.LONG,
                contracts=2,
                entry_price=Decimal(5000),
                stop_loss=Decimal(4990),
                take_profit=Decimal(5015),
                status=OrderStatus.PENDING,
            )
        )
        first.save_order(
            OrderRecord(
                client_order_id="order-2",
                symbol="MES",
                side=Side.SHORT,
                contracts=1,
                entry_price=Decimal(5010),
                stop_loss=Decimal(5020),
                take_profit=Decimal(4995),
                status=OrderStatus.PENDING,
            )
        )
    with SQLiteRepository(db_path) as second:
        restored = second.pending_orders()
    assert len(restored) == 2
    assert {o.client_order_id for o in restored} == {"order-1", "order-2"}


def test_recovery_equity_history_preserved(db_path):
    base = _now() - timedelta(hours=1)
    snapshots = [
        EquitySnapshot(timestamp=base, equity=Decimal(10000), high_water_mark=Decimal(10000)),
        EquitySnapshot(
            timestamp=base + timedelta(minutes=20),
            equity=Decimal(10500),
            high_water_mark=Decimal(10500),
        ),
        EquitySnapshot(
            timestamp=base + timedelta(minutes=40),
            equity=Decimal(10200),
            high_water_mark=Decimal(10500),
            drawdown=Decimal("0.0286"),
        ),
    ]
    with SQLiteRepository(db_path) as first:
        for snap in snapshots:
            first.save_equity_snapshot(snap)
    with SQLiteRepository(db_path) as second:
        history = second.equity_history(base - timedelta(minutes=1), _now())
        latest = second.latest_equity_snapshot()
    assert len(history) == 3
    assert latest.equity == Decimal(10200)
    assert latest.drawdown == Decimal("0.0286")