import time
from decimal import Decimal

import pytest

from quantbot import metrics
from quantbot.metrics import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    Recorder,
    Registry,
    Timer,
    set_build_info,
)


def test_record_order_increments():
    r = Recorder()
    child = metrics.ORDERS_TOTAL.labels("MES", "long", "filled")
    before = child.get()
    r.record_order("MES", "long", "filled")
    r.record_order("MES", "short", "rejected")
    r.record_order("MGC", "long", "filled")
    assert child.get() == before + 1
    assert metrics.ORDERS_TOTAL.labels("MES", "short", "rejected").get() >= 1


def test_record_trade_outcome():
    r = Recorder()
    win = metrics.TRADES_TOTAL.labels("MES", "long", "win")
    loss = metrics.TRADES_TOTAL.labels("MES", "short", "loss")
    win_before, loss_before = win.get(), loss.get()
    r.record_trade("MES", "long", True)
    r.record_trade("MES", "short", False)
    assert win.get() == win_before + 1
    assert loss.get() == loss_before + 1


def test_record_position_open_then_close():
    r = Recorder()
    open_gauge = metrics.POSITIONS_OPEN.labels("MES")
    contracts = metrics.POSITION_CONTRACTS.labels("MES", "long")
    open_before, contracts_before = open_gauge.get(), contracts.get()
    r.record_position_opened("MES", "long", 2)
    assert open_gauge.get() == open_before + 1
    assert contracts.get() == contracts_before + 2
    r.record_position_closed("MES", "long", 2)
    assert open_gauge.get() == open_before
    assert contracts.get() == contracts_before


def test_record_equity():
    r = Recorder()
    r.record_equity(Decimal(10500), Decimal(11000), Decimal("0.045"))
    assert metrics.EQUITY_CURRENT.get() == 10500.0
    assert metrics.EQUITY_HIGH_WATER_MARK.get() == 11000.0
    assert metrics.DRAWDOWN_CURRENT.get() == pytest.approx(0.045)


def test_record_pl():
    r = Recorder()
    r.record_daily_pl(Decimal(100))
    r.record_total_pl(Decimal(-2500))
    assert metrics.DAILY_PL.get() == 100.0
    assert metrics.TOTAL_PL.get() == -2500.0


def test_record_safe_mode():
    r = Recorder()
    r.record_safe_mode(True)
    assert metrics.SAFE_MODE_ACTIVE.get() == 1
    r.record_safe_mode(False)
    assert metrics.SAFE_MODE_ACTIVE.get() == 0


def test_record_signal():
    r = Recorder()
    gen = metrics.SIGNALS_GENERATED.labels("breakout", "long")
    rej = metrics.SIGNALS_REJECTED.labels("insufficient_equity")
    gen_before, rej_before = gen.get(), rej.get()
    r.record_signal("breakout", "long")
    r.record_signal("meanrev", "short")
    r.record_signal_rejected("insufficient_equity")
    assert gen.get() == gen_before + 1
    assert rej.get() == rej_before + 1


def test_record_latency():
    r = Recorder()
    order_count, order_sum = metrics.ORDER_LATENCY.count(), metrics.ORDER_LATENCY.total()
    feed_count = metrics.DATA_FEED_LATENCY.count()
    strat = metrics.STRATEGY_LATENCY.labels("breakout")
    strat_count = strat.count()
    r.record_order_latency(0.1)
    r.record_data_feed_latency(0.005)
    r.record_strategy_latency("breakout", 0.0005)
    assert metrics.ORDER_LATENCY.count() == order_count + 1
    assert metrics.ORDER_LATENCY.total() == pytest.approx(order_sum + 0.1)
    assert metrics.DATA_FEED_LATENCY.count() == feed_count + 1
    assert strat.count() == strat_count + 1


def test_record_heartbeat():
    r = Recorder()
    before = int(time.time())
    r.record_heartbeat()
    after = int(time.time())
    assert before <= metrics.HEARTBEAT_TIMESTAMP.get() <= after


def test_record_connection_status():
    r = Recorder()
    r.record_data_feed_status(True)
    assert metrics.DATA_FEED_CONNECTED.get() == 1
    r.record_data_feed_status(False)
    assert metrics.DATA_FEED_CONNECTED.get() == 0
    r.record_broker_status(True)
    assert metrics.BROKER_CONNECTED.get() == 1
    r.record_broker_status(False)
    assert metrics.BROKER_CONNECTED.get() == 0


def test_record_error():
    r = Recorder()
    child = metrics.ERRORS_TOTAL.labels("connection")
    before = child.get()
    r.record_error("connection")
    r.record_error("order_timeout")
    assert child.get() == before + 1


def test_timer():
    timer = Timer()
    time.sleep(0.01)
    assert timer.elapsed() >= 0.01


def test_timer_observe():
    timer = Timer()
    order_before = metrics.ORDER_LATENCY.count()
    strat = metrics.STRATEGY_LATENCY.labels("timer_test")
    strat_before = strat.count()
    timer.observe_order()
    timer.observe_strategy("timer_test")
    assert metrics.ORDER_LATENCY.count() == order_before + 1
    assert strat.count() == strat_before + 1


def test_set_build_info():
    set_build_info("1.0.0", "abc123", "2024-12-31")
    assert metrics.BUILD_INFO.labels("1.0.0", "abc123", "2024-12-31").get() == 1
    assert 'version="1.0.0"' in REGISTRY.exposition()


def test_metrics_registered():
    expected = [
        metrics.ORDERS_TOTAL,
        metrics.TRADES_TOTAL,
        metrics.POSITIONS_OPEN,
        metrics.POSITION_CONTRACTS,
        metrics.EQUITY_CURRENT,
        metrics.EQUITY_HIGH_WATER_MARK,
        metrics.DRAWDOWN_CURRENT,
        metrics.DAILY_PL,
        metrics.TOTAL_PL,
        metrics.SAFE_MODE_ACTIVE,
        metrics.SIGNALS_GENERATED,
        metrics.SIGNALS_REJECTED,
        metrics.ORDER_LATENCY,
        metrics.DATA_FEED_LATENCY,
        metrics.STRATEGY_LATENCY,
        metrics.HEARTBEAT_TIMESTAMP,
        metrics.DATA_FEED_CONNECTED,
        metrics.BROKER_CONNECTED,
        metrics.UPTIME_SECONDS,
        metrics.ERRORS_TOTAL,
        metrics.BUILD_INFO,
    ]
    for m in expected:
        assert m.name in REGISTRY
        assert m.name.startswith("quantbot_")
    text = REGISTRY.exposition()
    assert "# TYPE quantbot_trading_orders_total counter" in text
    assert "# TYPE quantbot_latency_order_execution_seconds histogram" in text


def test_counter_rejects_negative():
    c = Counter("c_total", "help")
    with pytest.raises(ValueError):
        c.inc(-1)


def test_labels_require_matching_count():
    c = Counter("c_total", "help", ("a", "b"))
    with pytest.raises(ValueError):
        c.labels("only-one")
    with pytest.raises(ValueError):
        c.inc()


def test_unlabelled_metric_refuses_labels():
    g = Gauge("g", "help")
    with pytest.raises(ValueError):
        g.labels("x")


def test_gauge_arithmetic():
    g = Gauge("g", "help")
    g.set(5)
    g.inc()
    g.dec(2)
    g.add(3)
    g.sub(1)
    assert g.get() == 6


def test_registry_rejects_duplicates():
    registry = Registry()
    Counter("dup_total", "help", registry=registry)
    with pytest.raises(ValueError):
        Counter("dup_total", "help", registry=registry)


def test_exposition_format():
    registry = Registry()
    c = Counter("req_total", "Requests", ("code",), registry)
    c.labels("200").inc(2)
    g = Gauge("temp", "Temperature", registry=registry)
    g.set(1.5)
    text = registry.exposition()
    assert "# HELP req_total Requests" in text
    assert 'req_total{code="200"} 2' in text
    assert "temp 1.5" in text


def test_histogram_buckets_are_cumulative():
    registry = Registry()
    h = Histogram("lat", "Latency", registry=registry, buckets=(0.1, 1))
    h.observe(0.05)
    h.observe(0.5)
    h.observe(5)
    assert h.count() == 3
    assert h.total() == pytest.approx(5.55)
    text = registry.exposition()
    assert 'lat_bucket{le="0.1"} 1' in text
    assert 'lat_bucket{le="1"} 2' in text
    assert 'lat_bucket{le="+Inf"} 3' in text
    assert "lat_count 3" in text


def test_label_values_are_escaped():
    registry = Registry()
    c = Counter("esc_total", "help", ("v",), registry)
    c.labels('a"b').inc()
    assert 'esc_total{v="a\\"b"} 1' in registry.exposition()