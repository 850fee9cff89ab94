"""In-process metrics (counters, gauges, histograms) and a recorder for trading events."""

from __future__ import annotations

import math
import threading
import time
from collections.abc import Iterable, Iterator
from decimal import Decimal

__all__ = [
    "Counter",
    "Gauge",
    "Histogram",
    "Registry",
    "REGISTRY",
    "Recorder",
    "Timer",
    "set_build_info",
]


def _format_value(value: float) -> str:
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if math.isnan(value):
        return "NaN"
    if value == int(value) and abs(value) < 1e15:
        return str(int(value))
    return repr(float(value))


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


Sample = tuple[str, dict[str, str], float]


class Registry:
    """Holds metrics and renders them in the text exposition format."""

    def __init__(self) -> None:
        self._metrics: dict[str, _Metric] = {}
        self._lock = threading.Lock()

    def register(self, metric: _Metric) -> _Metric:
        """Add a metric; a second metric with the same name is refused."""
        with self._lock:
            if metric.name in self._metrics:
                raise ValueError(f"metric already registered: {metric.name}")
            self._metrics[metric.name] = metric
        return metric

    def __contains__(self, name: object) -> bool:
        return name in self._metrics

    def __iter__(self) -> Iterator[_Metric]:
        with self._lock:
            return iter(list(self._metrics.values()))

    def exposition(self) -> str:
        """Render every registered metric as text."""
        lines: list[str] = []
        for metric in self:
            lines.append(f"# HELP {metric.name} {metric.documentation}")
            lines.append(f"# TYPE {metric.name} {metric.kind}")
            for suffix, labels, value in metric.samples():
                if labels:
                    rendered = ",".join(f'{k}="{_escape(v)}"' for k, v in labels.items())
                    lines.append(f"{metric.name}{suffix}{{{rendered}}} {_format_value(value)}")
                else:
                    lines.append(f"{metric.name}{suffix} {_format_value(value)}")
        return "\n".join(lines) + "\n" if lines else ""


REGISTRY = Registry()


class _Metric:
    kind = "untyped"

    def __init__(
        self,
        name: str,
        documentation: str,
        labelnames: Iterable[str] = (),
        registry: Registry | None = None,
    ) -> None:
        self.name = name
        self.documentation = documentation
        self.labelnames = tuple(labelnames)
        self._lock = threading.Lock()
        self._children: dict[tuple[str, ...], _Metric] = {}
        if registry is not None:
            registry.register(self)

    def _new_child(self) -> _Metric:
        return type(self)(self.name, self.documentation)

    def _child(self, args: tuple[object, ...]) -> _Metric:
        if not self.labelnames:
            raise ValueError(f"metric {self.name} has no labels")
        if len(args) != len(self.labelnames):
            raise ValueError(
                f"metric {self.name} expects {len(self.labelnames)} label values, got {len(args)}"
            )
        key = tuple(str(a) for a in args)
        with self._lock:
            child = self._children.get(key)
            if child is None:
                child = self._new_child()
                self._children[key] = child
        return child

    def _require_unlabelled(self) -> None:
        if self.labelnames:
            raise ValueError(f"metric {self.name} needs label values; call labels() first")

    def _own_samples(self) -> list[Sample]:
        return []

    def samples(self) -> list[Sample]:
        """All samples of this metric, children included."""
        if not self.labelnames:
            return self._own_samples()
        with self._lock:
            children = sorted(self._children.items())
        result: list[Sample] = []
        for key, child in children:
            base = dict(zip(self.labelnames, key))
            for suffix, extra, value in child._own_samples():
                result.append((suffix, {**base, **extra}, value))
        return result


class Counter(_Metric):
    """A value that only goes up."""

    kind = "counter"

    def __init__(self, name, documentation, labelnames=(), registry=None):
        super().__init__(name, documentation, labelnames, registry)
        self._value = 0.0

    def labels(self, *args: object) -> Counter:
        """Return the child counter for the given label values."""
        return self._child(args)  # type: ignore[return-value]

    def inc(self, amount: float = 1.0) -> None:
        """Add a non-negative amount."""
        self._require_unlabelled()
        if amount < 0:
            raise ValueError("counters can only increase")
        with self._lock:
            self._value += amount

    def get(self) -> float:
        """Current value."""
        self._require_unlabelled()
        with self._lock:
            return self._value

    def _own_samples(self) -> list[Sample]:
        return [("", {}, self.get())]


class Gauge(_Metric):
    """A value that can go up and down."""

    kind = "gauge"

    def __init__(self, name, documentation, labelnames=(), registry=None):
        super().__init__(name, documentation, labelnames, registry)
        self._value = 0.0

    def labels(self, *args: object) -> Gauge:
        """Return the child gauge for the given label values."""
        return self._child(args)  # type: ignore[return-value]

    def set(self, value: float) -> None:
        """Set the value."""
        self._require_unlabelled()
        with self._lock:
            self._value = float(value)

    def add(self, amount: float) -> None:
        """Add an amount, which may be negative."""
        self._require_unlabelled()
        with self._lock:
            self._value += amount

    def sub(self, amount: float) -> None:
        """Subtract an amount."""
        self.add(-amount)

    def inc(self, amount: float = 1.0) -> None:
        """Increase by an amount, one by default."""
        self.add(amount)

    def dec(self, amount: float = 1.0) -> None:
        """Decrease by an amount, one by default."""
        self.add(-amount)

    def get(self) -> float:
        """Current value."""
        self._require_unlabelled()
        with self._lock:
            return self._value

    def _own_samples(self) -> list[Sample]:
        return [("", {}, self.get())]


DEFAULT_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10)


class Histogram(_Metric):
    """Counts observations in cumulative buckets."""

    kind = "histogram"

    def __init__(self, name, documentation, labelnames=(), registry=None, buckets=DEFAULT_BUCKETS):
        bounds = sorted(float(b) for b in buckets)
        if not bounds or not math.isinf(bounds[-1]):
            bounds.append(math.inf)
        self.buckets = tuple(bounds)
        self._counts = [0] * len(self.buckets)
        self._sum = 0.0
        self._count = 0
        super().__init__(name, documentation, labelnames, registry)

    def _new_child(self) -> Histogram:
        return Histogram(self.name, self.documentation, buckets=self.buckets)

    def labels(self, *args: object) -> Histogram:
        """Return the child histogram for the given label values."""
        return self._child(args)  # type: ignore[return-value]

    def observe(self, value: float) -> None:
        """Record one observation."""
        self._require_unlabelled()
        with self._lock:
            for i, bound in enumerate(self.buckets):
                if value <= bound:
                    self._counts[i] += 1
            self._sum += value
            self._count += 1

    def count(self) -> int:
        """Number of observations."""
        self._require_unlabelled()
        with self._lock:
            return self._count

    def total(self) -> float:
        """Sum of all observations."""
        self._require_unlabelled()
        with self._lock:
            return self._sum

    def _own_samples(self) -> list[Sample]:
        with self._lock:
            counts = list(self._counts)
            total, count = self._sum, self._count
        samples: list[Sample] = [
            ("_bucket", {"le": _format_value(bound)}, float(n))
            for bound, n in zip(self.buckets, counts)
        ]
        samples.append(("_sum", {}, total))
        samples.append(("_count", {}, float(count)))
        return samples


# Trading
ORDERS_TOTAL = Counter(
    "quantbot_trading_orders_total",
    "Total number of orders by side and status",
    ("symbol", "side", "status"),
    REGISTRY,
)
TRADES_TOTAL = Counter(
    "quantbot_trading_trades_total",
    "Total number of completed trades by side and outcome",
    ("symbol", "side", "outcome"),
    REGISTRY,
)
POSITIONS_OPEN = Gauge(
    "quantbot_trading_positions_open",
    "Number of currently open positions",
    ("symbol",),
    REGISTRY,
)
POSITION_CONTRACTS = Gauge(
    "quantbot_trading_position_contracts",
    "Number of contracts in open positions",
    ("symbol", "side"),
    REGISTRY,
)

# Account
EQUITY_CURRENT = Gauge(
    "quantbot_account_equity_current", "Current account equity in USD", registry=REGISTRY
)
EQUITY_HIGH_WATER_MARK = Gauge(
    "quantbot_account_equity_high_water_mark",
    "Peak account equity (high water mark) in USD",
    registry=REGISTRY,
)
DRAWDOWN_CURRENT = Gauge(
    "quantbot_account_drawdown_current",
    "Current drawdown as a ratio (0.0 to 1.0)",
    registry=REGISTRY,
)
DAILY_PL = Gauge("quantbot_account_daily_pl", "Daily profit/loss in USD", registry=REGISTRY)
TOTAL_PL = Gauge("quantbot_account_total_pl", "Total profit/loss in USD", registry=REGISTRY)

# Risk
SAFE_MODE_ACTIVE = Gauge(
    "quantbot_risk_safe_mode_active",
    "Whether safe mode (kill switch) is active (1=yes, 0=no)",
    registry=REGISTRY,
)
SIGNALS_GENERATED = Counter(
    "quantbot_risk_signals_generated_total",
    "Total signals generated by strategy",
    ("strategy", "side"),
    REGISTRY,
)
SIGNALS_REJECTED = Counter(
    "quantbot_risk_signals_rejected_total",
    "Total signals rejected by risk engine",
    ("reason",),
    REGISTRY,
)

# Latency
ORDER_LATENCY = Histogram(
    "quantbot_latency_order_execution_seconds",
    "Order execution latency in seconds",
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10),
)
DATA_FEED_LATENCY = Histogram(
    "quantbot_latency_data_feed_seconds",
    "Market data feed latency in seconds",
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1),
)
STRATEGY_LATENCY = Histogram(
    "quantbot_latency_strategy_seconds",
    "Strategy computation latency in seconds",
    ("strategy",),
    REGISTRY,
    buckets=(0.0001, 0.0005, 0.001, 0.005, 0.01, 0.05, 0.1),
)

# System
HEARTBEAT_TIMESTAMP = Gauge(
    "quantbot_system_heartbeat_timestamp", "Unix timestamp of last heartbeat", registry=REGISTRY
)
DATA_FEED_CONNECTED = Gauge(
    "quantbot_system_data_feed_connected",
    "Whether data feed is connected (1=yes, 0=no)",
    registry=REGISTRY,
)
BROKER_CONNECTED = Gauge(
    "quantbot_system_broker_connected",
    "Whether broker is connected (1=yes, 0=no)",
    registry=REGISTRY,
)
UPTIME_SECONDS = Counter(
    "quantbot_system_uptime_seconds_total", "Total uptime in seconds", registry=REGISTRY
)
ERRORS_TOTAL = Counter(
    "quantbot_system_errors_total", "Total errors by type", ("type",), REGISTRY
)

BUILD_INFO = Gauge(
    "quantbot_build_info", "Build information", ("version", "commit", "build_time"), REGISTRY
)


def set_build_info(version: str, commit: str, build_time: str) -> None:
    """Publish the build information metric."""
    BUILD_INFO.labels(version, commit, build_time).set(1)


def _as_float(value: Decimal | float | int) -> float:
    return float(value)


class Recorder:
    """Records trading events into the default metrics."""

    def record_order(self, symbol: str, side: str, status: str) -> None:
        ORDERS_TOTAL.labels(symbol, side, status).inc()

    def record_trade(self, symbol: str, side: str, profitable: bool) -> None:
        outcome = "win" if profitable else "loss"
        TRADES_TOTAL.labels(symbol, side, outcome).inc()

    def record_position_opened(self, symbol: str, side: str, contracts: int) -> None:
        POSITIONS_OPEN.labels(symbol).inc()
        POSITION_CONTRACTS.labels(symbol, side).add(contracts)

    def record_position_closed(self, symbol: str, side: str, contracts: int) -> None:
        POSITIONS_OPEN.labels(symbol).dec()
        POSITION_CONTRACTS.labels(symbol, side).sub(contracts)

    def record_equity(self, current, high_water_mark, drawdown) -> None:
        EQUITY_CURRENT.set(_as_float(current))
        EQUITY_HIGH_WATER_MARK.set(_as_float(high_water_mark))
        DRAWDOWN_CURRENT.set(_as_float(drawdown))

    def record_daily_pl(self, pl) -> None:
        DAILY_PL.set(_as_float(pl))

    def record_total_pl(self, pl) -> None:
        TOTAL_PL.set(_as_float(pl))

    def record_safe_mode(self, active: bool) -> None:
        SAFE_MODE_ACTIVE.set(1 if active else 0)

    def record_signal(self, strategy: str, side: str) -> None:
        SIGNALS_GENERATED.labels(strategy, side).inc()

    def record_signal_rejected(self, reason: str) -> None:
        SIGNALS_REJECTED.labels(reason).inc()

    def record_order_latency(self, seconds: float) -> None:
        ORDER_LATENCY.observe(seconds)

    def record_data_feed_latency(self, seconds: float) -> None:
        DATA_FEED_LATENCY.observe(seconds)

    def record_strategy_latency(self, strategy: str, seconds: float) -> None:
        STRATEGY_LATENCY.labels(strategy).observe(seconds)

    def record_heartbeat(self) -> None:
        HEARTBEAT_TIMESTAMP.set(float(int(time.time())))

    def record_data_feed_status(self, connected: bool) -> None:
        DATA_FEED_CONNECTED.set(1 if connected else 0)

    def record_broker_status(self, connected: bool) -> None:
        BROKER_CONNECTED.set(1 if connected else 0)

    def record_error(self, error_type: str) -> None:
        ERRORS_TOTAL.labels(error_type).inc()


class Timer:
    """Measures elapsed time from its creation, in seconds."""

    def __init__(self) -> None:
        self._start = time.perf_counter()

    def elapsed(self) -> float:
        """Seconds since the timer was created."""
        return time.perf_counter() - self._start

    def observe_order(self) -> None:
        """Record the elapsed time as order latency."""
        ORDER_LATENCY.observe(self.elapsed())

    def observe_strategy(self, strategy: str) -> None:
        """Record the elapsed time as latency of the named strategy."""
        STRATEGY_LATENCY.labels(strategy).observe(self.elapsed())