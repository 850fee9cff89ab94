# quantbot

Building blocks for a bot that trades micro futures contracts (MES and MGC
are the instruments it knows). Everything is plain Python with no
third-party dependencies; prices and money are `decimal.Decimal` throughout.

## Modules

- `quantbot.models` – the records everything else works with:
  `MarketEvent` (an OHLCV bar with optional `atr` and `std_dev`),
  `OrderIntent`, `OrderResult`, `Position`, `Trade`, `EquitySnapshot`,
  `OrderRecord` and `BotState`, the `Side` enum (`LONG`, `SHORT`, with
  `opposite()`), the `OrderStatus` enum, and `InstrumentSpec` with the
  `INSTRUMENT_SPECS` table (tick size and point value per symbol).
- `quantbot.metrics` – in-process `Counter`, `Gauge` and `Histogram`
  metrics, optionally labelled through `labels(...)`, and a `Registry` whose
  `exposition()` renders them in the Prometheus text format. The module
  registers a fixed set of trading, account, risk, latency and system metrics
  in the default `REGISTRY`; `Recorder` updates them (`record_order`,
  `record_equity`, `record_safe_mode`, `record_heartbeat`, ...),
  `set_build_info` publishes version details, and `Timer` measures elapsed
  seconds and can record them as order or strategy latency.
- `quantbot.server` – `MetricsServer`, an HTTP server running in a background
  thread. It serves the registry at `/metrics` and health checks at
  `/health` (JSON, 503 when any check is not `"healthy"`), plus `/ready`
  and `/live`. Paths and port come from `ServerConfig` (port 9090 by
  default); checks are added with `register_health_check(name, checker)`,
  where a checker returns a `Check`. The responses are also available
  directly as `health_response()`, `ready_response()`, `live_response()`
  and `metrics_response()`, each returning `(status, content_type, body)`.
- `quantbot.feed` – the `MarketDataFeed` and `IndicatorCalculator` abstract
  base classes and `Observer`, which runs each event of a feed through a
  calculator's `on_bar`.
- `quantbot.backtest_feed` – `BacktestFeed` replays bars from a CSV file,
  `MemoryFeed` replays bars held in memory, and `parse_csv` /
  `parse_timestamp` do the parsing. Feeds yield events from a plain iterator.
- `quantbot.execution` – the `Executor` abstract base class and
  `SimulatedExecutor`, which fills orders at the last close with a fixed
  slippage in ticks and a commission per contract (`SimulatedConfig`),
  closes a position when an opposite order arrives, and checks stop loss
  (first) and take profit on every `update_market` call. Reusing a client
  order id raises `DuplicateOrderError`.
- `quantbot.persistence` – the `Repository` abstract base class and
  `SQLiteRepository`, which stores equity snapshots, positions, trades,
  orders and the bot state in a SQLite file so they survive a restart.

## Installing

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Simulated execution

```python
from datetime import datetime
from decimal import Decimal

from quantbot.execution import SimulatedConfig, SimulatedExecutor
from quantbot.models import MarketEvent, OrderIntent, Side

executor = SimulatedExecutor(SimulatedConfig(slippage_ticks=0, commission_per_side=Decimal("0")))
executor.update_market(MarketEvent(symbol="MES", timestamp=datetime.now(), close=Decimal("5000")))

executor.place_order(OrderIntent(client_order_id="open-1", symbol="MES", side=Side.LONG, contracts=1))
executor.update_market(MarketEvent(symbol="MES", timestamp=datetime.now(), close=Decimal("5010")))
executor.place_order(OrderIntent(client_order_id="close-1", symbol="MES", side=Side.SHORT, contracts=1))

print(executor.trades()[0].gross_pl)  # 50
```

An order for a symbol without market data, or for a symbol not in
`INSTRUMENT_SPECS`, raises `ValueError`. A fill handler set with
`set_fill_handler` is called with every `OrderResult`.

## CSV bars

Rows are `timestamp,open,high,low,close[,volume]`; a first row whose first
field is a column name such as `timestamp` or `date` is skipped. Timestamps
may be Unix seconds or dates such as `2024-01-01 09:30:00`,
`2024-01-01T09:30:00Z`, `2024-01-01` or `01/02/2024 09:30:00`, and are read as
UTC. Rows with fewer than five fields or values that do not parse are
skipped; rows with a different number of fields from the first row raise
`ValueError`.

```python
from quantbot.backtest_feed import BacktestFeed

feed = BacktestFeed("bars.csv", "MES")
for event in feed.subscribe("MES"):
    print(event.timestamp, event.close)
```

## Metrics and health

```python
from quantbot.metrics import Recorder
from quantbot.server import Check, MetricsServer, ServerConfig

recorder = Recorder()
recorder.record_order("MES", "LONG", "submitted")

server = MetricsServer(ServerConfig(port=9090))
server.register_health_check("feed", lambda: Check(status="healthy"))
server.start()
# ... GET /metrics, /health, /ready, /live ...
server.shutdown()
```

## Persistence

```python
from quantbot.persistence import SQLiteRepository

with SQLiteRepository("bot.db") as repo:
    state = repo.state()  # None on first start
```

The schema is created when the repository opens. Times are stored as UTC
(naive datetimes are taken as local time) and come back as UTC-aware
datetimes.

## What the package does not do

It has no trading engine, strategies or risk management, no concrete
indicator calculator (only the `IndicatorCalculator` interface), no
connection to a broker or live market data, and no command-line program.
These pieces are meant to be assembled by the code that uses them.