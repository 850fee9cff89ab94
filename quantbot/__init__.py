"""Trading bot components: models, CSV and in-memory feeds, simulated execution, metrics with an HTTP server, and SQLite persistence."""

__version__ = "0.1.0"

__all__ = [
    "backtest_feed",
    "execution",
    "feed",
    "metrics",
    "models",
    "persistence",
    "server",
]