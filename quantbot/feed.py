"""Market data feed and indicator calculator interfaces, and the observer combining them."""

from __future__ import annotations

import abc
from collections.abc import Iterator

from quantbot.models import MarketEvent

__all__ = ["MarketDataFeed", "IndicatorCalculator", "Observer"]


class MarketDataFeed(abc.ABC):
    """A source of market events, live or historical."""

    @abc.abstractmethod
    def subscribe(self, symbol: str) -> Iterator[MarketEvent]:
        """Start receiving events for a symbol; the iterator ends when the feed does."""

    @abc.abstractmethod
    def close(self) -> None:
        """Shut the feed down and release its resources."""

    @abc.abstractmethod
    def name(self) -> str:
        """Feed identifier, such as "backtest"."""


class IndicatorCalculator(abc.ABC):
    """Calculates technical indicators bar by bar."""

    @abc.abstractmethod
    def on_bar(self, event: MarketEvent) -> MarketEvent:
        """Process a bar and return it enriched with indicator values."""

    @abc.abstractmethod
    def reset(self) -> None:
        """Clear all indicator state."""


class Observer:
    """Passes the events of a feed through an indicator calculator."""

    def __init__(self, feed: MarketDataFeed, calculator: IndicatorCalculator) -> None:
        self._feed = feed
        self._calculator = calculator

    def subscribe(self, symbol: str) -> Iterator[MarketEvent]:
        """Subscribe to the feed and yield enriched events."""
        raw = self._feed.subscribe(symbol)
        return self._enrich(raw)

    def _enrich(self, raw: Iterator[MarketEvent]) -> Iterator[MarketEvent]:
        try:
            for event in raw:
                yield self._calculator.on_bar(event)
        finally:
            close = getattr(raw, "close", None)
            if close is not None:
                close()

    def close(self) -> None:
        """Close the underlying feed."""
        self._feed.close()

    def reset(self) -> None:
        """Reset the calculator state."""
        self._calculator.reset()