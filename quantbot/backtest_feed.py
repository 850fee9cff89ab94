"""Historical market data from CSV files, and an in-memory feed."""

from __future__ import annotations

import csv
import dataclasses
import re
from collections.abc import Iterable, Iterator
from datetime import datetime, timezone
from decimal import Decimal
from os import PathLike

from quantbot.feed import MarketDataFeed
from quantbot.models import MarketEvent

__all__ = ["BacktestFeed", "MemoryFeed", "parse_csv", "parse_timestamp"]

_DECIMAL_RE = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
_INT_RE = re.compile(r"[+-]?\d+")

_TIMESTAMP_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M:%SZ",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y",
)

_HEADER_NAMES = frozenset(
    {"timestamp", "time", "date", "datetime", "open", "high", "low", "close"}
)


def _parse_decimal(text: str) -> Decimal:
    if not _DECIMAL_RE.fullmatch(text):
        raise ValueError(f"can't convert {text!r} to decimal")
    return Decimal(text)


def parse_timestamp(text: str) -> datetime:
    """Parse a Unix timestamp or one of the supported date formats, in UTC."""
    if _INT_RE.fullmatch(text):
        try:
            return datetime.fromtimestamp(int(text), tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            pass
    for fmt in _TIMESTAMP_FORMATS:
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    raise ValueError(f"unknown timestamp format: {text}")


def _is_header(record: list[str]) -> bool:
    return bool(record) and record[0] in _HEADER_NAMES


def _parse_record(record: list[str], symbol: str) -> MarketEvent:
    event = MarketEvent(
        symbol=symbol,
        timestamp=parse_timestamp(record[0]),
        open=_parse_decimal(record[1]),
        high=_parse_decimal(record[2]),
        low=_parse_decimal(record[3]),
        close=_parse_decimal(record[4]),
    )
    if len(record) > 5 and _INT_RE.fullmatch(record[5]):
        event.volume = int(record[5])
    return event


def parse_csv(stream: Iterable[str], symbol: str) -> list[MarketEvent]:
    """Parse timestamp,open,high,low,close[,volume] rows; an optional header is skipped.

    Rows that are too short or do not parse are skipped. A row whose field
    count differs from the first row's is an error.
    """
    reader = csv.reader(stream, skipinitialspace=True)
    events: list[MarketEvent] = []
    expected_fields: int | None = None
    line_num = 0
    try:
        for record in reader:
            if not record:
                continue
            if expected_fields is None:
                expected_fields = len(record)
            elif len(record) != expected_fields:
                raise ValueError(
                    f"line {line_num}: record on line {reader.line_num}: wrong number of fields"
                )
            line_num += 1
            if line_num == 1 and _is_header(record):
                continue
            if len(record) < 5:
                continue
            try:
                events.append(_parse_record(record, symbol))
            except ValueError:
                continue
    except csv.Error as exc:
        raise ValueError(f"line {line_num}: {exc}") from exc
    return events


class BacktestFeed(MarketDataFeed):
    """Replays market events loaded from a CSV file."""

    def __init__(self, file_path: str | PathLike[str], symbol: str) -> None:
        self.file_path = file_path
        self.symbol = symbol
        self._events: list[MarketEvent] = []
        self._loaded = False

    def _load(self) -> None:
        with open(self.file_path, newline="", encoding="utf-8") as handle:
            self._events = parse_csv(handle, self.symbol)
        self._loaded = True

    def subscribe(self, symbol: str) -> Iterator[MarketEvent]:
        """Load the file if needed and yield its events; an empty symbol matches all."""
        if not self._loaded:
            self._load()
        return self._replay(list(self._events), symbol)

    @staticmethod
    def _replay(events: list[MarketEvent], symbol: str) -> Iterator[MarketEvent]:
        for event in events:
            if symbol and event.symbol != symbol:
                continue
            yield event

    def close(self) -> None:
        """Drop the loaded events."""
        self._events = []
        self._loaded = False

    def name(self) -> str:
        return "backtest"

    def event_count(self) -> int:
        """Number of loaded events."""
        return len(self._events)


class MemoryFeed(MarketDataFeed):
    """Replays events held in memory; a fixed symbol overrides the events' own."""

    def __init__(self, events: Iterable[MarketEvent] = (), symbol: str = "") -> None:
        self._events = list(events)
        self.symbol = symbol

    def subscribe(self, symbol: str) -> Iterator[MarketEvent]:
        """Yield the events held at the time of the call; an empty symbol matches all."""
        return self._replay(list(self._events), symbol)

    def _replay(self, events: list[MarketEvent], symbol: str) -> Iterator[MarketEvent]:
        for event in events:
            if symbol and event.symbol != symbol and self.symbol != symbol:
                continue
            if self.symbol:
                event = dataclasses.replace(event, symbol=self.symbol)
            yield event

    def close(self) -> None:
        """Nothing to release."""

    def name(self) -> str:
        return "memory"

    def add_event(self, event: MarketEvent) -> None:
        """Append an event to the feed."""
        self._events.append(event)