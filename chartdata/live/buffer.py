from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Iterable

from chartdata.data.candles import Candle, normalize_symbol

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class PriceUpdate:
    symbol: str
    price: float
    volume: float
    timestamp: int
    open: float | None = None
    high: float | None = None
    low: float | None = None
    close: float | None = None

    @classmethod
    def from_candle(cls, candle: Candle) -> "PriceUpdate":
        return cls(
            symbol=candle.symbol,
            price=candle.close,
            volume=candle.volume,
            timestamp=candle.timestamp,
            open=candle.open,
            high=candle.high,
            low=candle.low,
            close=candle.close,
        )


class _SymbolBuffer:
    __slots__ = ("lock", "updates")

    def __init__(self, capacity: int):
        self.lock = threading.Lock()
        self.updates: deque[PriceUpdate] = deque(maxlen=capacity)


class LiveSeriesBuffer:
    """Bounded per-symbol buffer of live price updates, in arrival order.

    Independent of the historical candle series; nothing here is ever
    merged into the cold store.
    """

    def __init__(self, capacity: int = 1000):
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        self.capacity = capacity
        self._buffers: dict[str, _SymbolBuffer] = {}

    def _buffer(self, symbol: str, create: bool = False) -> _SymbolBuffer | None:
        key = normalize_symbol(symbol)
        buf = self._buffers.get(key)
        if buf is None and create:
            buf = self._buffers.setdefault(key, _SymbolBuffer(self.capacity))
        return buf

    def append(self, update: PriceUpdate) -> None:
        buf = self._buffer(update.symbol, create=True)
        with buf.lock:
            buf.updates.append(update)
            size = len(buf.updates)
        LOGGER.debug("Stored price %s at %.8g (total %d points)", update.symbol, update.price, size)

    def seed(self, symbol: str, updates: Iterable[PriceUpdate]) -> int:
        buf = self._buffer(symbol, create=True)
        with buf.lock:
            buf.updates.extend(updates)
            return len(buf.updates)

    def recent(self, symbol: str, limit: int) -> list[PriceUpdate]:
        if limit <= 0:
            return []
        buf = self._buffer(symbol)
        if buf is None:
            return []
        with buf.lock:
            items = list(buf.updates)
        return items[-limit:]

    def latest(self, symbol: str) -> PriceUpdate | None:
        buf = self._buffer(symbol)
        if buf is None:
            return None
        with buf.lock:
            return buf.updates[-1] if buf.updates else None

    def current(self, symbol: str) -> float | None:
        update = self.latest(symbol)
        return update.price if update is not None else None

    def last_update_time(self, symbol: str) -> int | None:
        update = self.latest(symbol)
        return update.timestamp if update is not None else None

    def count(self, symbol: str) -> int:
        buf = self._buffer(symbol)
        if buf is None:
            return 0
        with buf.lock:
            return len(buf.updates)

    def has_sufficient_data(self, symbol: str, minimum_points: int) -> bool:
        return self.count(symbol) >= minimum_points

    def coverage_days(self, symbol: str) -> float:
        buf = self._buffer(symbol)
        if buf is None:
            return 0.0
        with buf.lock:
            if len(buf.updates) < 2:
                return 0.0
            start = buf.updates[0].timestamp
            end = buf.updates[-1].timestamp
        return (end - start) / (1000.0 * 60 * 60 * 24)

    def symbols(self) -> list[str]:
        return sorted(self._buffers)

    def log_status(self) -> None:
        LOGGER.info("Live buffer status:")
        for symbol in self.symbols():
            price = self.current(symbol)
            LOGGER.info(
                "  %s: %d points, %.1f days coverage, current: %s",
                symbol,
                self.count(symbol),
                self.coverage_days(symbol),
                f"{price:.2f}" if price is not None else "N/A",
            )
