from __future__ import annotations

import re
from dataclasses import asdict, dataclass
from typing import Any, Iterable, Sequence

import pandas as pd

from chartdata.clock import ms_to_datetime

TIMEFRAMES = ("1m", "1h", "4h", "1d", "1w", "1M")

_TIMEFRAME_ALIASES = {
    "1m": "1m",
    "1h": "1h",
    "4h": "4h",
    "1d": "1d",
    "1w": "1w",
    "1W": "1w",
    "1M": "1M",
}
_TIMEFRAME_MINUTES = {
    "1m": 1,
    "1h": 60,
    "4h": 240,
    "1d": 1440,
    "1w": 10080,
    "1M": 43200,
}
_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")


@dataclass(slots=True, frozen=True)
class Candle:
    symbol: str
    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "Candle":
        return cls(
            symbol=str(raw["symbol"]),
            timestamp=int(raw["timestamp"]),
            open=float(raw["open"]),
            high=float(raw["high"]),
            low=float(raw["low"]),
            close=float(raw["close"]),
            volume=float(raw["volume"]),
        )


Series = tuple[Candle, ...]


def normalize_symbol(value: str) -> str:
    symbol = str(value).strip().upper()
    if not symbol:
        raise ValueError("symbol must not be empty")
    return symbol


def normalize_timeframe(value: str) -> str:
    raw = str(value).strip()
    # "1M" is a month, "1m" a minute; only the month code keeps its case.
    if raw in _TIMEFRAME_ALIASES:
        return _TIMEFRAME_ALIASES[raw]
    lowered = raw.lower()
    if lowered in _TIMEFRAME_ALIASES:
        return _TIMEFRAME_ALIASES[lowered]
    raise ValueError(f"Unsupported timeframe '{value}'. Allowed: {list(TIMEFRAMES)}")


def timeframe_to_minutes(timeframe: str) -> int:
    return _TIMEFRAME_MINUTES[normalize_timeframe(timeframe)]


def timeframe_to_interval(timeframe: str) -> str:
    # Binance interval codes match the normalized timeframes one to one.
    return normalize_timeframe(timeframe)


@dataclass(slots=True, frozen=True)
class CacheKey:
    symbol: str
    timeframe: str

    @classmethod
    def of(cls, symbol: str, timeframe: str) -> "CacheKey":
        return cls(normalize_symbol(symbol), normalize_timeframe(timeframe))

    @property
    def file_stem(self) -> str:
        symbol = _NON_ALNUM.sub("", self.symbol)
        timeframe = _NON_ALNUM.sub("", self.timeframe)
        return f"{symbol}_{timeframe}"

    def __str__(self) -> str:
        return f"{self.symbol} {self.timeframe}"


def tail(series: Sequence[Candle], limit: int) -> list[Candle]:
    if limit <= 0:
        return []
    return list(series[-limit:])


def candles_from_klines(payload: Any, symbol: str) -> list[Candle]:
    """Parse a klines payload (array of arrays) into candles.

    Only the first six fields of each row are consumed:
    open time (ms), open, high, low, close, volume. Raises ValueError
    when the payload does not have that shape.
    """
    if not isinstance(payload, list):
        raise ValueError(f"Expected a JSON array of klines, got {type(payload).__name__}")
    output: list[Candle] = []
    for row in payload:
        if not isinstance(row, (list, tuple)) or len(row) < 6:
            raise ValueError(f"Malformed kline row: {row!r}")
        try:
            candle = Candle(
                symbol=symbol,
                timestamp=int(row[0]),
                open=float(row[1]),
                high=float(row[2]),
                low=float(row[3]),
                close=float(row[4]),
                volume=float(row[5]),
            )
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Malformed kline row: {row!r}") from exc
        output.append(candle)
    return sorted(output, key=lambda c: c.timestamp)


def series_to_frame(series: Iterable[Candle]) -> pd.DataFrame:
    rows = [
        {
            "ts_utc": ms_to_datetime(c.timestamp),
            "open": c.open,
            "high": c.high,
            "low": c.low,
            "close": c.close,
            "volume": c.volume,
        }
        for c in series
    ]
    frame = pd.DataFrame(rows, columns=["ts_utc", "open", "high", "low", "close", "volume"])
    if not frame.empty:
        frame = frame.set_index("ts_utc")
    return frame
