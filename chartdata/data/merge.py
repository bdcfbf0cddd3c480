from __future__ import annotations

from typing import Iterable

from chartdata.data.candles import Candle, Series


def merge(existing: Iterable[Candle], newer: Iterable[Candle]) -> Series:
    """Merge two candle sequences into one canonical series.

    Candles are keyed by bucket timestamp. ``newer`` is authoritative: on a
    timestamp collision its candle replaces the one from ``existing``. The
    result is sorted ascending and contains each timestamp once, so
    ``merge(s, s) == s`` and ``merge((), s) == merge(s, ()) == s`` for any
    canonical ``s``.
    """
    by_ts: dict[int, Candle] = {}
    for candle in existing:
        by_ts[candle.timestamp] = candle
    for candle in newer:
        by_ts[candle.timestamp] = candle
    return tuple(by_ts[ts] for ts in sorted(by_ts))


def normalize(series: Iterable[Candle]) -> Series:
    return merge((), series)


def is_canonical(series: Iterable[Candle]) -> bool:
    previous: int | None = None
    for candle in series:
        if previous is not None and candle.timestamp <= previous:
            return False
        previous = candle.timestamp
    return True
