from __future__ import annotations

from chartdata.data.candles import Candle
from chartdata.data.merge import is_canonical, merge, normalize

DAY_MS = 86_400_000


def _candle(ts: int, close: float = 100.0) -> Candle:
    return Candle(symbol="BTC", timestamp=ts, open=close, high=close, low=close, close=close, volume=1.0)


def _series(*days: int, close: float = 100.0) -> tuple[Candle, ...]:
    return tuple(_candle(day * DAY_MS, close) for day in days)


def test_merge_newer_wins_on_collision() -> None:
    existing = _series(1, 2, 3, close=10.0)
    newer = (_candle(3 * DAY_MS, 99.0), _candle(4 * DAY_MS, 99.0))
    merged = merge(existing, newer)
    assert [c.timestamp for c in merged] == [DAY_MS, 2 * DAY_MS, 3 * DAY_MS, 4 * DAY_MS]
    assert merged[2].close == 99.0
    assert merged[0].close == 10.0


def test_merge_is_idempotent_and_has_identity() -> None:
    series = _series(1, 2, 3)
    assert merge(series, series) == series
    assert merge((), series) == series
    assert merge(series, ()) == series


def test_merge_fills_gaps_and_sorts() -> None:
    merged = merge(_series(5, 1), _series(3, 2))
    assert [c.timestamp // DAY_MS for c in merged] == [1, 2, 3, 5]
    assert is_canonical(merged)


def test_normalize_drops_duplicates_keeping_last() -> None:
    raw = [_candle(2 * DAY_MS, 1.0), _candle(DAY_MS, 1.0), _candle(2 * DAY_MS, 7.0)]
    series = normalize(raw)
    assert [c.timestamp for c in series] == [DAY_MS, 2 * DAY_MS]
    assert series[-1].close == 7.0


def test_is_canonical_detects_duplicates_and_order() -> None:
    assert is_canonical(_series(1, 2, 3))
    assert is_canonical(())
    assert not is_canonical(_series(2, 1))
    assert not is_canonical(_series(1, 1))
