from __future__ import annotations

from chartdata.cache.hot import HotCache
from chartdata.cache.warm import WarmCache
from chartdata.data.candles import CacheKey, Candle

DAY_MS = 86_400_000


class _FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _series(count: int, symbol: str = "BTC") -> list[Candle]:
    return [Candle(symbol, (i + 1) * DAY_MS, 1.0, 1.0, 1.0, float(i), 1.0) for i in range(count)]


def test_warm_get_returns_stored_series() -> None:
    cache = WarmCache(clock=_FakeClock())
    key = CacheKey.of("BTC", "1d")
    cache.put(key, _series(3))
    assert cache.get(key) is not None
    assert len(cache.get(key)) == 3
    assert key in cache


def test_warm_entry_expires_after_ttl() -> None:
    clock = _FakeClock()
    cache = WarmCache(ttl_seconds=600, clock=clock)
    key = CacheKey.of("BTC", "1d")
    cache.put(key, _series(3))
    clock.advance(599)
    assert cache.get(key) is not None
    clock.advance(2)
    assert cache.get(key) is None
    assert len(cache) == 0


def test_warm_capacity_evicts_least_recently_accessed() -> None:
    clock = _FakeClock()
    cache = WarmCache(max_keys=5, clock=clock)
    keys = [CacheKey.of(symbol, "1d") for symbol in ("A", "B", "C", "D", "E")]
    for key in keys:
        cache.put(key, _series(1, key.symbol))
        clock.advance(1)
    cache.get(keys[0])
    clock.advance(1)
    extra = CacheKey.of("F", "1d")
    cache.put(extra, _series(1, "F"))
    assert len(cache) == 5
    assert keys[1] not in cache
    assert keys[0] in cache
    assert extra in cache


def test_warm_invalidate_and_clear() -> None:
    cache = WarmCache(clock=_FakeClock())
    key = CacheKey.of("BTC", "1d")
    cache.put(key, _series(1))
    cache.invalidate(key)
    assert cache.get(key) is None
    cache.put(key, _series(1))
    cache.clear()
    assert len(cache) == 0


def test_hot_keeps_only_recent_points() -> None:
    cache = HotCache(max_points=50, clock=_FakeClock())
    key = CacheKey.of("BTC", "1h")
    cache.put(key, _series(120))
    hit = cache.get(key, 50)
    assert hit is not None
    assert len(hit) == 50
    assert hit[-1].close == 119.0
    assert cache.get(key, 51) is None


def test_hot_returns_last_limit_points() -> None:
    cache = HotCache(clock=_FakeClock())
    key = CacheKey.of("BTC", "1h")
    cache.put(key, _series(30))
    hit = cache.get(key, 10)
    assert [c.close for c in hit] == [float(i) for i in range(20, 30)]


def test_hot_miss_when_short_empty_or_expired() -> None:
    clock = _FakeClock()
    cache = HotCache(ttl_seconds=600, clock=clock)
    key = CacheKey.of("BTC", "1h")
    assert cache.get(key, 1) is None
    cache.put(key, [])
    assert cache.get(key, 1) is None
    cache.put(key, _series(30))
    assert cache.get(key, 50) is None
    clock.advance(601)
    assert cache.get(key, 10) is None


def test_hot_clear_reports_size() -> None:
    cache = HotCache(clock=_FakeClock())
    cache.put(CacheKey.of("BTC", "1h"), _series(5))
    cache.put(CacheKey.of("SOL", "1h"), _series(5, "SOL"))
    assert cache.clear() == 2
    assert len(cache) == 0
