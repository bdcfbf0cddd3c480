from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Iterable

from chartdata.cache.hot import HotCache
from chartdata.cache.warm import WarmCache
from chartdata.clock import should_attempt_refresh, utc_now
from chartdata.data.binance_client import UpstreamError
from chartdata.data.candles import CacheKey, Candle, Series, tail
from chartdata.data.fetcher import UpstreamFetcher
from chartdata.data.merge import merge
from chartdata.storage.cold_store import ColdStore
from chartdata.sync.freshness import FreshnessPolicy

LOGGER = logging.getLogger(__name__)

FULL_HISTORY_TIMEFRAME = "1d"
FULL_HISTORY_POINTS = 1825


@dataclass(slots=True)
class _RefreshSlot:
    lock: threading.Lock = field(default_factory=threading.Lock)
    generation: int = 0
    covered_points: int = 0
    refreshed_at: datetime | None = None
    last_failed_at: datetime | None = None


@dataclass(slots=True)
class RefreshReport:
    refreshed: list[str] = field(default_factory=list)
    no_data: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.refreshed) + len(self.no_data) + len(self.failed)


class SyncOrchestrator:
    """Read/refresh algorithm over the hot, warm and cold tiers.

    Reads go hot -> warm -> cold; when the data is missing, too short or
    stale, one refresh per key fetches from upstream, merges into the cold
    series, persists it and refills the caches. Concurrent callers for the
    same key share that refresh through a per-key slot; nothing here holds a
    lock that spans keys.
    """

    def __init__(
        self,
        cold: ColdStore,
        fetcher: UpstreamFetcher,
        *,
        hot: HotCache | None = None,
        warm: WarmCache | None = None,
        policy: FreshnessPolicy | None = None,
        deep_fetch_timeframes: Iterable[str] = ("1d",),
        refresh_retry_seconds: int = 60,
        pair_delay_seconds: float = 0.0,
        now: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.cold = cold
        self.fetcher = fetcher
        self.hot = hot or HotCache()
        self.warm = warm or WarmCache()
        self.policy = policy or FreshnessPolicy()
        self.deep_fetch_timeframes = frozenset(deep_fetch_timeframes)
        self.refresh_retry_seconds = max(0, int(refresh_retry_seconds))
        self.pair_delay_seconds = max(0.0, float(pair_delay_seconds))
        self._now = now
        self._sleep = sleep
        self._slots: dict[CacheKey, _RefreshSlot] = {}

    # ------------------------------------------------------------------
    # Consumer read API
    # ------------------------------------------------------------------

    def get_data(self, symbol: str, timeframe: str, limit: int) -> list[Candle]:
        """Return the most recent ``limit`` candles, ascending.

        Never raises for upstream or storage trouble: when a refresh fails
        the best cached data is returned, possibly empty.
        """
        if limit < 1:
            raise ValueError("limit must be >= 1")
        key = CacheKey.of(symbol, timeframe)

        hot = self.hot.get(key, limit)
        if hot is not None:
            LOGGER.debug("Hot cache hit for %s (%d points)", key, limit)
            return list(hot)

        slot = self._slot(key)
        series, from_warm = self._lookup(key)
        if self._is_usable(key, slot, series, limit):
            self._refill(key, series, from_warm)
            return tail(series, limit)

        generation = slot.generation
        with slot.lock:
            if slot.generation != generation and slot.covered_points >= limit:
                series, _ = self._lookup(key)
                LOGGER.debug("Reusing concurrent refresh of %s", key)
                return tail(series, limit)
            series, from_warm = self._lookup(key)
            if self._is_usable(key, slot, series, limit):
                self._refill(key, series, from_warm)
                return tail(series, limit)
            series = self._refresh_locked(key, slot, limit, series)
        return tail(series, limit)

    def get_historical_data(self, symbol: str, timeframe: str, limit: int) -> list[Candle]:
        return self.get_data(symbol, timeframe, limit)

    def get_full_historical_data(self, symbol: str) -> list[Candle]:
        return self.get_data(symbol, FULL_HISTORY_TIMEFRAME, FULL_HISTORY_POINTS)

    def get_ml_training_data(self, symbol: str, timeframe: str) -> list[Candle]:
        """Full persisted series, deep-fetched up to the training target first if short."""
        key = CacheKey.of(symbol, timeframe)
        required = self.policy.required_points(key.timeframe)
        slot = self._slot(key)
        with slot.lock:
            existing = self.cold.load(key)
            if len(existing) >= required:
                LOGGER.info("Using %d existing points for %s training data", len(existing), key)
                return list(existing)

            LOGGER.info("Fetching %s training data (target %d points, have %d)", key, required, len(existing))
            fresh = self.fetcher.fetch_deep(key.symbol, key.timeframe, required)
            now = self._now()
            slot.generation += 1
            slot.covered_points = max(slot.covered_points, required)
            if not fresh:
                slot.last_failed_at = now
                LOGGER.warning("No training data fetched for %s; using %d existing points", key, len(existing))
                return list(existing)
            slot.last_failed_at = None
            current = self._merge_and_persist(key, fresh)
            slot.refreshed_at = now
            self.warm.invalidate(key)
            self.hot.invalidate(key)
            return list(current)

    # ------------------------------------------------------------------
    # Background refresh
    # ------------------------------------------------------------------

    def refresh(self, symbol: str, timeframe: str, points: int | None = None) -> list[Candle]:
        """Fetch recent data for one key and merge it into the cold series."""
        key = CacheKey.of(symbol, timeframe)
        count = points if points is not None else self.policy.incremental_points(key.timeframe)
        if count < 1:
            raise ValueError("points must be >= 1")
        slot = self._slot(key)
        with slot.lock:
            existing, _ = self._lookup(key)
            current = self._refresh_locked(key, slot, count, existing)
        return list(current)

    def refresh_all(self, pairs: Iterable[tuple[str, str]]) -> RefreshReport:
        report = RefreshReport()
        items = list(pairs)
        for index, (symbol, timeframe) in enumerate(items):
            label = f"{symbol} {timeframe}"
            if index > 0 and self.pair_delay_seconds > 0:
                self._sleep(self.pair_delay_seconds)
            try:
                key = CacheKey.of(symbol, timeframe)
                self.refresh(key.symbol, key.timeframe)
                if self._slot(key).last_failed_at is not None:
                    report.no_data.append(label)
                else:
                    report.refreshed.append(label)
            except Exception as exc:  # noqa: BLE001
                LOGGER.exception("Refresh failed for %s", label)
                report.failed[label] = str(exc)
        LOGGER.info(
            "Refresh run complete: %d refreshed, %d without data, %d failed",
            len(report.refreshed),
            len(report.no_data),
            len(report.failed),
        )
        return report

    def invalidate(self, symbol: str, timeframe: str) -> None:
        key = CacheKey.of(symbol, timeframe)
        self.warm.invalidate(key)
        self.hot.invalidate(key)

    def clear_hot_cache(self) -> int:
        size = self.hot.clear()
        LOGGER.info("Cleared hot cache (%d entries)", size)
        return size

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _slot(self, key: CacheKey) -> _RefreshSlot:
        slot = self._slots.get(key)
        if slot is None:
            slot = self._slots.setdefault(key, _RefreshSlot())
        return slot

    def _lookup(self, key: CacheKey) -> tuple[Series, bool]:
        cached = self.warm.get(key)
        if cached is not None:
            LOGGER.debug("Warm cache hit for %s (%d points)", key, len(cached))
            return cached, True
        LOGGER.debug("Loading %s from cold store", key)
        return self.cold.load(key), False

    def _age(self, key: CacheKey, slot: _RefreshSlot, now: datetime) -> timedelta | None:
        ages = []
        file_age = self.cold.last_write_age(key, now)
        if file_age is not None:
            ages.append(file_age)
        if slot.refreshed_at is not None:
            ages.append(max(timedelta(0), now - slot.refreshed_at))
        return min(ages) if ages else None

    def _is_usable(self, key: CacheKey, slot: _RefreshSlot, series: Series, limit: int) -> bool:
        if not series:
            return False
        if self.policy.is_stale(key, self._age(key, slot, self._now())):
            return False
        if self.policy.has_enough(series, limit):
            return True
        # Short but fresh: a successful refresh for this many points already ran, serve what it found.
        return slot.refreshed_at is not None and slot.last_failed_at is None and slot.covered_points >= limit

    def _refill(self, key: CacheKey, series: Series, from_warm: bool) -> None:
        if not from_warm:
            self.warm.put(key, series)
        self.hot.put(key, series)

    def _refresh_locked(self, key: CacheKey, slot: _RefreshSlot, points: int, existing: Series) -> Series:
        now = self._now()
        if not should_attempt_refresh(
            now_utc=now,
            last_failed_at=slot.last_failed_at,
            retry_seconds=self.refresh_retry_seconds,
        ):
            LOGGER.info("Refresh of %s skipped after recent failure; serving %d cached points", key, len(existing))
            return existing

        fresh = self._fetch_fresh(key, points)
        slot.generation += 1
        slot.covered_points = points
        if not fresh:
            slot.last_failed_at = now
            if existing:
                LOGGER.warning("No fresh data for %s; serving %d cached points", key, len(existing))
                self.warm.put(key, existing)
            else:
                LOGGER.warning("No data available for %s", key)
            return existing

        slot.last_failed_at = None
        current = self._merge_and_persist(key, fresh)
        slot.refreshed_at = now
        self.warm.put(key, current)
        self.hot.put(key, current)
        return current

    def _fetch_fresh(self, key: CacheKey, points: int) -> list[Candle]:
        page_size = self.fetcher.page_size
        try:
            if points > page_size and key.timeframe in self.deep_fetch_timeframes:
                return self.fetcher.fetch_deep(key.symbol, key.timeframe, points)
            return self.fetcher.fetch_batch(key.symbol, key.timeframe, min(points, page_size))
        except UpstreamError as exc:
            LOGGER.warning("Upstream fetch failed for %s: %s", key, exc)
            return []

    def _merge_and_persist(self, key: CacheKey, fresh: list[Candle]) -> Series:
        existing = self.cold.load(key)
        merged = merge(existing, fresh)
        if self.cold.save(key, merged):
            current = self.cold.load(key) or merged
        else:
            LOGGER.warning("Keeping %d merged points for %s in memory only", len(merged), key)
            current = merged
        LOGGER.info(
            "Updated %s: %d -> %d points (added %d)",
            key,
            len(existing),
            len(current),
            len(current) - len(existing),
        )
        return current
