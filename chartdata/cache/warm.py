from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Sequence

from chartdata.data.candles import CacheKey, Candle, Series

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class _WarmEntry:
    series: Series
    stored_at: float
    last_access: float


class WarmCache:
    """Bounded TTL cache of full per-key series.

    Holds at most ``max_keys`` keys; when a put would exceed that, the least
    recently accessed other key is evicted. Entries expire ``ttl_seconds``
    after they were stored. Every get/put is a single dict operation, so
    callers working on different keys never wait on each other.
    """

    def __init__(
        self,
        *,
        max_keys: int = 5,
        ttl_seconds: float = 600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_keys = max(1, int(max_keys))
        self.ttl_seconds = max(0.0, float(ttl_seconds))
        self._clock = clock
        self._entries: dict[CacheKey, _WarmEntry] = {}

    def get(self, key: CacheKey) -> Series | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        now = self._clock()
        if now - entry.stored_at > self.ttl_seconds:
            self._drop(key, entry)
            return None
        entry.last_access = now
        return entry.series

    def put(self, key: CacheKey, series: Sequence[Candle]) -> None:
        now = self._clock()
        self._entries[key] = _WarmEntry(series=tuple(series), stored_at=now, last_access=now)
        self._evict_over_capacity(keep=key)

    def invalidate(self, key: CacheKey) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def _drop(self, key: CacheKey, entry: _WarmEntry) -> None:
        # Only remove the entry we inspected; a concurrent put may have replaced it.
        if self._entries.get(key) is entry:
            self._entries.pop(key, None)

    def _evict_over_capacity(self, keep: CacheKey) -> None:
        snapshot = self._entries.copy()
        overflow = len(snapshot) - self.max_keys
        if overflow <= 0:
            return
        candidates = sorted(
            (item for item in snapshot.items() if item[0] != keep),
            key=lambda item: item[1].last_access,
        )
        for victim, entry in candidates[:overflow]:
            self._drop(victim, entry)
            LOGGER.debug("Warm cache evicted %s", victim)
