from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Sequence

from chartdata.data.candles import CacheKey, Candle, Series


@dataclass(slots=True, frozen=True)
class _HotEntry:
    recent: Series
    stored_at: float


class HotCache:
    """Most-recent-N slice per key; the fastest read path.

    A lookup only hits when the slice already holds at least the requested
    number of points.
    """

    def __init__(
        self,
        *,
        max_points: int = 50,
        ttl_seconds: float = 600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_points = max(1, int(max_points))
        self.ttl_seconds = max(0.0, float(ttl_seconds))
        self._clock = clock
        self._entries: dict[CacheKey, _HotEntry] = {}

    def get(self, key: CacheKey, limit: int) -> Series | None:
        entry = self._entries.get(key)
        if entry is None or not entry.recent:
            return None
        if self._clock() - entry.stored_at > self.ttl_seconds:
            if self._entries.get(key) is entry:
                self._entries.pop(key, None)
            return None
        if len(entry.recent) < limit:
            return None
        return entry.recent[-limit:]

    def put(self, key: CacheKey, series: Sequence[Candle]) -> None:
        recent = tuple(series[-self.max_points:])
        self._entries[key] = _HotEntry(recent=recent, stored_at=self._clock())

    def invalidate(self, key: CacheKey) -> None:
        self._entries.pop(key, None)

    def clear(self) -> int:
        size = len(self._entries)
        self._entries.clear()
        return size

    def __len__(self) -> int:
        return len(self._entries)
