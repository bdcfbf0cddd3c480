from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Sequence

from chartdata.data.candles import CacheKey, Candle, normalize_timeframe

DEFAULT_MAX_AGE_HOURS = {
    "1m": 1,
    "1h": 6,
    "4h": 24,
    "1d": 24,
    "1w": 168,
}
DEFAULT_REQUIRED_POINTS = {
    "1h": 2000,
    "4h": 1000,
    "1d": 1460,
    "1w": 208,
    "1M": 48,
}
DEFAULT_MIN_TRAINING_POINTS = {
    "1h": 500,
    "4h": 500,
    "1d": 400,
    "1w": 200,
    "1M": 100,
}
DEFAULT_INCREMENTAL_POINTS = {
    "1d": 30,
}


@dataclass(slots=True, frozen=True)
class FreshnessWindow:
    required_points: int
    max_age_hours: float


@dataclass(slots=True)
class FreshnessPolicy:
    max_age_hours_by_tf: dict[str, float] = field(default_factory=lambda: dict(DEFAULT_MAX_AGE_HOURS))
    default_max_age_hours: float = 24
    required_points_by_tf: dict[str, int] = field(default_factory=lambda: dict(DEFAULT_REQUIRED_POINTS))
    default_required_points: int = 100
    min_training_points_by_tf: dict[str, int] = field(
        default_factory=lambda: dict(DEFAULT_MIN_TRAINING_POINTS)
    )
    default_min_training_points: int = 100
    incremental_points_by_tf: dict[str, int] = field(
        default_factory=lambda: dict(DEFAULT_INCREMENTAL_POINTS)
    )
    default_incremental_points: int = 168

    def window(self, timeframe: str) -> FreshnessWindow:
        return FreshnessWindow(
            required_points=self.required_points(timeframe),
            max_age_hours=self.max_age_hours(timeframe),
        )

    def max_age_hours(self, timeframe: str) -> float:
        tf = normalize_timeframe(timeframe)
        return float(self.max_age_hours_by_tf.get(tf, self.default_max_age_hours))

    def required_points(self, timeframe: str) -> int:
        tf = normalize_timeframe(timeframe)
        return int(self.required_points_by_tf.get(tf, self.default_required_points))

    def min_training_points(self, timeframe: str) -> int:
        tf = normalize_timeframe(timeframe)
        return int(self.min_training_points_by_tf.get(tf, self.default_min_training_points))

    def incremental_points(self, timeframe: str) -> int:
        tf = normalize_timeframe(timeframe)
        return int(self.incremental_points_by_tf.get(tf, self.default_incremental_points))

    def is_stale(self, key: CacheKey, age: timedelta | None) -> bool:
        """True when nothing is persisted or the last write is too old."""
        if age is None:
            return True
        return age > timedelta(hours=self.max_age_hours(key.timeframe))

    @staticmethod
    def has_enough(series: Sequence[Candle] | None, limit: int) -> bool:
        return series is not None and len(series) >= limit
