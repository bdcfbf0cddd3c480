from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, model_validator

from chartdata.clock import parse_hhmm
from chartdata.data.binance_client import DEFAULT_KLINES_URL, MAX_KLINES_LIMIT
from chartdata.data.candles import normalize_symbol, normalize_timeframe
from chartdata.sync.freshness import (
    DEFAULT_INCREMENTAL_POINTS,
    DEFAULT_MAX_AGE_HOURS,
    DEFAULT_MIN_TRAINING_POINTS,
    DEFAULT_REQUIRED_POINTS,
    FreshnessPolicy,
)

LOGGER = logging.getLogger(__name__)


def _normalize_tf_map(name: str, raw: dict[str, Any], *, cast: type) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in raw.items():
        try:
            tf = normalize_timeframe(key)
        except ValueError as exc:
            raise ValueError(f"{name}: {exc}") from exc
        number = cast(value)
        if number <= 0:
            raise ValueError(f"{name}[{tf}] must be > 0")
        out[tf] = number
    return out


def _normalize_tf_list(name: str, raw: list[str]) -> list[str]:
    out: list[str] = []
    for item in raw:
        try:
            tf = normalize_timeframe(item)
        except ValueError as exc:
            raise ValueError(f"{name}: {exc}") from exc
        if tf not in out:
            out.append(tf)
    return out


class UpstreamConfig(BaseModel):
    klines_url: str = DEFAULT_KLINES_URL
    quote_asset: str = "USDT"
    timeout_seconds: float = 15.0
    page_size: int = MAX_KLINES_LIMIT
    request_delay_seconds: float = 1.0
    rate_limit_rps: float = 5.0
    rate_limit_burst: int = 5
    request_max_attempts: int = 3
    backoff_base_seconds: float = 0.5
    backoff_max_seconds: float = 20.0

    @model_validator(mode="after")
    def validate_values(self) -> "UpstreamConfig":
        self.klines_url = str(self.klines_url).strip()
        if not self.klines_url:
            raise ValueError("upstream.klines_url must not be empty")
        self.quote_asset = str(self.quote_asset).strip().upper()
        if not (1 <= self.page_size <= MAX_KLINES_LIMIT):
            raise ValueError(f"upstream.page_size must be in [1,{MAX_KLINES_LIMIT}]")
        if self.request_delay_seconds < 0:
            raise ValueError("upstream.request_delay_seconds must be >= 0")
        if self.timeout_seconds <= 0:
            raise ValueError("upstream.timeout_seconds must be > 0")
        if self.rate_limit_rps <= 0 or self.rate_limit_burst <= 0:
            raise ValueError("upstream rate limit values must be > 0")
        if self.request_max_attempts < 1:
            raise ValueError("upstream.request_max_attempts must be >= 1")
        return self


class StorageConfig(BaseModel):
    data_dir: str = "historical_data"


class HotCacheConfig(BaseModel):
    max_points: int = 50
    ttl_seconds: float = 600.0

    @model_validator(mode="after")
    def validate_values(self) -> "HotCacheConfig":
        if self.max_points <= 0:
            raise ValueError("hot_cache.max_points must be > 0")
        if self.ttl_seconds < 0:
            raise ValueError("hot_cache.ttl_seconds must be >= 0")
        return self


class WarmCacheConfig(BaseModel):
    max_keys: int = 5
    ttl_seconds: float = 600.0

    @model_validator(mode="after")
    def validate_values(self) -> "WarmCacheConfig":
        if self.max_keys <= 0:
            raise ValueError("warm_cache.max_keys must be > 0")
        if self.ttl_seconds < 0:
            raise ValueError("warm_cache.ttl_seconds must be >= 0")
        return self


class FreshnessConfig(BaseModel):
    max_age_hours: dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_MAX_AGE_HOURS))
    default_max_age_hours: float = 24
    required_points: dict[str, int] = Field(default_factory=lambda: dict(DEFAULT_REQUIRED_POINTS))
    default_required_points: int = 100
    min_training_points: dict[str, int] = Field(default_factory=lambda: dict(DEFAULT_MIN_TRAINING_POINTS))
    default_min_training_points: int = 100
    incremental_points: dict[str, int] = Field(default_factory=lambda: dict(DEFAULT_INCREMENTAL_POINTS))
    default_incremental_points: int = 168
    deep_fetch_timeframes: list[str] = Field(default_factory=lambda: ["1d"])

    @model_validator(mode="after")
    def normalize(self) -> "FreshnessConfig":
        self.max_age_hours = _normalize_tf_map("freshness.max_age_hours", self.max_age_hours, cast=float)
        self.required_points = _normalize_tf_map("freshness.required_points", self.required_points, cast=int)
        self.min_training_points = _normalize_tf_map(
            "freshness.min_training_points", self.min_training_points, cast=int
        )
        self.incremental_points = _normalize_tf_map(
            "freshness.incremental_points", self.incremental_points, cast=int
        )
        self.deep_fetch_timeframes = _normalize_tf_list(
            "freshness.deep_fetch_timeframes", self.deep_fetch_timeframes
        )
        for name in (
            "default_max_age_hours",
            "default_required_points",
            "default_min_training_points",
            "default_incremental_points",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"freshness.{name} must be > 0")
        return self

    def build_policy(self) -> FreshnessPolicy:
        return FreshnessPolicy(
            max_age_hours_by_tf=dict(self.max_age_hours),
            default_max_age_hours=self.default_max_age_hours,
            required_points_by_tf=dict(self.required_points),
            default_required_points=self.default_required_points,
            min_training_points_by_tf=dict(self.min_training_points),
            default_min_training_points=self.default_min_training_points,
            incremental_points_by_tf=dict(self.incremental_points),
            default_incremental_points=self.default_incremental_points,
        )


class SyncConfig(BaseModel):
    refresh_retry_seconds: int = 60
    pair_delay_seconds: float = 2.0

    @model_validator(mode="after")
    def validate_values(self) -> "SyncConfig":
        if self.refresh_retry_seconds < 0:
            raise ValueError("sync.refresh_retry_seconds must be >= 0")
        if self.pair_delay_seconds < 0:
            raise ValueError("sync.pair_delay_seconds must be >= 0")
        return self


class LiveConfig(BaseModel):
    capacity: int = 1000
    seed_from_history: bool = True
    seed_timeframe: str = "1d"
    seed_points: int = 1825
    poll_timeframe: str = "1m"
    poll_seconds: float | None = 60.0

    @model_validator(mode="after")
    def validate_values(self) -> "LiveConfig":
        if self.capacity <= 0:
            raise ValueError("live.capacity must be > 0")
        self.seed_timeframe = normalize_timeframe(self.seed_timeframe)
        self.poll_timeframe = normalize_timeframe(self.poll_timeframe)
        if self.poll_seconds is not None and self.poll_seconds <= 0:
            self.poll_seconds = None
        if self.seed_points <= 0:
            raise ValueError("live.seed_points must be > 0")
        return self


class ScheduleConfig(BaseModel):
    symbols: list[str] = Field(default_factory=lambda: ["BTC", "SOL", "TAO", "WIF"])
    incremental_refresh_at: str | None = "02:00"
    incremental_timeframes: list[str] = Field(default_factory=lambda: ["1h", "4h", "1d"])
    training_at: str | None = "03:00"
    training_timeframes: list[str] = Field(default_factory=lambda: ["1h", "4h", "1d", "1w", "1M"])
    startup_training_delay_seconds: float | None = 30.0
    loop_seconds: float = 30.0

    @model_validator(mode="after")
    def normalize(self) -> "ScheduleConfig":
        dedup: list[str] = []
        for raw in self.symbols:
            symbol = normalize_symbol(raw)
            if symbol not in dedup:
                dedup.append(symbol)
        self.symbols = dedup
        for name in ("incremental_refresh_at", "training_at"):
            value = getattr(self, name)
            if value is None or not str(value).strip():
                setattr(self, name, None)
                continue
            parsed = parse_hhmm(value)
            setattr(self, name, f"{parsed.hour:02d}:{parsed.minute:02d}")
        self.incremental_timeframes = _normalize_tf_list(
            "schedule.incremental_timeframes", self.incremental_timeframes
        )
        self.training_timeframes = _normalize_tf_list("schedule.training_timeframes", self.training_timeframes)
        if self.startup_training_delay_seconds is not None and self.startup_training_delay_seconds < 0:
            raise ValueError("schedule.startup_training_delay_seconds must be >= 0")
        if self.loop_seconds <= 0:
            raise ValueError("schedule.loop_seconds must be > 0")
        return self

    def pairs(self, timeframes: list[str]) -> list[tuple[str, str]]:
        return [(symbol, tf) for symbol in self.symbols for tf in timeframes]


class AppConfig(BaseModel):
    upstream: UpstreamConfig = Field(default_factory=UpstreamConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    hot_cache: HotCacheConfig = Field(default_factory=HotCacheConfig)
    warm_cache: WarmCacheConfig = Field(default_factory=WarmCacheConfig)
    freshness: FreshnessConfig = Field(default_factory=FreshnessConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    live: LiveConfig = Field(default_factory=LiveConfig)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)


def load_config(path: str | Path) -> AppConfig:
    config_path = Path(path)
    if not config_path.exists():
        LOGGER.warning("Config file %s not found, using defaults", config_path)
        return AppConfig()
    with config_path.open("r", encoding="utf-8") as file:
        raw: dict[str, Any] = yaml.safe_load(file) or {}
    return AppConfig.model_validate(raw)
