from __future__ import annotations

import logging
import random
import threading
import time
from dataclasses import asdict, dataclass
from typing import Any

import requests

LOGGER = logging.getLogger(__name__)

DEFAULT_KLINES_URL = "https://api.binance.com/api/v3/klines"
MAX_KLINES_LIMIT = 1000


class UpstreamError(RuntimeError):
    """Upstream kline API failure. Callers treat it as an empty batch."""


class UpstreamUnavailableError(UpstreamError):
    """Transport error, timeout or non-2xx response."""


class MalformedResponseError(UpstreamError):
    """Response body does not have the klines shape."""


@dataclass(slots=True)
class BinanceClientMetrics:
    total_requests: int = 0
    total_retries: int = 0
    http_429_count: int = 0
    network_errors: int = 0
    limiter_waits: int = 0
    request_weight: int = 0


def klines_request_weight(limit: int) -> int:
    """Binance weight of one klines call for ``limit`` rows."""
    if limit <= 100:
        return 1
    if limit <= 500:
        return 2
    if limit <= MAX_KLINES_LIMIT:
        return 5
    return 10


class WeightedTokenBucket:
    """Token bucket where each call spends its request weight.

    ``acquire`` blocks until the bucket holds ``weight`` tokens and returns
    how long it waited. A weight above the burst size is capped at the burst.
    """

    def __init__(self, weight_per_second: float, burst: int):
        self.weight_per_second = max(0.1, float(weight_per_second))
        self.capacity = max(1, int(burst))
        self._tokens = float(self.capacity)
        self._refilled_at = time.monotonic()
        self._lock = threading.Lock()

    def acquire(self, weight: int = 1) -> float:
        cost = float(min(max(1, weight), self.capacity))
        waited = 0.0
        while True:
            with self._lock:
                now = time.monotonic()
                self._tokens = min(
                    float(self.capacity),
                    self._tokens + max(0.0, now - self._refilled_at) * self.weight_per_second,
                )
                self._refilled_at = now
                if self._tokens >= cost:
                    self._tokens -= cost
                    return waited
                pause = (cost - self._tokens) / self.weight_per_second
            time.sleep(pause)
            waited += pause


def _retry_after_seconds(response: requests.Response) -> float | None:
    raw = response.headers.get("Retry-After")
    if raw is None or not str(raw).strip():
        return None
    try:
        seconds = float(str(raw).strip())
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


class BinanceClient:
    """
    Thin Binance public klines client.

    Only GET <klines_url> is used; no authentication. The symbol sent
    upstream is the base asset joined with the quote asset (BTC -> BTCUSDT).
    """

    def __init__(
        self,
        klines_url: str = DEFAULT_KLINES_URL,
        *,
        quote_asset: str = "USDT",
        timeout_seconds: float = 10.0,
        rate_limit_rps: float = 5.0,
        rate_limit_burst: int = 5,
        request_max_attempts: int = 3,
        backoff_base_seconds: float = 0.5,
        backoff_max_seconds: float = 20.0,
    ):
        self.klines_url = klines_url.strip()
        self.quote_asset = quote_asset.strip().upper()
        self.timeout_seconds = timeout_seconds
        self.request_max_attempts = max(1, int(request_max_attempts))
        self.backoff_base_seconds = max(0.0, float(backoff_base_seconds))
        self.backoff_max_seconds = max(self.backoff_base_seconds, float(backoff_max_seconds))

        self.session = requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        self._limiter = WeightedTokenBucket(weight_per_second=rate_limit_rps, burst=rate_limit_burst)
        self._metrics = BinanceClientMetrics()
        self._metrics_lock = threading.Lock()

    def _metric_add(self, field_name: str, value: int = 1) -> None:
        with self._metrics_lock:
            setattr(self._metrics, field_name, getattr(self._metrics, field_name) + value)

    def metrics_snapshot(self) -> dict[str, int]:
        with self._metrics_lock:
            snapshot = BinanceClientMetrics(
                total_requests=self._metrics.total_requests,
                total_retries=self._metrics.total_retries,
                http_429_count=self._metrics.http_429_count,
                network_errors=self._metrics.network_errors,
                limiter_waits=self._metrics.limiter_waits,
                request_weight=self._metrics.request_weight,
            )
        return asdict(snapshot)

    def market_symbol(self, symbol: str) -> str:
        base = symbol.strip().upper()
        if self.quote_asset and base.endswith(self.quote_asset) and base != self.quote_asset:
            return base
        return f"{base}{self.quote_asset}"

    def _sleep_retry(self, *, attempt: int, reason: str, retry_after: float | None = None) -> None:
        if retry_after is not None:
            sleep_seconds = max(0.0, retry_after)
        else:
            exponential = min(
                self.backoff_max_seconds,
                self.backoff_base_seconds * (2 ** max(0, attempt - 1)),
            )
            jitter = random.uniform(0.0, max(0.01, exponential * 0.2))
            sleep_seconds = min(self.backoff_max_seconds, exponential + jitter)
        self._metric_add("total_retries", 1)
        LOGGER.warning(
            "Retrying klines call attempt=%d/%d sleep=%.2fs reason=%s",
            attempt,
            self.request_max_attempts,
            sleep_seconds,
            reason,
        )
        time.sleep(sleep_seconds)

    def _send_http(self, params: dict[str, Any]) -> requests.Response:
        weight = klines_request_weight(params["limit"])
        waited = self._limiter.acquire(weight)
        if waited > 0:
            self._metric_add("limiter_waits", 1)
            LOGGER.debug("Rate limiter held klines call %.2fs (weight %d)", waited, weight)
        self._metric_add("total_requests", 1)
        self._metric_add("request_weight", weight)
        return self.session.get(self.klines_url, params=params, timeout=self.timeout_seconds)

    def get_klines(
        self,
        symbol: str,
        interval: str,
        limit: int,
        end_time: int | None = None,
    ) -> list[list[Any]]:
        params: dict[str, Any] = {
            "symbol": self.market_symbol(symbol),
            "interval": interval,
            "limit": max(1, min(MAX_KLINES_LIMIT, int(limit))),
        }
        if end_time is not None:
            params["endTime"] = int(end_time)

        for attempt in range(1, self.request_max_attempts + 1):
            try:
                response = self._send_http(params)
            except requests.RequestException as exc:
                self._metric_add("network_errors", 1)
                if attempt >= self.request_max_attempts:
                    raise UpstreamUnavailableError(
                        f"Network error GET klines {params['symbol']} {interval}: {exc}"
                    ) from exc
                self._sleep_retry(attempt=attempt, reason=f"network:{type(exc).__name__}")
                continue

            if response.status_code == 429:
                self._metric_add("http_429_count", 1)
                if attempt >= self.request_max_attempts:
                    raise UpstreamUnavailableError(
                        f"Rate limited GET klines: HTTP {response.status_code} {response.text}"
                    )
                self._sleep_retry(
                    attempt=attempt,
                    reason="http_429",
                    retry_after=_retry_after_seconds(response),
                )
                continue

            if response.status_code in (500, 502, 503, 504):
                if attempt >= self.request_max_attempts:
                    raise UpstreamUnavailableError(
                        f"Upstream error GET klines: HTTP {response.status_code} {response.text}"
                    )
                self._sleep_retry(attempt=attempt, reason=f"http_{response.status_code}")
                continue

            if response.status_code >= 400:
                raise UpstreamUnavailableError(
                    f"API error GET klines {params['symbol']} {interval}: "
                    f"HTTP {response.status_code} {response.text}"
                )

            try:
                payload = response.json()
            except ValueError as exc:
                raise MalformedResponseError(
                    f"Non-JSON klines response for {params['symbol']} {interval}"
                ) from exc
            if not isinstance(payload, list):
                raise MalformedResponseError(
                    f"Unexpected klines payload type {type(payload).__name__} for {params['symbol']}"
                )
            return payload

        raise UpstreamUnavailableError(f"Could not fetch klines for {params['symbol']} {interval}")
