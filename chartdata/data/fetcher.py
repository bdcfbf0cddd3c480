from __future__ import annotations

import logging
import math
import time
from typing import Any, Callable, Protocol

from chartdata.clock import ms_to_datetime
from chartdata.data.binance_client import MAX_KLINES_LIMIT, MalformedResponseError, UpstreamError
from chartdata.data.candles import Candle, candles_from_klines, normalize_symbol, timeframe_to_interval
from chartdata.data.merge import merge

LOGGER = logging.getLogger(__name__)


class KlinesSource(Protocol):
    def get_klines(
        self,
        symbol: str,
        interval: str,
        limit: int,
        end_time: int | None = None,
    ) -> list[list[Any]]:
        ...


class UpstreamFetcher:
    """Paginated, rate-limited retrieval of candle batches.

    Pages walk backward in time. Consecutive upstream calls are separated
    by ``request_delay_seconds``; the delay is never applied after the last
    call of a pagination run.
    """

    def __init__(
        self,
        source: KlinesSource,
        *,
        page_size: int = MAX_KLINES_LIMIT,
        request_delay_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.source = source
        self.page_size = max(1, min(MAX_KLINES_LIMIT, int(page_size)))
        self.request_delay_seconds = max(0.0, float(request_delay_seconds))
        self._sleep = sleep

    def fetch_batch(
        self,
        symbol: str,
        timeframe: str,
        count: int,
        before_ts: int | None = None,
    ) -> list[Candle]:
        """Fetch up to ``count`` candles ending strictly before ``before_ts``.

        Without ``before_ts`` the most recent buckets are returned.
        Raises UpstreamError when the call fails or the payload is malformed.
        """
        symbol_norm = normalize_symbol(symbol)
        size = max(1, min(self.page_size, int(count)))
        end_time = before_ts - 1 if before_ts is not None else None
        payload = self.source.get_klines(
            symbol_norm,
            timeframe_to_interval(timeframe),
            size,
            end_time,
        )
        try:
            batch = candles_from_klines(payload, symbol_norm)
        except ValueError as exc:
            raise MalformedResponseError(str(exc)) from exc
        if before_ts is not None:
            batch = [c for c in batch if c.timestamp < before_ts]
        return batch

    def fetch_deep(self, symbol: str, timeframe: str, total_points: int) -> list[Candle]:
        if total_points <= 0:
            return []
        collected: list[Candle] = []
        remaining = int(total_points)
        before_ts: int | None = None
        max_batches = math.ceil(total_points / self.page_size)
        batch_num = 0

        while remaining > 0 and batch_num < max_batches:
            if batch_num > 0 and self.request_delay_seconds > 0:
                self._sleep(self.request_delay_seconds)
            batch_num += 1
            size = min(remaining, self.page_size)
            LOGGER.info(
                "Batch %d/%d: %d %s for %s (before=%s)",
                batch_num,
                max_batches,
                size,
                timeframe,
                symbol,
                ms_to_datetime(before_ts).isoformat() if before_ts is not None else "latest",
            )
            try:
                batch = self.fetch_batch(symbol, timeframe, size, before_ts)
            except UpstreamError as exc:
                LOGGER.warning(
                    "Deep fetch for %s %s stopped at batch %d: %s",
                    symbol,
                    timeframe,
                    batch_num,
                    exc,
                )
                break
            if not batch:
                break
            collected.extend(batch)
            remaining -= len(batch)
            before_ts = batch[0].timestamp

        merged = list(merge((), collected))
        LOGGER.info(
            "Deep fetch total %d points for %s %s (back to %s)",
            len(merged),
            symbol,
            timeframe,
            ms_to_datetime(merged[0].timestamp).isoformat() if merged else "N/A",
        )
        return merged
