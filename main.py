from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import sys
import threading
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from chartdata.cache.hot import HotCache
from chartdata.cache.warm import WarmCache
from chartdata.clock import ms_to_datetime, parse_hhmm, utc_now
from chartdata.config import AppConfig, load_config
from chartdata.data.binance_client import BinanceClient, UpstreamError
from chartdata.data.fetcher import UpstreamFetcher
from chartdata.live.buffer import LiveSeriesBuffer, PriceUpdate
from chartdata.storage.cold_store import ColdStore
from chartdata.sync import (
    JobScheduler,
    ScheduledJob,
    SyncOrchestrator,
    TrainingDataCollector,
)

LOGGER = logging.getLogger("chartdata")


@dataclass(slots=True)
class Services:
    config: AppConfig
    client: BinanceClient
    cold: ColdStore
    fetcher: UpstreamFetcher
    orchestrator: SyncOrchestrator
    training: TrainingDataCollector
    live: LiveSeriesBuffer


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Tiered OHLCV candle cache and Binance sync service")
    mode_group = parser.add_mutually_exclusive_group()
    mode_group.add_argument("--serve", action="store_true", help="Run the background scheduler until interrupted")
    mode_group.add_argument("--get", metavar="SYMBOL", default=None, help="Print the latest candles for SYMBOL as JSON")
    mode_group.add_argument("--refresh-all", action="store_true", help="Run one incremental refresh over configured pairs")
    mode_group.add_argument("--collect-training", action="store_true", help="Collect training data for configured pairs")
    mode_group.add_argument("--status", action="store_true", help="List persisted series with point counts and ages")

    parser.add_argument("--timeframe", default="1d")
    parser.add_argument("--limit", type=int, default=100)
    parser.add_argument("--config", default="config.yaml", help="Path to YAML config")
    parser.add_argument("--log-level", default=None, help="Overrides LOG_LEVEL")
    return parser.parse_args(argv)


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def apply_env_overrides(config: AppConfig) -> AppConfig:
    klines_url = (os.getenv("KLINES_URL") or "").strip()
    if klines_url:
        config.upstream.klines_url = klines_url
    data_dir = (os.getenv("CHARTDATA_DATA_DIR") or "").strip()
    if data_dir:
        config.storage.data_dir = data_dir
    return config


def build_services(config: AppConfig, root: Path) -> Services:
    upstream = config.upstream
    client = BinanceClient(
        upstream.klines_url,
        quote_asset=upstream.quote_asset,
        timeout_seconds=upstream.timeout_seconds,
        rate_limit_rps=upstream.rate_limit_rps,
        rate_limit_burst=upstream.rate_limit_burst,
        request_max_attempts=upstream.request_max_attempts,
        backoff_base_seconds=upstream.backoff_base_seconds,
        backoff_max_seconds=upstream.backoff_max_seconds,
    )
    fetcher = UpstreamFetcher(
        client,
        page_size=upstream.page_size,
        request_delay_seconds=upstream.request_delay_seconds,
    )
    data_dir = Path(config.storage.data_dir)
    if not data_dir.is_absolute():
        data_dir = root / data_dir
    cold = ColdStore(data_dir)
    policy = config.freshness.build_policy()
    orchestrator = SyncOrchestrator(
        cold,
        fetcher,
        hot=HotCache(max_points=config.hot_cache.max_points, ttl_seconds=config.hot_cache.ttl_seconds),
        warm=WarmCache(max_keys=config.warm_cache.max_keys, ttl_seconds=config.warm_cache.ttl_seconds),
        policy=policy,
        deep_fetch_timeframes=config.freshness.deep_fetch_timeframes,
        refresh_retry_seconds=config.sync.refresh_retry_seconds,
        pair_delay_seconds=config.sync.pair_delay_seconds,
    )
    return Services(
        config=config,
        client=client,
        cold=cold,
        fetcher=fetcher,
        orchestrator=orchestrator,
        training=TrainingDataCollector(orchestrator, policy=policy),
        live=LiveSeriesBuffer(config.live.capacity),
    )


def seed_live_buffer(services: Services) -> None:
    live_cfg = services.config.live
    for symbol in services.config.schedule.symbols:
        try:
            series = services.orchestrator.get_data(symbol, live_cfg.seed_timeframe, live_cfg.seed_points)
        except Exception:  # noqa: BLE001
            LOGGER.exception("Failed to seed live buffer for %s", symbol)
            continue
        if not series:
            LOGGER.warning("No history to seed live buffer for %s", symbol)
            continue
        size = services.live.seed(symbol, (PriceUpdate.from_candle(candle) for candle in series))
        LOGGER.info(
            "Seeded %s with %d points (back to %s)",
            symbol,
            size,
            ms_to_datetime(series[0].timestamp).date().isoformat(),
        )
    services.live.log_status()


def poll_live_prices(services: Services) -> None:
    timeframe = services.config.live.poll_timeframe
    for symbol in services.config.schedule.symbols:
        try:
            batch = services.fetcher.fetch_batch(symbol, timeframe, 1)
        except UpstreamError as exc:
            LOGGER.warning("Live poll failed for %s: %s", symbol, exc)
            continue
        if batch:
            services.live.append(PriceUpdate.from_candle(batch[-1]))


def build_jobs(services: Services) -> list[ScheduledJob]:
    schedule = services.config.schedule
    orchestrator = services.orchestrator
    jobs: list[ScheduledJob] = []
    if schedule.incremental_refresh_at:
        pairs = schedule.pairs(schedule.incremental_timeframes)
        jobs.append(
            ScheduledJob(
                name="incremental-refresh",
                action=lambda: orchestrator.refresh_all(pairs),
                at_utc=parse_hhmm(schedule.incremental_refresh_at),
            )
        )
    if schedule.training_at or schedule.startup_training_delay_seconds is not None:
        jobs.append(
            ScheduledJob(
                name="training-collection",
                action=lambda: services.training.collect_all(schedule.symbols, schedule.training_timeframes),
                at_utc=parse_hhmm(schedule.training_at) if schedule.training_at else None,
                first_run_delay_seconds=schedule.startup_training_delay_seconds,
            )
        )
    if services.config.live.poll_seconds is not None:
        jobs.append(
            ScheduledJob(
                name="live-poll",
                action=lambda: poll_live_prices(services),
                interval_seconds=services.config.live.poll_seconds,
            )
        )
    return jobs


def run_serve(services: Services) -> None:
    if services.config.live.seed_from_history:
        seed_live_buffer(services)
    scheduler = JobScheduler(build_jobs(services), poll_seconds=services.config.schedule.loop_seconds)
    stop_event = threading.Event()

    def _stop(signum: int, _frame: object) -> None:
        LOGGER.info("Received signal %s, shutting down.", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _stop)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, _stop)

    scheduler.start()
    try:
        while not stop_event.is_set():
            stop_event.wait(services.config.schedule.loop_seconds)
    finally:
        scheduler.stop()
        LOGGER.info("Upstream metrics: %s", services.client.metrics_snapshot())


def print_candles(services: Services, symbol: str, timeframe: str, limit: int) -> None:
    series = services.orchestrator.get_data(symbol, timeframe, limit)
    json.dump([candle.to_dict() for candle in series], sys.stdout, indent=2)
    sys.stdout.write("\n")


def print_status(services: Services) -> None:
    now = utc_now()
    rows = []
    for key in services.cold.keys():
        series = services.cold.load(key)
        age = services.cold.last_write_age(key, now)
        rows.append(
            {
                "symbol": key.symbol,
                "timeframe": key.timeframe,
                "points": len(series),
                "age_hours": round(age.total_seconds() / 3600.0, 2) if age is not None else None,
                "stale": services.orchestrator.policy.is_stale(key, age),
                "first": ms_to_datetime(series[0].timestamp).isoformat() if series else None,
                "last": ms_to_datetime(series[-1].timestamp).isoformat() if series else None,
            }
        )
    json.dump(rows, sys.stdout, indent=2)
    sys.stdout.write("\n")


def run(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    load_dotenv()
    setup_logging(args.log_level or os.getenv("LOG_LEVEL", "INFO"))

    root = Path.cwd()
    config_path = Path(args.config)
    if not config_path.is_absolute():
        config_path = root / config_path
    config = apply_env_overrides(load_config(config_path))
    services = build_services(config, root)
    LOGGER.info(
        "Starting chartdata | data_dir=%s | symbols=%s",
        services.cold.data_dir,
        ",".join(config.schedule.symbols),
    )

    if args.get:
        if args.limit < 1:
            LOGGER.error("--limit must be >= 1")
            return 2
        try:
            print_candles(services, args.get, args.timeframe, args.limit)
        except ValueError as exc:
            LOGGER.error("Invalid request: %s", exc)
            return 2
        return 0
    if args.refresh_all:
        report = services.orchestrator.refresh_all(config.schedule.pairs(config.schedule.incremental_timeframes))
        return 1 if report.failed else 0
    if args.collect_training:
        training_report = services.training.collect_all(config.schedule.symbols, config.schedule.training_timeframes)
        return 1 if training_report.failed else 0
    if args.status:
        print_status(services)
        return 0

    run_serve(services)
    return 0


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
