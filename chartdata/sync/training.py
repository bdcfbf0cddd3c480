from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable

import pandas as pd

from chartdata.data.candles import CacheKey, series_to_frame
from chartdata.sync.freshness import FreshnessPolicy
from chartdata.sync.orchestrator import SyncOrchestrator

LOGGER = logging.getLogger(__name__)

Trainer = Callable[[str, str, pd.DataFrame], None]


@dataclass(slots=True)
class TrainingOutcome:
    symbol: str
    timeframe: str
    points: int
    required: int
    sufficient: bool
    trained: bool = False


@dataclass(slots=True)
class TrainingReport:
    outcomes: list[TrainingOutcome] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def trained_count(self) -> int:
        return sum(1 for item in self.outcomes if item.trained)

    @property
    def insufficient(self) -> list[str]:
        return [f"{item.symbol} {item.timeframe}" for item in self.outcomes if not item.sufficient]


class TrainingDataCollector:
    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        *,
        policy: FreshnessPolicy | None = None,
        trainer: Trainer | None = None,
    ):
        self.orchestrator = orchestrator
        self.policy = policy or orchestrator.policy
        self.trainer = trainer

    def collect_symbol(self, symbol: str, timeframe: str) -> TrainingOutcome:
        key = CacheKey.of(symbol, timeframe)
        series = self.orchestrator.get_ml_training_data(key.symbol, key.timeframe)
        minimum = self.policy.min_training_points(key.timeframe)
        outcome = TrainingOutcome(
            symbol=key.symbol,
            timeframe=key.timeframe,
            points=len(series),
            required=minimum,
            sufficient=len(series) >= minimum,
        )
        if not outcome.sufficient:
            LOGGER.warning(
                "Insufficient data for %s: %d points (need %d+)",
                key,
                outcome.points,
                minimum,
            )
            return outcome
        if self.trainer is None:
            return outcome
        self.trainer(key.symbol, key.timeframe, series_to_frame(series))
        outcome.trained = True
        LOGGER.info("Handed %d points of %s to trainer", outcome.points, key)
        return outcome

    def collect_all(self, symbols: Iterable[str], timeframes: Iterable[str]) -> TrainingReport:
        LOGGER.info("Starting training data collection")
        report = TrainingReport()
        tf_list = list(timeframes)
        for symbol in symbols:
            for timeframe in tf_list:
                label = f"{symbol} {timeframe}"
                try:
                    report.outcomes.append(self.collect_symbol(symbol, timeframe))
                except Exception as exc:  # noqa: BLE001
                    LOGGER.exception("Training data collection failed for %s", label)
                    report.failed[label] = str(exc)
        LOGGER.info(
            "Training data collection complete: %d trained, %d insufficient, %d failed",
            report.trained_count,
            len(report.insufficient),
            len(report.failed),
        )
        return report
