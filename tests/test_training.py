from __future__ import annotations

import pandas as pd

from chartdata.data.candles import Candle
from chartdata.sync.freshness import FreshnessPolicy
from chartdata.sync.training import TrainingDataCollector

DAY_MS = 86_400_000


class _FakeOrchestrator:
    def __init__(self, sizes: dict[tuple[str, str], int], broken: set[str] | None = None):
        self.sizes = sizes
        self.broken = broken or set()
        self.policy = FreshnessPolicy()
        self.calls: list[tuple[str, str]] = []

    def get_ml_training_data(self, symbol: str, timeframe: str) -> list[Candle]:
        self.calls.append((symbol, timeframe))
        if symbol in self.broken:
            raise RuntimeError("disk gone")
        count = self.sizes.get((symbol, timeframe), 0)
        return [Candle(symbol, (i + 1) * DAY_MS, 1.0, 2.0, 0.5, float(i), 1.0) for i in range(count)]


def test_insufficient_data_is_reported_not_trained() -> None:
    trained: list[str] = []
    collector = TrainingDataCollector(
        _FakeOrchestrator({("BTC", "1d"): 120}),
        trainer=lambda symbol, timeframe, frame: trained.append(symbol),
    )
    outcome = collector.collect_symbol("BTC", "1d")
    assert outcome.points == 120
    assert outcome.required == 400
    assert not outcome.sufficient
    assert not outcome.trained
    assert trained == []


def test_sufficient_data_is_handed_to_trainer_as_frame() -> None:
    frames: list[pd.DataFrame] = []
    collector = TrainingDataCollector(
        _FakeOrchestrator({("BTC", "1w"): 250}),
        trainer=lambda symbol, timeframe, frame: frames.append(frame),
    )
    outcome = collector.collect_symbol("btc", "1W")
    assert outcome.symbol == "BTC"
    assert outcome.timeframe == "1w"
    assert outcome.sufficient
    assert outcome.trained
    assert len(frames) == 1
    assert len(frames[0]) == 250
    assert frames[0]["close"].iloc[-1] == 249.0


def test_without_trainer_only_collects() -> None:
    collector = TrainingDataCollector(_FakeOrchestrator({("BTC", "1h"): 600}))
    outcome = collector.collect_symbol("BTC", "1h")
    assert outcome.sufficient
    assert not outcome.trained


def test_collect_all_tolerates_per_pair_failures() -> None:
    orchestrator = _FakeOrchestrator({("BTC", "1d"): 500, ("BTC", "4h"): 10}, broken={"SOL"})
    collector = TrainingDataCollector(orchestrator, trainer=lambda *_: None)
    report = collector.collect_all(["BTC", "SOL"], ["1d", "4h"])
    assert report.trained_count == 1
    assert report.insufficient == ["BTC 4h"]
    assert sorted(report.failed) == ["SOL 1d", "SOL 4h"]
    assert len(orchestrator.calls) == 4
