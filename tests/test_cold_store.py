from __future__ import annotations

import json
import os
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path

from chartdata.data.candles import CacheKey, Candle
from chartdata.storage.cold_store import ColdStore

DAY_MS = 86_400_000
KEY = CacheKey.of("BTC", "1d")


def _series(*days: int) -> list[Candle]:
    return [Candle("BTC", day * DAY_MS, 1.0, 2.0, 0.5, 1.5, 10.0) for day in days]


def test_load_missing_returns_empty(tmp_path: Path) -> None:
    store = ColdStore(tmp_path / "data")
    assert store.load(KEY) == ()
    assert store.last_write_at(KEY) is None
    assert store.last_write_age(KEY, datetime.now(timezone.utc)) is None


def test_save_then_load_returns_canonical_series(tmp_path: Path) -> None:
    store = ColdStore(tmp_path)
    assert store.save(KEY, _series(1, 2, 3)) is True
    assert store.load(KEY) == tuple(_series(1, 2, 3))
    assert store.path_for(KEY).name == "BTC_1d.json"
    assert not list(tmp_path.glob("*.tmp"))


def test_save_is_full_replace(tmp_path: Path) -> None:
    store = ColdStore(tmp_path)
    store.save(KEY, _series(1, 2, 3))
    store.save(KEY, _series(7))
    assert [c.timestamp for c in store.load(KEY)] == [7 * DAY_MS]


def test_save_empty_is_rejected(tmp_path: Path) -> None:
    store = ColdStore(tmp_path)
    assert store.save(KEY, []) is False
    assert not store.path_for(KEY).exists()


def test_corrupt_file_loads_as_empty(tmp_path: Path) -> None:
    store = ColdStore(tmp_path)
    store.path_for(KEY).write_text("{not json", encoding="utf-8")
    assert store.load(KEY) == ()
    store.path_for(KEY).write_text(json.dumps({"a": 1}), encoding="utf-8")
    assert store.load(KEY) == ()
    store.path_for(KEY).write_text(json.dumps([{"symbol": "BTC"}]), encoding="utf-8")
    assert store.load(KEY) == ()


def test_empty_file_loads_as_empty(tmp_path: Path) -> None:
    store = ColdStore(tmp_path)
    store.path_for(KEY).write_text("", encoding="utf-8")
    assert store.load(KEY) == ()


def test_unsorted_file_is_normalized_on_load(tmp_path: Path) -> None:
    store = ColdStore(tmp_path)
    rows = [c.to_dict() for c in _series(3, 1, 3, 2)]
    store.path_for(KEY).write_text(json.dumps(rows), encoding="utf-8")
    assert [c.timestamp // DAY_MS for c in store.load(KEY)] == [1, 2, 3]


def test_last_write_age_follows_file_mtime(tmp_path: Path) -> None:
    store = ColdStore(tmp_path)
    store.save(KEY, _series(1))
    old = time.time() - 5 * 3600
    os.utime(store.path_for(KEY), (old, old))
    age = store.last_write_age(KEY, datetime.now(timezone.utc))
    assert age is not None
    assert timedelta(hours=4, minutes=59) < age < timedelta(hours=5, minutes=1)


def test_save_failure_keeps_previous_file(tmp_path: Path, monkeypatch) -> None:
    store = ColdStore(tmp_path)
    store.save(KEY, _series(1, 2))

    def _boom(self, target):
        raise OSError("disk full")

    monkeypatch.setattr(Path, "replace", _boom)
    assert store.save(KEY, _series(1, 2, 3)) is False
    monkeypatch.undo()
    assert [c.timestamp // DAY_MS for c in store.load(KEY)] == [1, 2]
    assert not list(tmp_path.glob("*.tmp"))


def test_keys_lists_persisted_series(tmp_path: Path) -> None:
    store = ColdStore(tmp_path)
    store.save(CacheKey.of("BTC", "1d"), _series(1))
    store.save(CacheKey.of("SOL", "4h"), _series(1))
    (tmp_path / "notes.json").write_text("[]", encoding="utf-8")
    (tmp_path / "ETH_15m.json").write_text("[]", encoding="utf-8")
    assert sorted(store.keys(), key=str) == [CacheKey("BTC", "1d"), CacheKey("SOL", "4h")]
