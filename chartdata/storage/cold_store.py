from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Sequence

from chartdata.clock import to_utc
from chartdata.data.candles import CacheKey, Candle, Series, normalize_timeframe
from chartdata.data.merge import normalize

LOGGER = logging.getLogger(__name__)


class ColdStore:
    """Durable per-key candle series, one JSON file per (symbol, timeframe).

    ``save`` is a full replace and writes through a temporary file that is
    then renamed over the target, so ``load`` never sees a partial file.
    """

    def __init__(self, data_dir: str | Path):
        self.data_dir = Path(data_dir)
        self._write_lock = threading.Lock()
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            LOGGER.error("Failed to create data directory %s: %s", self.data_dir, exc)

    def path_for(self, key: CacheKey) -> Path:
        return self.data_dir / f"{key.file_stem}.json"

    def load(self, key: CacheKey) -> Series:
        path = self.path_for(key)
        try:
            if not path.exists() or path.stat().st_size == 0:
                return ()
            raw = json.loads(path.read_text(encoding="utf-8"))
            if not isinstance(raw, list):
                raise ValueError(f"expected a JSON array, got {type(raw).__name__}")
            return normalize(Candle.from_dict(item) for item in raw)
        except (OSError, ValueError, KeyError, TypeError) as exc:
            LOGGER.warning("Failed to load data for %s from %s: %s", key, path, exc)
            return ()

    def save(self, key: CacheKey, series: Sequence[Candle]) -> bool:
        if not series:
            LOGGER.warning("No data to save for %s", key)
            return False
        path = self.path_for(key)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        payload = json.dumps([candle.to_dict() for candle in series], ensure_ascii=True)
        with self._write_lock:
            try:
                self.data_dir.mkdir(parents=True, exist_ok=True)
                tmp_path.write_text(payload, encoding="utf-8")
                tmp_path.replace(path)
            except OSError as exc:
                LOGGER.error("Failed to save data for %s: %s", key, exc)
                try:
                    tmp_path.unlink(missing_ok=True)
                except OSError:
                    LOGGER.debug("Could not remove temp file %s", tmp_path)
                return False
        LOGGER.info("Saved %d candles for %s", len(series), key)
        return True

    def last_write_at(self, key: CacheKey) -> datetime | None:
        try:
            mtime = self.path_for(key).stat().st_mtime
        except OSError:
            return None
        return datetime.fromtimestamp(mtime, tz=timezone.utc)

    def last_write_age(self, key: CacheKey, now: datetime) -> timedelta | None:
        written_at = self.last_write_at(key)
        if written_at is None:
            return None
        return max(timedelta(0), to_utc(now) - written_at)

    def keys(self) -> list[CacheKey]:
        if not self.data_dir.exists():
            return []
        found: list[CacheKey] = []
        for path in sorted(self.data_dir.glob("*_*.json")):
            symbol, _, timeframe = path.stem.rpartition("_")
            try:
                found.append(CacheKey.of(symbol, normalize_timeframe(timeframe)))
            except ValueError:
                continue
        return found
