from __future__ import annotations

from datetime import datetime, time, timedelta, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def datetime_to_ms(dt: datetime) -> int:
    return int(to_utc(dt).timestamp() * 1000)


def ms_to_datetime(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)


def parse_hhmm(value: str) -> time:
    parts = str(value).strip().split(":")
    if len(parts) != 2:
        raise ValueError(f"Time '{value}' must use HH:MM format")
    try:
        hh = int(parts[0])
        mm = int(parts[1])
    except ValueError as exc:
        raise ValueError(f"Time '{value}' must use HH:MM format") from exc
    if not (0 <= hh <= 23 and 0 <= mm <= 59):
        raise ValueError(f"Time '{value}' must be a valid UTC time")
    return time(hh, mm, tzinfo=timezone.utc)


def next_daily_run(now_utc: datetime, at_utc: time) -> datetime:
    now_utc = to_utc(now_utc)
    candidate = now_utc.replace(
        hour=at_utc.hour,
        minute=at_utc.minute,
        second=0,
        microsecond=0,
    )
    if candidate <= now_utc:
        candidate += timedelta(days=1)
    return candidate


def should_attempt_refresh(
    *,
    now_utc: datetime,
    last_failed_at: datetime | None,
    retry_seconds: int,
) -> bool:
    if last_failed_at is None:
        return True
    return (now_utc - last_failed_at).total_seconds() >= max(0, retry_seconds)
