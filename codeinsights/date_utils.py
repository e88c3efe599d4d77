"""Shared timestamp normalization helpers."""
from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Numeric timestamps above this are treated as epoch milliseconds.
_MILLIS_THRESHOLD = 10_000_000_000


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _ensure_utc(value: datetime) -> datetime:
    dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """Convert ISO strings and epoch seconds/milliseconds into aware UTC datetimes."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return _ensure_utc(value)
    if isinstance(value, (int, float)):
        seconds = float(value)
        if abs(seconds) > _MILLIS_THRESHOLD:
            seconds = seconds / 1000.0
        try:
            return datetime.fromtimestamp(seconds, timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        token = value.strip()
        if not token:
            return None
        if token.lstrip("-").isdigit():
            return parse_timestamp(int(token))
        try:
            return _ensure_utc(datetime.fromisoformat(token.replace("Z", "+00:00")))
        except ValueError:
            return None
    return None


def is_epoch(value: datetime) -> bool:
    return _ensure_utc(value) == EPOCH


def format_iso(value: datetime) -> str:
    """Render a datetime as a UTC ISO-8601 string with a Z suffix."""
    return _ensure_utc(value).isoformat().replace("+00:00", "Z")


def file_mtime(path: Path) -> datetime | None:
    try:
        stats = path.stat()
    except OSError:
        return None
    return datetime.fromtimestamp(float(stats.st_mtime), timezone.utc)


def file_mtime_iso(path: Path) -> str:
    modified = file_mtime(path)
    return format_iso(modified) if modified else ""
