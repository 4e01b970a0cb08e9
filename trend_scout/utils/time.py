"""Datetime helpers. All timestamps in the engine are timezone-aware UTC."""

from datetime import datetime, timezone
from typing import Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime(value: Any) -> datetime | None:
    """Parse a datetime, ISO-8601 string or unix seconds. Returns None when unusable."""
    if isinstance(value, datetime):
        return ensure_utc(value)

    if isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return datetime.fromtimestamp(float(text), tz=timezone.utc)
        except ValueError:
            pass
        # Provider datetimes look like "2024-05-01 10:00:00 +00:00"
        candidate = text.replace("Z", "+00:00")
        for fmt in (None, "%Y-%m-%d %H:%M:%S %z", "%Y-%m-%d"):
            try:
                parsed = datetime.fromisoformat(candidate) if fmt is None else datetime.strptime(candidate, fmt)
            except ValueError:
                continue
            return ensure_utc(parsed)

    return None
