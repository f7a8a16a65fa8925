"""Shared timestamp normalization helpers."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

# Sort key for records without a usable timestamp.
EPOCH_START = datetime.min.replace(tzinfo=timezone.utc)


def _as_utc(value: datetime) -> datetime:
    dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _parse_datetime_token(token: str) -> datetime | None:
    cleaned = token.strip()
    if not cleaned:
        return None
    try:
        return datetime.fromisoformat(cleaned.replace("Z", "+00:00"))
    except ValueError:
        pass
    for fmt in ("%Y-%m-%dT%H:%M:%S.%f%z", "%Y-%m-%d %H:%M:%S"):
        try:
            parsed = datetime.strptime(cleaned, fmt)
        except ValueError:
            continue
        return parsed
    return None


def _to_utc_or_none(value: datetime) -> datetime | None:
    # Offsets near datetime.min/max can shift the value out of range.
    try:
        return _as_utc(value)
    except (OverflowError, ValueError):
        return None


def parse_timestamp(value: Any) -> datetime | None:
    """Convert transcript timestamps (ISO strings or epoch numbers) to aware UTC datetimes."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return _to_utc_or_none(value)
    if isinstance(value, (int, float)):
        seconds = float(value)
        # Millisecond epochs are common in JS-produced logs.
        if seconds > 1e11:
            seconds /= 1000.0
        try:
            return datetime.fromtimestamp(seconds, timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        parsed = _parse_datetime_token(value)
        return _to_utc_or_none(parsed) if parsed else None
    return None


def sort_timestamp(value: datetime | None) -> datetime:
    return value if value is not None else EPOCH_START
