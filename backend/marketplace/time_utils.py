from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def days_from_now(days: int, *, start: Optional[datetime] = None) -> datetime:
    """UTC-naive timestamp `days` days after `start` (default: now)."""
    return (start or utcnow()) + timedelta(days=days)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """ISO-8601 with trailing 'Z'; naive datetimes are treated as UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")
