from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def window_start(days: int) -> datetime:
    """Start of a trailing reporting window of `days` days ending now."""
    return utcnow() - timedelta(days=days)


def start_of_day(value: Optional[datetime] = None) -> datetime:
    value = value or utcnow()
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def parse_iso_date(value) -> Optional[date]:
    """
    Parse an expiry-style date.

    Accepts date objects, datetimes (date part kept) and "YYYY-MM-DD" strings
    (a trailing time component is ignored).
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    s = str(value).strip()
    if not s:
        return None
    return date.fromisoformat(s[:10])


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")


def to_iso_date(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value is not None else None
