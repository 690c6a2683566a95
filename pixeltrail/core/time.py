"""
Time helpers.

All stored timestamps are timezone-aware (UTC). Use these helpers instead of
`datetime.utcnow()` to avoid mixing naive and aware datetimes.
"""

from __future__ import annotations

from datetime import date, datetime, time, timezone


def now_utc() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """
    Coerce a datetime to timezone-aware UTC.

    SQLite drops tzinfo on read, and the pixel may send naive ISO strings; treat
    those as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_timestamp(value) -> datetime | None:
    """
    Parse an ISO-8601 string, date or datetime into an aware UTC datetime.

    Plain dates resolve to midnight UTC. A trailing `Z` is accepted.
    Raises ValueError for unparseable strings.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    text_value = str(value).strip()
    if text_value.endswith("Z"):
        text_value = text_value[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text_value))
