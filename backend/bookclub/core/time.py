from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Return an aware UTC timestamp.

    Use this instead of datetime.utcnow() to avoid tz-naive datetimes and
    upcoming stdlib deprecations.
    """

    return datetime.now(timezone.utc)


def as_aware_utc(dt: datetime) -> datetime:
    # SQLite returns tz-naive datetimes even for DateTime(timezone=True) columns.
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def isoformat_z(dt: datetime) -> str:
    """Serialize a datetime as ISO 8601 with a trailing 'Z' for UTC."""

    return as_aware_utc(dt).isoformat().replace("+00:00", "Z")
