from __future__ import annotations

from datetime import datetime, timezone


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything is stored in UTC."""
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def to_millis(value: datetime | None) -> int:
    aware = as_utc(value)
    return int(aware.timestamp() * 1000) if aware else 0
