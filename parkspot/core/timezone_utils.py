"""
UTC helpers for booking windows.

All booking timestamps are stored and compared in UTC. SQLite hands back
naive datetimes for ``DateTime(timezone=True)`` columns, so every comparison
goes through ``ensure_utc`` first.
"""

from datetime import datetime, timezone
from typing import Optional, overload


def utc_now() -> datetime:
    """Return the current timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


@overload
def ensure_utc(value: datetime) -> datetime:
    ...


@overload
def ensure_utc(value: None) -> None:
    ...


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a datetime to aware UTC (naive values are treated as UTC)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
