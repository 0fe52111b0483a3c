"""
mealdrop.engine.clock — Time Helpers
=====================================

All ledger timestamps are timezone-aware UTC.  SQLite hands
``DateTime(timezone=True)`` columns back naive, so anything read from the
store goes through :func:`as_utc` before it is compared.

"Which day did this happen on?" is answered in one configured timezone
(``streak_timezone``), never the server's local clock.
"""

from __future__ import annotations

from datetime import UTC, date, datetime, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Return *value* as an aware UTC datetime (naive values are UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def resolve_timezone(name: str) -> tzinfo:
    """Map an IANA timezone name to a :class:`tzinfo`.

    Raises :class:`ValueError` for unknown names.
    """
    if name.upper() == "UTC":
        return UTC
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone: {name!r}") from exc


def activity_day(moment: datetime, timezone: str = "UTC") -> date:
    """Calendar day of *moment* in *timezone*."""
    return as_utc(moment).astimezone(resolve_timezone(timezone)).date()
