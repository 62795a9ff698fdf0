"""UTC clock helpers for row timestamps, idle cut-offs and log records."""

from __future__ import annotations

import datetime as dt
from typing import Optional

UTC = dt.timezone.utc


def now_utc() -> dt.datetime:
    return dt.datetime.now(UTC)


def as_utc(value: dt.datetime) -> dt.datetime:
    """Return ``value`` as an aware UTC datetime.

    SQLite hands timestamps back without an offset; those are stored as UTC
    and only need the zone attached.
    """

    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def idle_cutoff(idle_seconds: float, *, now: Optional[dt.datetime] = None) -> dt.datetime:
    """Rows last touched before the returned instant have idled ``idle_seconds``."""

    reference = as_utc(now) if now is not None else now_utc()
    return reference - dt.timedelta(seconds=idle_seconds)


__all__ = ["UTC", "as_utc", "idle_cutoff", "now_utc"]
