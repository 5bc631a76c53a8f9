"""UTC and site-local timestamp helpers."""

from __future__ import annotations

from datetime import UTC, datetime
from zoneinfo import ZoneInfo


def utc_now() -> datetime:
    return datetime.now(UTC)


def to_utc_iso(moment: datetime) -> str:
    """ISO-8601 UTC with millisecond precision and a ``Z`` suffix."""
    return moment.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def to_local_iso(moment: datetime, timezone: str) -> str:
    """ISO-8601 wall-clock time in ``timezone`` including its UTC offset."""
    return moment.astimezone(ZoneInfo(timezone)).isoformat(timespec="seconds")


def utc_now_iso() -> str:
    return to_utc_iso(utc_now())


__all__ = ["to_local_iso", "to_utc_iso", "utc_now", "utc_now_iso"]
