"""Shared helpers for storage backends."""

from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime, timezone


def dt_to_str(dt: datetime) -> str:
    """Fixed-width ISO-8601 in UTC, so stored values sort chronologically."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def str_to_dt(s: str) -> datetime:
    parsed = datetime.fromisoformat(s)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def chunked(items: list[str], size: int) -> Iterator[list[str]]:
    """Yield successive slices of *items* no longer than *size*."""
    for start in range(0, len(items), size):
        yield items[start:start + size]
