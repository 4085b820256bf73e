"""Datetime parsing and formatting for snapshot times."""

from __future__ import annotations

from datetime import datetime, timezone

import pendulum

# Stored format for snapshot and sync times, always UTC.
STORAGE_FORMAT = "%Y-%m-%d %H:%M:%S"


def parse_datetime(value: str | datetime) -> datetime:
    """Return *value* as a timezone-aware datetime.

    Strings may use a space or ``T`` separator and may omit seconds or the
    offset.  Values without a timezone are taken as UTC.
    """
    if isinstance(value, str):
        value = pendulum.parse(value.strip(), tz="UTC", strict=False)  # type: ignore[assignment]
    if value.tzinfo is None:  # type: ignore[union-attr]
        value = value.replace(tzinfo=timezone.utc)  # type: ignore[union-attr]
    return value  # type: ignore[return-value]


def format_datetime(dt: datetime) -> str:
    """Format *dt* as ``YYYY-MM-DD HH:MM:SS`` in UTC, dropping sub-seconds."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime(STORAGE_FORMAT)


def now_utc() -> datetime:
    """Return the current UTC datetime."""
    return datetime.now(timezone.utc)
