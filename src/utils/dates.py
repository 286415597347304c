"""Datetime helpers."""

from datetime import datetime, timezone


def as_utc(value: datetime) -> datetime:
    """
    Return ``value`` as an aware UTC datetime.

    Naive values are taken to be UTC already (SQLite drops tzinfo on
    round-trip).
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
