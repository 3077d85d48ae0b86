"""Utility functions for datetime operations."""

from datetime import datetime, timedelta, UTC, timezone


def utc_now():
    """Return the current UTC datetime in a timezone-aware format."""
    return datetime.now(UTC)


def make_aware(dt):
    """Convert a naive datetime to UTC-aware datetime.

    SQLite hands back naive values for timezone-aware columns, so anything
    read from the queue table goes through here before it is compared or
    serialized.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def seconds_ago(seconds: float, now=None):
    """Return the aware datetime ``seconds`` before ``now`` (default: utc_now)."""
    return make_aware(now or utc_now()) - timedelta(seconds=seconds)
