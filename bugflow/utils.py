"""Small time helpers shared by models and services."""

from datetime import datetime, timedelta, timezone


def utcnow():
    return datetime.now(timezone.utc)


def as_utc(value):
    """Normalize a datetime to aware UTC. SQLite hands back naive values."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def next_timestamp(previous):
    """Return now, nudged past ``previous`` so timestamps strictly advance."""
    now = utcnow()
    previous = as_utc(previous)
    if previous is not None and now <= previous:
        now = previous + timedelta(microseconds=1)
    return now


def isoformat(value):
    value = as_utc(value)
    return value.isoformat() if value else None
