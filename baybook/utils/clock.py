"""Naive-UTC timestamps, matching what the local cache stores."""

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)
