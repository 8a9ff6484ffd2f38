"""Naive-UTC timestamps, matching what SQLite hands back from DateTime columns."""
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)
