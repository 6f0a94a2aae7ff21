"""Shared parsing helpers for request payloads coming from field clients.

Field clients run several app versions at once, so ids and dates arrive as
ints, numeric strings or ISO strings interchangeably.
"""
import logging
from datetime import date, datetime, timezone

logger = logging.getLogger(__name__)


def utcnow():
    return datetime.now(timezone.utc)


def as_int(value):
    """Coerce ints and numeric strings to int; anything else → None."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_date(value):
    """Parse a date string (ISO date or ISO datetime) to a date object.

    Returns None for empty/invalid input.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).date()
    except (ValueError, TypeError):
        return None


def split_multi(values):
    """Flatten repeated and comma-joined query values into one list.

    ``["a,b", "c"]`` → ``["a", "b", "c"]``; blanks are dropped.
    """
    out = []
    for raw in values or []:
        for part in str(raw).split(","):
            part = part.strip()
            if part:
                out.append(part)
    return out
