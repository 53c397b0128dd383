"""Time utilities for Habitual.

All stored timestamps are timezone-aware UTC and serialized with a fixed
ISO-8601 layout so they compare consistently.
"""

from collections.abc import Callable
from datetime import UTC, datetime

# Injectable clock signature used by the store (tests pass a fake clock)
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(UTC)


def format_timestamp(value: datetime) -> str:
    """Serialize a datetime as ISO-8601 UTC with microseconds.

    Naive datetimes are assumed to already be UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def parse_timestamp(value: str) -> datetime:
    """Parse a stored timestamp back into an aware UTC datetime.

    Accepts both our own format and SQLite's ``datetime('now')`` layout
    (``YYYY-MM-DD HH:MM:SS``), which carries no offset and is UTC.
    """
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)
