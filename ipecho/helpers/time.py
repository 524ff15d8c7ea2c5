"""Date and time utilities."""

from datetime import UTC, datetime


def utcnow() -> datetime:
    """Get the current UTC datetime.

    Returns:
        The current datetime with UTC timezone.
    """
    return datetime.now(tz=UTC)


def ensure_aware(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt
