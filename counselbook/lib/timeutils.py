"""
Datetime helpers. All booking times are stored and compared in UTC.
"""
from datetime import datetime, timezone
from typing import Optional, Union


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops offsets) and convert aware ones."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime(value: Union[str, datetime, None]) -> Optional[datetime]:
    """
    Parse an ISO-8601 string (``Z`` suffix accepted) or pass a datetime through.

    Raises:
        ValueError: If the value is not a datetime or a valid ISO-8601 string
    """
    if value is None or isinstance(value, datetime):
        return as_utc(value)
    if not isinstance(value, str):
        raise ValueError(f"Expected ISO-8601 string, got {type(value).__name__}")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return as_utc(datetime.fromisoformat(text))


def format_session_time(value: datetime) -> str:
    """Human-readable session time used in emails."""
    return as_utc(value).strftime("%A, %B %d, %Y at %I:%M %p UTC")
