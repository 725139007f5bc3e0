"""Opaque pagination cursor over payment creation timestamps.

A cursor is the UTC ISO-8601 creation timestamp (microsecond precision, `Z`
suffix) of the last item of the previous page. The next page holds only items
created strictly earlier.
"""

from datetime import datetime, timezone

from payrail.common.errors import ValidationError


DEFAULT_LIMIT = 20
MAX_LIMIT = 100


def as_utc(value: datetime) -> datetime:
    """Treat naive timestamps (SQLite round-trips) as UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def encode_cursor(created_at: datetime) -> str:
    return as_utc(created_at).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def decode_cursor(cursor: str) -> datetime:
    """Parse a cursor back to an aware UTC datetime."""

    try:
        parsed = datetime.fromisoformat(cursor.strip().replace("Z", "+00:00"))
    except (AttributeError, ValueError) as exc:
        raise ValidationError(f"invalid cursor: {cursor!r}") from exc
    return as_utc(parsed)


def clamp_limit(limit: int | None) -> int:
    """Apply the default page size and the hard cap."""

    if limit is None:
        return DEFAULT_LIMIT
    if limit < 1:
        raise ValidationError("limit must be at least 1")
    return min(limit, MAX_LIMIT)
