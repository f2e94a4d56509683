"""Timestamp helpers shared by entities and stores."""

from datetime import date, datetime, timezone
from typing import Any, Optional

from .errors import ValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_datetime(value: Any, field: str) -> Optional[datetime]:
    """
    Parse a datetime, date or ISO-8601 string into an aware UTC datetime.

    None and empty strings yield None. Anything unparseable raises
    ValidationError for `field`.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError(field, f"Invalid {field.replace('_', ' ')} format")
    else:
        raise ValidationError(field, f"Invalid {field.replace('_', ' ')} format")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None
