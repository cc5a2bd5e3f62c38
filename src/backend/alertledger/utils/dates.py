"""
Timestamp helpers. Everything stored or compared is timezone-aware UTC.
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import TypeAdapter

_DATETIME = TypeAdapter(datetime)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC. None means now."""
    if value is None:
        return utcnow()
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(value: datetime) -> str:
    """Serialize the same way pydantic serializes model datetimes, so filters line up with stored rows."""
    return _DATETIME.dump_python(ensure_utc(value), mode='json')
