"""Shared utility functions.

new_id:          collision-free entity ids (<prefix>_<uuid4 hex>)
utc_now:         timezone-aware "now", the single clock for all services
isoformat:       datetime → ISO-8601 string as stored in the aggregate
parse_datetime:  ISO string / date / datetime → aware UTC datetime (None on bad input)
"""
import uuid
from datetime import date, datetime, time, timezone


def new_id(prefix: str) -> str:
    """Return a new entity id such as ``t_3f0c...``."""
    return f"{prefix}_{uuid.uuid4().hex}"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(value: datetime | None = None) -> str:
    """Serialise *value* (default: now) to the ISO-8601 form stored in the aggregate."""
    value = value or utc_now()
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def parse_datetime(value):
    """Parse a timestamp or due date into an aware UTC datetime.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DD (midnight UTC)
    - YYYY-MM-DDTHH:MM:SS[.ffffff][+HH:MM|Z]
    - date / datetime objects (naive values are taken as UTC)
    """
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            try:
                parsed = datetime.combine(date.fromisoformat(text[:10]), time.min)
            except ValueError:
                return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)
