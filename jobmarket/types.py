"""
Shared helpers for jobmarket.

Timestamps are timezone-aware UTC datetimes everywhere in the engine.
Identifiers are opaque strings; callers must not parse them.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional, Union


def utc_now() -> datetime:
    """Get current timestamp in UTC."""
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    """Generate a fresh identifier such as ``job_3f2a...``."""
    return f"{prefix}_{uuid.uuid4().hex}"


def parse_datetime(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse an ISO datetime string (or pass a datetime through).

    Naive values are assumed to be UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif not isinstance(value, str):
        raise TypeError(f"Expected an ISO datetime string, got {type(value).__name__}")
    else:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_datetime(value: Optional[datetime]) -> Optional[str]:
    """Format a datetime as ISO string, passing None through."""
    return value.isoformat() if value else None
