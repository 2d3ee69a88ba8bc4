"""
Shared helpers for record models.

Every stored record is a pydantic model dumped in JSON mode:
ids are UUID4 strings, dates are ISO "YYYY-MM-DD" strings and
timestamps are timezone-aware UTC datetimes.
"""

from datetime import date, datetime, timezone
from typing import Callable
from uuid import uuid4


Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


def period_key(day: date) -> str:
    """Month bucket used by usage statistics ("2025-01")."""
    return f"{day.year:04d}-{day.month:02d}"
