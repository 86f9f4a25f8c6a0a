"""Wall-clock access, kept injectable so the weekly cycle can be tested at fixed instants."""
from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def get_now() -> datetime:
    """FastAPI dependency returning the current aware instant.

    Tests replace it through ``app.dependency_overrides[get_now]``.
    """
    return utcnow()
