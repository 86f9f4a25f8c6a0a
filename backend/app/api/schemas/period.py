"""Schemas for the weekly cycle period."""
from __future__ import annotations

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel


class PeriodResponse(BaseModel):
    period: Literal["filling", "reviewing", "active"]
    week_start: date
    active_week_start: date
    opens_at: datetime
    review_at: datetime
    locks_at: datetime
    is_locked: bool
    request_id: str
