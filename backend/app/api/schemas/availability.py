"""Schemas for weekly availability submission."""
from __future__ import annotations

from datetime import date, datetime, time
from typing import Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field

DayName = Literal["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


class DayAvailabilityPayload(BaseModel):
    available: bool = False
    start: time = time(hour=9, minute=0)
    end: time = time(hour=18, minute=0)


class AvailabilitySubmitRequest(BaseModel):
    user_id: UUID
    week_start: date
    days: Dict[DayName, DayAvailabilityPayload] = Field(default_factory=dict)
    # Range and enum are enforced by the submission flow so errors carry a stable code.
    preferred_hours_per_day: int = 4
    preferred_time_of_day: str = "flexible"


class AvailabilitySubmitResponse(BaseModel):
    user_id: UUID
    week_start: date
    availability_id: UUID
    available_days: List[str]
    generation_queued: bool
    request_id: str


class DayAvailabilityView(BaseModel):
    available: bool
    start: Optional[time]
    end: Optional[time]


class AvailabilityResponse(BaseModel):
    user_id: UUID
    week_start: date
    days: Dict[str, DayAvailabilityView]
    preferred_hours_per_day: int
    preferred_time_of_day: str
    submitted_at: Optional[datetime]
    request_id: str


class AvailabilityExistsResponse(BaseModel):
    user_id: UUID
    week_start: date
    has_availability: bool
    request_id: str
