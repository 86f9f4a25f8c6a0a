"""Schemas for job operations endpoints."""
from __future__ import annotations

from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel


class JobRunRequest(BaseModel):
    job: Literal["weekly_schedules", "reconcile"]
    organization_id: Optional[UUID] = None
    force: bool = False


class JobRunResponse(BaseModel):
    job: str
    status: str
    items_processed: int
    items_changed: int
    request_id: str
