"""Schemas for the weekly schedule, its progress and completion toggles."""
from __future__ import annotations

from datetime import date, datetime, time
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel

CompletionState = Literal["pending", "awaiting_validation", "completed"]


class ScheduledTaskItem(BaseModel):
    id: UUID
    task_id: UUID
    title: str
    description: Optional[str]
    area: Optional[str]
    estimated_hours: Optional[float]
    scheduled_date: date
    scheduled_start: time
    scheduled_end: time
    is_collaborative: bool
    collaborator_user_id: Optional[UUID]
    status: Literal["pending", "completed"]
    completion_state: CompletionState


class DaySchedule(BaseModel):
    scheduled_date: date
    day_name: str
    tasks: List[ScheduledTaskItem]


class GroupedSchedule(BaseModel):
    user_id: UUID
    week_start: date
    period: Literal["filling", "reviewing", "active"]
    is_locked: bool
    days: List[DaySchedule]
    completed_count: int
    total_count: int
    progress_percent: int


class ScheduleResponse(GroupedSchedule):
    request_id: str


class TaskToggleRequest(BaseModel):
    user_id: UUID
    week_start: date
    completed: bool


class TaskValidationRequest(BaseModel):
    user_id: UUID
    leader_id: UUID
    approved: bool


class CompletionOutcomeResponse(BaseModel):
    task_id: UUID
    user_id: UUID
    week_start: date
    status: Literal["pending", "completed"]
    completion_state: CompletionState
    validated_by_leader: Optional[bool]
    completed_at: Optional[datetime]
    request_id: str


class UserProgress(BaseModel):
    user_id: UUID
    completed_count: int
    total_count: int
    progress_percent: int


class ProgressStats(BaseModel):
    week_start: date
    users: List[UserProgress]
    completed_count: int
    total_count: int
    progress_percent: int


class ProgressStatsResponse(ProgressStats):
    request_id: str


class PreviewTask(BaseModel):
    task_id: UUID
    task_title: str
    scheduled_date: date
    scheduled_start: time
    scheduled_end: time
    is_preview: bool = True


class PreviewResponse(BaseModel):
    user_id: UUID
    week_start: date
    tasks: List[PreviewTask]
    generated_at: Optional[datetime]
    request_id: str


class GenerateSchedulesRequest(BaseModel):
    organization_id: Optional[UUID] = None
    force: bool = False


class WeekReadiness(BaseModel):
    week_start: date
    ready_count: int
    total_users: int
    pending_user_ids: List[UUID]
    all_users_ready: bool


class WeekReadinessResponse(WeekReadiness):
    request_id: str


class GenerateSchedulesResponse(BaseModel):
    status: Literal["generated", "waiting", "outside_window", "no_availability"]
    week_start: date
    period: Literal["filling", "reviewing", "active"]
    scheduled_count: int
    users_scheduled: int
    readiness: Optional[WeekReadiness]
    source: Optional[Literal["llm", "fallback"]]
    request_id: str
