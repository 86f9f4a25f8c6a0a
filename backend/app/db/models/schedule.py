"""Materialized weekly schedule ORM models."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Time,
    UniqueConstraint,
    func,
    text as sa_text,
)
from sqlalchemy.dialects.postgresql import UUID

from app.db.base import Base, JSONBCompat


class ScheduledTask(Base):
    __tablename__ = "task_schedule"
    __table_args__ = (
        UniqueConstraint("task_id", "user_id", "week_start", name="uq_task_schedule_task_user_week"),
        Index("ix_task_schedule_user_week", "user_id", "week_start"),
        CheckConstraint("status IN ('pending', 'completed')", name="ck_task_schedule_status"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    task_id = Column(UUID(as_uuid=True), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    week_start = Column(Date, nullable=False)
    scheduled_date = Column(Date, nullable=False)
    scheduled_start = Column(Time, nullable=False)
    scheduled_end = Column(Time, nullable=False)
    is_collaborative = Column(Boolean, nullable=False, default=False, server_default=sa_text("false"))
    collaborator_user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    # Denormalized from task_completions; kept in step by app.services.task_completion.
    status = Column(String(length=20), nullable=False, default="pending", server_default=sa_text("'pending'"))
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    __mapper_args__ = {"version_id_col": version}


class WeeklySchedulePreview(Base):
    __tablename__ = "weekly_schedule_previews"
    __table_args__ = (
        UniqueConstraint("user_id", "week_start", name="uq_weekly_schedule_previews_user_week"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    week_start = Column(Date, nullable=False)
    preview_data = Column(JSONBCompat, nullable=False, default=dict)
    # Lower values were generated earlier and take priority when negotiating slots.
    priority_order = Column(BigInteger, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
