from __future__ import annotations

from datetime import date, datetime, time, timezone
from uuid import uuid4

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import settings
from app.db.base import Base
from app.db.models.organization import Organization
from app.db.models.schedule import ScheduledTask
from app.db.models.task import Task
from app.db.models.user import User
from app.services.availability_store import DayAvailability, upsert_availability
from app.services.job_runner import run_reconcile_job, run_weekly_schedules_job
from app.worker.scheduler_main import generation_trigger_time

WEEK = date(2026, 1, 14)
REVIEWING_NOW = datetime(2026, 1, 12, 15, 0, tzinfo=timezone.utc)


def _session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )

    @event.listens_for(engine, "connect")
    def set_fk(conn, record):  # pragma: no cover
        cursor = conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    TestingSession = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    Base.metadata.create_all(bind=engine)
    return TestingSession


@pytest.fixture(autouse=True)
def _defaults(monkeypatch):
    monkeypatch.setattr(settings, "scheduling_timezone", "UTC")
    monkeypatch.setattr(settings, "openai_api_key", None)
    monkeypatch.setattr(settings, "notifications_enabled", False)


def _seed_org_member(db, *, with_availability=True):
    org = Organization(id=uuid4(), name=f"Team {uuid4().hex[:6]}")
    db.add(org)
    db.flush()
    user = User(id=uuid4(), organization_id=org.id)
    db.add(user)
    db.flush()
    db.add(Task(user_id=user.id, organization_id=org.id, title="Ship", estimated_hours=1.0))
    if with_availability:
        upsert_availability(
            db,
            user_id=user.id,
            week_start=WEEK,
            days={"tuesday": DayAvailability(True, time(9, 0), time(11, 0))},
            preferred_hours_per_day=2,
            preferred_time_of_day="morning",
            submitted_at=REVIEWING_NOW,
        )
    db.commit()
    return org.id, user.id


def test_weekly_job_runs_every_organization() -> None:
    db = _session()()
    _seed_org_member(db)
    _seed_org_member(db)

    result = run_weekly_schedules_job(db, now=REVIEWING_NOW)

    assert result.status == "generated"
    assert result.items_processed == 2
    assert result.items_changed == 2


def test_weekly_job_reports_waiting_organization() -> None:
    db = _session()()
    ready_org, _ = _seed_org_member(db)
    waiting_org, _ = _seed_org_member(db, with_availability=False)

    waiting = run_weekly_schedules_job(db, now=REVIEWING_NOW, organization_id=waiting_org)
    ready = run_weekly_schedules_job(db, now=REVIEWING_NOW, organization_id=ready_org)

    assert waiting.status == "waiting"
    assert waiting.items_changed == 0
    assert ready.status == "generated"


def test_reconcile_job_repairs_current_weeks() -> None:
    db = _session()()
    org_id, user_id = _seed_org_member(db)
    run_weekly_schedules_job(db, now=REVIEWING_NOW, organization_id=org_id)
    row = db.query(ScheduledTask).filter(ScheduledTask.user_id == user_id).one()
    row.status = "completed"
    db.commit()

    result = run_reconcile_job(db, now=REVIEWING_NOW)

    assert result.items_processed == 1
    assert result.items_changed == 1
    assert db.query(ScheduledTask).filter(ScheduledTask.user_id == user_id).one().status == "pending"


def test_generation_trigger_follows_review_boundary(monkeypatch) -> None:
    monkeypatch.setattr(settings, "generation_job_minute_offset", 1)

    assert generation_trigger_time() == (0, 13, 31)

    monkeypatch.setattr(settings, "week_boundary_hour", 23)
    monkeypatch.setattr(settings, "week_boundary_minute", 59)
    assert generation_trigger_time() == (1, 0, 0)
