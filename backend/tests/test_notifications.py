from __future__ import annotations

from datetime import date, datetime, time, timezone
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.clock import get_now
from app.core.config import settings
from app.db.base import Base
from app.db.deps import get_db
from app.db.models.activity_log import ActivityLog
from app.db.models.organization import Organization
from app.db.models.task import Task
from app.db.models.user import User
from app.main import app
from app.services.availability_store import DayAvailability, upsert_availability
from app.services.notifications import hooks
from app.services.notifications.base import NotificationResult
from app.services.notifications.factory import get_notification_service
from app.services.notifications.noop import NoopNotificationService

WEEK = date(2026, 1, 14)
REVIEWING_NOW = datetime(2026, 1, 12, 15, 0, tzinfo=timezone.utc)


@pytest.fixture()
def client(monkeypatch):
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

    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    Base.metadata.create_all(bind=engine)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_now] = lambda: REVIEWING_NOW
    monkeypatch.setattr(settings, "scheduling_timezone", "UTC")
    monkeypatch.setattr(settings, "openai_api_key", None)
    monkeypatch.setattr(settings, "notifications_enabled", True)
    monkeypatch.setattr(settings, "notifications_provider", "noop")
    with TestClient(app) as test_client:
        yield test_client, TestingSessionLocal
    app.dependency_overrides.clear()


def _seed_team(session_factory, submitted=(True, True)):
    session = session_factory()
    try:
        org = Organization(id=uuid4(), name="Studio")
        session.add(org)
        session.flush()
        user_ids = []
        for has_availability in submitted:
            user = User(id=uuid4(), organization_id=org.id)
            session.add(user)
            session.flush()
            session.add(Task(user_id=user.id, organization_id=org.id, title="Draft", estimated_hours=1.0))
            if has_availability:
                upsert_availability(
                    session,
                    user_id=user.id,
                    week_start=WEEK,
                    days={"monday": DayAvailability(True, time(9, 0), time(12, 0))},
                    preferred_hours_per_day=4,
                    preferred_time_of_day="flexible",
                    submitted_at=REVIEWING_NOW,
                )
            user_ids.append(user.id)
        session.commit()
        return org.id, user_ids
    finally:
        session.close()


def _logs(session_factory, action_type):
    session = session_factory()
    try:
        return (
            session.query(ActivityLog)
            .filter(ActivityLog.action_type == action_type)
            .order_by(ActivityLog.created_at)
            .all()
        )
    finally:
        session.close()


def test_schedule_ready_notification_recorded(client):
    test_client, session_factory = client
    org_id, user_ids = _seed_team(session_factory)

    resp = test_client.post("/schedule/generate", json={"organization_id": str(org_id)})

    assert resp.status_code == 200
    assert resp.json()["status"] == "generated"
    logs = _logs(session_factory, "notification_schedule_ready")
    assert {log.user_id for log in logs} == set(user_ids)
    assert all(log.action_payload["result"]["status"] == "noop" for log in logs)
    assert logs[0].action_payload["extras"]["task_count"] == 1
    assert logs[0].action_payload["request_id"] == resp.json()["request_id"]


def test_notification_skipped_when_disabled(client, monkeypatch):
    monkeypatch.setattr(settings, "notifications_enabled", False)
    test_client, session_factory = client
    org_id, _ = _seed_team(session_factory)

    test_client.post("/schedule/generate", json={"organization_id": str(org_id)})

    logs = _logs(session_factory, "notification_schedule_ready")
    assert logs
    assert all(log.action_payload["result"]["status"] == "skipped" for log in logs)


def test_waiting_users_are_told_who_is_missing(client):
    test_client, session_factory = client
    org_id, (ready, missing) = _seed_team(session_factory, submitted=(True, False))

    resp = test_client.post("/schedule/generate", json={"organization_id": str(org_id)})

    assert resp.json()["status"] == "waiting"
    assert resp.json()["readiness"]["pending_user_ids"] == [str(missing)]
    logs = _logs(session_factory, "notification_availability_pending")
    assert [log.user_id for log in logs] == [ready]
    assert logs[0].action_payload["extras"]["pending_user_ids"] == [str(missing)]


def test_provider_failure_is_logged_not_raised(client, monkeypatch):
    test_client, session_factory = client
    org_id, (ready, _) = _seed_team(session_factory, submitted=(True, False))

    class BrokenService(NoopNotificationService):
        def notify_availability_pending(self, **kwargs):
            raise RuntimeError("smtp down")

    monkeypatch.setattr(hooks, "get_notification_service", lambda: BrokenService())

    resp = test_client.post("/schedule/generate", json={"organization_id": str(org_id)})

    assert resp.status_code == 200
    logs = _logs(session_factory, "notification_availability_pending")
    assert logs[0].action_payload["result"] == {"status": "failed", "reason": "provider error"}


def test_schedule_ready_failure_still_notifies_every_user(client, monkeypatch):
    test_client, session_factory = client
    org_id, user_ids = _seed_team(session_factory)

    class BrokenService(NoopNotificationService):
        def notify_schedule_ready(self, **kwargs):
            raise RuntimeError("smtp down")

    monkeypatch.setattr(hooks, "get_notification_service", lambda: BrokenService())

    resp = test_client.post("/schedule/generate", json={"organization_id": str(org_id)})

    assert resp.status_code == 200
    assert resp.json()["status"] == "generated"
    logs = _logs(session_factory, "notification_schedule_ready")
    assert {log.user_id for log in logs} == set(user_ids)
    assert all(log.action_payload["result"] == {"status": "failed", "reason": "provider error"} for log in logs)


def test_factory_falls_back_to_noop(monkeypatch):
    monkeypatch.setattr(settings, "notifications_provider", "carrier-pigeon")
    get_notification_service.cache_clear()
    try:
        service = get_notification_service()
    finally:
        get_notification_service.cache_clear()

    assert isinstance(service, NoopNotificationService)
    result = service.notify_schedule_ready(user_id=uuid4(), week_start=WEEK.isoformat(), task_count=2, request_id=None)
    assert result == NotificationResult(status="noop", reason="notification provider is noop")
