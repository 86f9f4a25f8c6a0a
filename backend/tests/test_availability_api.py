from __future__ import annotations

from datetime import date, datetime, timezone
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.clock import get_now
from app.core.config import settings
from app.db.base import Base
from app.db.deps import get_db, get_session_factory
from app.db.models.schedule import WeeklySchedulePreview
from app.db.models.task import Task
from app.db.models.user import User
from app.main import app

WEEK = date(2026, 1, 21)
NOW = datetime(2026, 1, 15, 10, 0, tzinfo=timezone.utc)


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

    clock = {"now": NOW}
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: TestingSessionLocal
    app.dependency_overrides[get_now] = lambda: clock["now"]
    monkeypatch.setattr(settings, "scheduling_timezone", "UTC")
    monkeypatch.setattr(settings, "enforce_week_lock", True)
    monkeypatch.setattr(settings, "preview_block_hours", 2)
    monkeypatch.setattr(settings, "preview_max_tasks", 5)
    with TestClient(app) as test_client:
        yield test_client, TestingSessionLocal, clock
    app.dependency_overrides.clear()


def _seed_user_with_tasks(session_factory, titles=("Write brief", "Review draft")):
    session = session_factory()
    try:
        user_id = uuid4()
        session.add(User(id=user_id, full_name="Ana"))
        session.flush()
        for index, title in enumerate(titles):
            session.add(Task(user_id=user_id, title=title, phase=1, order_index=index, estimated_hours=1.0))
        session.commit()
        return user_id
    finally:
        session.close()


def _payload(user_id, **overrides):
    body = {
        "user_id": str(user_id),
        "week_start": WEEK.isoformat(),
        "days": {
            "monday": {"available": True, "start": "09:00", "end": "12:00"},
            "wednesday": {"available": True, "start": "14:00", "end": "15:00"},
        },
        "preferred_hours_per_day": 4,
        "preferred_time_of_day": "morning",
    }
    body.update(overrides)
    return body


def test_put_availability_queues_preview(client) -> None:
    test_client, session_factory, _ = client
    user_id = _seed_user_with_tasks(session_factory)

    resp = test_client.put("/availability", json=_payload(user_id))

    assert resp.status_code == 200
    data = resp.json()
    assert data["available_days"] == ["monday", "wednesday"]
    assert data["generation_queued"] is True
    assert data["request_id"]

    session = session_factory()
    try:
        preview = session.query(WeeklySchedulePreview).filter(WeeklySchedulePreview.user_id == user_id).one()
        tasks = preview.preview_data["tasks"]
    finally:
        session.close()
    assert [item["task_title"] for item in tasks] == ["Write brief", "Review draft"]
    assert tasks[0]["scheduled_date"] == "2026-01-26"
    assert (tasks[0]["scheduled_start"], tasks[0]["scheduled_end"]) == ("09:00", "11:00")
    # The wednesday window is one hour long, so the two hour block is clamped.
    assert (tasks[1]["scheduled_start"], tasks[1]["scheduled_end"]) == ("14:00", "15:00")

    preview_resp = test_client.get("/schedule/preview", params={"user_id": str(user_id), "week_start": WEEK.isoformat()})
    assert preview_resp.status_code == 200
    assert len(preview_resp.json()["tasks"]) == 2
    assert all(item["is_preview"] for item in preview_resp.json()["tasks"])


def test_put_availability_without_days_returns_code(client) -> None:
    test_client, session_factory, _ = client
    user_id = _seed_user_with_tasks(session_factory)

    resp = test_client.put("/availability", json=_payload(user_id, days={}))

    assert resp.status_code == 422
    assert resp.json()["detail"]["code"] == "NO_DAY_SELECTED"
    exists = test_client.get("/availability/exists", params={"user_id": str(user_id), "week_start": WEEK.isoformat()})
    assert exists.json()["has_availability"] is False


def test_put_availability_hours_out_of_range(client) -> None:
    test_client, session_factory, _ = client
    user_id = _seed_user_with_tasks(session_factory)

    resp = test_client.put("/availability", json=_payload(user_id, preferred_hours_per_day=12))

    assert resp.status_code == 422
    assert resp.json()["detail"]["code"] == "HOURS_OUT_OF_RANGE"


def test_put_availability_unknown_user(client) -> None:
    test_client, _, _ = client

    resp = test_client.put("/availability", json=_payload(uuid4()))

    assert resp.status_code == 404


def test_put_availability_for_active_week_is_locked(client) -> None:
    test_client, session_factory, clock = client
    user_id = _seed_user_with_tasks(session_factory)
    clock["now"] = datetime(2026, 1, 22, 8, 0, tzinfo=timezone.utc)

    resp = test_client.put("/availability", json=_payload(user_id))

    assert resp.status_code == 409
    assert resp.json()["detail"]["code"] == "WEEK_LOCKED"


def test_get_availability_round_trip_and_default_week(client) -> None:
    test_client, session_factory, _ = client
    user_id = _seed_user_with_tasks(session_factory)

    missing = test_client.get("/availability", params={"user_id": str(user_id)})
    assert missing.status_code == 404

    test_client.put("/availability", json=_payload(user_id))
    # NOW falls in the filling period of WEEK, so it is the default week.
    resp = test_client.get("/availability", params={"user_id": str(user_id)})

    assert resp.status_code == 200
    data = resp.json()
    assert data["week_start"] == WEEK.isoformat()
    assert data["days"]["monday"] == {"available": True, "start": "09:00:00", "end": "12:00:00"}
    assert data["days"]["sunday"]["available"] is False
    assert data["preferred_time_of_day"] == "morning"


def test_preview_generation_failure_does_not_break_request(client, monkeypatch) -> None:
    test_client, session_factory, _ = client
    user_id = _seed_user_with_tasks(session_factory)

    def boom(*args, **kwargs):
        raise RuntimeError("model offline")

    monkeypatch.setattr("app.services.generation_trigger.generate_preview", boom)
    resp = test_client.put("/availability", json=_payload(user_id))

    assert resp.status_code == 200
    missing = test_client.get("/schedule/preview", params={"user_id": str(user_id), "week_start": WEEK.isoformat()})
    assert missing.status_code == 404


def test_period_endpoint_reports_cycle(client) -> None:
    test_client, _, _ = client

    resp = test_client.get("/agenda/period")

    assert resp.status_code == 200
    data = resp.json()
    assert data["period"] == "filling"
    assert data["week_start"] == WEEK.isoformat()
    assert data["active_week_start"] == "2026-01-14"
    assert data["is_locked"] is False

    reviewing = test_client.get("/agenda/period", params={"at": "2026-01-19T14:00:00+00:00"})
    assert reviewing.json()["period"] == "reviewing"
