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
from app.db.models.organization import Organization
from app.db.models.schedule import ScheduledTask
from app.db.models.task import Task
from app.db.models.user import User
from app.main import app
from app.services import schedule_events
from app.services.weekly_schedule import progress_percent

WEEK = date(2026, 1, 21)
NOW = datetime(2026, 1, 16, 12, 0, tzinfo=timezone.utc)


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
    app.dependency_overrides[get_now] = lambda: clock["now"]
    monkeypatch.setattr(settings, "scheduling_timezone", "UTC")
    monkeypatch.setattr(settings, "enforce_week_lock", True)
    with TestClient(app) as test_client:
        yield test_client, TestingSessionLocal, clock
    app.dependency_overrides.clear()


def _seed_schedule(session_factory):
    session = session_factory()
    try:
        org = Organization(id=uuid4(), name="Studio")
        session.add(org)
        session.flush()
        member = User(id=uuid4(), organization_id=org.id, full_name="Member")
        leader = User(id=uuid4(), organization_id=org.id, full_name="Leader", role="leader")
        session.add_all([member, leader])
        session.flush()
        rows = [
            ("Plan sprint", None, date(2026, 1, 21), time(14, 0)),
            ("Pair on API", leader.id, date(2026, 1, 22), time(9, 0)),
            ("Write notes", None, date(2026, 1, 22), time(8, 0)),
        ]
        ids = {}
        for title, leader_id, day, start in rows:
            task = Task(id=uuid4(), user_id=member.id, organization_id=org.id, leader_id=leader_id, title=title)
            session.add(task)
            session.flush()
            session.add(
                ScheduledTask(
                    task_id=task.id,
                    user_id=member.id,
                    week_start=WEEK,
                    scheduled_date=day,
                    scheduled_start=start,
                    scheduled_end=time(start.hour + 1, 0),
                    is_collaborative=leader_id is not None,
                    collaborator_user_id=leader_id,
                )
            )
            ids[title] = task.id
        session.commit()
        return {"org": org.id, "member": member.id, "leader": leader.id, **ids}
    finally:
        session.close()


def _toggle(test_client, task_id, user_id, completed):
    return test_client.patch(
        f"/schedule/tasks/{task_id}",
        json={"user_id": str(user_id), "week_start": WEEK.isoformat(), "completed": completed},
    )


def test_schedule_groups_tasks_by_day(client) -> None:
    test_client, session_factory, _ = client
    seeded = _seed_schedule(session_factory)

    resp = test_client.get("/schedule", params={"user_id": str(seeded["member"]), "week_start": WEEK.isoformat()})

    assert resp.status_code == 200
    data = resp.json()
    assert data["period"] == "filling"
    assert data["is_locked"] is False
    assert [day["day_name"] for day in data["days"]][:2] == ["wednesday", "thursday"]
    assert len(data["days"]) == 7
    thursday = data["days"][1]["tasks"]
    assert [item["title"] for item in thursday] == ["Write notes", "Pair on API"]
    assert thursday[1]["is_collaborative"] is True
    assert (data["completed_count"], data["total_count"], data["progress_percent"]) == (0, 3, 0)


def test_toggle_updates_progress(client) -> None:
    test_client, session_factory, _ = client
    seeded = _seed_schedule(session_factory)

    resp = _toggle(test_client, seeded["Plan sprint"], seeded["member"], True)

    assert resp.status_code == 200
    assert resp.json()["completion_state"] == "completed"
    schedule = test_client.get(
        "/schedule", params={"user_id": str(seeded["member"]), "week_start": WEEK.isoformat()}
    ).json()
    assert schedule["completed_count"] == 1
    assert schedule["progress_percent"] == 33

    undo = _toggle(test_client, seeded["Plan sprint"], seeded["member"], False)
    assert undo.json()["status"] == "pending"


def test_collaborative_toggle_then_leader_validation(client) -> None:
    test_client, session_factory, _ = client
    seeded = _seed_schedule(session_factory)

    resp = _toggle(test_client, seeded["Pair on API"], seeded["member"], True)
    assert resp.json()["completion_state"] == "awaiting_validation"

    forbidden = test_client.post(
        f"/schedule/tasks/{seeded['Pair on API']}/validation",
        json={"user_id": str(seeded["member"]), "leader_id": str(seeded["member"]), "approved": True},
    )
    assert forbidden.status_code == 403

    approved = test_client.post(
        f"/schedule/tasks/{seeded['Pair on API']}/validation",
        json={"user_id": str(seeded["member"]), "leader_id": str(seeded["leader"]), "approved": True},
    )
    assert approved.status_code == 200
    assert approved.json()["status"] == "completed"


def test_toggle_in_active_week_is_rejected(client) -> None:
    test_client, session_factory, clock = client
    seeded = _seed_schedule(session_factory)
    clock["now"] = datetime(2026, 1, 22, 10, 0, tzinfo=timezone.utc)

    resp = _toggle(test_client, seeded["Plan sprint"], seeded["member"], True)

    assert resp.status_code == 409
    assert resp.json()["detail"]["code"] == "WEEK_LOCKED"
    schedule = test_client.get(
        "/schedule", params={"user_id": str(seeded["member"]), "week_start": WEEK.isoformat()}
    ).json()
    assert schedule["is_locked"] is True
    assert schedule["completed_count"] == 0


def test_toggle_unknown_task_returns_404(client) -> None:
    test_client, session_factory, _ = client
    seeded = _seed_schedule(session_factory)

    resp = _toggle(test_client, uuid4(), seeded["member"], True)

    assert resp.status_code == 404


def test_progress_stats_per_user(client) -> None:
    test_client, session_factory, _ = client
    seeded = _seed_schedule(session_factory)
    _toggle(test_client, seeded["Plan sprint"], seeded["member"], True)

    resp = test_client.get(
        "/schedule/progress",
        params={"week_start": WEEK.isoformat(), "organization_id": str(seeded["org"])},
    )

    assert resp.status_code == 200
    data = resp.json()
    assert data["users"] == [
        {"user_id": str(seeded["member"]), "completed_count": 1, "total_count": 3, "progress_percent": 33}
    ]
    assert data["progress_percent"] == 33


def test_empty_schedule_reports_zero_progress(client) -> None:
    test_client, _, _ = client

    resp = test_client.get("/schedule", params={"user_id": str(uuid4()), "week_start": WEEK.isoformat()})

    assert resp.status_code == 200
    assert resp.json()["progress_percent"] == 0
    assert all(day["tasks"] == [] for day in resp.json()["days"])


@pytest.mark.parametrize(
    "completed, total, expected",
    [(1, 8, 13), (5, 8, 63), (1, 200, 1), (1, 3, 33), (2, 3, 67), (3, 3, 100), (0, 0, 0)],
)
def test_progress_percent_rounds_halves_up(completed, total, expected) -> None:
    assert progress_percent(completed, total) == expected


def test_toggle_rejects_week_not_starting_on_wednesday(client) -> None:
    test_client, session_factory, _ = client
    seeded = _seed_schedule(session_factory)

    resp = test_client.patch(
        f"/schedule/tasks/{seeded['Plan sprint']}",
        json={"user_id": str(seeded["member"]), "week_start": "2026-01-22", "completed": True},
    )

    assert resp.status_code == 422
    assert resp.json()["detail"]["code"] == "INVALID_WEEK_START"


def test_toggle_reaches_registered_view_listener(client, monkeypatch) -> None:
    test_client, session_factory, _ = client
    seeded = _seed_schedule(session_factory)
    recorded = []
    monkeypatch.setattr(
        schedule_events,
        "log_metric",
        lambda name, value, metadata=None: recorded.append((name, metadata["view"])),
    )

    resp = _toggle(test_client, seeded["Plan sprint"], seeded["member"], True)

    assert resp.status_code == 200
    assert recorded == [
        ("schedule.view.invalidated", "weekly_tasks"),
        ("schedule.view.invalidated", "progress_stats"),
    ]
