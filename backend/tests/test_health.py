from fastapi.testclient import TestClient


def _get_client() -> TestClient:
    from app.main import app

    return TestClient(app)


def test_health_endpoint_returns_ok() -> None:
    client = _get_client()
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_request_id_generated_and_returned() -> None:
    client = _get_client()
    response = client.get("/health")

    assert response.headers.get("X-Request-Id")


def test_request_id_echoed_into_body() -> None:
    client = _get_client()
    req_id = "agenda-request-123"
    response = client.get("/agenda/period", headers={"X-Request-Id": req_id})

    assert response.headers.get("X-Request-Id") == req_id
    assert response.json()["request_id"] == req_id


def test_registered_routes_cover_weekly_cycle() -> None:
    from app.main import app

    paths = set(app.openapi()["paths"])

    assert {
        "/agenda/period",
        "/availability",
        "/availability/exists",
        "/schedule",
        "/schedule/preview",
        "/schedule/generate",
        "/schedule/readiness",
        "/schedule/progress",
        "/schedule/tasks/{task_id}",
        "/schedule/tasks/{task_id}/validation",
        "/jobs",
        "/jobs/run-now",
    } <= paths
