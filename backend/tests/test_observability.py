"""Tests ensuring observability wiring is safe by default."""
from __future__ import annotations

import importlib
from typing import Any, Dict

import pytest

from app.core.config import settings
from app.observability import client as client_module
from app.observability import tracing


class _RecordingTrace:
    def __init__(self, metadata: Dict[str, Any] | None):
        self.metadata = metadata or {}
        self.updates: list[dict] = []
        self.ended = False

    def update(self, **kwargs) -> None:
        self.updates.append(kwargs)

    def end(self) -> None:
        self.ended = True


class _RecordingClient:
    def __init__(self):
        self.traces: list[_RecordingTrace] = []

    def trace(self, name: str, metadata: Dict[str, Any] | None = None):
        recorded = _RecordingTrace(metadata)
        self.traces.append(recorded)
        return recorded


def test_app_import_succeeds_when_opik_is_disabled(monkeypatch) -> None:
    monkeypatch.setattr(settings, "opik_enabled", False)
    client_module.reset_opik_client()

    import app.main as main_module

    reloaded_app = importlib.reload(main_module)

    assert hasattr(reloaded_app, "app")
    assert client_module.init_opik() is None
    client_module.reset_opik_client()


def test_trace_yields_none_without_client(monkeypatch) -> None:
    monkeypatch.setattr(tracing, "get_opik_client", lambda: None)

    with tracing.trace("schedule.read", metadata={"week_start": "2026-01-14"}) as current:
        assert current is None


def test_trace_records_error_and_reraises(monkeypatch) -> None:
    recorder = _RecordingClient()
    monkeypatch.setattr(tracing, "get_opik_client", lambda: recorder)

    with pytest.raises(ValueError):
        with tracing.trace("task.complete", metadata={"task_id": "t-1"}, user_id="u-1", request_id="r-1"):
            raise ValueError("bad toggle")

    recorded = recorder.traces[0]
    assert recorded.metadata == {"task_id": "t-1", "user_id": "u-1", "request_id": "r-1"}
    assert recorded.updates[0]["error_info"]["exception_type"] == "ValueError"
    assert recorded.ended is True
