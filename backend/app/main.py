"""Main FastAPI application for the weekly agenda backend."""
from fastapi import FastAPI, Request

from app.api.routes.agenda import router as agenda_router
from app.api.routes.availability import router as availability_router
from app.api.routes.jobs import router as jobs_router
from app.api.routes.schedule import router as schedule_router
from app.core.config import settings
from app.core.logging import configure_logging
from app.core.middleware import RequestIDMiddleware
from app.observability.client import init_opik
from app.observability.tracing import trace
from app.services.schedule_events import event_bus, record_view_invalidation

configure_logging(log_level=settings.log_level)

app = FastAPI(title=settings.app_name, version="0.1.0")
app.add_middleware(RequestIDMiddleware)
app.include_router(agenda_router)
app.include_router(availability_router)
app.include_router(schedule_router)
app.include_router(jobs_router)


@app.on_event("startup")
async def startup_observability() -> None:
    """Initialize observability backends and schedule listeners after the event loop starts."""
    init_opik()
    event_bus.subscribe(record_view_invalidation)


@app.get("/health", tags=["health"], summary="Readiness probe")
async def health_check(request: Request) -> dict[str, str]:
    """Return a simple status payload so automation can probe the API."""
    with trace("http.health_check", metadata={"route": "/health"}, request_id=request.state.request_id):
        return {"status": "ok"}
