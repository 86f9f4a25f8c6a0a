"""Dedicated APScheduler worker process."""
from __future__ import annotations

import logging
import signal
import threading
from datetime import datetime, timedelta

from apscheduler.schedulers.background import BackgroundScheduler

from app.core.clock import utcnow
from app.core.config import settings
from app.core.logging import configure_logging
from app.db.session import SessionLocal
from app.services.job_runner import run_reconcile_job, run_weekly_schedules_job


logger = logging.getLogger(__name__)


def main() -> None:
    configure_logging(log_level=settings.log_level)
    logger.info("Scheduler worker starting (enabled=%s)", settings.scheduler_enabled)

    scheduler = BackgroundScheduler(timezone=settings.scheduling_timezone)

    if settings.scheduler_enabled:
        register_jobs(scheduler)
        scheduler.start()
        if settings.jobs_run_on_startup:
            logger.info("Running jobs once on startup")
            _run_weekly_schedules_job()
            _run_reconcile_job()
    else:
        logger.warning("Scheduler disabled via config; worker will idle")

    stop_event = threading.Event()

    def shutdown(signum, frame):  # pragma: no cover - signal handler
        logger.info("Scheduler worker shutting down (signal=%s)", signum)
        if scheduler.running:
            scheduler.shutdown(wait=False)
        stop_event.set()

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    try:
        stop_event.wait()
    except KeyboardInterrupt:  # pragma: no cover - manual stop
        shutdown(signal.SIGINT, None)


def generation_trigger_time() -> tuple[int, int, int]:
    """(day_of_week, hour, minute) just after the reviewing period opens."""
    day_of_week = (settings.week_start_weekday - settings.review_lead_days) % 7
    anchor = datetime(2000, 1, 1, settings.week_boundary_hour, settings.week_boundary_minute)
    fire_at = anchor + timedelta(minutes=settings.generation_job_minute_offset)
    # An offset that crosses midnight moves the job to the next weekday.
    day_of_week = (day_of_week + (fire_at.date() - anchor.date()).days) % 7
    return day_of_week, fire_at.hour, fire_at.minute


def register_jobs(scheduler: BackgroundScheduler) -> None:
    day_of_week, hour, minute = generation_trigger_time()
    scheduler.add_job(
        _run_weekly_schedules_job,
        trigger="cron",
        day_of_week=str(day_of_week),
        hour=hour,
        minute=minute,
        id="weekly_schedules_job",
        replace_existing=True,
    )
    scheduler.add_job(
        _run_reconcile_job,
        trigger="cron",
        hour=settings.reconcile_job_hour,
        minute=0,
        id="reconcile_job",
        replace_existing=True,
    )
    logger.info(
        "Registered scheduler jobs (generation day=%s %02d:%02d, reconcile %02d:00, %s)",
        day_of_week,
        hour,
        minute,
        settings.reconcile_job_hour,
        settings.scheduling_timezone,
    )


def _run_weekly_schedules_job() -> None:
    session = SessionLocal()
    try:
        result = run_weekly_schedules_job(session, now=utcnow())
        logger.info(
            "Weekly schedule job complete: status=%s, users=%s, placed=%s",
            result.status,
            result.items_processed,
            result.items_changed,
        )
    except Exception:  # pragma: no cover - job failure
        logger.exception("Weekly schedule job failed")
    finally:
        session.close()


def _run_reconcile_job() -> None:
    session = SessionLocal()
    try:
        result = run_reconcile_job(session, now=utcnow())
        logger.info(
            "Reconcile job complete: checked=%s, repaired=%s",
            result.items_processed,
            result.items_changed,
        )
    except Exception:  # pragma: no cover - job failure
        logger.exception("Reconcile job failed")
    finally:
        session.close()


if __name__ == "__main__":  # pragma: no cover - manual launch
    main()
