"""
Compliance Desk
Job registry and runner for the periodic engine work.

Three jobs keep the desk moving: ``task_provisioning`` opens the current
period's tasks, ``escalation_sweep`` raises overdue tasks up the authority
chain and ``due_soon_reminder`` nudges makers and checkers. Nothing here
owns a clock. An external cron calls ``flask run-job <name>`` and an admin
can trigger a job from the API; both go through ``SchedulerService.run_job``.

Each job has a ``scheduled_jobs`` row holding its enabled flag, the cron
hint shown to operators and the outcome of its last run.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from flask import Flask

from compliance_desk.models import db
from compliance_desk.models.scheduling import ScheduledJob

logger = logging.getLogger(__name__)

# Cron hints written to new job rows; informational only
JOB_SCHEDULES = {
    "task_provisioning": {"hour": "0", "minute": "15", "description": "Daily at 00:15"},
    "escalation_sweep": {"hour": "*/1", "minute": "0", "description": "Hourly"},
    "due_soon_reminder": {"hour": "8", "minute": "0", "description": "Daily at 08:00"},
}
FALLBACK_SCHEDULE = {"hour": "0", "minute": "0", "description": "Daily at midnight"}

_job_registry: dict[str, Callable] = {}


def register_job(name: str):
    """Register ``fn(app)`` under ``name``; the first docstring line becomes its description."""
    def decorator(fn: Callable) -> Callable:
        _job_registry[name] = fn
        return fn
    return decorator


def get_registered_jobs() -> dict[str, Callable]:
    return dict(_job_registry)


def _describe(name: str, fn: Callable) -> str:
    doc = (fn.__doc__ or "").strip()
    return doc.splitlines()[0] if doc else f"Scheduled job: {name}"


def _job_row(name: str) -> ScheduledJob | None:
    return ScheduledJob.query.filter_by(job_name=name).first()


def _outcome(name, status, *, duration_ms=0, result=None, error=None) -> dict:
    return {
        "job_name": name,
        "status": status,
        "duration_ms": duration_ms,
        "result": result,
        "error": error,
    }


class SchedulerService:
    """Runs registered jobs inside the app context and books each run."""

    _app: Flask | None = None

    @classmethod
    def init_app(cls, app: Flask) -> None:
        # The import registers the engine jobs
        from compliance_desk.services import scheduled_jobs  # noqa: F401

        cls._app = app
        app.extensions["scheduler"] = cls
        logger.info("Scheduler ready: %s", ", ".join(sorted(_job_registry)))

    @classmethod
    def ensure_jobs_registered(cls) -> list[ScheduledJob]:
        """Create the missing ``scheduled_jobs`` rows, enabled by default."""
        created = []
        for name, fn in _job_registry.items():
            if _job_row(name) is not None:
                continue
            row = ScheduledJob(
                job_name=name,
                description=_describe(name, fn),
                schedule_type="cron",
                schedule_config=dict(JOB_SCHEDULES.get(name, FALLBACK_SCHEDULE)),
                status="active",
                is_enabled=True,
            )
            db.session.add(row)
            created.append(row)
        if created:
            db.session.commit()
            logger.info("Added job rows: %s", ", ".join(r.job_name for r in created))
        return created

    @classmethod
    def run_job(cls, job_name: str, *, force: bool = False) -> dict:
        """
        Run ``job_name`` once and book the outcome on its row.

        A paused job answers ``skipped`` unless ``force`` is set, which is
        what the admin trigger uses. A job that raises is booked as
        ``failed``; the exception never escapes to cron or the API.
        """
        fn = _job_registry.get(job_name)
        if fn is None:
            return _outcome(job_name, "error", error=f"Unknown job: {job_name}")
        if cls._app is None:
            return _outcome(job_name, "error", error="Scheduler not initialized")

        log_extra = {"job_name": job_name}
        with cls._app.app_context():
            cls.ensure_jobs_registered()
            row = _job_row(job_name)
            if row is not None and not row.is_enabled and not force:
                logger.info("Job %s is paused; not running", job_name, extra=log_extra)
                return _outcome(job_name, "skipped", error="job disabled")

        status, result, error = "success", None, None
        start = time.monotonic()
        try:
            with cls._app.app_context():
                result = fn(cls._app)
        except Exception as exc:
            status, error = "failed", str(exc)
            logger.exception("Job %s failed", job_name, extra=log_extra)
        duration_ms = int((time.monotonic() - start) * 1000)

        cls._book_run(job_name, status, duration_ms, result, error)
        logger.info("Job %s %s in %dms", job_name, status, duration_ms, extra=log_extra)
        return _outcome(job_name, status, duration_ms=duration_ms, result=result, error=error)

    @classmethod
    def _book_run(cls, job_name, status, duration_ms, result, error) -> None:
        # fresh context: the job may have left its session unusable
        try:
            with cls._app.app_context():
                row = _job_row(job_name)
                if row is None:
                    return
                row.record_run(
                    status=status,
                    duration_ms=duration_ms,
                    result=result if isinstance(result, dict) else {"output": str(result)},
                    error=error,
                )
                db.session.commit()
        except Exception:
            logger.exception("Could not book run of job %s", job_name)

    @classmethod
    def list_jobs(cls) -> list[dict]:
        return [
            {
                "job_name": name,
                "registered": True,
                "db_record": row.to_dict() if (row := _job_row(name)) else None,
            }
            for name in _job_registry
        ]

    @classmethod
    def toggle_job(cls, job_name: str, enabled: bool) -> dict | None:
        """Pause or resume a job; None when no such job exists."""
        if job_name in _job_registry:
            cls.ensure_jobs_registered()
        row = _job_row(job_name)
        if row is None:
            return None
        row.is_enabled = enabled
        row.status = "active" if enabled else "paused"
        db.session.commit()
        return row.to_dict()
