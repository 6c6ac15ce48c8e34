"""
Boardflow
Scheduler Service.

Job registry and runner for the daily background passes. Job functions
register themselves with ``@register_job`` and run inside the Flask app
context; every run is recorded on its ScheduledJob row.

Architecture:
    - SchedulerService: job registration, persistence and execution
    - AutomationScheduler (automation_scheduler.py): the midnight loop
    - Jobs can also be triggered manually through ``run_job``
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from flask import Flask

from boardflow.models import db
from boardflow.models.scheduling import ScheduledJob

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job Registry
# ═══════════════════════════════════════════════════════════════════════════

_job_registry: dict[str, Callable] = {}


def register_job(name: str):
    """Decorator to register a job function.

    Usage:
        @register_job("date_trigger_check")
        def run_date_triggers(app):
            ...
    """
    def decorator(fn: Callable) -> Callable:
        _job_registry[name] = fn
        return fn
    return decorator


def get_registered_jobs() -> dict[str, Callable]:
    """Return all registered job functions."""
    return dict(_job_registry)




def _describe(name: str, fn: Callable) -> str:
    doc = (fn.__doc__ or "").strip()
    return doc.splitlines()[0] if doc else f"Scheduled job: {name}"


class SchedulerService:
    """
    Class-level scheduler state bound to one Flask app.

    Every run opens its own app context so that jobs started from the
    scheduler thread and jobs started from a request behave the same.
    """

    _app: Flask | None = None

    @classmethod
    def init_app(cls, app: Flask) -> None:
        cls._app = app
        app.extensions["scheduler"] = cls
        logger.info("SchedulerService initialized with %d registered jobs", len(_job_registry))

    @classmethod
    def ensure_jobs_registered(cls) -> list[str]:
        """Create a ScheduledJob row for every registered job that lacks one.

        Returns the names of the jobs created.
        """
        if not cls._app:
            return []

        created = []
        with cls._app.app_context():
            known = {name for (name,) in db.session.query(ScheduledJob.job_name).all()}
            for name, fn in _job_registry.items():
                if name in known:
                    continue
                db.session.add(ScheduledJob(job_name=name, description=_describe(name, fn)))
                created.append(name)
            if created:
                db.session.commit()
                logger.info("Registered scheduled jobs: %s", ", ".join(created))
        return created

    @classmethod
    def run_job(cls, job_name: str) -> dict:
        """
        Execute one registered job and record the outcome.

        Returns:
            Dict with job_name, status (success | failed | skipped | error),
            duration_ms, result and error.
        """
        fn = _job_registry.get(job_name)
        if not fn:
            return {"job_name": job_name, "status": "error", "error": f"Unknown job: {job_name}"}
        if not cls._app:
            return {"job_name": job_name, "status": "error", "error": "Scheduler not initialized"}

        outcome = {"job_name": job_name, "status": "success", "duration_ms": 0,
                   "result": None, "error": None}

        with cls._app.app_context():
            record = ScheduledJob.query.filter_by(job_name=job_name).first()
            if record is not None and not record.is_enabled:
                logger.info("Job %s is disabled, skipping", job_name, extra={"job_name": job_name})
                outcome["status"] = "skipped"
                return outcome

            started = time.monotonic()
            try:
                outcome["result"] = fn(cls._app)
            except Exception as exc:
                db.session.rollback()
                outcome["status"] = "failed"
                outcome["error"] = str(exc)
                logger.exception("Job %s failed", job_name, extra={"job_name": job_name})
            outcome["duration_ms"] = int((time.monotonic() - started) * 1000)

            result = outcome["result"]
            try:
                record = ScheduledJob.query.filter_by(job_name=job_name).first()
                if record is not None:
                    record.record_run(
                        status=outcome["status"],
                        duration_ms=outcome["duration_ms"],
                        result=result if isinstance(result, dict) else {"output": str(result)},
                        error=outcome["error"],
                    )
                    db.session.commit()
            except Exception:
                db.session.rollback()
                logger.exception("Could not record run of %s", job_name, extra={"job_name": job_name})

        logger.info("Job %s finished: %s (%dms)", job_name, outcome["status"], outcome["duration_ms"],
                    extra={"job_name": job_name, "duration_ms": outcome["duration_ms"]})
        return outcome

    @classmethod
    def run_all(cls) -> list[dict]:
        """Run every registered job in registration order."""
        return [cls.run_job(name) for name in list(_job_registry)]

    @classmethod
    def list_jobs(cls) -> list[dict]:
        rows = {j.job_name: j for j in ScheduledJob.query.all()}
        return [
            {"job_name": name, "db_record": rows[name].to_dict() if name in rows else None}
            for name in _job_registry
        ]

    @classmethod
    def toggle_job(cls, job_name: str, enabled: bool) -> dict | None:
        record = ScheduledJob.query.filter_by(job_name=job_name).first()
        if record is None:
            return None
        record.is_enabled = enabled
        db.session.commit()
        logger.info("Job %s %s", job_name, "enabled" if enabled else "paused",
                    extra={"job_name": job_name})
        return record.to_dict()
