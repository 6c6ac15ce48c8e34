"""
Scheduler: job registry, run bookkeeping and the daily loop.
"""

import threading
from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest

from boardflow.models import db
from boardflow.models.scheduling import ScheduledJob
from boardflow.services import scheduled_jobs, scheduler_service
from boardflow.services.automation_scheduler import AutomationScheduler, seconds_until_midnight
from boardflow.services.scheduler_service import SchedulerService, get_registered_jobs, register_job


@pytest.fixture()
def registry(monkeypatch):
    """Isolated job registry for the duration of a test."""
    jobs = {}
    monkeypatch.setattr(scheduler_service, "_job_registry", jobs)
    return jobs


def _job_row(name):
    db.session.expire_all()
    return ScheduledJob.query.filter_by(job_name=name).first()


# ═════════════════════════════════════════════════════════════════════════
# REGISTRY & RUNS
# ═════════════════════════════════════════════════════════════════════════

class TestSchedulerService:
    def test_builtin_jobs_are_registered(self):
        names = set(get_registered_jobs())
        assert {"date_trigger_check", "approval_escalation_check", "approval_reminders",
                "approval_deadline_alerts"} <= names

    def test_register_job_decorator(self, registry):
        @register_job("nightly")
        def nightly(app):
            return {"ok": True}

        assert registry == {"nightly": nightly}

    def test_unknown_job(self, registry):
        result = SchedulerService.run_job("nope")
        assert result["status"] == "error"
        assert "Unknown job" in result["error"]

    def test_run_records_success(self, registry):
        @register_job("nightly")
        def nightly(app):
            """Nightly pass."""
            return {"processed": 3}

        created = SchedulerService.ensure_jobs_registered()
        assert created == ["nightly"]
        assert SchedulerService.ensure_jobs_registered() == []

        result = SchedulerService.run_job("nightly")

        assert result["status"] == "success"
        assert result["result"] == {"processed": 3}
        row = _job_row("nightly")
        assert row.description == "Nightly pass."
        assert row.run_count == 1
        assert row.last_run_status == "success"
        assert row.last_run_result == {"processed": 3}

    def test_run_records_failure(self, registry):
        @register_job("broken")
        def broken(app):
            raise RuntimeError("disk full")

        SchedulerService.ensure_jobs_registered()
        result = SchedulerService.run_job("broken")

        assert result["status"] == "failed"
        assert result["error"] == "disk full"
        row = _job_row("broken")
        assert row.failure_count == 1
        assert row.last_error == "disk full"

    def test_disabled_job_is_skipped(self, registry):
        calls = []

        @register_job("paused")
        def paused(app):
            calls.append(app)

        SchedulerService.ensure_jobs_registered()
        SchedulerService.toggle_job("paused", False)

        assert SchedulerService.run_job("paused")["status"] == "skipped"
        assert calls == []

    def test_toggle_unknown_job(self, registry):
        assert SchedulerService.toggle_job("ghost", True) is None

    def test_run_all_in_registration_order(self, registry):
        order = []
        register_job("first")(lambda app: order.append("first"))
        register_job("second")(lambda app: order.append("second"))

        results = SchedulerService.run_all()

        assert order == ["first", "second"]
        assert [r["status"] for r in results] == ["success", "success"]

    def test_list_jobs(self, registry):
        register_job("nightly")(lambda app: None)
        SchedulerService.ensure_jobs_registered()
        [entry] = SchedulerService.list_jobs()
        assert entry["job_name"] == "nightly"
        assert entry["db_record"]["run_at"] == "00:00"
        assert entry["db_record"]["state"] == "active"


# ═════════════════════════════════════════════════════════════════════════
# JOBS
# ═════════════════════════════════════════════════════════════════════════

class TestScheduledJobs:
    def test_date_trigger_job_uses_engine(self, app):
        engine = MagicMock()
        engine.check_date_triggers.return_value = {"boards": 0, "items": 0, "fired": 0}
        with patch("boardflow.services.wiring.get_automation_engine", return_value=engine):
            assert scheduled_jobs.run_date_triggers(app) == {"boards": 0, "items": 0, "fired": 0}

    def test_reminder_job_passes_configured_hours(self, app):
        machine = MagicMock()
        machine.send_reminders.return_value = {"reminded": 0}
        with patch("boardflow.services.wiring.get_approval_machine", return_value=machine):
            scheduled_jobs.run_approval_reminders(app)
        machine.send_reminders.assert_called_once_with(hours=app.config["APPROVAL_REMINDER_HOURS"])

    def test_deadline_alert_job_passes_configured_hours(self, app):
        machine = MagicMock()
        machine.send_deadline_alerts.return_value = {"approaching": 0, "overdue": 0}
        with patch("boardflow.services.wiring.get_approval_machine", return_value=machine):
            scheduled_jobs.run_approval_deadline_alerts(app)
        machine.send_deadline_alerts.assert_called_once_with(
            hours_before=app.config["APPROVAL_DEADLINE_ALERT_HOURS"])

    def test_escalation_job_runs_on_empty_db(self, app):
        result = scheduled_jobs.run_approval_escalations(app)
        assert isinstance(result, dict)


# ═════════════════════════════════════════════════════════════════════════
# DAILY LOOP
# ═════════════════════════════════════════════════════════════════════════

class TestAutomationScheduler:
    def test_seconds_until_midnight(self):
        assert seconds_until_midnight(datetime(2024, 6, 10, 23, 0, 0)) == 3600
        assert seconds_until_midnight(datetime(2024, 6, 10, 0, 0, 0)) == 86400

    def test_runs_once_on_start_and_stops(self):
        ran = threading.Event()

        def runner():
            ran.set()
            return []

        scheduler = AutomationScheduler(runner=runner)
        scheduler.start()
        try:
            assert ran.wait(5)
            assert scheduler.running
        finally:
            scheduler.stop(timeout=5)
        assert not scheduler.running

    def test_run_once_contains_failures(self):
        scheduler = AutomationScheduler(runner=MagicMock(side_effect=RuntimeError("boom")))
        assert scheduler.run_once() == []
