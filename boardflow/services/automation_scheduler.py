"""
Daily automation scheduler.

Runs every registered job once at start, then at each local midnight.
The loop waits on a ``threading.Event``: ``stop()`` wakes it and ends the
loop without interrupting a pass already in progress.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta

from boardflow.services.scheduler_service import SchedulerService

logger = logging.getLogger(__name__)


def seconds_until_midnight(now: datetime | None = None) -> float:
    now = now or datetime.now()
    midnight = (now + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    return (midnight - now).total_seconds()


class AutomationScheduler:

    def __init__(self, runner=None):
        self._runner = runner or SchedulerService.run_all
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="automation-scheduler", daemon=True)
        self._thread.start()
        logger.info("Automation scheduler started")

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
        self._thread = None
        logger.info("Automation scheduler stopped")

    def run_once(self) -> list[dict]:
        try:
            return self._runner()
        except Exception:
            logger.exception("Scheduled pass failed")
            return []

    def _loop(self) -> None:
        self.run_once()
        while not self._stop.wait(seconds_until_midnight()):
            self.run_once()


_scheduler: AutomationScheduler | None = None


def start(app) -> AutomationScheduler:
    """Start the process-wide scheduler for ``app``."""
    global _scheduler
    from boardflow.services import scheduled_jobs  # noqa: F401  registers jobs

    SchedulerService.init_app(app)
    SchedulerService.ensure_jobs_registered()
    if _scheduler is None:
        _scheduler = AutomationScheduler()
    _scheduler.start()
    return _scheduler


def stop() -> None:
    global _scheduler
    if _scheduler is not None:
        _scheduler.stop()
        _scheduler = None
