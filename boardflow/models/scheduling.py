"""
Boardflow
Scheduling model.

Models:
    - ScheduledJob: one row per registered daily job (enable flag + run history)
"""

from datetime import datetime, timezone

from boardflow.models import db

DAILY_RUN_AT = "00:00"
RUN_STATUSES = {"success", "failed", "skipped"}


def _utcnow():
    return datetime.now(timezone.utc)


class ScheduledJob(db.Model):
    """
    Persisted state of a daily scheduler job.

    Jobs run once when the scheduler starts and then at each local
    midnight; ``run_at`` is informational. A disabled job is skipped.
    """

    __tablename__ = "scheduled_jobs"

    id = db.Column(db.Integer, primary_key=True)
    job_name = db.Column(db.String(100), unique=True, nullable=False,
                         comment="Registered job name, e.g. date_trigger_check")
    description = db.Column(db.String(500), default="")
    run_at = db.Column(db.String(5), default=DAILY_RUN_AT, comment="Local HH:MM")
    is_enabled = db.Column(db.Boolean, default=True, nullable=False)

    last_run_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_run_status = db.Column(db.String(20), nullable=True, comment="success | failed | skipped")
    last_run_duration_ms = db.Column(db.Integer, nullable=True)
    last_run_result = db.Column(db.JSON, nullable=True)
    run_count = db.Column(db.Integer, default=0)
    failure_count = db.Column(db.Integer, default=0)
    last_error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    @property
    def state(self) -> str:
        return "active" if self.is_enabled else "paused"

    def record_run(self, *, status, duration_ms=0, result=None, error=None):
        if status not in RUN_STATUSES:
            raise ValueError(f"Unknown run status: {status}")
        self.last_run_at = _utcnow()
        self.last_run_status = status
        self.last_run_duration_ms = duration_ms
        self.last_run_result = result
        self.run_count = (self.run_count or 0) + 1
        if status == "failed":
            self.failure_count = (self.failure_count or 0) + 1
            self.last_error = str(error) if error else None

    def to_dict(self):
        return {
            "id": self.id,
            "job_name": self.job_name,
            "description": self.description,
            "run_at": self.run_at,
            "state": self.state,
            "is_enabled": self.is_enabled,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_run_status": self.last_run_status,
            "last_run_duration_ms": self.last_run_duration_ms,
            "last_run_result": self.last_run_result,
            "run_count": self.run_count,
            "failure_count": self.failure_count,
            "last_error": self.last_error,
        }

    def __repr__(self):
        return f"<ScheduledJob {self.job_name} [{self.state}]>"
