"""
Boardflow
Automation domain model.

Models:
    - Automation: board-scoped rule (trigger + optional conditions + actions)
    - AutomationExecutionLog: one row per automation firing
"""

from datetime import datetime, timezone

from boardflow.models import db


# ── Constants ────────────────────────────────────────────────────────────────

EXECUTION_STATUSES = {"success", "partial", "failed"}

DATE_TRIGGER_TYPES = {"date_approaching", "date_passed", "date_equals_today", "date_in_range"}


class Automation(db.Model):
    __tablename__ = "automations"

    id = db.Column(db.Integer, primary_key=True)
    board_id = db.Column(
        db.Integer, db.ForeignKey("boards.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    trigger = db.Column(db.JSON, nullable=False, comment="{type, config?}")
    conditions = db.Column(db.JSON, nullable=True, comment="Condition tree, normalized on save")
    actions = db.Column(db.JSON, nullable=False, default=list)
    is_active = db.Column(db.Boolean, default=True, index=True)
    created_by = db.Column(db.String(64), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    logs = db.relationship("AutomationExecutionLog", backref="automation", lazy="dynamic",
                           cascade="all, delete-orphan")

    @property
    def trigger_type(self) -> str:
        return (self.trigger or {}).get("type", "")

    def to_dict(self):
        return {
            "id": self.id,
            "board_id": self.board_id,
            "name": self.name,
            "description": self.description,
            "trigger": self.trigger,
            "conditions": self.conditions,
            "actions": self.actions or [],
            "is_active": self.is_active,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Automation {self.id}: {self.name} [{self.trigger_type}]>"


class AutomationExecutionLog(db.Model):
    __tablename__ = "automation_execution_logs"

    id = db.Column(db.Integer, primary_key=True)
    automation_id = db.Column(
        db.Integer, db.ForeignKey("automations.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    item_id = db.Column(db.Integer, nullable=True, index=True)
    event_type = db.Column(db.String(40), nullable=True)
    status = db.Column(db.String(20), nullable=False, comment="success | partial | failed")
    results = db.Column(db.JSON, default=list, comment="Per-action {type, success, error?}")
    error = db.Column(db.Text, nullable=True)
    execution_time_ms = db.Column(db.Integer, default=0)
    executed_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "automation_id": self.automation_id,
            "item_id": self.item_id,
            "event_type": self.event_type,
            "status": self.status,
            "results": self.results or [],
            "error": self.error,
            "execution_time_ms": self.execution_time_ms,
            "executed_at": self.executed_at.isoformat() if self.executed_at else None,
        }

    def __repr__(self):
        return f"<AutomationExecutionLog {self.id}: automation={self.automation_id} [{self.status}]>"
