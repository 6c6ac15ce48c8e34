"""
Boardflow
Approval domain model.

Models:
    - Approval: one approver's decision on one level of an item's approval flow
    - ApprovalWorkflow: per-board workflow configuration (levels + routing rules)
"""

from datetime import datetime, timezone

from boardflow.models import db


# ── Constants ────────────────────────────────────────────────────────────────

APPROVAL_LEVELS = ("LEVEL_1", "LEVEL_2", "LEVEL_3")
APPROVAL_STATUSES = {"pending", "approved", "rejected"}


def level_index(level: str) -> int:
    """Position of a level in the strict level order (LEVEL_1 -> 0)."""
    return APPROVAL_LEVELS.index(level)


def previous_level(level: str) -> str | None:
    idx = level_index(level)
    return APPROVAL_LEVELS[idx - 1] if idx > 0 else None


class Approval(db.Model):
    """
    Approval row.

    Multiple rows per (item, level) exist when the level is parallel, one per
    approver. approver_id is NULL for rows whose level resolved no approver.
    """

    __tablename__ = "approvals"
    __table_args__ = (
        db.UniqueConstraint("item_id", "level", "approver_id", name="uq_approval_item_level_approver"),
    )

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(
        db.Integer, db.ForeignKey("items.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    level = db.Column(db.String(10), nullable=False, comment="LEVEL_1 | LEVEL_2 | LEVEL_3")
    status = db.Column(db.String(20), nullable=False, default="pending",
                       comment="pending | approved | rejected")
    approver_id = db.Column(db.String(64), nullable=True, index=True)
    comments = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    item = db.relationship("Item", lazy="joined")

    def to_dict(self):
        return {
            "id": self.id,
            "item_id": self.item_id,
            "level": self.level,
            "status": self.status,
            "approver_id": self.approver_id,
            "comments": self.comments,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "approved_at": self.approved_at.isoformat() if self.approved_at else None,
        }

    def __repr__(self):
        return f"<Approval {self.id}: item={self.item_id} {self.level} [{self.status}]>"


class ApprovalWorkflow(db.Model):
    """Saved workflow configuration, at most one per board."""

    __tablename__ = "approval_workflows"

    id = db.Column(db.Integer, primary_key=True)
    board_id = db.Column(
        db.Integer, db.ForeignKey("boards.id", ondelete="CASCADE"), nullable=False, unique=True,
    )
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    levels = db.Column(db.JSON, default=list, comment="Ordered LevelConfig list")
    rules = db.Column(db.JSON, default=list, comment="ApprovalRule list")
    updated_by = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "board_id": self.board_id,
            "name": self.name,
            "description": self.description,
            "levels": self.levels or [],
            "rules": self.rules or [],
            "updated_by": self.updated_by,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<ApprovalWorkflow board={self.board_id}: {self.name}>"
