"""
Boardflow
Board domain model.

Models:
    - Workspace: top-level container; membership carries the role used
      for approval and configuration authorization
    - WorkspaceMember: (workspace, user, role)
    - Board: list of items sharing a column layout
    - BoardColumn: typed column definition ("people", "date", "number", ...)
    - Item: the work item moving through approval and automations
    - Cell: JSON value of one column for one item
"""

from datetime import datetime, timezone

from boardflow.models import db
from boardflow.models.soft_delete import SoftDeleteMixin

# ── Constants ────────────────────────────────────────────────────────────────

WORKSPACE_ROLES = {"owner", "admin", "finance", "member", "viewer"}
COLUMN_TYPES = {"text", "number", "date", "people", "status", "dropdown", "checkbox", "formula"}


def _utcnow():
    return datetime.now(timezone.utc)


class Workspace(db.Model):
    __tablename__ = "workspaces"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    members = db.relationship("WorkspaceMember", backref="workspace", lazy="select",
                              cascade="all, delete-orphan")
    boards = db.relationship("Board", backref="workspace", lazy="select",
                             cascade="all, delete-orphan")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Workspace {self.id}: {self.name}>"


class WorkspaceMember(db.Model):
    """Role of a user inside a workspace."""

    __tablename__ = "workspace_members"
    __table_args__ = (
        db.UniqueConstraint("workspace_id", "user_id", name="uq_workspace_member"),
    )

    id = db.Column(db.Integer, primary_key=True)
    workspace_id = db.Column(
        db.Integer, db.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    user_id = db.Column(db.String(64), nullable=False, index=True)
    role = db.Column(db.String(20), nullable=False, default="member",
                     comment="owner | admin | finance | member | viewer")

    def to_dict(self):
        return {
            "id": self.id,
            "workspace_id": self.workspace_id,
            "user_id": self.user_id,
            "role": self.role,
        }

    def __repr__(self):
        return f"<WorkspaceMember {self.user_id}@{self.workspace_id} [{self.role}]>"


class Board(db.Model):
    __tablename__ = "boards"

    id = db.Column(db.Integer, primary_key=True)
    workspace_id = db.Column(
        db.Integer, db.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    settings = db.Column(db.JSON, default=dict)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    columns = db.relationship("BoardColumn", backref="board", lazy="select",
                              order_by="BoardColumn.position", cascade="all, delete-orphan")

    def to_dict(self):
        return {
            "id": self.id,
            "workspace_id": self.workspace_id,
            "name": self.name,
            "settings": self.settings or {},
            "columns": [c.to_dict() for c in self.columns],
        }

    def __repr__(self):
        return f"<Board {self.id}: {self.name}>"


class BoardColumn(db.Model):
    __tablename__ = "board_columns"

    id = db.Column(db.Integer, primary_key=True)
    board_id = db.Column(
        db.Integer, db.ForeignKey("boards.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    type = db.Column(db.String(30), nullable=False, default="text")
    position = db.Column(db.Integer, default=0)

    def to_dict(self):
        return {
            "id": self.id,
            "board_id": self.board_id,
            "name": self.name,
            "type": self.type,
            "position": self.position,
        }

    def __repr__(self):
        return f"<BoardColumn {self.id}: {self.name} ({self.type})>"


class Item(SoftDeleteMixin, db.Model):
    """
    Work item.

    Archived (soft-deleted) only after its approval flow completes; an
    archived item can be restored.
    """

    __tablename__ = "items"

    id = db.Column(db.Integer, primary_key=True)
    board_id = db.Column(
        db.Integer, db.ForeignKey("boards.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    name = db.Column(db.String(300), nullable=False)
    status = db.Column(db.String(100), default="")
    created_by = db.Column(db.String(64), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    board = db.relationship("Board", lazy="joined")
    cells = db.relationship("Cell", backref="item", lazy="select", cascade="all, delete-orphan")

    def to_dict(self, include_cells=True):
        data = {
            "id": self.id,
            "board_id": self.board_id,
            "name": self.name,
            "status": self.status,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "deleted_at": self.deleted_at.isoformat() if self.deleted_at else None,
        }
        if include_cells:
            data["cells"] = {str(c.column_id): c.value for c in self.cells}
        return data

    def __repr__(self):
        return f"<Item {self.id}: {self.name[:40]}>"


class Cell(db.Model):
    __tablename__ = "cells"
    __table_args__ = (
        db.UniqueConstraint("item_id", "column_id", name="uq_cell_item_column"),
    )

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(
        db.Integer, db.ForeignKey("items.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    column_id = db.Column(
        db.Integer, db.ForeignKey("board_columns.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    value = db.Column(db.JSON, nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    column = db.relationship("BoardColumn", lazy="joined")

    def __repr__(self):
        return f"<Cell item={self.item_id} column={self.column_id}>"
