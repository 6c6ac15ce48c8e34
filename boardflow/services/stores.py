"""
Persistence seams used by the approval and automation services.

The evaluators and state machines never touch the ORM session directly;
they go through an ItemStore and an ApprovalStore. The SQL implementations
below are the production stores; tests may inject their own.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import IntegrityError

from boardflow.core.exceptions import NotFoundError
from boardflow.models import db
from boardflow.models.approval import APPROVAL_LEVELS, Approval
from boardflow.models.board import Board, BoardColumn, Cell, Item

logger = logging.getLogger(__name__)


def _column_pk(column_id) -> int:
    try:
        return int(column_id)
    except (TypeError, ValueError):
        raise NotFoundError(resource="Column", resource_id=column_id) from None


# ── Interfaces ───────────────────────────────────────────────────────────────


class ItemStore(ABC):
    """Items, their cells and board/column metadata."""

    @abstractmethod
    def get_item(self, item_id, include_deleted: bool = False): ...

    @abstractmethod
    def get_board(self, board_id): ...

    @abstractmethod
    def list_columns(self, board_id) -> list: ...

    @abstractmethod
    def list_items(self, board_id, include_deleted: bool = False) -> list: ...

    @abstractmethod
    def create_item(self, board_id, name: str, status: str, created_by: str): ...

    @abstractmethod
    def update_item(self, item, **fields): ...

    @abstractmethod
    def upsert_cell(self, item_id, column_id, value) -> None: ...

    @abstractmethod
    def delete_cells(self, item_id, column_id) -> int: ...

    @abstractmethod
    def soft_delete_item(self, item): ...

    @abstractmethod
    def restore_item(self, item): ...

    @abstractmethod
    def snapshot(self, item) -> dict[str, Any]: ...


class ApprovalStore(ABC):
    """CRUD over Approval rows."""

    @abstractmethod
    def create(self, item_id, level: str, approver_id: str | None, *, status: str = "pending",
               comments: str | None = None): ...

    @abstractmethod
    def get(self, approval_id): ...

    @abstractmethod
    def update(self, approval, **fields): ...

    @abstractmethod
    def delete(self, approval) -> None: ...

    @abstractmethod
    def list_for_item(self, item_id) -> list: ...

    @abstractmethod
    def list_for_level(self, item_id, level: str) -> list: ...

    @abstractmethod
    def list_pending(self, approver_id: str | None = None, created_before: datetime | None = None) -> list: ...

    @abstractmethod
    def list_items_with_approvals(self, archived: bool = False, board_id=None, search: str | None = None) -> list: ...


# ── SQL implementations ──────────────────────────────────────────────────────


class SqlItemStore(ItemStore):

    def get_item(self, item_id, include_deleted=False):
        item = db.session.get(Item, item_id)
        if item is None or (item.is_deleted and not include_deleted):
            return None
        return item

    def get_board(self, board_id):
        try:
            return db.session.get(Board, int(board_id))
        except (TypeError, ValueError):
            return None

    def list_columns(self, board_id):
        return (
            BoardColumn.query.filter_by(board_id=board_id)
            .order_by(BoardColumn.position, BoardColumn.id)
            .all()
        )

    def list_items(self, board_id, include_deleted=False):
        q = Item.query if include_deleted else Item.query_active()
        return q.filter(Item.board_id == board_id).order_by(Item.id).all()

    def create_item(self, board_id, name, status, created_by):
        item = Item(board_id=board_id, name=name, status=status or "", created_by=created_by)
        db.session.add(item)
        db.session.commit()
        return item

    def update_item(self, item, **fields):
        for key in ("name", "status", "board_id"):
            if key in fields:
                setattr(item, key, fields[key])
        db.session.commit()
        return item

    def upsert_cell(self, item_id, column_id, value):
        col_pk = _column_pk(column_id)
        item = db.session.get(Item, item_id)
        column = db.session.get(BoardColumn, col_pk)
        if item is None:
            raise NotFoundError(resource="Item", resource_id=item_id)
        if column is None or column.board_id != item.board_id:
            raise NotFoundError(resource="Column", resource_id=column_id)
        cell = Cell.query.filter_by(item_id=item_id, column_id=col_pk).first()
        if cell is None:
            db.session.add(Cell(item_id=item_id, column_id=col_pk, value=value))
        else:
            cell.value = value
        db.session.commit()

    def delete_cells(self, item_id, column_id):
        col_pk = _column_pk(column_id)
        count = Cell.query.filter_by(item_id=item_id, column_id=col_pk).delete()
        db.session.commit()
        return count

    def get_cell_value(self, item_id, column_id):
        cell = Cell.query.filter_by(item_id=item_id, column_id=_column_pk(column_id)).first()
        return cell.value if cell else None

    def soft_delete_item(self, item):
        item.soft_delete()
        db.session.commit()
        return item

    def restore_item(self, item):
        item.restore()
        db.session.commit()
        return item

    def snapshot(self, item):
        """Flat view of an item: id, name, status plus every cell keyed by
        raw column id and by lower-cased column name."""
        data: dict[str, Any] = {
            "id": item.id,
            "name": item.name,
            "status": item.status,
        }
        for cell in Cell.query.filter_by(item_id=item.id).all():
            data[str(cell.column_id)] = cell.value
            if cell.column is not None:
                data[cell.column.name.lower()] = cell.value
        return data


class SqlApprovalStore(ApprovalStore):

    def create(self, item_id, level, approver_id, *, status="pending", comments=None):
        approval = Approval(
            item_id=item_id,
            level=level,
            approver_id=approver_id,
            status=status,
            comments=comments,
            approved_at=datetime.now(timezone.utc) if status == "approved" else None,
        )
        db.session.add(approval)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            logger.info(
                "Approval row already exists for item=%s level=%s approver=%s",
                item_id, level, approver_id,
                extra={"item_id": item_id},
            )
            return None
        return approval

    def get(self, approval_id):
        return db.session.get(Approval, approval_id)

    def update(self, approval, **fields):
        for key, value in fields.items():
            setattr(approval, key, value)
        db.session.commit()
        return approval

    def delete(self, approval):
        db.session.delete(approval)
        db.session.commit()

    def list_for_item(self, item_id):
        rows = Approval.query.filter_by(item_id=item_id).order_by(Approval.id).all()
        return sorted(rows, key=lambda a: (APPROVAL_LEVELS.index(a.level), a.id))

    def list_for_level(self, item_id, level):
        return (
            Approval.query.filter_by(item_id=item_id, level=level)
            .order_by(Approval.id)
            .all()
        )

    def list_pending(self, approver_id=None, created_before=None):
        q = Approval.query.filter(Approval.status == "pending")
        if approver_id is not None:
            q = q.filter(Approval.approver_id == approver_id)
        if created_before is not None:
            q = q.filter(Approval.created_at < created_before)
        return q.order_by(Approval.created_at, Approval.id).all()

    def list_items_with_approvals(self, archived=False, board_id=None, search=None):
        """Items that have at least one approval row, newest first."""
        q = Item.query.filter(Item.id.in_(db.select(Approval.item_id)))
        q = q.filter(Item.deleted_at.isnot(None) if archived else Item.deleted_at.is_(None))
        if board_id is not None:
            q = q.filter(Item.board_id == board_id)
        if search:
            q = q.filter(Item.name.ilike(f"%{search}%"))
        return q.order_by(Item.created_at.desc(), Item.id.desc()).all()
