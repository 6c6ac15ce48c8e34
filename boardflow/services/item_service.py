"""
Item Service.

Item mutation entry point. Every operation performs the store write first
and then emits the matching AutomationEvent (with old/new snapshots and
the changed fields) into the event sink.

    create_item    → item_created
    update_item    → item_updated          (name and/or cells)
    change_status  → item_status_changed
    delete_item    → item_deleted          (soft delete)
    move_item      → item_moved            (emitted on the target board)
"""

from __future__ import annotations

import logging

from boardflow.core.exceptions import NotFoundError, ValidationError
from boardflow.services import authorization
from boardflow.services.events import AutomationEvent
from boardflow.services.stores import SqlItemStore

logger = logging.getLogger(__name__)


class ItemService:

    def __init__(self, item_store=None, event_sink=None):
        self.items = item_store or SqlItemStore()
        self.event_sink = event_sink

    def _item(self, item_id):
        item = self.items.get_item(item_id)
        if item is None:
            raise NotFoundError(resource="Item", resource_id=item_id)
        return item

    def _board(self, board_id):
        board = self.items.get_board(board_id)
        if board is None:
            raise NotFoundError(resource="Board", resource_id=board_id)
        return board

    def _check_columns(self, board_id, cells) -> None:
        """Reject cells whose column is not on the board, before anything is written."""
        if not cells:
            return
        known = {str(c.id) for c in self.items.list_columns(board_id)}
        for column_id in cells:
            if str(column_id) not in known:
                raise NotFoundError(resource="Column", resource_id=column_id)

    def _emit(self, event: AutomationEvent) -> None:
        if self.event_sink is None:
            return
        try:
            self.event_sink(event)
        except Exception:
            logger.exception("Item event %s failed for item %s", event.event_type, event.item_id,
                             extra={"item_id": event.item_id, "event_type": event.event_type})

    # ── operations ───────────────────────────────────────────────────────

    def create_item(self, board_id, actor_id, name, status="", cells=None):
        board = self._board(board_id)
        authorization.require(actor_id, board, "item.read")
        if not name or not str(name).strip():
            raise ValidationError("name is required", details={"name": "required"})
        self._check_columns(board.id, cells)

        item = self.items.create_item(board.id, str(name).strip(), status or "", actor_id)
        for column_id, value in (cells or {}).items():
            self.items.upsert_cell(item.id, column_id, value)

        snapshot = self.items.snapshot(item)
        self._emit(AutomationEvent(
            item_id=item.id, board_id=board.id, user_id=actor_id, event_type="item_created",
            new_data=snapshot, changed_fields={k: v for k, v in snapshot.items() if k != "id"},
        ))
        return item

    def update_item(self, item_id, actor_id, name=None, cells=None):
        item = self._item(item_id)
        authorization.require(actor_id, item, "item.read")
        self._check_columns(item.board_id, cells)
        before = self.items.snapshot(item)

        if name is not None and name != item.name:
            self.items.update_item(item, name=name)
        for column_id, value in (cells or {}).items():
            self.items.upsert_cell(item.id, column_id, value)

        after = self.items.snapshot(item)
        changed = {k: v for k, v in after.items() if before.get(k) != v}
        if not changed:
            return item
        self._emit(AutomationEvent(
            item_id=item.id, board_id=item.board_id, user_id=actor_id, event_type="item_updated",
            old_data=before, new_data=after, changed_fields=changed,
        ))
        return item

    def change_status(self, item_id, actor_id, status):
        item = self._item(item_id)
        authorization.require(actor_id, item, "item.read")
        before = self.items.snapshot(item)
        if before.get("status") == status:
            return item
        self.items.update_item(item, status=status)
        self._emit(AutomationEvent(
            item_id=item.id, board_id=item.board_id, user_id=actor_id,
            event_type="item_status_changed",
            old_data=before, new_data=self.items.snapshot(item), changed_fields={"status": status},
        ))
        return item

    def delete_item(self, item_id, actor_id):
        item = self._item(item_id)
        authorization.require(actor_id, item, "item.read")
        before = self.items.snapshot(item)
        self.items.soft_delete_item(item)
        self._emit(AutomationEvent(
            item_id=item.id, board_id=item.board_id, user_id=actor_id, event_type="item_deleted",
            old_data=before, new_data=before,
        ))
        return item

    def move_item(self, item_id, actor_id, target_board_id):
        item = self._item(item_id)
        authorization.require(actor_id, item, "item.read")
        target = self._board(target_board_id)
        authorization.require(actor_id, target, "item.read")
        old_board_id = item.board_id
        if old_board_id == target.id:
            return item

        before = self.items.snapshot(item)
        self.items.update_item(item, board_id=target.id)
        after = self.items.snapshot(item)
        logger.info("Item %s moved from board %s to %s", item.id, old_board_id, target.id,
                    extra={"item_id": item.id, "board_id": target.id})
        self._emit(AutomationEvent(
            item_id=item.id, board_id=target.id, user_id=actor_id, event_type="item_moved",
            old_data={**before, "boardId": old_board_id}, new_data={**after, "boardId": target.id},
            changed_fields={"boardId": target.id},
        ))
        return item
