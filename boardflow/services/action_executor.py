"""
Automation action execution.

``ActionExecutor.execute(actions, event)`` applies actions in list order.
Each action is isolated: a failure is logged and recorded in the returned
result list, and the remaining actions still run.

Actions write through the ItemStore directly and never emit automation
events themselves, so one automation cannot trigger another.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from boardflow.core.exceptions import ExternalIntegrationError, NotFoundError, ValidationError
from boardflow.integrations import webhook_gateway as gateway_module
from boardflow.models import db
from boardflow.services.formula import evaluate_formula
from boardflow.services.notification import NotificationService
from boardflow.services.stores import SqlItemStore

logger = logging.getLogger(__name__)

PEOPLE_COLUMN_TYPE = "people"


def _people_ids(value) -> list[str]:
    """User ids held by a people cell: a list of ids, a single id, or {id: ...} objects."""
    if value is None or value == "":
        return []
    values = value if isinstance(value, list) else [value]
    ids = []
    for v in values:
        if isinstance(v, dict):
            v = v.get("id") or v.get("userId")
        if v:
            ids.append(str(v))
    return ids


class ActionExecutor:

    def __init__(self, item_store=None, notifier=NotificationService, gateway=None):
        self.items = item_store or SqlItemStore()
        self.notifier = notifier
        self._gateway = gateway

    @property
    def gateway(self):
        return self._gateway or gateway_module.webhook_gateway

    # ── entry point ──────────────────────────────────────────────────────

    def execute(self, actions, event, automation_id=None) -> list[dict]:
        results = []
        for index, action in enumerate(actions or []):
            action_type = (action or {}).get("type")
            try:
                self._dispatch(action_type, (action or {}).get("config") or {}, event, automation_id)
                results.append({"type": action_type, "success": True})
            except Exception as exc:
                if isinstance(exc, SQLAlchemyError):
                    db.session.rollback()
                logger.warning(
                    "Action %d (%s) failed for item %s: %s", index, action_type, event.item_id, exc,
                    extra={"item_id": event.item_id, "automation_id": automation_id},
                )
                results.append({"type": action_type, "success": False, "error": str(exc)})
        return results

    def _dispatch(self, action_type, config, event, automation_id):
        handler = self._HANDLERS.get(action_type)
        if handler is None:
            raise ValidationError(f"Unknown action type: {action_type}")
        item = self.items.get_item(event.item_id, include_deleted=True)
        if item is None:
            raise NotFoundError(resource="Item", resource_id=event.item_id)
        handler(self, item, config, event, automation_id)

    # ── field actions ────────────────────────────────────────────────────

    def _change_status(self, item, config, event, automation_id):
        self.items.update_item(item, status=config["status"])

    def _update_field(self, item, config, event, automation_id):
        self.items.upsert_cell(item.id, config["columnId"], config.get("value"))

    def _clear_field(self, item, config, event, automation_id):
        self.items.delete_cells(item.id, config["columnId"])

    def _calculate_formula(self, item, config, event, automation_id):
        value = evaluate_formula(config["formula"], self.items.snapshot(item))
        self.items.upsert_cell(item.id, config["columnId"], value)

    def _copy_field(self, item, config, event, automation_id):
        snapshot = self.items.snapshot(item)
        source = str(config["sourceColumnId"])
        if source in snapshot:
            self.items.upsert_cell(item.id, config["columnId"], snapshot[source])

    def _assign_user(self, item, config, event, automation_id):
        user_ids = config["userIds"]
        if not isinstance(user_ids, list):
            user_ids = [user_ids]
        self.items.upsert_cell(item.id, config["columnId"], list(user_ids))

    # ── notifications ────────────────────────────────────────────────────

    def _link(self, item, config):
        return config.get("link") or f"/boards/{item.board_id}/items/{item.id}"

    def _metadata(self, item, automation_id):
        return {"itemId": item.id, "boardId": item.board_id, "automationId": automation_id}

    def _notify_users(self, item, config, event, automation_id):
        user_ids = config["userIds"]
        if not isinstance(user_ids, list):
            user_ids = [user_ids]
        self.notifier.notify_many(
            user_ids, "automation", config["title"], config["message"],
            self._link(item, config), self._metadata(item, automation_id),
        )

    def _notify_assignees(self, item, config, event, automation_id):
        snapshot = self.items.snapshot(item)
        assignees: list[str] = []
        for column in self.items.list_columns(item.board_id):
            if column.type != PEOPLE_COLUMN_TYPE:
                continue
            for uid in _people_ids(snapshot.get(str(column.id))):
                if uid not in assignees:
                    assignees.append(uid)
        if not assignees:
            logger.debug("notify_assignees: item %s has no assignees", item.id)
            return
        self.notifier.notify_many(
            assignees, "automation", config["title"], config["message"],
            self._link(item, config), self._metadata(item, automation_id),
        )

    # ── board actions ────────────────────────────────────────────────────

    def _create_item(self, item, config, event, automation_id):
        target_board_id = config["targetBoardId"]
        target = self.items.get_board(target_board_id)
        if target is None:
            raise NotFoundError(resource="Board", resource_id=target_board_id)

        new_item = self.items.create_item(
            target.id,
            config.get("itemName") or f"Automated: {item.name}",
            config.get("status") or item.status,
            event.user_id or item.created_by,
        )

        if config.get("copyCells"):
            snapshot = self.items.snapshot(item)
            target_columns = self.items.list_columns(target.id)
            for source_col in self.items.list_columns(item.board_id):
                key = str(source_col.id)
                if key not in snapshot:
                    continue
                match = next(
                    (c for c in target_columns
                     if c.name.lower() == source_col.name.lower() and c.type == source_col.type),
                    None,
                )
                if match is not None:
                    self.items.upsert_cell(new_item.id, match.id, snapshot[key])
        logger.info("Automation created item %s on board %s from item %s",
                    new_item.id, target.id, item.id, extra={"item_id": item.id})

    def _move_to_board(self, item, config, event, automation_id):
        target_board_id = config["targetBoardId"]
        target = self.items.get_board(target_board_id)
        if target is None:
            raise NotFoundError(resource="Board", resource_id=target_board_id)
        self.items.update_item(item, board_id=target.id)

    # ── outbound calls ───────────────────────────────────────────────────

    def _default_body(self, item):
        snapshot = self.items.snapshot(item)
        cells = {}
        for column in self.items.list_columns(item.board_id):
            key = str(column.id)
            if key in snapshot:
                cells[column.name] = snapshot[key]
        return {
            "itemId": item.id,
            "itemName": item.name,
            "status": item.status,
            "boardId": item.board_id,
            "cells": cells,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def _call(self, item, url, method, headers, body_override):
        body = self._default_body(item)
        if body_override:
            body.update(body_override)
        timeout = current_app.config.get("WEBHOOK_TIMEOUT_SECONDS", 10)
        result = self.gateway.send(method or "POST", url, headers=headers or {},
                                   json_body=body, timeout=timeout)
        if not result.ok:
            raise ExternalIntegrationError(result.error or "Webhook call failed",
                                           status_code=result.status_code)
        return result

    def _call_webhook(self, item, config, event, automation_id):
        self._call(item, config["webhookUrl"], config.get("webhookMethod"),
                   config.get("webhookHeaders"), config.get("webhookBody"))

    def _api_call(self, item, config, event, automation_id):
        self._call(item, config["apiUrl"], config.get("apiMethod"),
                   config.get("apiHeaders"), config.get("apiBody"))

    _HANDLERS = {
        "change_status": _change_status,
        "set_status": _change_status,
        "update_field": _update_field,
        "clear_field": _clear_field,
        "calculate_formula": _calculate_formula,
        "copy_field": _copy_field,
        "assign_user": _assign_user,
        "send_notification": _notify_users,
        "notify_users": _notify_users,
        "notify_assignees": _notify_assignees,
        "create_item": _create_item,
        "move_to_board": _move_to_board,
        "call_webhook": _call_webhook,
        "api_call": _api_call,
    }
