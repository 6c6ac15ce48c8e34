"""
Automation Service.

CRUD, toggle, execution logs and dry-run preview of automations.
Payloads are validated strictly at save time; writes require the
``automation.write`` capability (workspace owner/admin), reads require
workspace membership.
"""

from __future__ import annotations

import logging

from boardflow.core.exceptions import NotFoundError, ValidationError
from boardflow.models import db
from boardflow.models.automation import Automation, AutomationExecutionLog
from boardflow.schemas.automation import parse_automation_create, parse_automation_update
from boardflow.services import authorization
from boardflow.services.automation_engine import conditions_hold
from boardflow.services.events import AutomationEvent
from boardflow.services.stores import SqlItemStore
from boardflow.services.trigger_matcher import matches

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


class AutomationService:
    """Stateless service class for automation configuration."""

    items = SqlItemStore()

    # ── helpers ──────────────────────────────────────────────────────────

    @classmethod
    def _board(cls, board_id):
        board = cls.items.get_board(board_id)
        if board is None:
            raise NotFoundError(resource="Board", resource_id=board_id)
        return board

    @staticmethod
    def _automation(automation_id) -> Automation:
        automation = db.session.get(Automation, automation_id)
        if automation is None:
            raise NotFoundError(resource="Automation", resource_id=automation_id)
        return automation

    # ── CRUD ─────────────────────────────────────────────────────────────

    @classmethod
    def create(cls, actor_id, payload) -> Automation:
        data = parse_automation_create(payload)
        board = cls._board(data.board_id)
        authorization.require(actor_id, board, "automation.write")

        automation = Automation(
            board_id=board.id,
            name=data.name,
            description=data.description,
            trigger=data.trigger.to_json(),
            conditions=data.conditions,
            actions=[a.to_json() for a in data.actions],
            is_active=data.is_active,
            created_by=actor_id,
        )
        db.session.add(automation)
        db.session.commit()
        logger.info("Automation %s created on board %s", automation.id, board.id,
                    extra={"automation_id": automation.id, "board_id": board.id})
        return automation

    @classmethod
    def list_automations(cls, actor_id, board_id, *, is_active=None, search=None, page=1, limit=DEFAULT_PAGE_SIZE):
        board = cls._board(board_id)
        authorization.require(actor_id, board, "item.read")
        if page < 1:
            raise ValidationError("page must be >= 1", details={"page": page})
        limit = max(1, min(limit, MAX_PAGE_SIZE))

        q = Automation.query.filter_by(board_id=board.id)
        if is_active is not None:
            q = q.filter(Automation.is_active == is_active)
        if search:
            q = q.filter(Automation.name.ilike(f"%{search}%"))
        total = q.count()
        rows = (
            q.order_by(Automation.created_at.desc(), Automation.id.desc())
            .offset((page - 1) * limit).limit(limit).all()
        )
        return {
            "automations": [a.to_dict() for a in rows],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "totalPages": (total + limit - 1) // limit,
            },
        }

    @classmethod
    def get(cls, actor_id, automation_id) -> Automation:
        automation = cls._automation(automation_id)
        authorization.require(actor_id, cls._board(automation.board_id), "item.read")
        return automation

    @classmethod
    def update(cls, actor_id, automation_id, payload) -> Automation:
        automation = cls._automation(automation_id)
        authorization.require(actor_id, cls._board(automation.board_id), "automation.write")
        data = parse_automation_update(payload)

        fields = data.model_fields_set
        if "name" in fields and data.name is not None:
            automation.name = data.name
        if "description" in fields:
            automation.description = data.description or ""
        if "trigger" in fields and data.trigger is not None:
            automation.trigger = data.trigger.to_json()
        if "actions" in fields and data.actions is not None:
            automation.actions = [a.to_json() for a in data.actions]
        if "conditions" in fields:
            automation.conditions = data.conditions
        if "is_active" in fields and data.is_active is not None:
            automation.is_active = data.is_active
        db.session.commit()
        logger.info("Automation %s updated", automation.id, extra={"automation_id": automation.id})
        return automation

    @classmethod
    def delete(cls, actor_id, automation_id) -> None:
        automation = cls._automation(automation_id)
        authorization.require(actor_id, cls._board(automation.board_id), "automation.write")
        db.session.delete(automation)
        db.session.commit()
        logger.info("Automation %s deleted", automation_id, extra={"automation_id": automation_id})

    @classmethod
    def toggle(cls, actor_id, automation_id) -> Automation:
        automation = cls._automation(automation_id)
        authorization.require(actor_id, cls._board(automation.board_id), "automation.write")
        automation.is_active = not automation.is_active
        db.session.commit()
        return automation

    @classmethod
    def logs(cls, actor_id, automation_id, limit=50):
        automation = cls.get(actor_id, automation_id)
        rows = (
            automation.logs.order_by(AutomationExecutionLog.executed_at.desc(),
                                     AutomationExecutionLog.id.desc())
            .limit(limit).all()
        )
        return [r.to_dict() for r in rows]

    # ── dry run ──────────────────────────────────────────────────────────

    @classmethod
    def preview(cls, actor_id, automation_id, item_id) -> dict:
        """Describe what the automation would do for an item. Executes nothing."""
        automation = cls.get(actor_id, automation_id)
        item = cls.items.get_item(item_id)
        if item is None or item.board_id != automation.board_id:
            raise NotFoundError(resource="Item", resource_id=item_id)

        snapshot = cls.items.snapshot(item)
        event = AutomationEvent(
            item_id=item.id,
            board_id=item.board_id,
            user_id=actor_id,
            event_type="item_updated",
            old_data=snapshot,
            new_data=snapshot,
        )
        trigger_matched = matches(automation.trigger, event)
        conditions_met = conditions_hold(automation.conditions, snapshot)
        return {
            "automation": {
                "id": automation.id,
                "name": automation.name,
                "trigger": automation.trigger,
            },
            "itemId": item.id,
            "triggerMatched": trigger_matched,
            "conditionsMet": conditions_met,
            "wouldExecute": trigger_matched and conditions_met,
            "preview": [
                {
                    "type": action.get("type"),
                    "description": f"Would execute: {action.get('type')}",
                    "config": action.get("config") or {},
                }
                for action in automation.actions or []
            ],
        }
