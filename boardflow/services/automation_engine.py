"""
Automation Engine.

Runs every active automation of a board against one event:

    1. load active automations for the board, oldest first
    2. skip when the trigger does not match
    3. skip when conditions exist and do not hold against the event's newData
    4. execute the actions (each isolated) and write an execution log row

The engine never raises into the caller: an item mutation or approval
transition must not fail because an automation did.

``check_date_triggers`` is the daily pass over every item of every board
that has an active date automation.
"""

from __future__ import annotations

import logging
import time
from datetime import date

from boardflow.models import db
from boardflow.models.automation import DATE_TRIGGER_TYPES, Automation, AutomationExecutionLog
from boardflow.services.action_executor import ActionExecutor
from boardflow.services.condition_evaluator import evaluate, evaluate_rule_block
from boardflow.services.events import AutomationEvent
from boardflow.services.stores import SqlItemStore
from boardflow.services.trigger_matcher import matches

logger = logging.getLogger(__name__)


def conditions_hold(conditions, snapshot) -> bool:
    """Stored conditions are a tree; blocks with ``operator`` leaves are still accepted."""
    if not conditions:
        return True
    leaves = conditions.get("conditions") or []
    if any(isinstance(leaf, dict) and "operator" in leaf for leaf in leaves):
        return evaluate_rule_block(conditions, snapshot)
    return evaluate(conditions, snapshot)


def _execution_status(results) -> str:
    ok = sum(1 for r in results if r.get("success"))
    if ok == len(results):
        return "success"
    return "failed" if ok == 0 else "partial"


class AutomationEngine:

    def __init__(self, item_store=None, executor=None):
        self.items = item_store or SqlItemStore()
        self.executor = executor or ActionExecutor(item_store=self.items)

    def _active_automations(self, board_id):
        return (
            Automation.query.filter_by(board_id=board_id, is_active=True)
            .order_by(Automation.created_at, Automation.id)
            .all()
        )

    def _ensure_snapshot(self, event: AutomationEvent) -> None:
        if event.new_data is not None:
            return
        item = self.items.get_item(event.item_id, include_deleted=True)
        if item is not None:
            event.new_data = self.items.snapshot(item)

    def process(self, event: AutomationEvent, today: date | None = None) -> list[dict]:
        """Run matching automations. Returns one summary per fired automation."""
        fired = []
        try:
            automations = self._active_automations(event.board_id)
            if automations:
                self._ensure_snapshot(event)
        except Exception:
            db.session.rollback()
            logger.exception("Loading automations failed for board %s", event.board_id,
                             extra={"board_id": event.board_id, "event_type": event.event_type})
            return fired

        for automation in automations:
            try:
                summary = self._run_one(automation, event, today)
            except Exception:
                db.session.rollback()
                logger.exception("Automation %s crashed on %s", automation.id, event.event_type,
                                 extra={"automation_id": automation.id, "item_id": event.item_id,
                                        "event_type": event.event_type})
                continue
            if summary is not None:
                fired.append(summary)
        return fired

    def _run_one(self, automation, event, today):
        if not matches(automation.trigger, event, today=today):
            return None
        if not conditions_hold(automation.conditions, event.new_data or {}):
            logger.debug("Automation %s: conditions not met for item %s", automation.id, event.item_id)
            return None

        started = time.perf_counter()
        results = self.executor.execute(automation.actions, event, automation_id=automation.id)
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        status = _execution_status(results)
        errors = [r["error"] for r in results if not r.get("success") and r.get("error")]

        db.session.add(AutomationExecutionLog(
            automation_id=automation.id,
            item_id=event.item_id,
            event_type=event.event_type,
            status=status,
            results=results,
            error="; ".join(errors) or None,
            execution_time_ms=elapsed_ms,
        ))
        db.session.commit()

        logger.info("Automation %s fired on %s for item %s: %s",
                    automation.id, event.event_type, event.item_id, status,
                    extra={"automation_id": automation.id, "item_id": event.item_id,
                           "event_type": event.event_type})
        return {"automationId": automation.id, "status": status, "results": results}

    def check_date_triggers(self, today: date | None = None) -> dict:
        """Evaluate date triggers for every live item on boards with active date automations."""
        stats = {"boards": 0, "items": 0, "fired": 0}
        active = Automation.query.filter_by(is_active=True).all()
        board_ids = sorted({a.board_id for a in active if a.trigger_type in DATE_TRIGGER_TYPES})

        for board_id in board_ids:
            stats["boards"] += 1
            for item in self.items.list_items(board_id):
                stats["items"] += 1
                event = AutomationEvent(
                    item_id=item.id,
                    board_id=board_id,
                    user_id=item.created_by,
                    event_type="date_check",
                    new_data=self.items.snapshot(item),
                )
                stats["fired"] += len(self.process(event, today=today))
        logger.info("Date trigger check: %d board(s), %d item(s), %d firing(s)",
                    stats["boards"], stats["items"], stats["fired"])
        return stats
