"""
Trigger matching.

``matches(trigger, event, today=None)`` decides whether an AutomationEvent
satisfies a stored trigger ``{"type": ..., "config": {...}}``. Pure: the
only ambient input is the current date, which callers may inject.

Trigger families:
    lifecycle   item_created / item_updated / item_status_changed / item_deleted / item_moved
    field       field_changed, field_equals, field_greater_than, field_less_than,
                field_contains, field_is_empty, field_is_not_empty
    date        date_approaching, date_passed, date_equals_today, date_in_range
    approval    approval_submitted / approval_approved / approval_rejected /
                approval_level_completed (optional level filter)
"""

from __future__ import annotations

import json
import logging
from datetime import date, datetime
from typing import Any, Mapping

from boardflow.services.events import AutomationEvent
from boardflow.utils.helpers import is_empty_value, parse_datetime, to_number

logger = logging.getLogger(__name__)

DEFAULT_DAYS_BEFORE = 3

_LIFECYCLE = {"item_created", "item_updated", "item_deleted", "item_moved"}
_APPROVAL = {"approval_submitted", "approval_approved", "approval_rejected", "approval_level_completed"}
_FIELD_EVENTS = {"item_created", "item_updated", "item_status_changed"}
_DATE_EVENTS = {"item_created", "item_updated", "date_check"}

_FIELD_OPERATORS = {
    "field_greater_than": "greater_than",
    "field_less_than": "less_than",
    "field_contains": "contains",
    "field_is_empty": "is_empty",
    "field_is_not_empty": "is_not_empty",
}
_DATE_MODES = {
    "date_approaching": "approaching",
    "date_passed": "passed",
    "date_equals_today": "equals_today",
    "date_in_range": "in_range",
}


# ── Field comparison ─────────────────────────────────────────────────────────

def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _json_equal(left, right) -> bool:
    if _is_number(left) and _is_number(right):
        return float(left) == float(right)
    return json.dumps(left, sort_keys=True, default=str) == json.dumps(right, sort_keys=True, default=str)


def compare_field(snapshot: Mapping[str, Any] | None, column_id, expected, operator: str) -> bool:
    """Compare ``snapshot[column_id]`` with ``expected`` using ``operator``."""
    if snapshot is None:
        return False
    actual = snapshot.get(str(column_id))

    if operator == "equals":
        return _json_equal(actual, expected)
    if operator == "not_equals":
        return not _json_equal(actual, expected)
    if operator == "contains":
        if isinstance(actual, str) and isinstance(expected, str):
            return expected.lower() in actual.lower()
        if isinstance(actual, list):
            return any(_json_equal(v, expected) for v in actual)
        return False
    if operator in ("greater_than", "less_than"):
        left = to_number(0 if actual in (None, "") else actual)
        right = to_number(0 if expected in (None, "") else expected)
        if left is None or right is None:
            return False
        return left > right if operator == "greater_than" else left < right
    if operator == "is_empty":
        return is_empty_value(actual)
    if operator == "is_not_empty":
        return not is_empty_value(actual)
    return False


# ── Date evaluation ──────────────────────────────────────────────────────────

def evaluate_date(snapshot: Mapping[str, Any] | None, column_id, mode: str, *,
                  days_before: int | None = None, start=None, end=None,
                  today: date | None = None) -> bool:
    if not snapshot:
        return False
    raw = snapshot.get(str(column_id))
    if raw in (None, ""):
        return False
    if _is_number(raw):
        # epoch milliseconds; out-of-range values never match
        try:
            value = datetime.fromtimestamp(raw / 1000)
        except (OverflowError, OSError, ValueError):
            return False
    else:
        value = parse_datetime(raw)
    if value is None:
        return False

    today = today or date.today()
    target = value.date()

    if mode == "approaching":
        window = DEFAULT_DAYS_BEFORE if days_before is None else days_before
        days_until = (target - today).days
        return 0 <= days_until <= window
    if mode == "passed":
        return target < today
    if mode == "equals_today":
        return target == today
    if mode == "in_range":
        start_at = parse_datetime(start)
        end_at = parse_datetime(end)
        if start_at is None or end_at is None:
            return False
        return start_at <= value <= end_at
    return False


# ── Trigger matching ─────────────────────────────────────────────────────────

def matches(trigger: Mapping[str, Any] | None, event: AutomationEvent, today: date | None = None) -> bool:
    if not trigger:
        return False
    ttype = trigger.get("type")
    config = trigger.get("config") or {}
    event_type = event.event_type
    column_id = config.get("columnId")

    if ttype in _LIFECYCLE:
        return event_type == ttype

    if ttype == "item_status_changed":
        if event_type != "item_status_changed":
            return False
        if config.get("value"):
            return (event.new_data or {}).get("status") == config["value"]
        return True

    if ttype == "field_changed":
        if event_type != "item_updated" or not column_id:
            return False
        return str(column_id) in {str(k) for k in event.changed_fields or {}}

    if ttype == "field_equals":
        if not column_id or config.get("value") is None or event_type not in _FIELD_EVENTS:
            return False
        return compare_field(event.new_data, column_id, config["value"], config.get("operator") or "equals")

    if ttype in _FIELD_OPERATORS:
        operator = _FIELD_OPERATORS[ttype]
        needs_value = operator not in ("is_empty", "is_not_empty")
        if not column_id or event_type not in _FIELD_EVENTS:
            return False
        if needs_value and config.get("value") is None:
            return False
        return compare_field(event.new_data, column_id, config.get("value"), operator)

    if ttype in _DATE_MODES:
        if not column_id or event_type not in _DATE_EVENTS:
            return False
        return evaluate_date(
            event.new_data, column_id, _DATE_MODES[ttype],
            days_before=config.get("daysBefore"),
            start=config.get("startDate"),
            end=config.get("endDate"),
            today=today,
        )

    if ttype in _APPROVAL:
        if event_type != ttype:
            return False
        level = config.get("level")
        if level and (event.approval_data is None or event.approval_data.level != level):
            return False
        return True

    logger.debug("Unknown trigger type %r never matches", ttype)
    return False
