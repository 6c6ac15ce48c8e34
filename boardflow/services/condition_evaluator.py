"""
Condition evaluation over flat item snapshots.

A condition is a tree of ``{type, field?, value?, conditions?}`` nodes:

    leaf:   equals | greater_than | less_than | contains | in
            not_equals | is_empty | is_not_empty   (automation condition blocks)
    branch: and | or   (empty and → True, empty or → False)

Evaluation is total: missing fields resolve to "" / 0, malformed nodes
evaluate to False, nothing raises.

Usage:
    from boardflow.services.condition_evaluator import evaluate
    evaluate({"type": "greater_than", "field": "total", "value": 10000}, snapshot)
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from boardflow.utils.helpers import is_empty_value, to_number

logger = logging.getLogger(__name__)


def _as_text(value: Any) -> str:
    if value is None or value == "":
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, list):
        return ",".join(_as_text(v) for v in value)
    return str(value)


def _as_number(value: Any) -> float:
    num = to_number(value)
    return 0.0 if num is None else num


def _get(node: Any, key: str, default=None):
    if isinstance(node, Mapping):
        return node.get(key, default)
    return getattr(node, key, default)


def evaluate(condition, snapshot: Mapping[str, Any]) -> bool:
    """Evaluate a condition tree (dict or schema object) against a snapshot."""
    if condition is None:
        return True
    ctype = _get(condition, "type")
    field = _get(condition, "field")
    expected = _get(condition, "value")

    if ctype == "and":
        return all(evaluate(c, snapshot) for c in _get(condition, "conditions") or [])
    if ctype == "or":
        return any(evaluate(c, snapshot) for c in _get(condition, "conditions") or [])

    if not field:
        return False
    actual = snapshot.get(field)

    if ctype == "equals":
        return _as_text(actual) == _as_text(expected)
    if ctype == "not_equals":
        return _as_text(actual) != _as_text(expected)
    if ctype == "greater_than":
        return _as_number(actual) > _as_number(expected)
    if ctype == "less_than":
        return _as_number(actual) < _as_number(expected)
    if ctype == "contains":
        return _as_text(expected).lower() in _as_text(actual).lower()
    if ctype == "in":
        values = expected if isinstance(expected, list) else [expected]
        return actual in values
    if ctype == "is_empty":
        return is_empty_value(actual)
    if ctype == "is_not_empty":
        return not is_empty_value(actual)

    logger.debug("Unknown condition type %r evaluated as False", ctype)
    return False


def evaluate_rule_block(block, snapshot: Mapping[str, Any]) -> bool:
    """Evaluate an automation condition block ``{type: and|or, conditions: [{field, operator, value}]}``.

    Leaves are mapped onto the tree form (operator → type). An empty block
    holds. Already-normalized trees are evaluated directly.
    """
    if not block:
        return True
    leaves = _get(block, "conditions") or []
    if not leaves:
        return True
    nodes = []
    for leaf in leaves:
        operator = _get(leaf, "operator")
        if operator is None:
            nodes.append(leaf)
        else:
            nodes.append({"type": operator, "field": _get(leaf, "field"), "value": _get(leaf, "value")})
    return evaluate({"type": _get(block, "type", "and"), "conditions": nodes}, snapshot)
