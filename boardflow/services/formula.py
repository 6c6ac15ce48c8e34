"""
Restricted arithmetic formulas for the calculate_formula action.

    "{price} * {quantity} - {Discount}"

Tokens ``{key}`` are replaced (case-insensitively) with snapshot values;
missing or empty values become 0. The resulting expression is parsed with
``ast`` and only numbers, + - * /, unary minus/plus and parentheses are
accepted. Nothing is ever passed to eval().
"""

from __future__ import annotations

import ast
import operator
import re
from typing import Any, Mapping

from boardflow.core.exceptions import ValidationError
from boardflow.utils.helpers import to_number

_TOKEN = re.compile(r"\{([^{}]+)\}")

_BIN_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
}
_UNARY_OPS = {
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}


def substitute(formula: str, snapshot: Mapping[str, Any]) -> str:
    lowered = {str(k).lower(): v for k, v in snapshot.items()}

    def _replace(match):
        key = match.group(1).strip().lower()
        raw = lowered.get(key)
        if raw is None or raw == "":
            return "0"
        num = to_number(raw)
        if num is None:
            raise ValidationError(
                f"Invalid formula: {{{match.group(1)}}} is not numeric",
                details={"formula": formula},
            )
        return repr(num)

    return _TOKEN.sub(_replace, formula)


def _eval_node(node):
    if isinstance(node, ast.Expression):
        return _eval_node(node.body)
    if isinstance(node, ast.Constant) and type(node.value) in (int, float):
        return node.value
    if isinstance(node, ast.BinOp) and type(node.op) in _BIN_OPS:
        left = _eval_node(node.left)
        right = _eval_node(node.right)
        return _BIN_OPS[type(node.op)](left, right)
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        return _UNARY_OPS[type(node.op)](_eval_node(node.operand))
    raise ValueError(f"unsupported element {type(node).__name__}")


def evaluate_formula(formula: str, snapshot: Mapping[str, Any]) -> int | float:
    """Substitute tokens and evaluate. Raises ValidationError on any failure."""
    expression = substitute(formula, snapshot)
    try:
        tree = ast.parse(expression.strip(), mode="eval")
        result = _eval_node(tree)
    except ZeroDivisionError as exc:
        raise ValidationError("Invalid formula: division by zero",
                              details={"formula": formula}) from exc
    except (SyntaxError, ValueError) as exc:
        raise ValidationError(f"Invalid formula: {formula}",
                              details={"formula": formula, "reason": str(exc)}) from exc
    if isinstance(result, float) and result.is_integer():
        return int(result)
    return result
