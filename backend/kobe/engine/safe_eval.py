"""Restricted expression evaluator for branch conditions and advanced filters.

Expressions are parsed with Python's ``ast`` module and walked node by node;
only comparisons, boolean logic, literals, basic arithmetic and read-only
field access are accepted. No calls, imports or attribute access on objects.

Supported expressions:
- Comparisons: orderTotal > 100, status == "active", "vip" in tags
- Boolean logic: total > 0 and total < 500, not cancelled
- Literals: "text", 42, 3.14, true/false/null (JSON spelling) or True/False/None
- Field access: data["orderId"], data.orderItems[0].price (dict keys only)
- Arithmetic: +, -, *, /, %
"""

from __future__ import annotations

import ast
import logging
import operator
from typing import Any, Dict, List

logger = logging.getLogger(__name__)

MAX_EXPRESSION_LENGTH = 500

_NAMED_CONSTANTS = {
    "true": True,
    "True": True,
    "false": False,
    "False": False,
    "null": None,
    "none": None,
    "None": None,
}

_COMPARE_OPS = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
}

_BIN_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Mod: operator.mod,
}

_UNARY_OPS = {
    ast.Not: operator.not_,
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}

_FORBIDDEN_NODES = (
    (ast.Call, "Function calls are not allowed in expressions"),
    (ast.Lambda, "Lambda expressions are not allowed"),
    ((ast.ListComp, ast.SetComp, ast.DictComp, ast.GeneratorExp), "Comprehensions are not allowed"),
    (ast.Await, "Await expressions are not allowed"),
    (ast.Starred, "Star expressions are not allowed"),
    (ast.NamedExpr, "Assignment expressions are not allowed"),
)


class SafeEvalError(Exception):
    """Raised when an expression cannot be parsed or evaluated."""


def safe_eval(expression: str, variables: Dict[str, Any]) -> Any:
    """Evaluate ``expression`` with ``variables`` as the only visible names.

    Raises:
        SafeEvalError: empty/oversized expression, bad syntax, unknown name
            or an unsupported construct
    """
    tree = _parse(expression)
    try:
        return _eval_node(tree.body, variables)
    except SafeEvalError:
        raise
    except Exception as e:
        raise SafeEvalError(f"Evaluation error: {e}") from e


def evaluate_condition(expression: str, variables: Dict[str, Any]) -> bool:
    return bool(safe_eval(expression, variables))


def _parse(expression: str) -> ast.Expression:
    if not expression or not expression.strip():
        raise SafeEvalError("Expression cannot be empty")

    expression = expression.strip()
    if len(expression) > MAX_EXPRESSION_LENGTH:
        raise SafeEvalError(
            f"Expression too long ({len(expression)} chars, max {MAX_EXPRESSION_LENGTH})"
        )

    try:
        return ast.parse(expression, mode="eval")
    except SyntaxError as e:
        raise SafeEvalError(f"Invalid expression syntax: {e.msg}") from e


def _eval_node(node: ast.AST, variables: Dict[str, Any]) -> Any:
    if isinstance(node, ast.Constant):
        return node.value

    if isinstance(node, ast.Name):
        if node.id in variables:
            return variables[node.id]
        if node.id in _NAMED_CONSTANTS:
            return _NAMED_CONSTANTS[node.id]
        raise SafeEvalError(f"Unknown variable: '{node.id}'")

    if isinstance(node, ast.Compare):
        left = _eval_node(node.left, variables)
        for op, comparator in zip(node.ops, node.comparators):
            op_func = _COMPARE_OPS.get(type(op))
            if op_func is None:
                raise SafeEvalError(f"Unsupported comparison: {type(op).__name__}")
            right = _eval_node(comparator, variables)
            if not op_func(left, right):
                return False
            left = right
        return True

    if isinstance(node, ast.BoolOp):
        if isinstance(node.op, ast.And):
            return all(_eval_node(v, variables) for v in node.values)
        return any(_eval_node(v, variables) for v in node.values)

    if isinstance(node, ast.UnaryOp):
        op_func = _UNARY_OPS.get(type(node.op))
        if op_func is None:
            raise SafeEvalError(f"Unsupported unary op: {type(node.op).__name__}")
        return op_func(_eval_node(node.operand, variables))

    if isinstance(node, ast.BinOp):
        op_func = _BIN_OPS.get(type(node.op))
        if op_func is None:
            raise SafeEvalError(f"Unsupported binary op: {type(node.op).__name__}")
        return op_func(_eval_node(node.left, variables), _eval_node(node.right, variables))

    if isinstance(node, ast.Subscript):
        value = _eval_node(node.value, variables)
        key = _eval_node(node.slice, variables)
        try:
            return value[key]
        except (KeyError, IndexError, TypeError) as e:
            raise SafeEvalError(f"Subscript access failed: {e}") from e

    # Dot access reads dict keys only
    if isinstance(node, ast.Attribute):
        value = _eval_node(node.value, variables)
        if not isinstance(value, dict):
            raise SafeEvalError("Attribute access only supported on dict-like objects")
        if node.attr not in value:
            raise SafeEvalError(f"Key '{node.attr}' not found in dict")
        return value[node.attr]

    if isinstance(node, ast.List):
        return [_eval_node(elt, variables) for elt in node.elts]

    if isinstance(node, ast.Tuple):
        return tuple(_eval_node(elt, variables) for elt in node.elts)

    if isinstance(node, ast.Dict):
        return {
            _eval_node(k, variables): _eval_node(v, variables)
            for k, v in zip(node.keys, node.values)
        }

    if isinstance(node, ast.IfExp):
        if _eval_node(node.test, variables):
            return _eval_node(node.body, variables)
        return _eval_node(node.orelse, variables)

    raise SafeEvalError(f"Unsupported expression type: {type(node).__name__}")


def validate_expression(expression: str) -> List[str]:
    """Static check of ``expression``; returns error strings, empty if valid."""
    try:
        tree = _parse(expression)
    except SafeEvalError as e:
        return [str(e)]

    errors = []
    for node in ast.walk(tree):
        for node_types, message in _FORBIDDEN_NODES:
            if isinstance(node, node_types) and message not in errors:
                errors.append(message)
    return errors
