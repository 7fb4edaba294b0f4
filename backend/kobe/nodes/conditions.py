"""Filter condition evaluation.

A filter condition compares a resolved ``field`` against a resolved ``value``
with one of the FilterOperator operators. Compound filters combine the main
condition with ``additionalConditions`` (or the older ``secondary_*`` fields)
under AND/OR; advanced filters evaluate an expression with the safe
evaluator.
"""

from __future__ import annotations

import json
import logging
import re
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..engine.resolver import resolve, resolve_expression, resolve_value, stringify
from ..engine.safe_eval import SafeEvalError, evaluate_condition
from ..integrations.errors import ConfigurationError

logger = logging.getLogger(__name__)

# Leading numeric prefix ("30 days" -> 30.0)
_LEADING_NUMBER = re.compile(r"^\s*[-+]?(\d+\.?\d*|\.\d+)([eE][-+]?\d+)?")

_RANGE_SEPARATORS = re.compile(r"\s*(?:\.\.|,|\bto\b)\s*")

_NULL_LITERALS = {"", "null", "none", "undefined"}


class FilterOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    IN = "in"
    NULL = "null"
    WITHIN = "within"
    REGEX = "regex"


class ConditionType(str, Enum):
    SIMPLE = "simple"
    COMPOUND = "compound"
    ADVANCED = "advanced"


class LogicOperator(str, Enum):
    AND = "and"
    OR = "or"


def parse_number(value: Any) -> Optional[float]:
    """Parse a leading number the lenient way; None when there is none."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    match = _LEADING_NUMBER.match(str(value))
    return float(match.group(0)) if match else None


def loose_equals(left: Any, right: Any) -> bool:
    left_text, right_text = stringify(left), stringify(right)
    if left_text == right_text:
        return True
    try:
        return float(left_text) == float(right_text)
    except ValueError:
        return False


def _split_list(value: Any) -> List[Any]:
    if isinstance(value, list):
        return value
    text = stringify(value).strip()
    if text.startswith("["):
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            return parsed
    return [item.strip() for item in text.split(",") if item.strip()]


def _parse_range(value: Any) -> Tuple[float, float]:
    text = stringify(value).strip()
    if isinstance(value, list) or text.startswith("["):
        bounds = _split_list(value)
    else:
        bounds = [part for part in _RANGE_SEPARATORS.split(text) if part]
    numbers = [parse_number(b) for b in bounds]
    if len(numbers) != 2 or None in numbers:
        raise ConfigurationError(
            f"'within' expects a numeric range like '10,20', got: {stringify(value)}"
        )
    low, high = numbers
    return (min(low, high), max(low, high))


def _is_null(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (list, dict)):
        return len(value) == 0
    text = stringify(value).strip()
    return text.lower() in _NULL_LITERALS or (text.startswith("{{") and text.endswith("}}"))


def apply_operator(operator: FilterOperator, field_value: Any, value: Any) -> bool:
    """Evaluate ``field_value <operator> value``."""
    if operator is FilterOperator.EQUALS:
        return loose_equals(field_value, value)
    if operator is FilterOperator.NOT_EQUALS:
        return not loose_equals(field_value, value)

    if operator in (FilterOperator.GREATER_THAN, FilterOperator.LESS_THAN):
        left, right = parse_number(field_value), parse_number(value)
        if left is None or right is None:
            return False
        return left > right if operator is FilterOperator.GREATER_THAN else left < right

    if operator in (FilterOperator.CONTAINS, FilterOperator.NOT_CONTAINS):
        if isinstance(field_value, list):
            found = any(loose_equals(item, value) for item in field_value)
        elif isinstance(field_value, dict):
            found = stringify(value) in field_value
        else:
            found = stringify(value) in stringify(field_value)
        return found if operator is FilterOperator.CONTAINS else not found

    if operator is FilterOperator.STARTS_WITH:
        return stringify(field_value).startswith(stringify(value))
    if operator is FilterOperator.ENDS_WITH:
        return stringify(field_value).endswith(stringify(value))

    if operator is FilterOperator.IN:
        return any(loose_equals(field_value, item) for item in _split_list(value))

    if operator is FilterOperator.NULL:
        return _is_null(field_value)

    if operator is FilterOperator.WITHIN:
        number = parse_number(field_value)
        low, high = _parse_range(value)
        return number is not None and low <= number <= high

    if operator is FilterOperator.REGEX:
        try:
            return re.search(stringify(value), stringify(field_value)) is not None
        except re.error as e:
            raise ConfigurationError(f"Invalid regex '{stringify(value)}': {e}") from e

    raise ConfigurationError(f"Unsupported filter operator: {operator}")


def parse_operator(raw: Any) -> FilterOperator:
    try:
        return FilterOperator(str(raw or "").strip().lower())
    except ValueError:
        raise ConfigurationError(f"Unsupported filter operator: {raw}") from None


def evaluate_simple(condition: Dict[str, Any], context: Dict[str, Any]) -> Tuple[bool, str]:
    """Evaluate one ``{field, operator, value}`` condition.

    Returns:
        ``(passed, "<field> <operator> <value>")`` using resolved text
    """
    operator = parse_operator(condition.get("operator"))
    field_value = resolve_value(condition.get("field", ""), context)
    value = resolve(condition.get("value", ""), context)
    passed = apply_operator(operator, field_value, value)
    return passed, f"{stringify(field_value)} {operator.value} {stringify(value)}"


def _collect_conditions(config: Dict[str, Any]) -> Tuple[List[Dict[str, Any]], LogicOperator]:
    conditions = [config]
    conditions.extend(config.get("additionalConditions") or config.get("conditions") or [])
    logic_raw = config.get("logicOperator") or config.get("logic")

    if config.get("secondary_field"):
        conditions.append({
            "field": config["secondary_field"],
            "operator": config.get("secondary_operator", "equals"),
            "value": config.get("secondary_value", ""),
        })

    try:
        logic = LogicOperator(str(logic_raw or "and").lower())
    except ValueError:
        raise ConfigurationError(f"Unsupported logic operator: {logic_raw}") from None
    return [c for c in conditions if c.get("field") not in (None, "")], logic


def normalize_expression(expression: str) -> str:
    """Accept ``&&``, ``||`` and ``!`` alongside Python's boolean words."""
    expression = expression.replace("&&", " and ").replace("||", " or ")
    expression = re.sub(r"!(?=\s*[\w(\[])", " not ", expression)
    return expression.replace("===", "==").replace("!==", "!=")


def evaluate_expression(expression: str, context: Dict[str, Any]) -> bool:
    """Resolve placeholders as literals and evaluate ``expression``.

    The run context is visible as ``ctx`` (``ctx["1"]["data"]["orderTotal"]``).
    """
    text = normalize_expression(resolve_expression(expression, context))
    try:
        return evaluate_condition(text, {"ctx": context})
    except SafeEvalError as e:
        raise ConfigurationError(f"Invalid expression '{expression}': {e}") from e


def evaluate_filter(config: Dict[str, Any], context: Dict[str, Any]) -> Tuple[bool, str]:
    """Evaluate a filter node configuration against ``context``."""
    try:
        condition_type = ConditionType(config.get("conditionType") or "simple")
    except ValueError:
        raise ConfigurationError(
            f"Unsupported condition type: {config.get('conditionType')}"
        ) from None

    if condition_type is ConditionType.ADVANCED:
        expression = config.get("expression") or ""
        return evaluate_expression(expression, context), resolve(expression, context)

    conditions, logic = _collect_conditions(config)
    if condition_type is ConditionType.SIMPLE and not config.get("secondary_field"):
        return evaluate_simple(config, context)

    results = [evaluate_simple(c, context) for c in conditions]
    combine = all if logic is LogicOperator.AND else any
    description = f" {logic.value.upper()} ".join(text for _, text in results)
    return combine(passed for passed, _ in results), description
