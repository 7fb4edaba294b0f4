"""Variable resolution for ``{{nodeId.field}}`` placeholders.

A placeholder names a node id followed by one or more keys. Keys walk into
nested dicts, and numeric keys index into lists, so ``{{1.data.orderItems.0.name}}``
reaches the first item of a trigger payload. A placeholder that cannot be
resolved is left exactly as written.

Substitution is a single pass: placeholder text inside a resolved value is
inserted verbatim, not expanded.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Tuple

logger = logging.getLogger(__name__)

PLACEHOLDER = re.compile(r"\{\{(.*?)\}\}")

_MISSING = object()


def _split_path(path: str) -> List[str]:
    return [segment.strip() for segment in path.split(".")]


def lookup(path: str, context: Dict[str, Any]) -> Tuple[bool, Any]:
    """Resolve a dotted ``path`` against ``context``.

    Returns:
        ``(found, value)``; ``found`` is False when the node or any key is missing
    """
    segments = _split_path(path)
    if len(segments) < 2 or not segments[0]:
        return False, None

    current: Any = context.get(segments[0], _MISSING)
    for segment in segments[1:]:
        if isinstance(current, dict):
            current = current.get(segment, _MISSING)
        elif isinstance(current, list) and segment.isdigit() and int(segment) < len(current):
            current = current[int(segment)]
        else:
            current = _MISSING
        if current is _MISSING:
            return False, None
    return True, current


def stringify(value: Any) -> str:
    """Render a resolved value into template text."""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, separators=(",", ":"), default=str)
    return str(value)


def resolve(template: Any, context: Dict[str, Any]) -> Any:
    """Replace every resolvable ``{{...}}`` span in ``template``.

    Non-string templates are returned unchanged.
    """
    if not isinstance(template, str) or "{{" not in template:
        return template

    def _substitute(match: re.Match) -> str:
        found, value = lookup(match.group(1), context)
        if not found:
            logger.debug(f"Unresolved reference left in place: {match.group(0)}")
            return match.group(0)
        return stringify(value)

    return PLACEHOLDER.sub(_substitute, template)


def resolve_value(template: Any, context: Dict[str, Any]) -> Any:
    """Like ``resolve`` but keeps the native value of a lone placeholder.

    ``"{{3.rows}}"`` yields the list itself rather than its JSON text.
    """
    if isinstance(template, str):
        match = PLACEHOLDER.fullmatch(template.strip())
        if match:
            found, value = lookup(match.group(1), context)
            if found:
                return value
    return resolve(template, context)


def resolve_config(value: Any, context: Dict[str, Any]) -> Any:
    """Recursively resolve every string inside a configuration structure."""
    if isinstance(value, dict):
        return {key: resolve_config(item, context) for key, item in value.items()}
    if isinstance(value, list):
        return [resolve_config(item, context) for item in value]
    return resolve(value, context)


def resolve_expression(template: str, context: Dict[str, Any]) -> str:
    """Substitute placeholders as literals for the safe evaluator.

    Strings become quoted literals, structures become JSON, and unresolved
    references become ``null``.
    """

    def _literal(match: re.Match) -> str:
        found, value = lookup(match.group(1), context)
        if not found:
            return "null"
        return json.dumps(value, default=str)

    return PLACEHOLDER.sub(_literal, template)


def find_references(template: Any) -> List[str]:
    """Node ids referenced by placeholders in ``template``."""
    if not isinstance(template, str):
        return []
    return [_split_path(m.group(1))[0] for m in PLACEHOLDER.finditer(template)]
