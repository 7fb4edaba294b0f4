"""Built-in Node Type Implementations

One class per NodeType. Every node resolves its templated configuration
against the run context before use; effectful nodes go through the
integration router carried by their NodeRuntime.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx

from .. import settings
from ..engine.resolver import resolve, resolve_config, resolve_value, stringify
from ..integrations.base import ServiceKind
from ..integrations.errors import ConfigurationError, IntegrationError
from .conditions import (
    ConditionType,
    FilterOperator,
    evaluate_expression,
    evaluate_filter,
    loose_equals,
    parse_number,
)
from .registry import BaseNodeImpl, NodeResult, NodeType, register_node_type

logger = logging.getLogger(__name__)

DEFAULT_TRIGGER_EVENT = "scheduled_event"


def sample_order_payload() -> Dict[str, Any]:
    """Synthetic event data a simulated trigger fires with."""
    return {
        "userId": "user_123",
        "customerId": "cust_456",
        "orderId": "ord_789",
        "orderTotal": 149.99,
        "orderDate": datetime.now(timezone.utc).isoformat(),
        "orderItems": [
            {"productId": "P001", "name": "Product 1", "price": 49.99, "quantity": 2},
            {"productId": "P002", "name": "Product 2", "price": 29.99, "quantity": 1},
            {"productId": "P003", "name": "Product 3", "price": 19.99, "quantity": 1},
        ],
    }


def _maybe_json(value: Any) -> Any:
    """Decode JSON-looking strings; anything else is returned as-is."""
    if isinstance(value, str) and value.strip()[:1] in ("{", "["):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value
    return value


class IntegrationNodeMixin:
    """Router access for nodes with external effects."""

    async def _call(self, service: ServiceKind, operation: str, params: Dict[str, Any]) -> Any:
        router = self.runtime.router
        if router is None:
            raise ConfigurationError(
                f"Node {self.node_id} needs an integration router to run {operation}"
            )
        return await router.execute(service, operation, params)


# =====================================================================
# Trigger
# =====================================================================


class TriggerType(str, Enum):
    EVENT = "event"
    SCHEDULE = "schedule"
    WEBHOOK = "webhook"
    API = "api"
    DATA_CHANGE = "data_change"


@register_node_type(
    node_type=NodeType.TRIGGER,
    display_name="Trigger",
    description="Starts the workflow on an event, schedule or inbound webhook",
    category="trigger",
    input_schema={
        "type": "object",
        "properties": {
            "triggerType": {"type": "string", "enum": [t.value for t in TriggerType]},
            "event": {"type": "string"},
            "schedule": {"type": "string"},
        },
    },
    output_schema={
        "type": "object",
        "properties": {
            "timestamp": {"type": "string"},
            "event": {"type": "string"},
            "data": {"type": "object"},
        },
    },
    icon="zap",
    color="#ffcc00",
)
class TriggerNode(BaseNodeImpl):
    """Seeds the run context with the event payload.

    Uses the run's trigger payload when one was supplied (webhook dispatch),
    otherwise the synthetic order payload.
    """

    async def execute(self, context: Dict[str, Dict[str, Any]]) -> NodeResult:
        payload = self.runtime.trigger_payload
        data = sample_order_payload() if payload is None else payload
        event = self.config.get("event") or DEFAULT_TRIGGER_EVENT
        return NodeResult(
            output={
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "event": event,
                "triggerType": self.config.get("triggerType") or (
                    TriggerType.SCHEDULE.value if self.config.get("schedule") else TriggerType.EVENT.value
                ),
                "data": data,
            },
            message=f"Trigger {self.label} activated",
        )

    def validate_config(self) -> List[Dict[str, str]]:
        errors = super().validate_config()
        if not self.config.get("event") and not self.config.get("schedule"):
            errors.append({"field": "event", "error": "Trigger requires event or schedule"})
        return errors


# =====================================================================
# Action
# =====================================================================


class ActionType(str, Enum):
    API_CALL = "api_call"
    EMAIL = "email"
    NOTIFICATION = "notification"
    DATABASE = "database"
    FILE = "file"
    CUSTOM = "custom"


class ErrorHandling(str, Enum):
    STOP = "stop"
    CONTINUE = "continue"
    RETRY = "retry"
    ALTERNATE = "alternate"


class FileOperation(str, Enum):
    UPLOAD = "upload"
    DOWNLOAD = "download"
    LIST = "list"


_FILE_OPERATIONS = {
    FileOperation.UPLOAD: "upload_file",
    FileOperation.DOWNLOAD: "download_file",
    FileOperation.LIST: "list_files",
}


@register_node_type(
    node_type=NodeType.ACTION,
    display_name="Action",
    description="Sends email, calls an API, queries a database or touches file storage",
    category="action",
    input_schema={
        "type": "object",
        "properties": {
            "actionType": {"type": "string", "enum": [t.value for t in ActionType]},
            "api": {"type": "string"},
            "to": {"type": "string"},
            "subject": {"type": "string"},
            "body": {"type": "string"},
            "url": {"type": "string"},
            "method": {"type": "string"},
            "headers": {"type": "string", "description": "JSON object, may contain placeholders"},
            "query": {"type": "string"},
            "errorHandling": {"type": "string", "enum": [e.value for e in ErrorHandling]},
            "maxRetries": {"type": "number"},
            "retryDelay": {"type": "number", "description": "milliseconds"},
        },
    },
    output_schema={"type": "object", "description": "Fields of the integration result"},
    icon="play",
    color="#00ccff",
)
class ActionNode(IntegrationNodeMixin, BaseNodeImpl):
    """Performs the side effect selected by ``actionType``.

    Integration failures become an error result; the executor still visits
    successors unless ``errorHandling`` is ``stop``. With ``alternate`` the
    executor follows edges labelled ``alternate`` on failure and ``success``
    otherwise.
    """

    async def execute(self, context: Dict[str, Dict[str, Any]]) -> NodeResult:
        action_type = self._action_type()
        mode = self._error_handling()
        attempts = 1 + (self._max_retries() if mode is ErrorHandling.RETRY else 0)

        result = NodeResult()
        for attempt in range(1, attempts + 1):
            try:
                result = await self._perform(action_type, context)
                break
            except (IntegrationError, httpx.HTTPError) as e:
                result = NodeResult.failure(str(e) or type(e).__name__)
                if attempt < attempts:
                    logger.warning(
                        f"ActionNode {self.node_id}: attempt {attempt}/{attempts} failed: {e}"
                    )
                    await self._retry_sleep()

        if mode is ErrorHandling.RETRY and attempts > 1:
            result.output.setdefault("attempts", attempt)
        if not result.succeeded and mode is ErrorHandling.STOP:
            result.proceed = False
        if mode is ErrorHandling.ALTERNATE:
            result.active_path = "success" if result.succeeded else "alternate"
        return result

    async def _perform(self, action_type: Optional[ActionType], context: Dict[str, Any]) -> NodeResult:
        config = self.config

        if action_type is ActionType.EMAIL:
            to = resolve(config.get("to"), context)
            template_data = config.get("templateData")
            result = await self._call(ServiceKind.EMAIL, "send_email", {
                "provider": config.get("provider") or "mock",
                "providerConfig": config.get("providerConfig") or {},
                "to": to,
                "subject": resolve(config.get("subject"), context),
                "body": resolve(config.get("body") or config.get("fields") or "", context),
                "from": resolve(config.get("from"), context),
                "template": config.get("template"),
                "templateData": resolve_config(template_data, context) if template_data else context,
            })
            return NodeResult(output=result, message=f"Email sent to {to}")

        if action_type is ActionType.API_CALL:
            url = resolve(config.get("url"), context)
            result = await self._call(ServiceKind.API, "make_request", {
                "url": url,
                "method": config.get("method") or "GET",
                "headers": self._headers(context),
                "body": _maybe_json(resolve_config(config.get("body"), context)),
                "authType": config.get("authType"),
                "authConfig": resolve_config(config.get("authConfig") or {}, context),
                "timeout": config.get("timeout"),
                "validateStatus": True,
            })
            return NodeResult(output=result, message=f"API call to {url} completed")

        if action_type is ActionType.DATABASE:
            result = await self._call(ServiceKind.DATABASE, "execute_query", {
                "type": config.get("databaseType") or "mock",
                "connection": resolve(config.get("connection"), context) or settings.DEFAULT_DB_CONNECTION,
                "query": resolve(config.get("query"), context),
            })
            return NodeResult(output=result, message="Database query executed")

        if action_type is ActionType.FILE:
            operation = self._file_operation()
            result = await self._call(ServiceKind.FILE_STORAGE, _FILE_OPERATIONS[operation], {
                "provider": config.get("provider"),
                "providerConfig": config.get("providerConfig") or {},
                "file": resolve_value(config.get("file"), context),
                "fileName": resolve(config.get("fileName"), context),
                "fileId": resolve(config.get("fileId"), context),
                "path": resolve(config.get("path"), context),
            })
            return NodeResult(output=result, message=f"File {operation.value} completed")

        return NodeResult(message=f"Action {self.label} executed")

    def _headers(self, context: Dict[str, Any]) -> Dict[str, Any]:
        headers = self.config.get("headers")
        if not headers:
            return {}
        if isinstance(headers, dict):
            return resolve_config(headers, context)
        try:
            parsed = json.loads(resolve(headers, context))
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Action headers are not valid JSON: {e.msg}") from e
        if not isinstance(parsed, dict):
            raise ConfigurationError("Action headers must be a JSON object")
        return parsed

    def _action_type(self) -> Optional[ActionType]:
        raw = self.config.get("actionType")
        return ActionType(raw) if raw in {t.value for t in ActionType} else None

    def _file_operation(self) -> FileOperation:
        raw = self.config.get("fileOperation") or FileOperation.UPLOAD.value
        try:
            return FileOperation(raw)
        except ValueError:
            raise ConfigurationError(f"Unsupported file operation: {raw}") from None

    def _error_handling(self) -> ErrorHandling:
        raw = self.config.get("errorHandling")
        if raw in {e.value for e in ErrorHandling}:
            return ErrorHandling(raw)
        # Older graphs only carry a retry count
        if self.config.get("retries"):
            return ErrorHandling.RETRY
        return ErrorHandling.CONTINUE

    def _max_retries(self) -> int:
        raw = self.config.get("maxRetries", self.config.get("retries", 3))
        return max(0, min(int(parse_number(raw) or 0), settings.ACTION_MAX_RETRIES))

    async def _retry_sleep(self) -> None:
        delay_ms = parse_number(self.config.get("retryDelay", settings.ACTION_RETRY_DELAY_MS)) or 0
        seconds = delay_ms / 1000.0 * self.runtime.retry_delay_scale
        if seconds > 0:
            await asyncio.sleep(seconds)

    def validate_config(self) -> List[Dict[str, str]]:
        errors = super().validate_config()
        action_type = self.config.get("actionType")
        if not self.config.get("api") and not action_type:
            errors.append({"field": "actionType", "error": "Action requires API or action type"})
            return errors
        if action_type and action_type not in {t.value for t in ActionType}:
            errors.extend(self._require_choice("actionType", ActionType))
        if action_type == ActionType.EMAIL.value and (not self.config.get("to") or not self.config.get("subject")):
            errors.append({"field": "to", "error": "Email action requires to and subject"})
        if action_type == ActionType.API_CALL.value and not self.config.get("url"):
            errors.append({"field": "url", "error": "API call action requires a url"})
        if action_type == ActionType.DATABASE.value and not self.config.get("query"):
            errors.append({"field": "query", "error": "Database action requires a query"})
        raw_mode = self.config.get("errorHandling")
        if raw_mode and raw_mode not in {e.value for e in ErrorHandling}:
            errors.extend(self._require_choice("errorHandling", ErrorHandling))
        return errors


# =====================================================================
# Filter
# =====================================================================


@register_node_type(
    node_type=NodeType.FILTER,
    display_name="Filter",
    description="Continues the branch only when its condition holds",
    category="logic",
    input_schema={
        "type": "object",
        "properties": {
            "conditionType": {"type": "string", "enum": [c.value for c in ConditionType]},
            "field": {"type": "string"},
            "operator": {"type": "string", "enum": [o.value for o in FilterOperator]},
            "value": {"type": "string"},
            "logicOperator": {"type": "string", "enum": ["and", "or"]},
            "additionalConditions": {"type": "array"},
            "expression": {"type": "string"},
        },
    },
    output_schema={
        "type": "object",
        "properties": {"result": {"type": "boolean"}, "condition": {"type": "string"}},
    },
    icon="filter",
    color="#cc00ff",
)
class FilterNode(BaseNodeImpl):
    async def execute(self, context: Dict[str, Dict[str, Any]]) -> NodeResult:
        passed, condition = evaluate_filter(self.config, context)
        return NodeResult(
            output={"result": passed, "condition": condition},
            message=f"evaluated to {'true' if passed else 'false'}",
            proceed=passed,
        )

    def validate_config(self) -> List[Dict[str, str]]:
        errors = super().validate_config()
        condition_type = self.config.get("conditionType") or ConditionType.SIMPLE.value
        if condition_type not in {c.value for c in ConditionType}:
            return errors + self._require_choice("conditionType", ConditionType)

        if condition_type == ConditionType.ADVANCED.value:
            if not self.config.get("expression"):
                errors.append({"field": "expression", "error": "Advanced filter requires an expression"})
            return errors

        has_extra = bool(self.config.get("additionalConditions") or self.config.get("conditions"))
        if condition_type == ConditionType.COMPOUND.value and has_extra and not self.config.get("field"):
            return errors
        if not self.config.get("field") or not self.config.get("operator"):
            errors.append({"field": "field", "error": "Filter requires field and operator"})
        elif self.config["operator"] not in {o.value for o in FilterOperator}:
            errors.extend(self._require_choice("operator", FilterOperator))
        return errors


# =====================================================================
# Data source
# =====================================================================


class SourceType(str, Enum):
    DATABASE = "database"
    API = "api"
    FILE = "file"
    SPREADSHEET = "spreadsheet"


@register_node_type(
    node_type=NodeType.DATA_SOURCE,
    display_name="Data Source",
    description="Loads records from a database, API or file into the context",
    category="data",
    input_schema={
        "type": "object",
        "properties": {
            "sourceType": {"type": "string", "enum": [s.value for s in SourceType]},
            "query": {"type": "string"},
            "apiUrl": {"type": "string"},
            "fileId": {"type": "string"},
            "outputVar": {"type": "string", "default": "data"},
        },
    },
    output_schema={"type": "object", "description": "Loaded data stored under outputVar"},
    icon="database",
    color="#4287f5",
)
class DataSourceNode(IntegrationNodeMixin, BaseNodeImpl):
    async def execute(self, context: Dict[str, Dict[str, Any]]) -> NodeResult:
        source_type = self.config.get("sourceType")
        output_var = self.config.get("outputVar") or "data"

        try:
            if source_type == SourceType.DATABASE.value:
                result = await self._call(ServiceKind.DATABASE, "execute_query", {
                    "type": self.config.get("databaseType") or "mock",
                    "connection": resolve(self.config.get("connection"), context) or settings.DEFAULT_DB_CONNECTION,
                    "query": resolve(self.config.get("query") or "", context),
                })
                rows = result.get("rows", result.get("documents", []))
                return NodeResult(
                    output={output_var: rows, "provider": result.get("provider")},
                    message=f"Retrieved {len(rows)} records from database",
                )

            if source_type == SourceType.API.value:
                result = await self._call(ServiceKind.API, "make_request", {
                    "url": resolve(self.config.get("apiUrl"), context),
                    "method": self.config.get("method") or "GET",
                    "headers": resolve_config(self.config.get("headers") or {}, context),
                })
                return NodeResult(
                    output={output_var: result["data"], "statusCode": result["statusCode"]},
                    message="Retrieved data from API",
                )

            if source_type == SourceType.FILE.value and self.config.get("fileId"):
                result = await self._call(ServiceKind.FILE_STORAGE, "download_file", {
                    "provider": self.config.get("provider"),
                    "providerConfig": self.config.get("providerConfig") or {},
                    "fileId": resolve(self.config["fileId"], context),
                })
                return NodeResult(
                    output={output_var: _maybe_json(result["data"]), "fileName": result.get("fileName")},
                    message=f"Loaded file {result.get('fileName')}",
                )
        except (IntegrationError, httpx.HTTPError) as e:
            return NodeResult.failure(str(e) or type(e).__name__)

        return NodeResult(
            output={output_var: {"message": "Mock data source result"}},
            message=f"Data source {self.label} executed",
        )

    def validate_config(self) -> List[Dict[str, str]]:
        errors = super().validate_config()
        if not self.config.get("sourceType"):
            errors.append({"field": "sourceType", "error": "Data Source requires a source type"})
            return errors
        errors.extend(self._require_choice("sourceType", SourceType))
        if self.config["sourceType"] == SourceType.API.value and not self.config.get("apiUrl"):
            errors.append({"field": "apiUrl", "error": "API data source requires apiUrl"})
        if self.config["sourceType"] == SourceType.DATABASE.value and not self.config.get("query"):
            errors.append({"field": "query", "error": "Database data source requires a query"})
        return errors


# =====================================================================
# Data modifier
# =====================================================================


class ModifierOperation(str, Enum):
    TRANSFORM = "transform"
    FILTER = "filter"
    SORT = "sort"
    AGGREGATE = "aggregate"
    FORMAT = "format"


class AggregateFunction(str, Enum):
    COUNT = "count"
    SUM = "sum"
    AVG = "avg"
    MIN = "min"
    MAX = "max"


_FORMAT_FIELD = re.compile(r"\{(\w+)\}")


def _sort_key(value: Any):
    if value is None:
        return (2, 0.0, "")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return (0, float(value), "")
    if isinstance(value, str):
        try:
            return (0, float(value), "")
        except ValueError:
            pass
    return (1, 0.0, stringify(value))


@register_node_type(
    node_type=NodeType.DATA_MODIFIER,
    display_name="Data Modifier",
    description="Transforms, filters, sorts, aggregates or formats upstream data",
    category="data",
    input_schema={
        "type": "object",
        "properties": {
            "input": {"type": "string", "description": "Data or a {{nodeId.field}} reference"},
            "operationType": {"type": "string", "enum": [o.value for o in ModifierOperation]},
            "output": {"type": "string", "default": "result"},
            "filterField": {"type": "string", "default": "status"},
            "filterValue": {"type": "string", "default": "active"},
            "sortField": {"type": "string"},
            "sortOrder": {"type": "string", "enum": ["asc", "desc"]},
            "aggregateFunction": {"type": "string", "enum": [a.value for a in AggregateFunction]},
            "aggregateField": {"type": "string"},
            "template": {"type": "string"},
        },
    },
    output_schema={"type": "object", "description": "Modified data stored under output"},
    icon="shuffle",
    color="#f542a7",
)
class DataModifierNode(BaseNodeImpl):
    async def execute(self, context: Dict[str, Dict[str, Any]]) -> NodeResult:
        data = _maybe_json(resolve_value(self.config.get("input", ""), context))
        operation = ModifierOperation(self.config["operationType"])
        output_key = self.config.get("output") or "result"

        handler = getattr(self, f"_{operation.value}")
        result = handler(data)
        return NodeResult(
            output={output_key: result},
            message=f"Applied {operation.value} operation to data",
        )

    def _transform(self, data: Any) -> Any:
        if isinstance(data, list):
            return [self._tag(item) for item in data]
        return self._tag(data)

    @staticmethod
    def _tag(item: Any) -> Dict[str, Any]:
        if isinstance(item, dict):
            return {**item, "transformed": True}
        return {"value": item, "transformed": True}

    def _filter(self, data: Any) -> Any:
        if not isinstance(data, list):
            return data
        field = self.config.get("filterField") or "status"
        wanted = self.config.get("filterValue", "active")
        return [
            item for item in data
            if isinstance(item, dict) and field in item and loose_equals(item[field], wanted)
        ]

    def _sort(self, data: Any) -> Any:
        if not isinstance(data, list):
            return data
        field = self.config.get("sortField")
        descending = str(self.config.get("sortOrder", "asc")).lower() == "desc"

        def key(item: Any):
            value = item.get(field) if field and isinstance(item, dict) else item
            return _sort_key(value)

        return sorted(data, key=key, reverse=descending)

    def _aggregate(self, data: Any) -> Any:
        items = data if isinstance(data, list) else [data]
        try:
            function = AggregateFunction(self.config.get("aggregateFunction") or "count")
        except ValueError:
            raise ConfigurationError(
                f"Unsupported aggregate function: {self.config.get('aggregateFunction')}"
            ) from None

        if function is AggregateFunction.COUNT:
            return len(items)

        field = self.config.get("aggregateField")
        values = []
        for item in items:
            raw = item.get(field) if field and isinstance(item, dict) else item
            number = parse_number(raw)
            if number is not None:
                values.append(number)

        if not values:
            return 0 if function is AggregateFunction.SUM else None
        if function is AggregateFunction.SUM:
            return sum(values)
        if function is AggregateFunction.AVG:
            return sum(values) / len(values)
        if function is AggregateFunction.MIN:
            return min(values)
        return max(values)

    def _format(self, data: Any) -> Any:
        template = self.config.get("template")
        if not template:
            return json.dumps(data, indent=2, default=str)

        def render(item: Any) -> str:
            fields = item if isinstance(item, dict) else {"value": item}
            return _FORMAT_FIELD.sub(
                lambda m: stringify(fields[m.group(1)]) if m.group(1) in fields else m.group(0),
                template,
            )

        if isinstance(data, list):
            return [render(item) for item in data]
        return render(data)

    def validate_config(self) -> List[Dict[str, str]]:
        errors = super().validate_config()
        if not self.config.get("input") or not self.config.get("operationType"):
            errors.append({
                "field": "input",
                "error": "Data Modifier requires input and operation type",
            })
            return errors
        errors.extend(self._require_choice("operationType", ModifierOperation))
        return errors


# =====================================================================
# Multi-path branch
# =====================================================================


class BranchType(str, Enum):
    CONDITION = "condition"
    SWITCH = "switch"
    PERCENTAGE = "percentage"


@register_node_type(
    node_type=NodeType.MULTI_BRANCH,
    display_name="Multi-path Branch",
    description="Routes to the outgoing edge whose label matches the chosen path",
    category="logic",
    input_schema={
        "type": "object",
        "properties": {
            "branchType": {"type": "string", "enum": [b.value for b in BranchType]},
            "paths": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "label": {"type": "string"},
                        "condition": {"type": "string"},
                        "value": {"type": "string"},
                        "percentage": {"type": "number"},
                    },
                },
            },
            "switchValue": {"type": "string"},
            "defaultPath": {"type": "string"},
        },
    },
    output_schema={
        "type": "object",
        "properties": {"activePath": {"type": "string"}, "branchType": {"type": "string"}},
    },
    icon="git-branch",
    color="#42f5b3",
)
class MultiBranchNode(BaseNodeImpl):
    """Chooses one path label.

    ``condition`` takes the first path whose expression holds, ``switch``
    the path whose ``value`` equals ``switchValue``, and ``percentage`` a
    weighted random pick. ``defaultPath`` applies when nothing matches.
    """

    async def execute(self, context: Dict[str, Dict[str, Any]]) -> NodeResult:
        branch_type = BranchType(self.config["branchType"])
        paths = [p for p in self.config.get("paths") or [] if isinstance(p, dict)]

        chosen: Optional[str] = None
        if branch_type is BranchType.CONDITION:
            for index, path in enumerate(paths):
                if path.get("condition") and evaluate_expression(path["condition"], context):
                    chosen = self._path_label(path, index)
                    break
        elif branch_type is BranchType.SWITCH:
            switch_value = resolve_value(self.config.get("switchValue"), context)
            for index, path in enumerate(paths):
                if loose_equals(switch_value, resolve(path.get("value"), context)):
                    chosen = self._path_label(path, index)
                    break
        else:
            chosen = self._weighted_pick(paths)

        active = chosen or self.config.get("defaultPath") or "default"
        return NodeResult(
            output={"activePath": active, "branchType": branch_type.value},
            message=f"took path {active}",
            active_path=active,
        )

    @staticmethod
    def _path_label(path: Dict[str, Any], index: int) -> str:
        return str(path.get("label") or f"path_{index + 1}")

    def _weighted_pick(self, paths: List[Dict[str, Any]]) -> Optional[str]:
        weights = [max(parse_number(p.get("percentage")) or 0.0, 0.0) for p in paths]
        total = sum(weights)
        if total <= 0:
            return None
        roll = self.runtime.rng.uniform(0, total)
        cumulative = 0.0
        for index, (path, weight) in enumerate(zip(paths, weights)):
            cumulative += weight
            if weight > 0 and roll <= cumulative:
                return self._path_label(path, index)
        return self._path_label(paths[-1], len(paths) - 1)

    def validate_config(self) -> List[Dict[str, str]]:
        errors = super().validate_config()
        if not self.config.get("branchType"):
            errors.append({"field": "branchType", "error": "Multi-path Branch requires a branch type"})
            return errors
        errors.extend(self._require_choice("branchType", BranchType))
        paths = self.config.get("paths")
        if paths is not None and not isinstance(paths, list):
            errors.append({"field": "paths", "error": "paths must be a list"})
        return errors


# =====================================================================
# Flow control / modifier / validation
# =====================================================================


@register_node_type(
    node_type=NodeType.FLOW_CONTROL,
    display_name="Flow Control",
    description="Loops over a collection and records its items",
    category="control",
    input_schema={
        "type": "object",
        "properties": {
            "type": {"type": "string", "enum": ["loop"]},
            "input": {"type": "string"},
            "iterator": {"type": "string"},
        },
    },
    output_schema={
        "type": "object",
        "properties": {"items": {"type": "array"}, "count": {"type": "number"}},
    },
    icon="repeat",
    color="#00ff00",
)
class FlowControlNode(BaseNodeImpl):
    async def execute(self, context: Dict[str, Dict[str, Any]]) -> NodeResult:
        control_type = self.config.get("type") or "loop"
        if control_type != "loop":
            return NodeResult(output={"type": control_type}, message=f"Flow control {control_type} passed")

        data = _maybe_json(resolve_value(self.config.get("input"), context))
        if isinstance(data, list):
            items = data
        elif data in (None, ""):
            items = []
        else:
            items = [data]

        iterator = self.config.get("iterator") or "item"
        return NodeResult(
            output={"type": "loop", "iterator": iterator, "items": items, "count": len(items)},
            message=f"Loop over {len(items)} items as {iterator}",
        )


@register_node_type(
    node_type=NodeType.MODIFIER,
    display_name="Modifier",
    description="Sets named fields from literal values or references",
    category="data",
    input_schema={
        "type": "object",
        "properties": {
            "field": {"type": "string"},
            "value": {"type": "string"},
            "assignments": {"type": "array"},
        },
    },
    output_schema={"type": "object", "description": "One key per assigned field"},
    icon="edit",
    color="#ff6600",
)
class ModifierNode(BaseNodeImpl):
    async def execute(self, context: Dict[str, Dict[str, Any]]) -> NodeResult:
        assignments = list(self.config.get("assignments") or [])
        if self.config.get("field"):
            assignments.insert(0, {"field": self.config["field"], "value": self.config.get("value")})

        output = {
            str(item["field"]): resolve_value(item.get("value"), context)
            for item in assignments
            if isinstance(item, dict) and item.get("field")
        }
        return NodeResult(output=output, message=f"Set {len(output)} field(s)")


@register_node_type(
    node_type=NodeType.VALIDATION,
    display_name="Validation",
    description="Stops the branch when its rule expression does not hold",
    category="control",
    input_schema={
        "type": "object",
        "properties": {
            "rule": {"type": "string"},
            "expression": {"type": "string"},
            "fallback": {"type": "string"},
        },
    },
    output_schema={
        "type": "object",
        "properties": {"valid": {"type": "boolean"}, "rule": {"type": "string"}},
    },
    icon="shield",
    color="#ff0000",
)
class ValidationNode(BaseNodeImpl):
    """Without an ``expression`` the rule is recorded and always passes."""

    async def execute(self, context: Dict[str, Dict[str, Any]]) -> NodeResult:
        rule = resolve(self.config.get("rule") or "", context)
        fallback = self.config.get("fallback")
        expression = self.config.get("expression")

        valid = evaluate_expression(expression, context) if expression else True
        message = f"rule '{rule}' passed" if valid else f"rule '{rule}' failed"
        if not valid and fallback:
            message += f", fallback: {fallback}"
        return NodeResult(
            output={"valid": valid, "rule": rule, "fallback": fallback},
            message=message,
            proceed=valid,
        )
