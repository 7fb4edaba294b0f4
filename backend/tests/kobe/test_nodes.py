"""Unit tests for built-in node types and the node registry.

Integration-backed nodes run against a router with simulated latency
disabled; HTTP calls go through httpx.MockTransport.
"""

import random
from unittest.mock import AsyncMock

import httpx
import pytest

from kobe.integrations import ConfigurationError, create_router
from kobe.nodes import (
    NODE_CLASSES,
    NODE_REGISTRY,
    BaseNodeImpl,
    NodeResult,
    NodeRuntime,
    NodeStatus,
    NodeType,
    create_node,
    get_node_definition,
    is_node_type_registered,
    list_node_types,
    list_node_types_by_category,
    register_node_type,
)


def _node(node_type, config, runtime=None, label="Test"):
    return create_node("n1", node_type, config, label=label, runtime=runtime)


@pytest.fixture
def runtime(router, rng):
    return NodeRuntime(router=router, rng=rng, retry_delay_scale=0)


class TestRegistry:
    """Test registration and lookup."""

    def test_every_node_type_registered(self):
        for node_type in NodeType:
            assert is_node_type_registered(node_type.value)
            assert node_type.value in NODE_CLASSES

    def test_definitions_for_palette(self):
        definition = get_node_definition("multiBranch")
        assert definition.display_name == "Multi-path Branch"
        assert definition.to_dict()["category"] == "logic"
        assert len(list_node_types()) >= len(NodeType)
        assert {d.node_type for d in list_node_types_by_category("data")} == {
            "dataSource", "dataModifier", "modifier",
        }

    def test_create_unknown_type(self):
        with pytest.raises(ValueError, match="Unknown node type"):
            create_node("x", "teleport", {})

    def test_register_custom_type(self):
        @register_node_type(
            node_type="echo_test",
            display_name="Echo",
            description="Echoes its config",
            category="test",
            input_schema={"type": "object", "required": ["text"]},
            output_schema={"type": "object"},
        )
        class EchoNode(BaseNodeImpl):
            async def execute(self, context):
                return NodeResult(output={"text": self.config["text"]})

        try:
            node = create_node("e", "echo_test", {})
            assert node.validate_config() == [
                {"field": "text", "error": "Required field 'text' is missing"}
            ]
        finally:
            NODE_REGISTRY.pop("echo_test", None)
            NODE_CLASSES.pop("echo_test", None)

    def test_context_entry_is_flat(self):
        result = NodeResult(output={"rows": [1]}, message="ok")
        assert result.to_context_entry() == {"rows": [1], "status": "success"}
        failed = NodeResult.failure("boom")
        assert failed.to_context_entry() == {"status": "error", "error": "boom"}


class TestTriggerNode:
    @pytest.mark.asyncio
    async def test_sample_payload(self):
        result = await _node("trigger", {"schedule": "1st day 8AM"}).execute({})
        assert result.status is NodeStatus.SUCCESS
        assert result.output["event"] == "scheduled_event"
        assert result.output["triggerType"] == "schedule"
        data = result.output["data"]
        assert data["orderId"] == "ord_789"
        assert data["orderTotal"] == 149.99
        assert len(data["orderItems"]) == 3

    @pytest.mark.asyncio
    async def test_trigger_payload_replaces_sample(self):
        node = _node("trigger", {"event": "order_created"}, NodeRuntime(trigger_payload={"id": 5}))
        result = await node.execute({})
        assert result.output["data"] == {"id": 5}
        assert result.output["event"] == "order_created"

    def test_validation(self):
        assert _node("trigger", {}).validate_config()[0]["error"] == "Trigger requires event or schedule"


class TestActionNode:
    """Test action sub-behaviours and error handling."""

    @pytest.mark.asyncio
    async def test_email_uses_mock_provider(self, runtime):
        node = _node("action", {
            "actionType": "email", "to": "{{1.data.email}}", "subject": "Order {{1.data.id}}",
        }, runtime)
        result = await node.execute({"1": {"data": {"email": "a@b.com", "id": 7}}})
        assert result.succeeded
        assert result.output["provider"] == "mock"
        assert result.output["to"] == "a@b.com"
        assert result.output["subject"] == "Order 7"
        assert result.message == "Email sent to a@b.com"

    @pytest.mark.asyncio
    async def test_api_call_parses_templated_headers(self, rng):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("x-token")
            return httpx.Response(200, json={"ok": True})

        router = create_router(transport=httpx.MockTransport(handler), rng=rng, delay_scale=0)
        node = _node("action", {
            "actionType": "api_call",
            "url": "https://api.test/orders/{{1.id}}",
            "headers": '{"x-token": "{{1.token}}"}',
        }, NodeRuntime(router=router))
        result = await node.execute({"1": {"id": 3, "token": "abc"}})
        assert result.succeeded
        assert result.output["statusCode"] == 200
        assert result.output["data"] == {"ok": True}
        assert seen["auth"] == "abc"

    @pytest.mark.asyncio
    async def test_api_call_failure_becomes_error_result(self, rng):
        router = create_router(
            transport=httpx.MockTransport(lambda r: httpx.Response(500)), rng=rng, delay_scale=0
        )
        node = _node("action", {"actionType": "api_call", "url": "https://api.test/x"}, NodeRuntime(router=router))
        result = await node.execute({})
        assert result.status is NodeStatus.ERROR
        assert "status 500" in result.error
        assert result.proceed is True

    @pytest.mark.asyncio
    async def test_invalid_headers_json(self, runtime):
        node = _node("action", {"actionType": "api_call", "url": "https://x", "headers": "{nope"}, runtime)
        result = await node.execute({})
        assert result.status is NodeStatus.ERROR
        assert "not valid JSON" in result.error

    @pytest.mark.asyncio
    async def test_database_defaults_to_mock(self, runtime):
        node = _node("action", {"actionType": "database", "query": "SELECT * FROM users"}, runtime)
        result = await node.execute({})
        assert result.succeeded
        assert result.output["provider"] == "mock"
        assert result.output["query"] == "SELECT * FROM users"

    @pytest.mark.asyncio
    async def test_file_list(self, runtime):
        node = _node("action", {"actionType": "file", "fileOperation": "list", "path": "/docs"}, runtime)
        result = await node.execute({})
        assert result.succeeded
        assert result.output["totalCount"] == len(result.output["files"])

    @pytest.mark.asyncio
    async def test_generic_action(self):
        result = await _node("action", {"api": "google.calendar"}, label="Schedule Call").execute({})
        assert result.succeeded
        assert result.message == "Action Schedule Call executed"

    @pytest.mark.asyncio
    async def test_retry_until_success(self):
        router = AsyncMock()
        router.execute = AsyncMock(side_effect=[
            ConfigurationError("flaky"),
            ConfigurationError("flaky"),
            {"status": "success", "provider": "mock"},
        ])
        node = _node("action", {
            "actionType": "database", "query": "SELECT 1", "errorHandling": "retry", "maxRetries": 3,
        }, NodeRuntime(router=router, retry_delay_scale=0))
        result = await node.execute({})
        assert result.succeeded
        assert result.output["attempts"] == 3
        assert router.execute.await_count == 3

    @pytest.mark.asyncio
    async def test_stop_prunes_successors(self):
        router = AsyncMock()
        router.execute = AsyncMock(side_effect=ConfigurationError("down"))
        node = _node("action", {
            "actionType": "database", "query": "SELECT 1", "errorHandling": "stop",
        }, NodeRuntime(router=router))
        result = await node.execute({})
        assert result.status is NodeStatus.ERROR
        assert result.proceed is False

    @pytest.mark.asyncio
    async def test_alternate_sets_active_path(self):
        router = AsyncMock()
        router.execute = AsyncMock(side_effect=ConfigurationError("down"))
        node = _node("action", {
            "actionType": "database", "query": "SELECT 1", "errorHandling": "alternate",
        }, NodeRuntime(router=router))
        result = await node.execute({})
        assert result.active_path == "alternate"

    @pytest.mark.asyncio
    async def test_missing_router_is_error_result(self):
        result = await _node("action", {"actionType": "database", "query": "SELECT 1"}).execute({})
        assert result.status is NodeStatus.ERROR
        assert "integration router" in result.error

    def test_validation(self):
        assert _node("action", {}).validate_config()[0]["error"] == "Action requires API or action type"
        errors = _node("action", {"actionType": "email"}).validate_config()
        assert errors[0]["error"] == "Email action requires to and subject"
        errors = _node("action", {"actionType": "fax"}).validate_config()
        assert errors[0]["field"] == "actionType"


class TestFilterNode:
    @pytest.mark.asyncio
    async def test_gates_on_condition(self):
        context = {"3": {"x": 150}}
        node = _node("filter", {"field": "{{3.x}}", "operator": "greater_than", "value": "100"})
        result = await node.execute(context)
        assert result.output == {"result": True, "condition": "150 greater_than 100"}
        assert result.proceed is True
        assert result.message == "evaluated to true"

        node = _node("filter", {"field": "{{3.x}}", "operator": "greater_than", "value": "200"})
        result = await node.execute(context)
        assert result.output["result"] is False
        assert result.proceed is False

    def test_validation(self):
        assert _node("filter", {"field": "x"}).validate_config()[0]["error"] == "Filter requires field and operator"
        assert _node("filter", {"conditionType": "advanced"}).validate_config()[0]["field"] == "expression"
        assert _node("filter", {"field": "x", "operator": "near"}).validate_config()[0]["field"] == "operator"
        compound = {"conditionType": "compound", "additionalConditions": [{"field": "a", "operator": "null"}]}
        assert _node("filter", compound).validate_config() == []


class TestDataSourceNode:
    @pytest.mark.asyncio
    async def test_database_rows_under_output_var(self, runtime):
        node = _node("dataSource", {"sourceType": "database", "query": "SELECT * FROM orders", "outputVar": "orders"}, runtime)
        result = await node.execute({})
        assert result.succeeded
        assert isinstance(result.output["orders"], list)
        assert result.message == f"Retrieved {len(result.output['orders'])} records from database"

    @pytest.mark.asyncio
    async def test_api_source(self, rng):
        router = create_router(
            transport=httpx.MockTransport(lambda r: httpx.Response(200, json=[1, 2])), rng=rng, delay_scale=0
        )
        node = _node("dataSource", {"sourceType": "api", "apiUrl": "https://api.test/list"}, NodeRuntime(router=router))
        result = await node.execute({})
        assert result.output == {"data": [1, 2], "statusCode": 200}

    @pytest.mark.asyncio
    async def test_placeholder_for_other_sources(self, runtime):
        result = await _node("dataSource", {"sourceType": "spreadsheet"}, runtime).execute({})
        assert result.output == {"data": {"message": "Mock data source result"}}

    @pytest.mark.asyncio
    async def test_integration_error_becomes_failure(self, runtime):
        node = _node("dataSource", {"sourceType": "database", "query": "SELECT 1", "databaseType": "oracle"}, runtime)
        result = await node.execute({})
        assert result.status is NodeStatus.ERROR
        assert "Unsupported database provider" in result.error

    def test_validation(self):
        assert _node("dataSource", {}).validate_config()[0]["error"] == "Data Source requires a source type"
        assert _node("dataSource", {"sourceType": "api"}).validate_config()[0]["field"] == "apiUrl"


class TestDataModifierNode:
    """Test every modifier operation."""

    ITEMS = '[{"name": "b", "status": "active", "n": 2}, {"name": "a", "status": "inactive", "n": 10}, {"name": "c", "status": "active", "n": 1}]'

    async def _run(self, **config):
        return await _node("dataModifier", {"input": self.ITEMS, **config}).execute({})

    @pytest.mark.asyncio
    async def test_transform(self):
        result = await self._run(operationType="transform")
        assert all(item["transformed"] for item in result.output["result"])
        assert result.message == "Applied transform operation to data"

    @pytest.mark.asyncio
    async def test_filter_defaults_to_active_status(self):
        result = await self._run(operationType="filter", output="active")
        assert [i["name"] for i in result.output["active"]] == ["b", "c"]

    @pytest.mark.asyncio
    async def test_sort(self):
        result = await self._run(operationType="sort", sortField="n", sortOrder="desc")
        assert [i["n"] for i in result.output["result"]] == [10, 2, 1]

    @pytest.mark.asyncio
    async def test_aggregate(self):
        assert (await self._run(operationType="aggregate")).output["result"] == 3
        total = await self._run(operationType="aggregate", aggregateFunction="sum", aggregateField="n")
        assert total.output["result"] == 13
        avg = await self._run(operationType="aggregate", aggregateFunction="avg", aggregateField="n")
        assert avg.output["result"] == pytest.approx(13 / 3)

    @pytest.mark.asyncio
    async def test_format(self):
        result = await self._run(operationType="format", template="{name}:{status}")
        assert result.output["result"] == ["b:active", "a:inactive", "c:active"]

    @pytest.mark.asyncio
    async def test_input_reference_keeps_native_list(self):
        node = _node("dataModifier", {"input": "{{2.rows}}", "operationType": "aggregate"})
        result = await node.execute({"2": {"rows": [1, 2, 3, 4]}})
        assert result.output["result"] == 4

    def test_validation(self):
        assert _node("dataModifier", {}).validate_config()[0]["error"] == "Data Modifier requires input and operation type"
        assert _node("dataModifier", {"input": "x", "operationType": "explode"}).validate_config()[0]["field"] == "operationType"


class TestMultiBranchNode:
    @pytest.mark.asyncio
    async def test_condition_branch(self):
        node = _node("multiBranch", {
            "branchType": "condition",
            "paths": [
                {"label": "big", "condition": "{{1.total}} > 100"},
                {"label": "small", "condition": "{{1.total}} <= 100"},
            ],
        })
        result = await node.execute({"1": {"total": 50}})
        assert result.active_path == "small"
        assert result.output == {"activePath": "small", "branchType": "condition"}

    @pytest.mark.asyncio
    async def test_switch_with_default(self):
        node = _node("multiBranch", {
            "branchType": "switch",
            "switchValue": "{{1.region}}",
            "paths": [{"label": "eu", "value": "EU"}, {"label": "us", "value": "US"}],
            "defaultPath": "other",
        })
        assert (await node.execute({"1": {"region": "US"}})).active_path == "us"
        assert (await node.execute({"1": {"region": "APAC"}})).active_path == "other"

    @pytest.mark.asyncio
    async def test_percentage_is_weighted(self):
        node = _node("multiBranch", {
            "branchType": "percentage",
            "paths": [{"label": "a", "percentage": 0}, {"label": "b", "percentage": 100}],
        }, NodeRuntime(rng=random.Random(3)))
        assert (await node.execute({})).active_path == "b"

    def test_validation(self):
        assert _node("multiBranch", {}).validate_config()[0]["error"] == "Multi-path Branch requires a branch type"


class TestOtherNodes:
    @pytest.mark.asyncio
    async def test_flow_control_loop(self):
        node = _node("flowControl", {"type": "loop", "input": "{{1.items}}", "iterator": "friend"})
        result = await node.execute({"1": {"items": ["a", "b"]}})
        assert result.output == {"type": "loop", "iterator": "friend", "items": ["a", "b"], "count": 2}

    @pytest.mark.asyncio
    async def test_modifier_assignments(self):
        node = _node("modifier", {
            "field": "total", "value": "{{1.total}}",
            "assignments": [{"field": "note", "value": "hello {{1.name}}"}],
        })
        result = await node.execute({"1": {"total": 9, "name": "Ann"}})
        assert result.output == {"total": 9, "note": "hello Ann"}

    @pytest.mark.asyncio
    async def test_validation_node(self):
        node = _node("validation", {"rule": "max 1", "expression": "{{1.count}} <= 1", "fallback": "skip"})
        passed = await node.execute({"1": {"count": 1}})
        assert passed.output == {"valid": True, "rule": "max 1", "fallback": "skip"}
        failed = await node.execute({"1": {"count": 2}})
        assert failed.proceed is False
        assert failed.message == "rule 'max 1' failed, fallback: skip"

    @pytest.mark.asyncio
    async def test_validation_without_expression_passes(self):
        result = await _node("validation", {"rule": "max 1 call per friend"}).execute({})
        assert result.output["valid"] is True
