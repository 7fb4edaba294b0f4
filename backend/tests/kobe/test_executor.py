"""Unit tests for the workflow traversal engine.

Tests cover:
- Empty graphs and graphs without triggers
- Filter gating and branch pruning
- Once-per-node execution (diamonds and cycles)
- Per-edge error isolation and config validation failures
- Multi-branch edge selection and errorHandling=stop
- Run status and log ordering
"""

from unittest.mock import patch

import pytest

from kobe.engine.executor import (
    LOG_COMPLETE,
    LOG_NO_NODES,
    LOG_NO_TRIGGER,
    LOG_START,
    RunStatus,
    WorkflowExecutor,
    execute_workflow,
)
from kobe.engine.graph_model import WorkflowGraph


TRIGGER = {"event": "order_created"}
CUSTOM = {"actionType": "custom"}


class TestRunLifecycle:
    """Test run states and the log frame."""

    @pytest.mark.asyncio
    async def test_empty_graph_completes_with_warning(self, router):
        result = await execute_workflow(WorkflowGraph(), router=router)
        assert result.status is RunStatus.COMPLETED
        assert result.context == {}
        assert result.errors == []
        assert result.log == [LOG_START, LOG_NO_NODES, LOG_COMPLETE]

    @pytest.mark.asyncio
    async def test_no_trigger_is_a_no_op(self, router, make_graph):
        result = await execute_workflow(make_graph([("1", "action", CUSTOM)]), router=router)
        assert result.status is RunStatus.COMPLETED
        assert result.context == {}
        assert LOG_NO_TRIGGER in result.log

    @pytest.mark.asyncio
    async def test_executor_runs_once(self, router):
        executor = WorkflowExecutor(WorkflowGraph(), router=router)
        assert executor.status is RunStatus.NOT_STARTED
        await executor.run()
        with pytest.raises(RuntimeError):
            await executor.run()

    @pytest.mark.asyncio
    async def test_to_dict(self, router, make_graph):
        result = await execute_workflow(make_graph([("1", "trigger", TRIGGER)]), router=router)
        data = result.to_dict()
        assert data["status"] == "completed"
        assert set(data) == {"status", "log", "context", "errors", "started_at", "finished_at"}
        assert data["started_at"] <= data["finished_at"]

    @pytest.mark.asyncio
    async def test_escaping_exception_fails_the_run(self, router, make_graph):
        graph = make_graph([("1", "trigger", TRIGGER)])
        with patch.object(WorkflowGraph, "trigger_nodes", side_effect=RuntimeError("broken graph")):
            result = await execute_workflow(graph, router=router)
        assert result.status is RunStatus.FAILED
        assert result.errors == ["Error in workflow simulation: broken graph"]
        assert LOG_COMPLETE not in result.log


class TestTraversal:
    """Test depth-first traversal semantics."""

    @pytest.mark.asyncio
    async def test_linear_chain_logs_in_order(self, router, make_graph):
        graph = make_graph(
            [("1", "trigger", TRIGGER), ("2", "action", CUSTOM), ("3", "modifier", {"field": "n", "value": "{{1.event}}"})],
            [("1", "2"), ("2", "3")],
            labels={"1": "Start", "2": "Do", "3": "Set"},
        )
        result = await execute_workflow(graph, router=router)
        assert result.log == [
            LOG_START,
            "Trigger: Start fired",
            "action: Do - Action Do executed",
            "modifier: Set - Set 1 field(s)",
            LOG_COMPLETE,
        ]
        assert result.context["3"] == {"n": "order_created", "status": "success"}
        assert result.context["1"]["data"]["orderId"] == "ord_789"

    @pytest.mark.asyncio
    async def test_depth_first_edge_order(self, router, make_graph):
        graph = make_graph(
            [("1", "trigger", TRIGGER), ("2", "action", CUSTOM), ("3", "action", CUSTOM), ("4", "action", CUSTOM)],
            [("1", "2"), ("1", "4"), ("2", "3")],
        )
        result = await execute_workflow(graph, router=router)
        assert list(result.context) == ["1", "2", "3", "4"]

    @pytest.mark.asyncio
    async def test_filter_passes(self, router, make_graph):
        graph = make_graph(
            [
                ("1", "trigger", TRIGGER),
                ("2", "modifier", {"field": "x", "value": "{{1.data.orderTotal}}"}),
                ("3", "filter", {"field": "{{2.x}}", "operator": "greater_than", "value": "100"}),
                ("4", "action", CUSTOM),
            ],
            [("1", "2"), ("2", "3"), ("3", "4")],
            labels={"3": "Big order"},
        )
        result = await execute_workflow(graph, router=router)
        assert result.context["3"] == {"result": True, "condition": "149.99 greater_than 100"}
        assert "Filter: Big order evaluated to true" in result.log
        assert "4" in result.context

    @pytest.mark.asyncio
    async def test_filter_blocks_successors(self, router, make_graph):
        graph = make_graph(
            [
                ("1", "trigger", TRIGGER),
                ("3", "filter", {"field": "{{1.data.orderTotal}}", "operator": "greater_than", "value": "200"}),
                ("4", "action", CUSTOM),
                ("5", "action", CUSTOM),
            ],
            [("1", "3"), ("3", "4"), ("4", "5")],
            labels={"3": "Big order"},
        )
        result = await execute_workflow(graph, router=router)
        assert result.context["3"]["result"] is False
        assert "Filter: Big order evaluated to false" in result.log
        assert "4" not in result.context
        assert "5" not in result.context

    @pytest.mark.asyncio
    async def test_diamond_executes_join_once(self, router, make_graph):
        graph = make_graph(
            [("1", "trigger", TRIGGER), ("2", "action", CUSTOM), ("3", "action", CUSTOM), ("4", "action", CUSTOM)],
            [("1", "2"), ("1", "3"), ("2", "4"), ("3", "4")],
        )
        result = await execute_workflow(graph, router=router)
        assert sorted(result.context) == ["1", "2", "3", "4"]
        assert sum(1 for line in result.log if line.startswith("action: Node 4")) == 1

    @pytest.mark.asyncio
    async def test_cycle_terminates(self, router, make_graph):
        graph = make_graph(
            [("1", "trigger", TRIGGER), ("2", "action", CUSTOM), ("3", "action", CUSTOM)],
            [("1", "2"), ("2", "3"), ("3", "2")],
        )
        result = await execute_workflow(graph, router=router)
        assert result.status is RunStatus.COMPLETED
        assert sorted(result.context) == ["1", "2", "3"]

    @pytest.mark.asyncio
    async def test_missing_target_is_skipped_with_warning(self, router, make_graph):
        graph = make_graph([("1", "trigger", TRIGGER), ("2", "action", CUSTOM)], [("1", "9"), ("1", "2")])
        result = await execute_workflow(graph, router=router)
        assert "Warning: Target node 9 not found" in result.log
        assert "2" in result.context

    @pytest.mark.asyncio
    async def test_invalid_config_prunes_branch_only(self, router, make_graph):
        graph = make_graph(
            [
                ("1", "trigger", TRIGGER),
                ("2", "filter", {"field": "x"}),
                ("3", "action", CUSTOM),
                ("4", "action", CUSTOM),
            ],
            [("1", "2"), ("2", "3"), ("1", "4")],
            labels={"2": "Broken filter"},
        )
        result = await execute_workflow(graph, router=router)
        assert result.errors == ["Error in Broken filter: Filter requires field and operator"]
        assert "2" not in result.context
        assert "3" not in result.context
        assert "4" in result.context
        # errors come right before the completion line
        assert result.log[-2:] == [result.errors[0], LOG_COMPLETE]
        assert result.status is RunStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_invalid_join_reported_once(self, router, make_graph):
        graph = make_graph(
            [
                ("1", "trigger", TRIGGER),
                ("2", "action", CUSTOM),
                ("3", "action", CUSTOM),
                ("4", "filter", {"field": "x"}),
            ],
            [("1", "2"), ("1", "3"), ("2", "4"), ("3", "4")],
            labels={"4": "Broken join"},
        )
        result = await execute_workflow(graph, router=router)
        assert result.errors == ["Error in Broken join: Filter requires field and operator"]
        assert sorted(result.context) == ["1", "2", "3"]

    @pytest.mark.asyncio
    async def test_long_chain_runs_every_node(self, router, make_graph):
        size = 1500
        nodes = [("0", "trigger", TRIGGER)] + [(str(i), "action", CUSTOM) for i in range(1, size)]
        edges = [(str(i), str(i + 1)) for i in range(size - 1)]
        result = await execute_workflow(make_graph(nodes, edges), router=router)
        assert result.status is RunStatus.COMPLETED
        assert result.errors == []
        assert len(result.context) == size
        assert result.log[-2].startswith(f"action: Node {size - 1} - ")

    @pytest.mark.asyncio
    async def test_exception_in_node_is_isolated(self, router, make_graph):
        graph = make_graph(
            [
                ("1", "trigger", TRIGGER),
                ("2", "filter", {"field": "a", "operator": "within", "value": "ten"}),
                ("3", "action", CUSTOM),
            ],
            [("1", "2"), ("1", "3")],
            labels={"2": "Range"},
        )
        result = await execute_workflow(graph, router=router)
        assert len(result.errors) == 1
        assert result.errors[0].startswith("Error in Range: 'within' expects")
        assert "3" in result.context

    @pytest.mark.asyncio
    async def test_failed_action_does_not_halt_branch(self, router, make_graph):
        graph = make_graph(
            [
                ("1", "trigger", TRIGGER),
                ("2", "action", {"actionType": "email", "to": "a@b.com", "subject": "S", "provider": "pigeon"}),
                ("3", "action", CUSTOM),
            ],
            [("1", "2"), ("2", "3")],
        )
        result = await execute_workflow(graph, router=router)
        assert result.context["2"]["status"] == "error"
        assert "Unsupported email provider" in result.context["2"]["error"]
        assert "3" in result.context
        assert result.errors == []

    @pytest.mark.asyncio
    async def test_stop_error_handling_prunes(self, router, make_graph):
        graph = make_graph(
            [
                ("1", "trigger", TRIGGER),
                ("2", "action", {"actionType": "email", "to": "a@b.com", "subject": "S", "provider": "pigeon", "errorHandling": "stop"}),
                ("3", "action", CUSTOM),
            ],
            [("1", "2"), ("2", "3")],
        )
        result = await execute_workflow(graph, router=router)
        assert result.context["2"]["status"] == "error"
        assert "3" not in result.context

    @pytest.mark.asyncio
    async def test_multi_branch_follows_matching_label(self, router, make_graph):
        graph = make_graph(
            [
                ("1", "trigger", TRIGGER),
                ("2", "multiBranch", {
                    "branchType": "switch",
                    "switchValue": "{{1.event}}",
                    "paths": [{"label": "Created", "value": "order_created"}, {"label": "Cancelled", "value": "order_cancelled"}],
                }),
                ("3", "action", CUSTOM),
                ("4", "action", CUSTOM),
                ("5", "action", CUSTOM),
            ],
            [("1", "2"), ("2", "3", "created"), ("2", "4", "cancelled"), ("2", "5")],
        )
        result = await execute_workflow(graph, router=router)
        assert result.context["2"]["activePath"] == "Created"
        assert "3" in result.context
        assert "4" not in result.context
        assert "5" in result.context

    @pytest.mark.asyncio
    async def test_trigger_payload_reaches_context(self, router, make_graph):
        graph = make_graph(
            [("1", "trigger", TRIGGER), ("2", "modifier", {"field": "who", "value": "{{1.data.user}}"})],
            [("1", "2")],
        )
        result = await execute_workflow(graph, router=router, trigger_payload={"user": "ann"})
        assert result.context["2"]["who"] == "ann"

    @pytest.mark.asyncio
    async def test_each_reachable_node_once_with_two_triggers(self, router, make_graph):
        graph = make_graph(
            [("1", "trigger", TRIGGER), ("2", "trigger", TRIGGER), ("3", "action", CUSTOM)],
            [("1", "3"), ("2", "3")],
            labels={"1": "A", "2": "B"},
        )
        result = await execute_workflow(graph, router=router)
        assert "Trigger: A fired" in result.log
        assert "Trigger: B fired" in result.log
        assert sum(1 for line in result.log if line.startswith("action:")) == 1
