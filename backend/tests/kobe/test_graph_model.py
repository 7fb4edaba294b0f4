"""Unit tests for the workflow graph model and validate_graph.

Tests cover:
- Graph construction (React Flow and flat shapes, duplicate ids)
- Cycle detection with the reported path
- Disconnected / unreachable node warnings
- Node configuration, connection and expression errors
"""

import pytest

from kobe.engine.graph_model import (
    EdgeDefinition,
    WorkflowGraph,
    WorkflowNode,
    detect_cycles,
    detect_disconnected_nodes,
    validate_graph,
)
from kobe.nodes import NodeType


TRIGGER = {"event": "order_created"}


def _codes(items):
    return [i.code for i in items]


class TestConstruction:
    """Test WorkflowNode / EdgeDefinition / WorkflowGraph construction."""

    def test_from_react_flow_dict(self):
        graph = WorkflowGraph.from_dict({
            "nodes": [
                {"id": "1", "type": "trigger", "position": {"x": 0, "y": 0},
                 "data": {"label": "Start", "config": TRIGGER, "notes": "n"}},
                {"id": "2", "type": "action", "data": {"label": "Do", "config": {"actionType": "custom"}}},
            ],
            "edges": [{"source": "1", "target": "2"}],
        })
        assert graph.get_node("1").label == "Start"
        assert graph.get_node("1").notes == "n"
        assert graph.get_node("2").type is NodeType.ACTION
        assert graph.edges[0].id == "e1-2"
        assert graph.adjacency() == {"1": ["2"]}

    def test_flat_dict_and_round_trip_shape(self):
        graph = WorkflowGraph.from_dict({
            "nodes": [{"id": "1", "type": "trigger", "label": "T", "config": TRIGGER}],
            "edges": [],
        })
        data = graph.to_dict()
        assert data["nodes"][0] == {
            "id": "1", "type": "trigger", "data": {"label": "T", "config": TRIGGER, "notes": ""},
        }

    def test_label_defaults_to_id(self):
        assert WorkflowNode(id="7", type="filter").label == "7"

    def test_unknown_node_type(self):
        with pytest.raises(ValueError, match="Unknown node type"):
            WorkflowNode(id="1", type="teleport")

    def test_duplicate_node_ids(self):
        with pytest.raises(ValueError, match="duplicate node IDs"):
            WorkflowGraph(nodes=[
                WorkflowNode(id="1", type="trigger"),
                WorkflowNode(id="1", type="action"),
            ])

    def test_empty_edge_endpoint(self):
        with pytest.raises(ValueError, match="target node cannot be empty"):
            EdgeDefinition(id="e", source="1", target="")

    def test_outgoing_edges_keep_order(self, make_graph):
        graph = make_graph(
            [("1", "trigger", TRIGGER), ("2", "action", {}), ("3", "action", {})],
            [("1", "3"), ("1", "2")],
        )
        assert [e.target for e in graph.outgoing_edges("1")] == ["3", "2"]
        assert [n.id for n in graph.trigger_nodes()] == ["1"]


class TestCycleDetection:
    def test_reports_path_from_trigger(self, make_graph):
        graph = make_graph(
            [("1", "trigger", TRIGGER), ("2", "action", {}), ("3", "action", {})],
            [("1", "2"), ("2", "3"), ("3", "2")],
        )
        assert detect_cycles(graph) == [["1", "2", "3", "2"]]

    def test_acyclic_diamond(self, make_graph):
        graph = make_graph(
            [("1", "trigger", TRIGGER), ("2", "action", {}), ("3", "action", {}), ("4", "action", {})],
            [("1", "2"), ("1", "3"), ("2", "4"), ("3", "4")],
        )
        assert detect_cycles(graph) == []

    def test_same_cycle_from_two_triggers_reported_once(self, make_graph):
        graph = make_graph(
            [("1", "trigger", TRIGGER), ("5", "trigger", TRIGGER), ("2", "action", {}), ("3", "action", {})],
            [("1", "2"), ("5", "2"), ("2", "3"), ("3", "2")],
        )
        assert detect_cycles(graph) == [["1", "2", "3", "2"]]

    def test_long_chain_does_not_exhaust_the_stack(self, make_graph):
        size = 3000
        nodes = [("0", "trigger", TRIGGER)] + [(str(i), "action", {"actionType": "custom"}) for i in range(1, size)]
        edges = [(str(i), str(i + 1)) for i in range(size - 1)]
        assert detect_cycles(make_graph(nodes, edges)) == []

        closed = make_graph(nodes, edges + [(str(size - 1), "1")])
        cycles = detect_cycles(closed)
        assert len(cycles) == 1
        assert cycles[0][0] == "0"
        assert cycles[0][-1] == "1"
        assert len(cycles[0]) == size + 1


class TestValidateGraph:
    """Test validate_graph errors and warnings."""

    def test_empty_graph(self):
        result = validate_graph(WorkflowGraph())
        assert result.valid is False
        assert _codes(result.errors) == ["EMPTY_WORKFLOW"]

    def test_valid_linear_graph(self, make_graph):
        graph = make_graph(
            [
                ("1", "trigger", TRIGGER),
                ("2", "filter", {"field": "{{1.data.orderTotal}}", "operator": "greater_than", "value": "100"}),
                ("3", "action", {"actionType": "email", "to": "a@b.com", "subject": "Hi"}),
            ],
            [("1", "2"), ("2", "3")],
        )
        result = validate_graph(graph)
        assert result.valid is True
        assert result.errors == []
        assert result.warnings == []

    def test_long_linear_graph_is_valid(self, make_graph):
        size = 1500
        nodes = [("0", "trigger", TRIGGER)] + [(str(i), "action", {"actionType": "custom"}) for i in range(1, size)]
        edges = [(str(i), str(i + 1)) for i in range(size - 1)]
        result = validate_graph(make_graph(nodes, edges))
        assert result.valid is True
        assert result.errors == []

    def test_cycle_is_error_with_path(self, make_graph):
        graph = make_graph(
            [("1", "trigger", TRIGGER), ("2", "action", {"actionType": "custom"}), ("3", "action", {"actionType": "custom"})],
            [("1", "2"), ("2", "3"), ("3", "2")],
        )
        result = validate_graph(graph)
        assert result.valid is False
        assert "Circular reference detected: 1 -> 2 -> 3 -> 2" in result.error_messages
        cycle = next(e for e in result.errors if e.code == "CIRCULAR_REFERENCE")
        assert cycle.node_ids == ["1", "2", "3"]

    def test_no_trigger_is_warning(self, make_graph):
        result = validate_graph(make_graph([("1", "action", {"actionType": "custom"})]))
        assert result.valid is True
        assert "NO_TRIGGER" in _codes(result.warnings)
        assert "Workflow should start with a trigger node" in result.warning_messages

    def test_disconnected_nodes_reported_by_count(self, make_graph):
        graph = make_graph(
            [("1", "trigger", TRIGGER), ("2", "action", {"actionType": "custom"}), ("3", "action", {"actionType": "custom"})],
        )
        result = validate_graph(graph)
        disconnected = next(w for w in result.warnings if w.code == "DISCONNECTED_NODES")
        assert disconnected.message == "Found 2 disconnected nodes"
        assert detect_disconnected_nodes(graph) == ["2", "3"]

    def test_unreachable_nodes_warning(self, make_graph):
        graph = make_graph(
            [("1", "trigger", TRIGGER), ("2", "action", {"actionType": "custom"}), ("3", "action", {"actionType": "custom"})],
            [("2", "3")],
        )
        result = validate_graph(graph)
        unreachable = next(w for w in result.warnings if w.code == "UNREACHABLE_NODES")
        assert unreachable.node_ids == ["2", "3"]

    def test_edge_to_unknown_node(self, make_graph):
        graph = make_graph([("1", "trigger", TRIGGER)], [("1", "9")])
        result = validate_graph(graph)
        assert result.valid is False
        assert "INVALID_EDGE" in _codes(result.errors)

    def test_action_cannot_connect_to_trigger(self, make_graph):
        graph = make_graph(
            [("1", "trigger", TRIGGER), ("2", "action", {"actionType": "custom"}), ("3", "trigger", TRIGGER)],
            [("1", "2"), ("2", "3")],
        )
        result = validate_graph(graph)
        assert "INVALID_CONNECTION" in _codes(result.errors)

    def test_invalid_node_config(self, make_graph):
        graph = make_graph(
            [("1", "trigger", {}), ("2", "filter", {"field": "x"})],
            [("1", "2")],
            labels={"1": "Start", "2": "Check"},
        )
        result = validate_graph(graph)
        messages = result.error_messages
        assert "Start: Trigger requires event or schedule" in messages
        assert "Check: Filter requires field and operator" in messages

    def test_invalid_expression(self, make_graph):
        graph = make_graph(
            [
                ("1", "trigger", TRIGGER),
                ("2", "filter", {"conditionType": "advanced", "expression": "len({{1.data}}) > 1"}),
            ],
            [("1", "2")],
        )
        result = validate_graph(graph)
        assert "INVALID_EXPRESSION" in _codes(result.errors)

    def test_c_style_operators_accepted(self, make_graph):
        graph = make_graph(
            [
                ("1", "trigger", TRIGGER),
                ("2", "filter", {"conditionType": "advanced", "expression": "{{1.data.orderTotal}} > 1 && !{{1.data.flag}}"}),
            ],
            [("1", "2")],
        )
        assert validate_graph(graph).valid is True

    def test_unknown_reference_warning(self, make_graph):
        graph = make_graph(
            [("1", "trigger", TRIGGER), ("2", "action", {"actionType": "email", "to": "{{8.email}}", "subject": "Hi"})],
            [("1", "2")],
        )
        result = validate_graph(graph)
        assert result.valid is True
        warning = next(w for w in result.warnings if w.code == "UNKNOWN_REFERENCE")
        assert warning.context == {"references": ["8"]}

    def test_to_dict(self, make_graph):
        data = validate_graph(make_graph([("1", "trigger", TRIGGER)])).to_dict()
        assert data == {"valid": True, "errors": [], "warnings": []}
