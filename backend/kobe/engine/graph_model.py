"""Workflow Graph Model

Immutable-per-run representation of a workflow and its pre-run validation.

Key Components:
- WorkflowNode / EdgeDefinition / WorkflowGraph: the graph as the editor sends it
- ValidationError / ValidationResult: structured validation findings
- validate_graph: structure, cycle, connectivity and node configuration checks
- detect_cycles: one three-colour DFS per trigger node
"""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Optional, Set

from ..nodes import NodeType, create_node
from ..nodes.conditions import ConditionType, normalize_expression
from .resolver import PLACEHOLDER, find_references
from .safe_eval import validate_expression

logger = logging.getLogger(__name__)

# DFS colours
_UNVISITED, _IN_PATH, _DONE = 0, 1, 2


@dataclass
class WorkflowNode:
    """A node placed on the canvas.

    Attributes:
        id: Unique node identifier within the graph
        type: Node kind
        config: Node-specific configuration (may contain ``{{...}}`` references)
        label: Display label, used in run logs
        notes: Free-form notes from the editor
    """

    id: str
    type: NodeType
    config: Dict[str, Any] = field(default_factory=dict)
    label: str = ""
    notes: str = ""

    def __post_init__(self):
        if not self.id:
            raise ValueError("node id cannot be empty")
        self.type = NodeType.parse(self.type)
        if not isinstance(self.config, dict):
            raise ValueError(f"node {self.id}: config must be a dictionary")
        if not self.label:
            self.label = self.id

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowNode":
        """Accept both the React Flow shape (``data.label``/``data.config``) and a flat one."""
        inner = data.get("data") or {}
        return cls(
            id=str(data.get("id", "")),
            type=data.get("type", ""),
            config=inner.get("config", data.get("config")) or {},
            label=inner.get("label", data.get("label")) or "",
            notes=inner.get("notes", data.get("notes")) or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "data": {"label": self.label, "config": self.config, "notes": self.notes},
        }


@dataclass
class EdgeDefinition:
    """Directed connection between two nodes.

    Attributes:
        id: Unique edge identifier
        source: Source node ID
        target: Target node ID
        label: Optional path label, matched against a multi-branch choice
    """

    id: str
    source: str
    target: str
    label: Optional[str] = None

    def __post_init__(self):
        if not self.id:
            raise ValueError("edge id cannot be empty")
        if not self.source:
            raise ValueError("source node cannot be empty")
        if not self.target:
            raise ValueError("target node cannot be empty")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EdgeDefinition":
        source, target = str(data.get("source", "")), str(data.get("target", ""))
        return cls(
            id=str(data.get("id") or f"e{source}-{target}"),
            source=source,
            target=target,
            label=data.get("label") or data.get("sourceHandle"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "source": self.source, "target": self.target, "label": self.label}


@dataclass
class WorkflowGraph:
    """Nodes and edges of one workflow.

    Node ids must be unique. Edges may still point at unknown nodes:
    ``validate_graph`` reports them and the executor skips them.
    """

    nodes: List[WorkflowNode] = field(default_factory=list)
    edges: List[EdgeDefinition] = field(default_factory=list)
    name: str = "workflow"

    def __post_init__(self):
        node_ids = [node.id for node in self.nodes]
        if len(node_ids) != len(set(node_ids)):
            duplicates = {nid for nid in node_ids if node_ids.count(nid) > 1}
            raise ValueError(f"duplicate node IDs found: {duplicates}")

        self._nodes_by_id: Dict[str, WorkflowNode] = {node.id: node for node in self.nodes}
        self._outgoing: Dict[str, List[EdgeDefinition]] = defaultdict(list)
        for edge in self.edges:
            self._outgoing[edge.source].append(edge)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowGraph":
        return cls(
            nodes=[WorkflowNode.from_dict(n) for n in data.get("nodes") or []],
            edges=[EdgeDefinition.from_dict(e) for e in data.get("edges") or []],
            name=data.get("name") or "workflow",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
        }

    def get_node(self, node_id: str) -> Optional[WorkflowNode]:
        return self._nodes_by_id.get(node_id)

    def outgoing_edges(self, node_id: str) -> List[EdgeDefinition]:
        """Edges leaving ``node_id`` in edge-list order."""
        return list(self._outgoing.get(node_id, []))

    def adjacency(self) -> Dict[str, List[str]]:
        return {source: [e.target for e in edges] for source, edges in self._outgoing.items()}

    def trigger_nodes(self) -> List[WorkflowNode]:
        return [node for node in self.nodes if node.type is NodeType.TRIGGER]

    def reachable_from(self, start_ids: Iterable[str]) -> Set[str]:
        adjacency = self.adjacency()
        seen: Set[str] = set()
        stack = list(start_ids)
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(adjacency.get(current, []))
        return seen


class ValidationError:
    """Workflow validation finding.

    Attributes:
        code: Machine-readable code (e.g. CIRCULAR_REFERENCE)
        message: Human-readable message
        severity: "error" or "warning"
        node_ids: Affected node IDs
        context: Additional details
    """

    def __init__(
        self,
        code: str,
        message: str,
        severity: str,
        node_ids: Optional[List[str]] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.code = code
        self.message = message
        self.severity = severity
        self.node_ids = node_ids or []
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "severity": self.severity,
            "node_ids": self.node_ids,
            "context": self.context,
        }


class ValidationResult:
    """Workflow validation result; ``valid`` is False when any error exists."""

    def __init__(self, valid: bool, errors: List[ValidationError], warnings: List[ValidationError]):
        self.valid = valid
        self.errors = errors
        self.warnings = warnings

    @property
    def error_messages(self) -> List[str]:
        return [e.message for e in self.errors]

    @property
    def warning_messages(self) -> List[str]:
        return [w.message for w in self.warnings]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
        }


def detect_cycles(graph: WorkflowGraph) -> List[List[str]]:
    """Find cycles reachable from trigger nodes.

    Runs one DFS per trigger with three colours. Meeting a node that is
    still on the current path closes a cycle; the reported path runs from the
    trigger to the repeated node, e.g. ``["1", "2", "3", "2"]``.
    """
    adjacency = graph.adjacency()
    cycles: List[List[str]] = []
    seen_cycles: Set[frozenset] = set()

    for trigger in graph.trigger_nodes():
        colour: Dict[str, int] = defaultdict(int)
        colour[trigger.id] = _IN_PATH
        path: List[str] = [trigger.id]
        # One neighbour iterator per node on the current path
        stack: List[Iterator[str]] = [iter(adjacency.get(trigger.id, []))]

        while stack:
            neighbor = next(stack[-1], None)
            if neighbor is None:
                stack.pop()
                colour[path.pop()] = _DONE
            elif colour[neighbor] == _IN_PATH:
                loop = frozenset(path[path.index(neighbor):])
                if loop not in seen_cycles:
                    seen_cycles.add(loop)
                    cycles.append(path + [neighbor])
            elif colour[neighbor] == _UNVISITED:
                colour[neighbor] = _IN_PATH
                path.append(neighbor)
                stack.append(iter(adjacency.get(neighbor, [])))

    return cycles


def detect_disconnected_nodes(graph: WorkflowGraph) -> List[str]:
    """Non-trigger nodes that are not an endpoint of any edge."""
    connected = set()
    for edge in graph.edges:
        connected.add(edge.source)
        connected.add(edge.target)
    return [
        node.id for node in graph.nodes
        if node.type is not NodeType.TRIGGER and node.id not in connected
    ]


def _expressions(node: WorkflowNode) -> List[str]:
    config = node.config
    if node.type is NodeType.FILTER and config.get("conditionType") == ConditionType.ADVANCED.value:
        return [config.get("expression") or ""]
    if node.type is NodeType.MULTI_BRANCH and config.get("branchType") == "condition":
        return [p.get("condition") for p in config.get("paths") or [] if isinstance(p, dict) and p.get("condition")]
    if node.type is NodeType.VALIDATION and config.get("expression"):
        return [config["expression"]]
    return []


def _config_strings(value: Any) -> Iterable[str]:
    if isinstance(value, dict):
        for item in value.values():
            yield from _config_strings(item)
    elif isinstance(value, list):
        for item in value:
            yield from _config_strings(item)
    elif isinstance(value, str):
        yield value


def validate_graph(graph: WorkflowGraph) -> ValidationResult:
    """Validate a graph before it is run.

    Errors (``valid`` becomes False): empty graph, edges to unknown nodes,
    cycles reachable from a trigger, action-to-trigger edges, invalid node
    configuration and malformed expressions.

    Warnings: no trigger, disconnected nodes (reported by count), nodes
    unreachable from any trigger and references to unknown node ids.
    """
    errors: List[ValidationError] = []
    warnings: List[ValidationError] = []

    # 1. At least one node
    if not graph.nodes:
        errors.append(ValidationError(
            code="EMPTY_WORKFLOW",
            message="Workflow must have at least one node",
            severity="error",
        ))
        return ValidationResult(valid=False, errors=errors, warnings=warnings)

    # 2. At least one trigger
    triggers = graph.trigger_nodes()
    if not triggers:
        warnings.append(ValidationError(
            code="NO_TRIGGER",
            message="Workflow should start with a trigger node",
            severity="warning",
        ))

    # 3. Edges must reference existing nodes
    for edge in graph.edges:
        missing = [nid for nid in (edge.source, edge.target) if graph.get_node(nid) is None]
        if missing:
            errors.append(ValidationError(
                code="INVALID_EDGE",
                message=f"Edge {edge.id} references unknown node(s): {', '.join(missing)}",
                severity="error",
                node_ids=missing,
                context={"edge_id": edge.id},
            ))
            continue
        source, target = graph.get_node(edge.source), graph.get_node(edge.target)
        if source.type is NodeType.ACTION and target.type is NodeType.TRIGGER:
            errors.append(ValidationError(
                code="INVALID_CONNECTION",
                message=f"Actions cannot connect to triggers ({source.label} -> {target.label})",
                severity="error",
                node_ids=[source.id, target.id],
                context={"edge_id": edge.id},
            ))

    # 4. Disconnected nodes, reported by count
    disconnected = detect_disconnected_nodes(graph)
    if disconnected:
        warnings.append(ValidationError(
            code="DISCONNECTED_NODES",
            message=f"Found {len(disconnected)} disconnected nodes",
            severity="warning",
            node_ids=disconnected,
            context={"count": len(disconnected)},
        ))

    # 5. Connected nodes that no trigger reaches
    if triggers:
        reachable = graph.reachable_from(t.id for t in triggers)
        unreachable = [
            n.id for n in graph.nodes
            if n.id not in reachable and n.id not in disconnected
        ]
        if unreachable:
            warnings.append(ValidationError(
                code="UNREACHABLE_NODES",
                message=f"Found {len(unreachable)} nodes not reachable from a trigger",
                severity="warning",
                node_ids=unreachable,
            ))

    # 6. Cycles reachable from triggers
    for cycle in detect_cycles(graph):
        errors.append(ValidationError(
            code="CIRCULAR_REFERENCE",
            message=f"Circular reference detected: {' -> '.join(cycle)}",
            severity="error",
            node_ids=cycle[:-1],
            context={"cycle_path": cycle},
        ))

    # 7. Node configuration and expressions
    node_ids = {n.id for n in graph.nodes}
    for node in graph.nodes:
        config_errors = create_node(node.id, node.type, node.config, label=node.label).validate_config()
        if config_errors:
            errors.append(ValidationError(
                code="INVALID_NODE_CONFIG",
                message=f"{node.label}: " + "; ".join(e["error"] for e in config_errors),
                severity="error",
                node_ids=[node.id],
                context={"node_type": node.type.value, "validation_errors": config_errors},
            ))

        for expression in _expressions(node):
            text = normalize_expression(PLACEHOLDER.sub("null", expression))
            for problem in validate_expression(text):
                errors.append(ValidationError(
                    code="INVALID_EXPRESSION",
                    message=f"{node.label}: {problem}",
                    severity="error",
                    node_ids=[node.id],
                    context={"expression": expression},
                ))

        unknown = sorted({
            ref for text in _config_strings(node.config)
            for ref in find_references(text) if ref not in node_ids
        })
        if unknown:
            warnings.append(ValidationError(
                code="UNKNOWN_REFERENCE",
                message=f"{node.label} references unknown node(s): {', '.join(unknown)}",
                severity="warning",
                node_ids=[node.id],
                context={"references": unknown},
            ))

    valid = len(errors) == 0
    if not valid:
        logger.info(f"Graph '{graph.name}' failed validation with {len(errors)} error(s)")
    return ValidationResult(valid=valid, errors=errors, warnings=warnings)
