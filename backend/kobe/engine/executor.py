"""Workflow Traversal Engine

Runs a WorkflowGraph from its trigger nodes, depth-first and strictly
sequentially, accumulating every node's result in a shared context keyed
by node id. Node-level failures are recorded and prune only the branch
they occur in.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Set

from ..integrations.router import IntegrationRouter
from ..nodes import NodeRuntime, NodeType, create_node
from ..nodes.registry import BaseNodeImpl, NodeResult
from .graph_model import EdgeDefinition, WorkflowGraph, WorkflowNode

logger = logging.getLogger(__name__)

LOG_START = "Starting workflow simulation..."
LOG_COMPLETE = "Workflow simulation complete"
LOG_NO_NODES = "Warning: No nodes to simulate"
LOG_NO_TRIGGER = "Warning: Workflow should start with a trigger node"

# Node types whose result decides whether successors are visited
_GATING_TYPES = {NodeType.FILTER, NodeType.VALIDATION, NodeType.MULTI_BRANCH}


class RunStatus(str, Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class RunResult:
    """Outcome of one run.

    ``errors`` holds node-level failures ("Error in <label>: ..."); they are
    also appended to ``log`` just before the completion line.
    """

    status: RunStatus = RunStatus.NOT_STARTED
    log: List[str] = field(default_factory=list)
    context: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)
    started_at: Optional[str] = None
    finished_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "log": list(self.log),
            "context": self.context,
            "errors": list(self.errors),
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }


class WorkflowExecutor:
    """Executes one graph once.

    Args:
        graph: The workflow to run
        router: Integration router used by effectful nodes
        trigger_payload: Event data for trigger nodes; None uses the sample payload
        rng: Random source for percentage branches and simulated data
        retry_delay_scale: Multiplier applied to action retry delays
    """

    def __init__(
        self,
        graph: WorkflowGraph,
        router: Optional[IntegrationRouter] = None,
        trigger_payload: Optional[Any] = None,
        rng: Optional[random.Random] = None,
        retry_delay_scale: float = 1.0,
    ):
        self.graph = graph
        self.runtime = NodeRuntime(
            router=router,
            trigger_payload=trigger_payload,
            rng=rng or random.Random(),
            retry_delay_scale=retry_delay_scale,
        )
        self.result = RunResult()
        self._visited: Set[str] = set()

    @property
    def status(self) -> RunStatus:
        return self.result.status

    async def run(self) -> RunResult:
        if self.result.status is not RunStatus.NOT_STARTED:
            raise RuntimeError("a WorkflowExecutor runs only once")

        result = self.result
        result.status = RunStatus.RUNNING
        result.started_at = _now()
        result.log.append(LOG_START)
        logger.info(
            f"Running workflow '{self.graph.name}' with {len(self.graph.nodes)} nodes "
            f"and {len(self.graph.edges)} edges"
        )

        try:
            await self._run_triggers()
        except Exception as e:
            logger.exception(f"Workflow '{self.graph.name}' failed")
            result.status = RunStatus.FAILED
            result.errors.append(f"Error in workflow simulation: {e}")
            result.log.extend(result.errors)
            result.finished_at = _now()
            return result

        result.log.extend(result.errors)
        result.log.append(LOG_COMPLETE)
        result.status = RunStatus.COMPLETED
        result.finished_at = _now()
        logger.info(
            f"Workflow '{self.graph.name}' completed: {len(result.context)} nodes executed, "
            f"{len(result.errors)} errors"
        )
        return result

    async def _run_triggers(self) -> None:
        if not self.graph.nodes:
            logger.warning("Workflow has no nodes")
            self.result.log.append(LOG_NO_NODES)
            return

        triggers = self.graph.trigger_nodes()
        if not triggers:
            logger.warning("Workflow has no trigger node")
            self.result.log.append(LOG_NO_TRIGGER)

        for trigger in triggers:
            try:
                self._visited.add(trigger.id)
                node_result = await self._instantiate(trigger).execute(self.result.context)
                self.result.context[trigger.id] = node_result.to_context_entry()
                self.result.log.append(f"Trigger: {trigger.label} fired")
                await self._process_connected_nodes(trigger.id)
            except Exception as e:
                logger.error(f"Error processing trigger node {trigger.id}: {e}")
                self.result.errors.append(f"Error in {trigger.label}: {e}")

    def _instantiate(self, node: WorkflowNode) -> BaseNodeImpl:
        return create_node(node.id, node.type, node.config, label=node.label, runtime=self.runtime)

    async def _process_connected_nodes(self, node_id: str, node_result: Optional[NodeResult] = None) -> None:
        """Depth-first walk below ``node_id``, successors in edge order.

        Each entry on ``pending`` holds the edges still to follow from one node
        on the current path, so graph depth never grows the Python stack.
        """
        pending: List[Iterator[EdgeDefinition]] = [iter(self._next_edges(node_id, node_result))]
        while pending:
            edge = next(pending[-1], None)
            if edge is None:
                pending.pop()
                continue

            target = self.graph.get_node(edge.target)
            if target is None:
                logger.warning(f"Target node {edge.target} not found (edge {edge.id})")
                self.result.log.append(f"Warning: Target node {edge.target} not found")
                continue
            if target.id in self._visited:
                logger.debug(f"Node {target.id} already handled in this run, skipping")
                continue

            try:
                successors = await self._visit(target)
            except Exception as e:
                logger.error(f"Error processing node {target.id}: {e}")
                self.result.errors.append(f"Error in {target.label}: {e}")
                continue
            if successors:
                pending.append(iter(successors))

    async def _visit(self, node: WorkflowNode) -> List[EdgeDefinition]:
        """Run one node and return the edges to follow next (empty when pruned)."""
        self._visited.add(node.id)
        impl = self._instantiate(node)
        problems = impl.validate_config()
        if problems:
            message = "; ".join(p["error"] for p in problems)
            logger.error(f"Validation error in node {node.id}: {message}")
            self.result.errors.append(f"Error in {node.label}: {message}")
            return []

        node_result = await impl.execute(self.result.context)

        if node.type is NodeType.FILTER:
            self.result.context[node.id] = dict(node_result.output)
            self.result.log.append(f"Filter: {node.label} {node_result.message}")
        else:
            self.result.context[node.id] = node_result.to_context_entry()
            self.result.log.append(f"{node.type.value}: {node.label} - {node_result.message}")

        if not node_result.proceed:
            if node.type in _GATING_TYPES:
                logger.info(f"{node.type.value} {node.id} closed its branch")
            else:
                logger.info(f"Node {node.id} failed with errorHandling=stop, pruning successors")
            return []

        return self._next_edges(node.id, node_result)

    def _next_edges(self, node_id: str, node_result: Optional[NodeResult]) -> List[EdgeDefinition]:
        edges = self.graph.outgoing_edges(node_id)
        active = node_result.active_path if node_result else None
        if active is None:
            return edges
        return [
            e for e in edges
            if not e.label or e.label.strip().lower() == active.strip().lower()
        ]


async def execute_workflow(
    graph: WorkflowGraph,
    router: Optional[IntegrationRouter] = None,
    trigger_payload: Optional[Any] = None,
    rng: Optional[random.Random] = None,
    retry_delay_scale: float = 1.0,
) -> RunResult:
    """Run ``graph`` once and return its RunResult."""
    executor = WorkflowExecutor(
        graph,
        router=router,
        trigger_payload=trigger_payload,
        rng=rng,
        retry_delay_scale=retry_delay_scale,
    )
    return await executor.run()
