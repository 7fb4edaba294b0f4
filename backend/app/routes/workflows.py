"""Workflow run endpoint."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from kobe.engine.executor import execute_workflow
from kobe.engine.graph_model import WorkflowGraph, validate_graph
from kobe.integrations import IntegrationRouter

from ..dependencies import get_integration_router
from ..schemas import GraphDefinitionRequest, RunRequest, RunResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v2/workflows", tags=["workflows"])


def build_graph(payload: GraphDefinitionRequest) -> WorkflowGraph:
    """Convert a request graph into a WorkflowGraph, 422 on malformed input."""
    try:
        return WorkflowGraph.from_dict(payload.to_graph_dict())
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.post("/run", response_model=RunResponse)
async def run_workflow(
    payload: RunRequest,
    integrations: IntegrationRouter = Depends(get_integration_router),
):
    """Run a graph to completion and return its log and context."""
    graph = build_graph(payload)

    if payload.validate_first:
        result = validate_graph(graph)
        if not result.valid:
            raise HTTPException(
                status_code=422,
                detail={"message": "Graph validation failed", "errors": result.error_messages},
            )

    run = await execute_workflow(
        graph,
        router=integrations,
        trigger_payload=payload.trigger_payload,
    )
    logger.info(f"Run of '{graph.name}' finished with status {run.status.value}")
    return RunResponse(**run.to_dict())
