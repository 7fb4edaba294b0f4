"""Editor support: the node palette and dry graph validation."""

from __future__ import annotations

from typing import Iterable, List

from fastapi import APIRouter

from kobe.engine.graph_model import ValidationError, validate_graph
from kobe.nodes import list_node_types

from ..schemas import (
    GraphDefinitionRequest,
    NodeTypeResponse,
    ValidationErrorResponse,
    ValidationResponse,
)
from .workflows import build_graph

router = APIRouter(prefix="/api/v2", tags=["validation"])


def _issues(items: Iterable[ValidationError]) -> List[ValidationErrorResponse]:
    return [ValidationErrorResponse(**item.to_dict()) for item in items]


@router.get("/node-types", response_model=List[NodeTypeResponse])
def get_node_types():
    return [NodeTypeResponse(**descriptor.to_dict()) for descriptor in list_node_types()]


@router.post("/validate-graph", response_model=ValidationResponse)
async def validate_graph_inline(payload: GraphDefinitionRequest):
    """Check a graph without running it.

    Structural and per-node configuration problems come back as ``errors``;
    a graph without a trigger is still ``valid`` but carries a NO_TRIGGER
    warning.
    """
    report = validate_graph(build_graph(payload))
    return ValidationResponse(
        valid=report.valid,
        errors=_issues(report.errors),
        warnings=_issues(report.warnings),
    )
