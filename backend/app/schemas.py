"""Pydantic request/response models for the Kobe API."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class NodeDataRequest(BaseModel):
    """Node data in frontend format (React Flow)."""
    label: Optional[str] = None
    config: dict = Field(default_factory=dict)
    notes: Optional[str] = None


class NodeConfigRequest(BaseModel):
    """Node in an API request.

    Supports both formats:
    - Frontend (React Flow): node.data.label, node.data.config
    - Flat: node.label, node.config
    """
    id: str
    type: str
    position: Optional[dict] = None
    data: Optional[NodeDataRequest] = None
    label: Optional[str] = None
    config: dict = Field(default_factory=dict)

    def get_config(self) -> dict:
        if self.data and self.data.config:
            return self.data.config
        return self.config

    def get_label(self) -> str:
        if self.data and self.data.label:
            return self.data.label
        return self.label or self.config.get("name", "")

    def to_graph_node(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "label": self.get_label(),
            "config": self.get_config(),
            "notes": (self.data.notes if self.data else None) or "",
        }


class EdgeRequest(BaseModel):
    """Edge definition in API request."""
    id: Optional[str] = None
    source: str
    target: str
    label: Optional[str] = None


class GraphDefinitionRequest(BaseModel):
    """Workflow graph as sent by the editor."""
    name: Optional[str] = None
    nodes: List[NodeConfigRequest] = Field(default_factory=list)
    edges: List[EdgeRequest] = Field(default_factory=list)

    def to_graph_dict(self) -> dict:
        return {
            "name": self.name,
            "nodes": [n.to_graph_node() for n in self.nodes],
            "edges": [e.model_dump() for e in self.edges],
        }


class NodeTypeResponse(BaseModel):
    """Node type definition for frontend palette."""
    node_type: str
    display_name: str
    description: str
    category: str
    input_schema: dict
    output_schema: dict
    icon: Optional[str] = None
    color: Optional[str] = None


class ValidationErrorResponse(BaseModel):
    """Single validation error/warning."""
    code: str
    message: str
    severity: str
    node_ids: List[str]
    context: dict


class ValidationResponse(BaseModel):
    """Graph validation result."""
    valid: bool
    errors: List[ValidationErrorResponse]
    warnings: List[ValidationErrorResponse]


class RunRequest(GraphDefinitionRequest):
    """Graph plus an optional trigger payload replacing the sample event data."""
    trigger_payload: Optional[Any] = None
    validate_first: bool = Field(
        default=True, description="Reject graphs with validation errors before running"
    )


class RunResponse(BaseModel):
    """Finished run."""
    status: str
    log: List[str]
    context: Dict[str, Any]
    errors: List[str]
    started_at: Optional[str] = None
    finished_at: Optional[str] = None


class WebhookCreateRequest(BaseModel):
    """Register an inbound webhook that runs ``graph`` with the request body as trigger data."""
    path: str
    description: Optional[str] = None
    auth_type: str = Field(default="none", alias="authType")
    auth_config: dict = Field(default_factory=dict, alias="authConfig")
    graph: GraphDefinitionRequest

    model_config = {"populate_by_name": True}


class WebhookResponse(BaseModel):
    """Registered webhook."""
    id: str
    path: str
    url: str
    description: Optional[str] = None
    auth_type: str = Field(alias="authType")
    created_at: str = Field(alias="createdAt")

    model_config = {"populate_by_name": True}


class TemplateListItem(BaseModel):
    """Template summary for list endpoint."""
    name: str
    title: str
    description: str
    icon: Optional[str] = None


class TemplateDetail(BaseModel):
    """Full template detail, nodes in React Flow format."""
    name: str
    title: str
    description: str
    icon: Optional[str] = None
    nodes: List[dict]
    edges: List[dict]
