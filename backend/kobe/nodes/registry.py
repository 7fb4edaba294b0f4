"""Node Registry System

Registration and instantiation of workflow node types.

Key Components:
- NodeType: closed set of node kinds the editor can place on the canvas
- NodeDefinition: palette metadata for a node type
- NodeResult: what a node hands back to the executor
- NodeRuntime: per-run collaborators injected into every node
- BaseNodeImpl: shared base class for node implementations
- register_node_type / create_node: decorator and factory
"""

from __future__ import annotations

import logging
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    List,
    Optional,
    Type,
    TypeVar,
    Union,
)

if TYPE_CHECKING:
    from ..integrations.router import IntegrationRouter

logger = logging.getLogger(__name__)

T = TypeVar("T", bound="BaseNodeImpl")


class NodeType(str, Enum):
    TRIGGER = "trigger"
    ACTION = "action"
    FILTER = "filter"
    DATA_SOURCE = "dataSource"
    DATA_MODIFIER = "dataModifier"
    MULTI_BRANCH = "multiBranch"
    FLOW_CONTROL = "flowControl"
    MODIFIER = "modifier"
    VALIDATION = "validation"

    @classmethod
    def parse(cls, value: Union[str, "NodeType"]) -> "NodeType":
        try:
            return cls(value)
        except ValueError:
            valid = [t.value for t in cls]
            raise ValueError(f"Unknown node type: {value}. Valid types: {valid}") from None


class NodeStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class NodeDefinition:
    """Metadata definition for a node type.

    Attributes:
        node_type: NodeType value (e.g., "dataSource")
        display_name: Human-readable name for the palette
        description: Brief description of node functionality
        category: Category for grouping (e.g., "data", "control")
        input_schema: JSON schema describing the node configuration
        output_schema: JSON schema describing the context entry
        icon: Optional icon identifier
        color: Optional color code
    """

    node_type: str
    display_name: str
    description: str
    category: str
    input_schema: Dict[str, Any]
    output_schema: Dict[str, Any]
    icon: Optional[str] = None
    color: Optional[str] = None

    def __post_init__(self):
        if not self.node_type:
            raise ValueError("node_type cannot be empty")
        if not self.display_name:
            raise ValueError("display_name cannot be empty")
        if not isinstance(self.input_schema, dict):
            raise ValueError("input_schema must be a dictionary")
        if not isinstance(self.output_schema, dict):
            raise ValueError("output_schema must be a dictionary")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node_type": self.node_type,
            "display_name": self.display_name,
            "description": self.description,
            "category": self.category,
            "input_schema": self.input_schema,
            "output_schema": self.output_schema,
            "icon": self.icon,
            "color": self.color,
        }


@dataclass
class NodeResult:
    """Outcome of one node execution.

    Attributes:
        status: success or error
        output: Type-specific fields stored in the execution context
        message: One-line summary for the run log
        error: Error message when status is error
        proceed: Whether the executor should visit this node's successors
        active_path: Branch label chosen by a multi-branch node
    """

    status: NodeStatus = NodeStatus.SUCCESS
    output: Dict[str, Any] = field(default_factory=dict)
    message: str = ""
    error: Optional[str] = None
    proceed: bool = True
    active_path: Optional[str] = None

    @classmethod
    def failure(cls, error: str, **output: Any) -> "NodeResult":
        return cls(status=NodeStatus.ERROR, output=output, message=error, error=error)

    @property
    def succeeded(self) -> bool:
        return self.status is NodeStatus.SUCCESS

    def to_context_entry(self) -> Dict[str, Any]:
        entry = dict(self.output)
        entry["status"] = self.status.value
        if self.error:
            entry["error"] = self.error
        return entry


@dataclass
class NodeRuntime:
    """Collaborators shared by every node of one run."""

    router: Optional["IntegrationRouter"] = None
    trigger_payload: Optional[Any] = None
    rng: random.Random = field(default_factory=random.Random)
    retry_delay_scale: float = 1.0


class BaseNodeImpl(ABC):
    """Abstract base class providing common node functionality."""

    def __init__(
        self,
        node_id: str,
        node_type: str,
        config: Dict[str, Any],
        label: str = "",
        runtime: Optional[NodeRuntime] = None,
    ):
        self.node_id = node_id
        self.node_type = node_type
        self.config = config or {}
        self.label = label or node_id
        self.runtime = runtime or NodeRuntime()

    @abstractmethod
    async def execute(self, context: Dict[str, Dict[str, Any]]) -> NodeResult:
        """Execute against the run's context. Must be implemented by subclasses."""

    def validate_config(self) -> List[Dict[str, str]]:
        """Check required configuration fields.

        Subclasses extend this with type-specific rules.

        Returns:
            List of ``{"field", "error"}`` dicts; empty if the config is usable
        """
        errors = []

        definition = NODE_REGISTRY.get(self.node_type)
        if not definition:
            errors.append({
                "field": "node_type",
                "error": f"Unknown node type: {self.node_type}",
            })
            return errors

        for field_name in definition.input_schema.get("required", []):
            if self.config.get(field_name) in (None, ""):
                errors.append({
                    "field": field_name,
                    "error": f"Required field '{field_name}' is missing",
                })

        return errors

    def _require_one_of(self, *fields: str) -> List[Dict[str, str]]:
        if any(self.config.get(name) not in (None, "") for name in fields):
            return []
        return [{
            "field": fields[0],
            "error": f"One of {', '.join(fields)} is required",
        }]

    def _require_choice(self, field_name: str, choices: Type[Enum]) -> List[Dict[str, str]]:
        value = self.config.get(field_name)
        allowed = [str(c.value) for c in choices]
        if value in (None, ""):
            return [{"field": field_name, "error": f"Required field '{field_name}' is missing"}]
        if str(value) not in allowed:
            return [{"field": field_name, "error": f"Must be one of: {', '.join(allowed)}"}]
        return []


# Global registry for node types
NODE_REGISTRY: Dict[str, NodeDefinition] = {}
NODE_CLASSES: Dict[str, Type[BaseNodeImpl]] = {}


def register_node_type(
    node_type: Union[str, NodeType],
    display_name: str,
    description: str,
    category: str,
    input_schema: Dict[str, Any],
    output_schema: Dict[str, Any],
    icon: Optional[str] = None,
    color: Optional[str] = None,
) -> Callable[[Type[T]], Type[T]]:
    """Decorator registering both the definition metadata and the class.

    Example:
        @register_node_type(
            node_type=NodeType.FILTER,
            display_name="Filter",
            description="Gates downstream nodes on a condition",
            category="logic",
            input_schema={"type": "object", "required": ["field", "operator"]},
            output_schema={"type": "object"},
        )
        class FilterNode(BaseNodeImpl):
            async def execute(self, context):
                ...
    """
    key = node_type.value if isinstance(node_type, NodeType) else node_type

    def decorator(cls: Type[T]) -> Type[T]:
        definition = NodeDefinition(
            node_type=key,
            display_name=display_name,
            description=description,
            category=category,
            input_schema=input_schema,
            output_schema=output_schema,
            icon=icon,
            color=color,
        )

        NODE_REGISTRY[key] = definition
        NODE_CLASSES[key] = cls

        logger.debug(f"Registered node type: {key} ({display_name})")
        return cls

    return decorator


def create_node(
    node_id: str,
    node_type: Union[str, NodeType],
    config: Dict[str, Any],
    label: str = "",
    runtime: Optional[NodeRuntime] = None,
) -> BaseNodeImpl:
    """Instantiate a registered node type.

    Raises:
        ValueError: If node_type is not registered
    """
    key = node_type.value if isinstance(node_type, NodeType) else node_type
    if key not in NODE_CLASSES:
        raise ValueError(
            f"Unknown node type: {key}. "
            f"Available types: {list(NODE_CLASSES.keys())}"
        )

    node = NODE_CLASSES[key](
        node_id=node_id, node_type=key, config=config, label=label, runtime=runtime
    )
    logger.debug(f"Created node: {node_id} (type={key})")
    return node


def get_node_definition(node_type: str) -> Optional[NodeDefinition]:
    return NODE_REGISTRY.get(node_type)


def list_node_types() -> List[NodeDefinition]:
    return list(NODE_REGISTRY.values())


def list_node_types_by_category(category: str) -> List[NodeDefinition]:
    return [d for d in NODE_REGISTRY.values() if d.category == category]


def is_node_type_registered(node_type: str) -> bool:
    return node_type in NODE_REGISTRY
