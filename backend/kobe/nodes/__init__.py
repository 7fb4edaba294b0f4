"""Node System: registry, condition evaluation and built-in node types."""

# Import node modules to auto-register node types
from . import base  # noqa: F401 - registers all NodeType implementations

from .registry import (
    NODE_CLASSES,
    NODE_REGISTRY,
    BaseNodeImpl,
    NodeDefinition,
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

__all__ = [
    "NODE_CLASSES",
    "NODE_REGISTRY",
    "BaseNodeImpl",
    "NodeDefinition",
    "NodeResult",
    "NodeRuntime",
    "NodeStatus",
    "NodeType",
    "create_node",
    "get_node_definition",
    "is_node_type_registered",
    "list_node_types",
    "list_node_types_by_category",
    "register_node_type",
]
