"""Graph structures: Nodes, Context, Definitions, Validation and Execution."""

from nodeflow.graph.context import ExecutionContext
from nodeflow.graph.errors import (
    AfterNodeError,
    ConfigurationError,
    MethodNotFoundError,
    MissingFieldWarning,
    NodeExecutionError,
    NodeflowError,
)
from nodeflow.graph.executor import AfterStatus, RunStatus, WorkflowEngine, WorkflowRun
from nodeflow.graph.node import (
    AfterPolicy,
    Category,
    EntryPolicy,
    ExitPolicy,
    MiddlePolicy,
    Node,
    NodeDescriptor,
    NodeExecutionResult,
    NodeExecutionStatus,
    PublishPolicy,
    ToolNode,
    policy_for,
)
from nodeflow.graph.validator import GraphValidator
from nodeflow.graph.workflow import WorkflowDefinition

__all__ = [
    # Context
    "ExecutionContext",
    # Node
    "Category",
    "Node",
    "NodeDescriptor",
    "NodeExecutionResult",
    "NodeExecutionStatus",
    "ToolNode",
    # Publish policies
    "PublishPolicy",
    "EntryPolicy",
    "MiddlePolicy",
    "ExitPolicy",
    "AfterPolicy",
    "policy_for",
    # Definition & validation
    "WorkflowDefinition",
    "GraphValidator",
    # Engine
    "WorkflowEngine",
    "WorkflowRun",
    "RunStatus",
    "AfterStatus",
    # Errors
    "NodeflowError",
    "ConfigurationError",
    "NodeExecutionError",
    "MethodNotFoundError",
    "AfterNodeError",
    "MissingFieldWarning",
]
