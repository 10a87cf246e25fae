"""
nodeflow - Declarative node-pipeline execution engine.

A workflow is a small, static graph of nodes. Each node declares which
fields it reads (from the run's input or from the shared cache) and which
it writes; the definition is validated for data-flow soundness before it
ever runs. The engine returns to the caller as soon as the EXIT node
completes and can keep running AFTER nodes in the background.
"""

from nodeflow.builder import Workflow
from nodeflow.config import RunConfig
from nodeflow.graph import (
    AfterNodeError,
    AfterStatus,
    Category,
    ConfigurationError,
    ExecutionContext,
    GraphValidator,
    MethodNotFoundError,
    MissingFieldWarning,
    Node,
    NodeDescriptor,
    NodeExecutionError,
    NodeExecutionResult,
    NodeExecutionStatus,
    NodeflowError,
    RunStatus,
    ToolNode,
    WorkflowDefinition,
    WorkflowEngine,
    WorkflowRun,
)
from nodeflow.runner import ToolGroup, ToolRegistry

__version__ = "0.1.0"

__all__ = [
    "Workflow",
    "RunConfig",
    "ExecutionContext",
    "Category",
    "Node",
    "NodeDescriptor",
    "NodeExecutionResult",
    "NodeExecutionStatus",
    "ToolNode",
    "WorkflowDefinition",
    "GraphValidator",
    "WorkflowEngine",
    "WorkflowRun",
    "RunStatus",
    "AfterStatus",
    "ToolGroup",
    "ToolRegistry",
    "NodeflowError",
    "ConfigurationError",
    "NodeExecutionError",
    "MethodNotFoundError",
    "AfterNodeError",
    "MissingFieldWarning",
]
