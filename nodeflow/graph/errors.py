"""
Error taxonomy for workflow construction and execution.

- ConfigurationError: definition failed validation, never executed
- NodeExecutionError: a node's hooks or _call raised; aborts the main chain
- MethodNotFoundError: a node asked its tool group for an undeclared operation
- AfterNodeError: an AFTER node failed; logged, never surfaced to the caller
- MissingFieldWarning: a declared input was absent at resolution time
"""

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from nodeflow.graph.node import NodeExecutionResult


class NodeflowError(Exception):
    """Base class for all nodeflow errors."""

    pass


class ConfigurationError(NodeflowError):
    """Raised when a workflow definition fails validation."""

    def __init__(self, errors: list[str] | str):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__("Invalid workflow definition: " + "; ".join(self.errors))


class NodeExecutionError(NodeflowError):
    """Raised when a node fails while executing."""

    def __init__(
        self,
        message: str,
        node_id: str | None = None,
        result: "NodeExecutionResult | None" = None,
    ):
        super().__init__(message)
        self.node_id = node_id
        self.result = result


class MethodNotFoundError(NodeExecutionError):
    """Raised when a tool group has no operation with the requested name."""

    def __init__(self, tool_type: str, method_name: str, available: list[str] | None = None):
        self.tool_type = tool_type
        self.method_name = method_name
        self.available = sorted(available or [])
        super().__init__(
            f"Method '{method_name}' not found in {tool_type} tool group "
            f"(available: {', '.join(self.available) or 'none'})"
        )


class AfterNodeError(NodeExecutionError):
    """Wraps a failure inside a background AFTER node."""

    def __init__(self, node_id: str, cause: BaseException, result: Any = None):
        super().__init__(f"AFTER node '{node_id}' failed: {cause}", node_id=node_id, result=result)
        self.__cause__ = cause


class MissingFieldWarning(UserWarning):
    """A declared init param or input field was not found at resolution time."""

    pass
