"""Tool groups and the registry nodes use to invoke them."""

import inspect
import logging
from collections.abc import Callable, Mapping
from typing import Any

from nodeflow.graph.errors import MethodNotFoundError

logger = logging.getLogger(__name__)


class ToolGroup:
    """
    A node type's domain logic: a closed mapping of operation tag -> callable.

    Operations are declared explicitly, either up front or with the
    ``operation`` decorator. Registering the group seals it.

    Example:
        preset_tools = ToolGroup("preset")

        @preset_tools.operation("buildPromptFramework")
        async def build_prompt_framework(character_id, language="zh"):
            ...
    """

    def __init__(
        self,
        tool_type: str,
        operations: Mapping[str, Callable[..., Any]] | None = None,
        version: str = "1.0.0",
    ):
        self.tool_type = tool_type
        self.version = version
        self._operations: dict[str, Callable[..., Any]] = {}
        self._sealed = False
        for name, func in (operations or {}).items():
            self.add_operation(name, func)

    def add_operation(self, name: str, func: Callable[..., Any]) -> None:
        """Declare an operation. Not allowed once the group is sealed."""
        if self._sealed:
            raise RuntimeError(
                f"Tool group '{self.tool_type}' is sealed; cannot add operation '{name}'"
            )
        if not callable(func):
            raise TypeError(f"Operation '{name}' of '{self.tool_type}' is not callable")
        self._operations[str(name)] = func

    def operation(self, name: str | None = None) -> Callable[[Callable], Callable]:
        """Decorator form of add_operation. Defaults to the function name."""

        def decorator(func: Callable) -> Callable:
            self.add_operation(name or func.__name__, func)
            return func

        return decorator

    def seal(self) -> None:
        self._sealed = True

    @property
    def sealed(self) -> bool:
        return self._sealed

    def get(self, name: str) -> Callable[..., Any] | None:
        return self._operations.get(str(name))

    @property
    def operation_names(self) -> list[str]:
        return list(self._operations)

    def __contains__(self, name: object) -> bool:
        return str(name) in self._operations

    def __repr__(self) -> str:
        return f"ToolGroup({self.tool_type!r}, operations={self.operation_names})"


class ToolRegistry:
    """
    Maps node type names to tool groups and invokes their operations.

    Built once at startup and handed to the engine; nodes never import
    their logic directly.
    """

    def __init__(self, groups: list[ToolGroup] | None = None):
        self._groups: dict[str, ToolGroup] = {}
        for group in groups or []:
            self.register(group.tool_type, group)

    def register(self, type_name: str, group: ToolGroup) -> None:
        """
        Associate a tool group with a node type name.

        Idempotent: registering the same group again is a no-op. A different
        group under an existing name is ignored with a warning.
        """
        existing = self._groups.get(type_name)
        if existing is not None:
            if existing is not group:
                logger.warning(
                    f"Tool group for '{type_name}' already registered; ignoring {group!r}"
                )
            return

        group.seal()
        self._groups[type_name] = group
        logger.debug(f"Registered tool group '{type_name}' ({len(group.operation_names)} ops)")

    def get(self, type_name: str) -> ToolGroup | None:
        return self._groups.get(type_name)

    def has_tool(self, type_name: str) -> bool:
        return type_name in self._groups

    def get_registered_names(self) -> list[str]:
        return list(self._groups.keys())

    def get_operations(self, type_name: str) -> list[str]:
        group = self._groups.get(type_name)
        return group.operation_names if group else []

    async def invoke(self, group: ToolGroup, method_name: str, *args: Any, **kwargs: Any) -> Any:
        """
        Run one operation of a tool group.

        Raises:
            MethodNotFoundError: the group declares no such operation
            Exception: whatever the operation raised, after handle_error logs it
        """
        method = group.get(method_name)
        if method is None:
            logger.error(
                f"Method lookup failed: {method_name} not found in {group.tool_type} tool group",
                extra={"tool_type": group.tool_type, "method": str(method_name)},
            )
            raise MethodNotFoundError(group.tool_type, str(method_name), group.operation_names)

        logger.debug(
            f"Executing {group.tool_type}.{method_name} with {len(args)} args",
            extra={"tool_type": group.tool_type, "method": str(method_name)},
        )
        try:
            result = method(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await result
            return result
        except Exception as e:
            self.handle_error(e, group, str(method_name))

    def handle_error(self, error: Exception, group: ToolGroup, method_name: str) -> None:
        """Single policy point for tool failures: log, then re-raise."""
        logger.error(
            f"Error in {group.tool_type}.{method_name}: {error}",
            extra={"tool_type": group.tool_type, "method": method_name},
        )
        raise error
