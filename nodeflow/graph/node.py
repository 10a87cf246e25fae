"""
Node Protocol - The unit of work in a workflow.

A node declares:
1. Which fields it consumes, and from where
   - init_params: read from the run's input namespace
   - input_fields: read from the cache, optionally renamed via input_mapping
2. Which fields it produces (output_fields)
3. One piece of real logic: ``_call(resolved_input) -> output``

Everything else (resolution, hooks, publishing by category, failure
capture) is handled by the base class, so concrete node types only
implement ``_call`` or delegate to a tool group through ``invoke_tool``.
"""

import logging
import warnings
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, ClassVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from nodeflow.graph.context import ExecutionContext
from nodeflow.graph.errors import MissingFieldWarning, NodeExecutionError
from nodeflow.observability import reset_trace_context, set_trace_context

if TYPE_CHECKING:
    from nodeflow.runner.tool_registry import ToolGroup, ToolRegistry

logger = logging.getLogger(__name__)


class Category(StrEnum):
    """Where a node sits in the run and where its output goes."""

    ENTRY = "entry"  # Seeds the run from caller parameters
    MIDDLE = "middle"  # Reads/writes the cache
    EXIT = "exit"  # Writes the output namespace; the caller returns after it
    AFTER = "after"  # Background follow-up, invisible to the caller


class NodeExecutionStatus(StrEnum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class NodeDescriptor(BaseModel):
    """
    Declarative description of one node in a workflow.

    Accepts snake_case names, their camelCase aliases, and the ``name`` /
    ``next`` shorthands used by exported dialogue workflows.

    Example:
        NodeDescriptor(
            id="world-book-1",
            type_name="worldBook",
            category=Category.MIDDLE,
            successors=["llm-1"],
            input_fields=["systemMessage", "userMessage", "userInput"],
            output_fields=["systemMessage", "userMessage"],
            input_mapping={"userInput": "currentUserInput"},
        )
    """

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        extra="allow",
    )

    id: str
    type_name: str = Field(validation_alias=AliasChoices("type_name", "typeName", "name"))
    category: Category
    successors: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("successors", "next"),
    )
    init_params: list[str] = Field(default_factory=list)
    input_fields: list[str] = Field(default_factory=list)
    output_fields: list[str] = Field(default_factory=list)
    input_mapping: dict[str, str] = Field(
        default_factory=dict,
        description="Cache field name -> field name inside the node's resolved input",
    )
    description: str = ""

    @field_validator("category", mode="before")
    @classmethod
    def _normalize_category(cls, value: Any) -> Any:
        if isinstance(value, str) and not isinstance(value, Category):
            return value.lower()
        return value


@dataclass
class NodeExecutionResult:
    """
    Outcome of one node execution.

    Created RUNNING when the node starts and finalized exactly once; any
    attribute write after finalization raises AttributeError, and input and
    output become read-only mappings.
    """

    node_id: str
    status: NodeExecutionStatus = NodeExecutionStatus.RUNNING
    input: Mapping[str, Any] = field(default_factory=dict)
    output: Mapping[str, Any] | None = None
    error: Exception | None = None
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    warnings: list[str] = field(default_factory=list)
    _finalized: bool = field(default=False, init=False, repr=False)

    def __setattr__(self, name: str, value: Any) -> None:
        if getattr(self, "_finalized", False):
            raise AttributeError(f"NodeExecutionResult for '{self.node_id}' is finalized")
        super().__setattr__(name, value)

    def finalize(
        self,
        status: NodeExecutionStatus,
        output: Mapping[str, Any] | None = None,
        error: Exception | None = None,
    ) -> "NodeExecutionResult":
        if self._finalized:
            raise RuntimeError(f"NodeExecutionResult for '{self.node_id}' already finalized")
        if status == NodeExecutionStatus.RUNNING:
            raise ValueError("Cannot finalize a result as RUNNING")
        self.status = status
        self.input = MappingProxyType(dict(self.input))
        self.output = MappingProxyType(dict(output)) if output is not None else None
        self.error = error
        self.warnings = tuple(self.warnings)  # type: ignore[assignment]
        self.end_time = datetime.now(UTC)
        self._finalized = True
        return self

    @property
    def finalized(self) -> bool:
        return self._finalized

    @property
    def succeeded(self) -> bool:
        return self.status == NodeExecutionStatus.COMPLETED

    @property
    def failed(self) -> bool:
        return self.status == NodeExecutionStatus.FAILED

    @property
    def duration_ms(self) -> int | None:
        if self.end_time is None:
            return None
        return int((self.end_time - self.start_time).total_seconds() * 1000)


# ---------------------------------------------------------------------------
# Publish policies: one per category, chosen once when the node is built
# ---------------------------------------------------------------------------


class PublishPolicy:
    """Decides which namespace a node's declared outputs land in."""

    category: ClassVar[Category]

    def store(self, key: str, value: Any, context: ExecutionContext) -> None:
        raise NotImplementedError


class EntryPolicy(PublishPolicy):
    category = Category.ENTRY

    def store(self, key: str, value: Any, context: ExecutionContext) -> None:
        context.set_cache(key, value)


class MiddlePolicy(PublishPolicy):
    category = Category.MIDDLE

    def store(self, key: str, value: Any, context: ExecutionContext) -> None:
        context.set_cache(key, value)


class ExitPolicy(PublishPolicy):
    category = Category.EXIT

    def store(self, key: str, value: Any, context: ExecutionContext) -> None:
        context.set_output(key, value)


class AfterPolicy(PublishPolicy):
    category = Category.AFTER

    def store(self, key: str, value: Any, context: ExecutionContext) -> None:
        context.set_cache(key, value)


PUBLISH_POLICIES: dict[Category, PublishPolicy] = {
    policy.category: policy for policy in (EntryPolicy(), MiddlePolicy(), ExitPolicy(), AfterPolicy())
}


def policy_for(category: Category) -> PublishPolicy:
    return PUBLISH_POLICIES[Category(category)]


# ---------------------------------------------------------------------------
# Node base class
# ---------------------------------------------------------------------------


class Node:
    """
    Base class for all node types.

    Subclasses override ``_call`` (and optionally the hooks). Without an
    override the node projects its resolved input onto its output_fields,
    or echoes the whole input when no output_fields are declared.
    """

    node_name: ClassVar[str] = "node"
    description: ClassVar[str] = ""
    version: ClassVar[str] = "1.0.0"
    default_category: ClassVar[Category] = Category.MIDDLE

    def __init__(self, descriptor: NodeDescriptor, tools: "ToolRegistry | None" = None):
        self.descriptor = descriptor
        self.id = descriptor.id
        self.name = descriptor.type_name
        self.category = descriptor.category
        self._policy = policy_for(descriptor.category)
        self._state: dict[str, Any] = {}
        self.tools = tools
        self.tool_group: ToolGroup | None = tools.get(self.name) if tools is not None else None

    @classmethod
    def spec(cls, id: str, **fields: Any) -> NodeDescriptor:
        """Build a descriptor for this node type, defaulting name and category."""
        fields.setdefault("type_name", cls.node_name)
        fields.setdefault("category", cls.default_category)
        return NodeDescriptor(id=id, **fields)

    # --- metadata ---

    def get_successors(self) -> list[str]:
        return list(self.descriptor.successors)

    def is_entry_node(self) -> bool:
        return self.category == Category.ENTRY

    def is_middle_node(self) -> bool:
        return self.category == Category.MIDDLE

    def is_exit_node(self) -> bool:
        return self.category == Category.EXIT

    def is_after_node(self) -> bool:
        return self.category == Category.AFTER

    def get_state(self, key: str, default: Any = None) -> Any:
        """Node-private state; never shared through the context."""
        return self._state.get(key, default)

    def set_state(self, key: str, value: Any) -> None:
        self._state[key] = value

    def get_status(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "category": str(self.category),
            "has_tools": self.tool_group is not None,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "category": str(self.category),
            "next": self.get_successors(),
        }

    # --- lifecycle ---

    def resolve_input(
        self,
        context: ExecutionContext,
        diagnostics: list[str] | None = None,
    ) -> dict[str, Any]:
        """
        Build the node's input from the context.

        init_params come from the input namespace; input_fields come from
        the cache and are renamed through input_mapping. Absent fields are
        reported and omitted, never fatal.

        Args:
            context: The run's execution context
            diagnostics: Optional list that receives one message per missing field

        Returns:
            The resolved input dict
        """
        resolved: dict[str, Any] = {}
        mapping = self.descriptor.input_mapping

        for name in self.descriptor.init_params:
            if context.has_input(name):
                resolved[name] = context.get_input(name)
            else:
                self._report_missing(
                    f"Node {self.id}: Required input '{name}' not found in input", diagnostics
                )

        for workflow_name in self.descriptor.input_fields:
            node_name = mapping.get(workflow_name, workflow_name)
            if context.has_cache(workflow_name):
                resolved[node_name] = context.get_cache(workflow_name)
            else:
                self._report_missing(
                    f"Node {self.id}: Required input '{workflow_name}' "
                    f"(mapped to node field '{node_name}') not found in cache",
                    diagnostics,
                )

        return resolved

    def _report_missing(self, message: str, diagnostics: list[str] | None) -> None:
        logger.warning(message, extra={"node_id": self.id, "event": "missing_field"})
        warnings.warn(MissingFieldWarning(message), stacklevel=3)
        if diagnostics is not None:
            diagnostics.append(message)

    def publish_output(self, output: Mapping[str, Any], context: ExecutionContext) -> None:
        """Store declared output fields; undeclared fields are dropped."""
        for name in self.descriptor.output_fields:
            if name in output:
                self._policy.store(name, output[name], context)

    async def before_execute(self, input: dict[str, Any]) -> None:
        logger.debug(f"Node {self.id}: before_execute", extra={"node_id": self.id})

    async def after_execute(self, output: Mapping[str, Any]) -> None:
        logger.debug(f"Node {self.id}: after_execute", extra={"node_id": self.id})

    async def _call(self, input: dict[str, Any]) -> Mapping[str, Any]:
        output_fields = self.descriptor.output_fields
        if not output_fields:
            return dict(input)
        return {name: input[name] for name in output_fields if name in input}

    async def execute(self, context: ExecutionContext) -> NodeExecutionResult:
        """
        Run resolve → before_execute → _call → publish_output → after_execute.

        Never raises for node failures: any exception is captured into a
        FAILED result for the engine to act on.
        """
        token = set_trace_context(node_id=self.id)
        try:
            return await self._execute(context)
        finally:
            reset_trace_context(token)

    async def _execute(self, context: ExecutionContext) -> NodeExecutionResult:
        result = NodeExecutionResult(node_id=self.id)

        try:
            resolved = self.resolve_input(context, diagnostics=result.warnings)
            result.input = dict(resolved)
            await self.before_execute(resolved)

            output = await self._call(resolved)
            if output is None:
                output = {}
            if not isinstance(output, Mapping):
                raise NodeExecutionError(
                    f"Node '{self.id}' returned {type(output).__name__}, expected a mapping",
                    node_id=self.id,
                )

            self.publish_output(output, context)
            await self.after_execute(output)
        except Exception as e:
            logger.error(
                f"✗ Node '{self.id}' ({self.name}) failed: {e}",
                extra={"node_id": self.id, "event": "node_failed"},
            )
            return result.finalize(NodeExecutionStatus.FAILED, error=e)

        result.finalize(NodeExecutionStatus.COMPLETED, output=dict(output))
        logger.info(
            f"✓ Node '{self.id}' completed in {result.duration_ms}ms",
            extra={"node_id": self.id, "latency_ms": result.duration_ms, "category": self.category},
        )
        return result

    # --- tools ---

    async def invoke_tool(self, method_name: str, *args: Any, **kwargs: Any) -> Any:
        """Invoke an operation on the tool group registered for this node type."""
        if self.tools is None or self.tool_group is None:
            raise NodeExecutionError(
                f"No tool group available for node type: {self.name}", node_id=self.id
            )
        return await self.tools.invoke(self.tool_group, method_name, *args, **kwargs)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r}, category={self.category!s})"


class ToolNode(Node):
    """
    Node whose logic lives entirely in its tool group.

    Calls the group's ``run`` operation with the resolved input as keyword
    arguments; the returned mapping is the node's output.
    """

    node_name = "tool"
    description = "Delegates to the tool group registered for its type"
    operation: ClassVar[str] = "run"

    async def _call(self, input: dict[str, Any]) -> Mapping[str, Any]:
        output = await self.invoke_tool(self.operation, **input)
        if output is None:
            return {}
        if not isinstance(output, Mapping):
            raise NodeExecutionError(
                f"{self.name}.{self.operation} returned {type(output).__name__}, "
                "expected a mapping",
                node_id=self.id,
            )
        return output
