"""
Workflow Engine - Runs workflow definitions.

The engine:
1. Builds one node instance per descriptor (node class or tool group)
2. Seeds a fresh ExecutionContext from the run parameters
3. Executes ENTRY → MIDDLE → EXIT in graph order, failing fast
4. Returns the output namespace as soon as the EXIT node completes
5. Optionally continues with AFTER nodes in a background task that the
   run object owns, detached or awaited
"""

import asyncio
import logging
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from nodeflow.config import RunConfig
from nodeflow.graph.context import ExecutionContext
from nodeflow.graph.errors import AfterNodeError, ConfigurationError, NodeExecutionError
from nodeflow.graph.node import Node, NodeExecutionResult, ToolNode
from nodeflow.graph.workflow import WorkflowDefinition
from nodeflow.nodes import BUILTIN_NODE_TYPES
from nodeflow.observability import reset_trace_context, set_trace_context
from nodeflow.runner.tool_registry import ToolRegistry


class RunStatus(StrEnum):
    """Main-chain state, as seen by the caller."""

    INITIALIZED = "initialized"
    RUNNING_MAIN_CHAIN = "running_main_chain"
    MAIN_CHAIN_COMPLETE = "main_chain_complete"
    FAILED = "failed"


class AfterStatus(StrEnum):
    """Background branch state, never surfaced as an error to the caller."""

    NOT_SCHEDULED = "not_scheduled"
    AFTER_PENDING = "after_pending"
    AFTER_COMPLETE = "after_complete"
    AFTER_FAILED = "after_failed"
    ABANDONED = "abandoned"


@dataclass(eq=False)
class WorkflowRun:
    """
    One execution of a workflow.

    Owns the ExecutionContext and the handle of its background AFTER task;
    the engine keeps the run referenced until that task settles.
    """

    run_id: str
    workflow_id: str
    context: ExecutionContext
    status: RunStatus = RunStatus.INITIALIZED
    after_status: AfterStatus = AfterStatus.NOT_SCHEDULED
    path: list[str] = field(default_factory=list)  # Main-chain node ids executed
    results: list[NodeExecutionResult] = field(default_factory=list)
    after_results: list[NodeExecutionResult] = field(default_factory=list)
    skipped_after: list[str] = field(default_factory=list)
    output: dict[str, Any] = field(default_factory=dict)
    error: Exception | None = None
    after_task: asyncio.Task | None = field(default=None, repr=False)

    @property
    def after_pending(self) -> bool:
        return self.after_task is not None and not self.after_task.done()

    def result_for(self, node_id: str) -> NodeExecutionResult | None:
        for result in self.results + self.after_results:
            if result.node_id == node_id:
                return result
        return None

    async def wait_for_after(self) -> AfterStatus:
        """Wait until the background branch settles (completes, fails or is abandoned)."""
        if self.after_task is not None:
            await asyncio.wait({self.after_task})
        return self.after_status

    def abandon_after(self) -> bool:
        """Cancel pending AFTER work. Returns False if nothing was pending."""
        if not self.after_pending:
            return False
        self.after_task.cancel()
        return True


def _coerce_config(config: RunConfig | Mapping[str, Any] | None, default: RunConfig) -> RunConfig:
    if config is None:
        return default
    if isinstance(config, RunConfig):
        return config

    def flag(snake: str, camel: str, fallback: bool) -> bool:
        return bool(config.get(snake, config.get(camel, fallback)))

    return RunConfig(
        execute_after_nodes=flag(
            "execute_after_nodes", "executeAfterNodes", default.execute_after_nodes
        ),
        await_after_nodes=flag("await_after_nodes", "awaitAfterNodes", default.await_after_nodes),
    )


class WorkflowEngine:
    """
    Executes a validated workflow definition.

    Example:
        engine = WorkflowEngine(
            definition,
            tools=ToolRegistry([preset_tools, world_book_tools]),
            node_types={"preset": PresetNode},
        )

        output = await engine.execute(
            {"characterId": "c-1", "userInput": "hello"},
            RunConfig(execute_after_nodes=True, await_after_nodes=False),
        )
    """

    def __init__(
        self,
        definition: WorkflowDefinition,
        tools: ToolRegistry | None = None,
        node_types: Mapping[str, type[Node]] | None = None,
        config: RunConfig | None = None,
    ):
        """
        Initialize the engine.

        Args:
            definition: Validated workflow definition
            tools: Tool groups for node types, built once at startup
            node_types: Node classes by type name (override the built-ins)
            config: Default run configuration

        Raises:
            ConfigurationError: a descriptor's type has neither a class nor a tool group
        """
        self.definition = definition
        self.tools = tools or ToolRegistry()
        self.node_types: dict[str, type[Node]] = {**BUILTIN_NODE_TYPES, **(node_types or {})}
        self.config = config or RunConfig()
        self.logger = logging.getLogger(__name__)

        self.nodes: dict[str, Node] = {}
        errors = []
        for descriptor in definition.nodes:
            node_cls = self.node_types.get(descriptor.type_name)
            if node_cls is None and self.tools.has_tool(descriptor.type_name):
                node_cls = ToolNode
            if node_cls is None:
                errors.append(
                    f"No node type or tool group registered for '{descriptor.type_name}' "
                    f"(node '{descriptor.id}')"
                )
                continue
            self.nodes[descriptor.id] = node_cls(descriptor, tools=self.tools)
        if errors:
            raise ConfigurationError(errors)

        # Runs whose AFTER task has not settled yet; keeps their contexts alive
        self._background: set[WorkflowRun] = set()

    @property
    def pending_runs(self) -> list[WorkflowRun]:
        return [run for run in self._background if run.after_pending]

    async def execute(
        self,
        run_parameters: Mapping[str, Any] | None = None,
        config: RunConfig | Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Run the workflow and return the output namespace."""
        run = await self.start(run_parameters, config)
        return run.output

    async def start(
        self,
        run_parameters: Mapping[str, Any] | None = None,
        config: RunConfig | Mapping[str, Any] | None = None,
    ) -> WorkflowRun:
        """
        Run the main chain and schedule AFTER nodes.

        Args:
            run_parameters: Values for the input namespace
            config: RunConfig, or a mapping with execute_after_nodes /
                await_after_nodes (camelCase accepted)

        Returns:
            The WorkflowRun, with output populated

        Raises:
            NodeExecutionError: a main-chain node failed
        """
        run_config = _coerce_config(config, self.config)
        run = WorkflowRun(
            run_id=uuid.uuid4().hex,
            workflow_id=self.definition.id,
            context=ExecutionContext(run_parameters or {}),
        )
        token = set_trace_context(workflow_id=self.definition.id, run_id=run.run_id)
        try:
            self.logger.info(f"▶ Starting workflow '{self.definition.id}' (run {run.run_id[:8]})")

            run.status = RunStatus.RUNNING_MAIN_CHAIN
            await self._run_main_chain(run)
            run.status = RunStatus.MAIN_CHAIN_COMPLETE
            run.output = run.context.output
            self.logger.info(
                f"✓ Main chain complete: {' → '.join(run.path)} "
                f"({len(run.output)} output fields)"
            )

            if self.definition.has_after_nodes():
                if run_config.execute_after_nodes:
                    # The task copies the context here, run ids included
                    self._schedule_after(run)
                    if run_config.await_after_nodes:
                        await run.wait_for_after()
                else:
                    self.logger.debug("AFTER nodes present but execute_after_nodes is off")
        finally:
            reset_trace_context(token)

        return run

    async def _run_main_chain(self, run: WorkflowRun) -> None:
        order = self.definition.main_chain_order()
        for position, node_id in enumerate(order):
            node = self.nodes[node_id]
            run.path.append(node_id)

            result = await node.execute(run.context)
            run.results.append(result)

            if result.failed:
                run.status = RunStatus.FAILED
                run.error = self._node_error(node, result)
                self.logger.error(f"❌ Aborting run at node '{node_id}': {result.error}")
                raise run.error

            if node.is_exit_node():
                skipped = order[position + 1 :]
                if skipped:
                    self.logger.debug(f"EXIT '{node_id}' reached; not running {skipped}")
                return

    def _node_error(self, node: Node, result: NodeExecutionResult) -> NodeExecutionError:
        error = result.error
        if isinstance(error, NodeExecutionError):
            if error.node_id is None:
                error.node_id = node.id
            if error.result is None:
                error.result = result
            return error

        wrapped = NodeExecutionError(
            f"Node '{node.id}' ({node.name}) failed: {error}",
            node_id=node.id,
            result=result,
        )
        wrapped.__cause__ = error
        return wrapped

    # --- background AFTER branch ---

    def _schedule_after(self, run: WorkflowRun) -> None:
        run.after_status = AfterStatus.AFTER_PENDING
        run.after_task = asyncio.create_task(
            self._run_after_nodes(run), name=f"nodeflow-after-{run.run_id[:8]}"
        )
        self._background.add(run)
        run.after_task.add_done_callback(lambda task: self._after_settled(run, task))

    def _after_settled(self, run: WorkflowRun, task: asyncio.Task) -> None:
        # A task cancelled before its first step never reaches the coroutine's handler
        if task.cancelled() and run.after_status == AfterStatus.AFTER_PENDING:
            run.after_status = AfterStatus.ABANDONED
        self._background.discard(run)

    async def _run_after_nodes(self, run: WorkflowRun) -> None:
        """
        Run AFTER nodes one at a time, in graph order.

        A failure is logged and isolated: AFTER nodes downstream of the
        failed one are skipped, the others still run. An AFTER node runs only
        when one of its EXIT predecessors was the EXIT the main chain reached
        and all of its AFTER predecessors completed. Standalone AFTER nodes
        (no predecessors) run after whichever EXIT completed.
        """
        completed = set(run.path)
        failed: set[str] = set()
        try:
            for node_id in self.definition.after_order():
                predecessors = self.definition.predecessors(node_id)
                # EXIT predecessors are alternatives: the main chain reaches at most one
                exits = [p for p in predecessors if self.nodes[p].is_exit_node()]
                blocked_by = [p for p in predecessors if p not in completed and p not in exits]
                if exits and completed.isdisjoint(exits):
                    blocked_by += exits
                if blocked_by:
                    self.logger.warning(
                        f"Skipping AFTER node '{node_id}': upstream {blocked_by} did not complete"
                    )
                    run.skipped_after.append(node_id)
                    continue

                result = await self.nodes[node_id].execute(run.context)
                run.after_results.append(result)
                if result.failed:
                    failed.add(node_id)
                    error = AfterNodeError(node_id, result.error, result)
                    self.logger.error(
                        str(error),
                        exc_info=(type(result.error), result.error, result.error.__traceback__),
                        extra={"node_id": node_id, "event": "after_node_failed"},
                    )
                else:
                    completed.add(node_id)
        except asyncio.CancelledError:
            run.after_status = AfterStatus.ABANDONED
            self.logger.info(f"AFTER branch of run {run.run_id[:8]} abandoned")
            raise
        except Exception:
            # Engine-side fault outside any node; contained like a node failure
            run.after_status = AfterStatus.AFTER_FAILED
            self.logger.exception(f"AFTER branch of run {run.run_id[:8]} crashed")
            return

        run.after_status = AfterStatus.AFTER_FAILED if failed else AfterStatus.AFTER_COMPLETE
        self.logger.info(
            f"AFTER branch finished: {run.after_status} "
            f"({len(run.after_results)} ran, {len(run.skipped_after)} skipped)"
        )

    async def drain(self) -> None:
        """Wait for every pending AFTER branch to settle."""
        tasks = [run.after_task for run in list(self._background) if run.after_task]
        if tasks:
            await asyncio.wait(tasks)

    async def shutdown(self) -> None:
        """Abandon every pending AFTER branch and wait for the cancellations."""
        for run in list(self._background):
            run.abandon_after()
        await self.drain()
