"""
Workflow - Packages a definition with the node types and tools it needs.

Subclasses declare three things:
1. get_workflow_definition(): the static node graph
2. get_node_types(): node classes by type name (optional)
3. get_tool_groups(): tool groups for the node types' domain logic (optional)

and get a ready-to-run engine. Everything is built once, explicitly, when
the workflow object is constructed; nothing registers itself globally.
"""

from collections.abc import Mapping
from typing import Any

from nodeflow.config import RunConfig
from nodeflow.graph.executor import WorkflowEngine, WorkflowRun
from nodeflow.graph.node import Node
from nodeflow.graph.workflow import WorkflowDefinition
from nodeflow.runner.tool_registry import ToolGroup, ToolRegistry


class Workflow:
    """
    Base class for concrete workflows.

    Usage:
        class EchoWorkflow(Workflow):
            def get_workflow_definition(self):
                return WorkflowDefinition(id="echo", nodes=[...])

        output = await EchoWorkflow().execute({"text": "hi"})
    """

    def __init__(self, config: RunConfig | None = None):
        self.definition = self.get_workflow_definition()
        self.tools = ToolRegistry(self.get_tool_groups())
        self.engine = WorkflowEngine(
            self.definition,
            tools=self.tools,
            node_types=self.get_node_types(),
            config=config,
        )

    def get_workflow_definition(self) -> WorkflowDefinition:
        raise NotImplementedError

    def get_node_types(self) -> dict[str, type[Node]]:
        return {}

    def get_tool_groups(self) -> list[ToolGroup]:
        return []

    async def execute(
        self,
        params: Mapping[str, Any] | None = None,
        config: RunConfig | Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        return await self.engine.execute(params, config)

    async def start(
        self,
        params: Mapping[str, Any] | None = None,
        config: RunConfig | Mapping[str, Any] | None = None,
    ) -> WorkflowRun:
        return await self.engine.start(params, config)

    async def drain(self) -> None:
        await self.engine.drain()
