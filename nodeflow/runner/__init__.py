"""Tool groups and registry for node domain logic."""

from nodeflow.runner.tool_registry import ToolGroup, ToolRegistry

__all__ = ["ToolGroup", "ToolRegistry"]
