"""Built-in node types."""

from nodeflow.nodes.builtin import BUILTIN_NODE_TYPES, OutputNode, PassThroughNode, UserInputNode

__all__ = ["BUILTIN_NODE_TYPES", "OutputNode", "PassThroughNode", "UserInputNode"]
