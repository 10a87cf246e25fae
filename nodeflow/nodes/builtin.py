"""Generic node types that need no tool group."""

from nodeflow.graph.node import Category, Node


class UserInputNode(Node):
    """
    Entry node: hands the caller's run parameters to the rest of the chain.

    Declare the parameters in init_params and the ones to share in
    output_fields.
    """

    node_name = "userInput"
    description = "Accepts run parameters and publishes them to the cache"
    default_category = Category.ENTRY


class PassThroughNode(Node):
    node_name = "passthrough"
    description = "Projects its input onto its declared output fields"
    default_category = Category.MIDDLE


class OutputNode(Node):
    """Exit node: copies its declared fields into the caller-visible output."""

    node_name = "output"
    description = "Publishes the final result to the caller"
    default_category = Category.EXIT


BUILTIN_NODE_TYPES: dict[str, type[Node]] = {
    cls.node_name: cls for cls in (UserInputNode, PassThroughNode, OutputNode)
}
