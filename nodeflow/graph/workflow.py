"""
Workflow Definition - The static, declarative node graph.

A definition is an ordered list of node descriptors. It is validated once,
at construction; an invalid definition raises ConfigurationError and is
never executed.

JSON shape (camelCase keys, as exported by the dialogue application):

    {
      "id": "complete-dialogue-workflow",
      "name": "Complete Dialogue Processing Workflow",
      "nodes": [
        {"id": "user-input-1", "name": "userInput", "category": "ENTRY",
         "next": ["preset-1"], "initParams": ["characterId", "userInput"],
         "outputFields": ["characterId", "userInput"]},
        ...
      ]
    }
"""

import json
from pathlib import Path
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ModelWrapValidatorHandler,
    ValidationError,
    model_validator,
)
from pydantic.alias_generators import to_camel

from nodeflow.graph.errors import ConfigurationError
from nodeflow.graph.node import Category, NodeDescriptor
from nodeflow.graph.validator import GraphValidator, topological_order


class WorkflowDefinition(BaseModel):
    """
    Complete, validated description of a workflow.

    Example:
        WorkflowDefinition(
            id="echo",
            nodes=[
                NodeDescriptor(id="in", type_name="userInput", category=Category.ENTRY,
                               successors=["out"], init_params=["text"],
                               output_fields=["text"]),
                NodeDescriptor(id="out", type_name="output", category=Category.EXIT,
                               input_fields=["text"], output_fields=["text"]),
            ],
        )
    """

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        extra="allow",
    )

    id: str
    name: str = ""
    description: str = ""
    version: str = "1.0.0"
    nodes: list[NodeDescriptor] = Field(default_factory=list)

    @model_validator(mode="wrap")
    @classmethod
    def _schema_errors_as_configuration_error(
        cls, data: Any, handler: ModelWrapValidatorHandler["WorkflowDefinition"]
    ) -> "WorkflowDefinition":
        # Missing or unknown fields (e.g. a node without a category) are
        # definition errors like any graph rule violation
        try:
            return handler(data)
        except ValidationError as e:
            raise ConfigurationError(
                [f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in e.errors()]
            ) from e

    @model_validator(mode="after")
    def _validate_graph(self) -> "WorkflowDefinition":
        errors = GraphValidator(self.nodes).validate()
        if errors:
            raise ConfigurationError(errors)
        return self

    # --- lookups ---

    def get_node(self, node_id: str) -> NodeDescriptor | None:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    @property
    def entry_node(self) -> NodeDescriptor:
        return next(node for node in self.nodes if node.category == Category.ENTRY)

    def predecessors(self, node_id: str) -> list[str]:
        return [node.id for node in self.nodes if node_id in node.successors]

    def main_chain_order(self) -> list[str]:
        """ENTRY/MIDDLE/EXIT node ids in execution order."""
        order = topological_order(self.nodes) or []
        return [nid for nid in order if self.get_node(nid).category != Category.AFTER]

    def after_order(self) -> list[str]:
        """AFTER node ids in execution order."""
        order = topological_order(self.nodes) or []
        return [nid for nid in order if self.get_node(nid).category == Category.AFTER]

    def has_after_nodes(self) -> bool:
        return any(node.category == Category.AFTER for node in self.nodes)

    # --- (de)serialization ---

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WorkflowDefinition":
        return cls.model_validate(data)

    @classmethod
    def from_file(cls, path: str | Path) -> "WorkflowDefinition":
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        return cls.from_dict(data)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)
