#!/usr/bin/env python3
"""
Dialogue Workflow Demo - A definition loaded from JSON, logic in tool groups.

    userInput → preset → worldBook → llm → regex → output

No Node subclasses here: every non-built-in type resolves to a ToolNode,
which calls its tool group's ``run`` operation with the resolved input.

Usage:
    python demos/dialogue_workflow_demo.py
    python demos/dialogue_workflow_demo.py --print-definition
"""

import argparse
import asyncio
import json
from enum import StrEnum

from nodeflow import RunConfig, ToolGroup, ToolRegistry, WorkflowDefinition, WorkflowEngine
from nodeflow.observability import configure_logging

# Same shape the dialogue application exports
DEFINITION = {
    "id": "complete-dialogue-workflow",
    "name": "Complete Dialogue Processing Workflow",
    "description": "Preset, world book, LLM and regex post-processing",
    "nodes": [
        {
            "id": "user-input-1",
            "name": "userInput",
            "category": "ENTRY",
            "next": ["preset-1"],
            "initParams": ["characterId", "userInput"],
            "outputFields": ["characterId", "userInput"],
        },
        {
            "id": "preset-1",
            "name": "preset",
            "category": "MIDDLE",
            "next": ["world-book-1"],
            "inputFields": ["characterId"],
            "outputFields": ["systemMessage", "userMessage"],
        },
        {
            "id": "world-book-1",
            "name": "worldBook",
            "category": "MIDDLE",
            "next": ["llm-1"],
            "inputFields": ["systemMessage", "userMessage", "userInput"],
            "outputFields": ["systemMessage", "userMessage"],
            "inputMapping": {"userInput": "currentUserInput"},
        },
        {
            "id": "llm-1",
            "name": "llm",
            "category": "MIDDLE",
            "next": ["regex-1"],
            "inputFields": ["systemMessage", "userMessage"],
            "outputFields": ["llmResponse"],
        },
        {
            "id": "regex-1",
            "name": "regex",
            "category": "MIDDLE",
            "next": ["output-1"],
            "inputFields": ["llmResponse"],
            "outputFields": ["screenContent", "fullResponse"],
        },
        {
            "id": "output-1",
            "name": "output",
            "category": "EXIT",
            "inputFields": ["screenContent", "fullResponse"],
            "outputFields": ["screenContent", "fullResponse"],
        },
    ],
}


class Op(StrEnum):
    RUN = "run"


def build_tools() -> ToolRegistry:
    preset = ToolGroup("preset")

    @preset.operation(Op.RUN)
    def build_framework(characterId):
        return {
            "systemMessage": f"You are character {characterId}. Stay in character.",
            "userMessage": "{{userInput}}",
        }

    world_book = ToolGroup("worldBook")

    @world_book.operation(Op.RUN)
    def merge_world_book(systemMessage, userMessage, currentUserInput):
        lore = "[World] The harbour freezes every winter." if "harbour" in currentUserInput else ""
        return {
            "systemMessage": f"{systemMessage}\n{lore}".strip(),
            "userMessage": userMessage.replace("{{userInput}}", currentUserInput),
        }

    llm = ToolGroup("llm")

    @llm.operation(Op.RUN)
    async def complete(systemMessage, userMessage):
        await asyncio.sleep(0.01)
        mood = "wistful" if "[World]" in systemMessage else "curious"
        return {"llmResponse": f"<think>{mood}</think>You said: {userMessage}"}

    regex = ToolGroup("regex")

    @regex.operation(Op.RUN)
    def strip_thinking(llmResponse):
        visible = llmResponse.split("</think>", 1)[-1]
        return {"screenContent": visible, "fullResponse": llmResponse}

    return ToolRegistry([preset, world_book, llm, regex])


async def main(message: str) -> None:
    definition = WorkflowDefinition.from_dict(DEFINITION)
    engine = WorkflowEngine(definition, tools=build_tools())

    for node_id, node in engine.nodes.items():
        print(f"{node_id:<14} {type(node).__name__}")

    output = await engine.execute(
        {"characterId": "harbour-master", "userInput": message},
        RunConfig(execute_after_nodes=False, await_after_nodes=False),
    )
    print(json.dumps(output, indent=2))


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("message", nargs="?", default="Is the harbour open?")
    parser.add_argument("--print-definition", action="store_true")
    args = parser.parse_args()

    if args.print_definition:
        print(json.dumps(WorkflowDefinition.from_dict(DEFINITION).to_dict(), indent=2))
    else:
        configure_logging(level="WARNING", format="human")
        asyncio.run(main(args.message))
