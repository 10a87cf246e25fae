#!/usr/bin/env python3
"""
RAG Dialogue Demo - Early return with a background AFTER node.

    userInput → preset → context → worldBook → llm → regex → output │ AFTER: memoryStorage

The caller receives the rendered reply as soon as ``output`` (EXIT)
completes; ``memoryStorage`` keeps writing to the in-memory store in the
background. Every node's domain logic is a tool group backed by plain
dictionaries, so the demo runs without a model or database.

Usage:
    python demos/rag_dialogue_demo.py "Tell me about the lighthouse"
    python demos/rag_dialogue_demo.py --await-after "hello"
"""

import argparse
import asyncio
import logging
import re
from collections.abc import Mapping
from typing import Any

from nodeflow import (
    Category,
    Node,
    NodeDescriptor,
    RunConfig,
    ToolGroup,
    Workflow,
    WorkflowDefinition,
)
from nodeflow.observability import configure_logging

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# In-memory "backends"
# ---------------------------------------------------------------------------

CHARACTERS = {
    "keeper": {
        "name": "Mara",
        "description": "The last keeper of the Greyhaven lighthouse.",
        "world_book": {
            "lighthouse": "The Greyhaven light has not gone dark in two hundred years.",
            "storm": "Storms on this coast arrive without warning from the west.",
        },
    }
}
DIALOGUES: dict[str, list[dict[str, str]]] = {"keeper": []}
MEMORIES: dict[str, list[str]] = {"keeper": []}


# ---------------------------------------------------------------------------
# Tool groups
# ---------------------------------------------------------------------------

preset_tools = ToolGroup("preset")


@preset_tools.operation("buildPromptFramework")
def build_prompt_framework(character_id: str, language: str = "en", username: str | None = None):
    character = CHARACTERS[character_id]
    system = f"You are {character['name']}. {character['description']}"
    user = f"{{{{chatHistory}}}}\n{username or 'User'}: {{{{userInput}}}}"
    return {"systemMessage": system, "userMessage": user, "presetId": f"default-{language}"}


context_tools = ToolGroup("context")


@context_tools.operation("assembleChatHistory")
def assemble_chat_history(user_message: str, character_id: str, memory_length: int = 10):
    recent = DIALOGUES.get(character_id, [])[-memory_length:]
    history = "\n".join(f"{m['role']}: {m['content']}" for m in recent)
    return {"userMessage": user_message.replace("{{chatHistory}}", history), "messages": recent}


@context_tools.operation("generateConversationContext")
def generate_conversation_context(character_id: str, user_input: str, turns: int = 3) -> str:
    recent = DIALOGUES.get(character_id, [])[-turns:]
    return " | ".join(m["content"] for m in recent) + f" | {user_input}"


world_book_tools = ToolGroup("worldBook")


@world_book_tools.operation("assemblePromptWithWorldBook")
def assemble_prompt_with_world_book(
    character_id: str, system_message: str, user_message: str, current_user_input: str
):
    entries = CHARACTERS[character_id]["world_book"]
    hits = [text for key, text in entries.items() if key in current_user_input.lower()]
    if hits:
        system_message += "\n[World]\n" + "\n".join(hits)
    return {
        "systemMessage": system_message,
        "userMessage": user_message.replace("{{userInput}}", current_user_input),
    }


llm_tools = ToolGroup("llm")


@llm_tools.operation("complete")
async def complete(system_message: str, user_message: str) -> str:
    await asyncio.sleep(0.05)  # Network round trip
    topic = "the light" if "[World]" in system_message else "the sea"
    return f"<think>They asked about {topic}.</think><talk>Stay close to {topic} tonight.</talk>"


regex_tools = ToolGroup("regex")


@regex_tools.operation("processResponse")
def process_response(llm_response: str):
    thinking = re.findall(r"<think>(.*?)</think>", llm_response, re.S)
    screen = re.sub(r"<think>.*?</think>", "", llm_response, flags=re.S)
    return {
        "thinkingContent": "\n".join(thinking),
        "screenContent": screen,
        "fullResponse": llm_response,
    }


memory_tools = ToolGroup("memoryStorage")


@memory_tools.operation("storeTurn")
async def store_turn(character_id: str, user_input: str, full_response: str, context: str):
    await asyncio.sleep(0.2)  # Slow write; the caller should not wait for this
    DIALOGUES[character_id].append({"role": "user", "content": user_input})
    DIALOGUES[character_id].append({"role": "assistant", "content": full_response})
    MEMORIES[character_id].append(context)
    return len(MEMORIES[character_id])


# ---------------------------------------------------------------------------
# Node types: orchestration and I/O only, logic lives in the tool groups
# ---------------------------------------------------------------------------


class PresetNode(Node):
    node_name = "preset"
    description = "Builds the system/user prompt framework for a character"

    async def _call(self, input: dict[str, Any]) -> Mapping[str, Any]:
        if not input.get("characterId"):
            raise ValueError("Character ID is required for PresetNode")
        return await self.invoke_tool(
            "buildPromptFramework",
            input["characterId"],
            input.get("language") or "en",
            input.get("username"),
        )


class ContextNode(Node):
    node_name = "context"
    description = "Assembles chat history into the user message"

    async def _call(self, input: dict[str, Any]) -> Mapping[str, Any]:
        if not input.get("userMessage"):
            raise ValueError("User message is required for ContextNode")
        assembled = await self.invoke_tool(
            "assembleChatHistory", input["userMessage"], input["characterId"], 10
        )
        conversation_context = await self.invoke_tool(
            "generateConversationContext", input["characterId"], input.get("userInput", ""), 3
        )
        return {
            "userMessage": assembled["userMessage"],
            "conversationContext": conversation_context,
        }


class WorldBookNode(Node):
    node_name = "worldBook"
    description = "Merges matching world book entries into the prompts"

    async def _call(self, input: dict[str, Any]) -> Mapping[str, Any]:
        return await self.invoke_tool(
            "assemblePromptWithWorldBook",
            input["characterId"],
            input["systemMessage"],
            input["userMessage"],
            input.get("currentUserInput", ""),
        )


class LLMNode(Node):
    node_name = "llm"

    async def _call(self, input: dict[str, Any]) -> Mapping[str, Any]:
        response = await self.invoke_tool("complete", input["systemMessage"], input["userMessage"])
        return {"llmResponse": response}


class RegexNode(Node):
    node_name = "regex"

    async def _call(self, input: dict[str, Any]) -> Mapping[str, Any]:
        return await self.invoke_tool("processResponse", input["llmResponse"])


class MemoryStorageNode(Node):
    node_name = "memoryStorage"
    default_category = Category.AFTER

    async def _call(self, input: dict[str, Any]) -> Mapping[str, Any]:
        count = await self.invoke_tool(
            "storeTurn",
            input["characterId"],
            input["userInput"],
            input["fullResponse"],
            input.get("conversationContext", ""),
        )
        logger.info(f"Stored memory #{count} for {input['characterId']}")
        return {}


class RAGDialogueWorkflow(Workflow):
    def get_node_types(self):
        return {
            cls.node_name: cls
            for cls in (PresetNode, ContextNode, WorldBookNode, LLMNode, RegexNode, MemoryStorageNode)
        }

    def get_tool_groups(self):
        return [preset_tools, context_tools, world_book_tools, llm_tools, regex_tools, memory_tools]

    def get_workflow_definition(self) -> WorkflowDefinition:
        run_params = ["characterId", "userInput", "language", "username"]
        reply_fields = ["thinkingContent", "screenContent", "fullResponse", "presetId"]
        return WorkflowDefinition(
            id="rag-dialogue",
            name="RAG dialogue with background memory storage",
            nodes=[
                NodeDescriptor(
                    id="user-input-1",
                    type_name="userInput",
                    category=Category.ENTRY,
                    successors=["preset-1"],
                    init_params=run_params,
                    output_fields=run_params,
                ),
                PresetNode.spec(
                    "preset-1",
                    successors=["context-1"],
                    input_fields=["characterId", "language", "username"],
                    output_fields=["systemMessage", "userMessage", "presetId"],
                ),
                ContextNode.spec(
                    "context-1",
                    successors=["world-book-1"],
                    input_fields=["userMessage", "characterId", "userInput"],
                    output_fields=["userMessage", "conversationContext"],
                ),
                WorldBookNode.spec(
                    "world-book-1",
                    successors=["llm-1"],
                    input_fields=["systemMessage", "userMessage", "characterId", "userInput"],
                    output_fields=["systemMessage", "userMessage"],
                    input_mapping={"userInput": "currentUserInput"},
                ),
                LLMNode.spec(
                    "llm-1",
                    successors=["regex-1"],
                    input_fields=["systemMessage", "userMessage"],
                    output_fields=["llmResponse"],
                ),
                RegexNode.spec(
                    "regex-1",
                    successors=["output-1"],
                    input_fields=["llmResponse"],
                    output_fields=["thinkingContent", "screenContent", "fullResponse"],
                ),
                NodeDescriptor(
                    id="output-1",
                    type_name="output",
                    category=Category.EXIT,
                    input_fields=reply_fields,
                    output_fields=reply_fields,
                ),
                MemoryStorageNode.spec(
                    "memory-storage-1",
                    input_fields=[
                        "characterId",
                        "userInput",
                        "fullResponse",
                        "conversationContext",
                    ],
                ),
            ],
        )


async def main(message: str, await_after: bool) -> None:
    workflow = RAGDialogueWorkflow()
    params = {"characterId": "keeper", "userInput": message, "language": "en", "username": "Traveller"}
    run = await workflow.start(
        params,
        RunConfig(execute_after_nodes=True, await_after_nodes=await_after),
    )
    print(f"reply: {run.output['screenContent']}")
    print(f"memory storage: {run.after_status}")

    await workflow.drain()
    print(f"memory storage: {run.after_status}; stored turns: {len(DIALOGUES['keeper']) // 2}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("message", nargs="?", default="What about the lighthouse?")
    parser.add_argument("--await-after", action="store_true")
    args = parser.parse_args()

    configure_logging(level="INFO", format="human")
    asyncio.run(main(args.message, args.await_after))
