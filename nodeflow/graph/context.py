"""
Execution Context - Per-run state shared by every node.

Three independent namespaces:
- input:  run parameters supplied by the caller, frozen after construction
- cache:  node-to-node handoff, global to the run (not edge-scoped)
- output: written by EXIT nodes, read by the caller
"""

import logging
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any

logger = logging.getLogger(__name__)


class ExecutionContext:
    """
    Mutable store for a single workflow run.

    Example:
        context = ExecutionContext({"characterId": "c-1", "userInput": "hi"})
        context.set_cache("systemMessage", "...")
        context.set_output("screenContent", "...")
    """

    def __init__(self, params: Mapping[str, Any] | None = None):
        self._input: dict[str, Any] = {}
        self._input_view: Mapping[str, Any] = MappingProxyType(self._input)
        self._input_sealed = False
        self._cache: dict[str, Any] = {}
        self._output: dict[str, Any] = {}
        self.set_input(params or {})

    # --- input (read-only after construction) ---

    def set_input(self, params: Mapping[str, Any]) -> None:
        """Seed the input namespace. Only allowed once."""
        if self._input_sealed:
            raise RuntimeError("ExecutionContext input is read-only after construction")
        self._input.update(params)
        self._input_sealed = True

    def has_input(self, key: str) -> bool:
        return key in self._input

    def get_input(self, key: str, default: Any = None) -> Any:
        return self._input.get(key, default)

    @property
    def input(self) -> Mapping[str, Any]:
        return self._input_view

    # --- cache ---

    def has_cache(self, key: str) -> bool:
        return key in self._cache

    def get_cache(self, key: str, default: Any = None) -> Any:
        return self._cache.get(key, default)

    def set_cache(self, key: str, value: Any) -> None:
        self._cache[key] = value

    @property
    def cache(self) -> Mapping[str, Any]:
        return MappingProxyType(self._cache)

    # --- output ---

    def set_output(self, key: str, value: Any) -> None:
        self._output[key] = value

    def get_output(self, key: str, default: Any = None) -> Any:
        return self._output.get(key, default)

    @property
    def output(self) -> dict[str, Any]:
        """A copy of the output namespace, safe to hand to the caller."""
        return dict(self._output)

    def snapshot(self) -> dict[str, dict[str, Any]]:
        """Shallow copy of all three namespaces, for debugging."""
        return {
            "input": dict(self._input),
            "cache": dict(self._cache),
            "output": dict(self._output),
        }

    def __repr__(self) -> str:
        return (
            f"ExecutionContext(input={len(self._input)} keys, "
            f"cache={len(self._cache)} keys, output={len(self._output)} keys)"
        )
