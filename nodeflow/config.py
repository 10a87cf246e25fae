"""Shared nodeflow configuration utilities.

Centralises reading of ~/.nodeflow/configuration.json so the engine, the
CLI and the demos share one implementation.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

NODEFLOW_CONFIG_FILE = Path.home() / ".nodeflow" / "configuration.json"


def get_config_path() -> Path:
    """Config file location; NODEFLOW_CONFIG overrides the default."""
    override = os.environ.get("NODEFLOW_CONFIG")
    return Path(override) if override else NODEFLOW_CONFIG_FILE


def get_nodeflow_config() -> dict[str, Any]:
    """Load nodeflow configuration, or {} when missing or unreadable."""
    path = get_config_path()
    if not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8-sig") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}
    return data if isinstance(data, dict) else {}


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def get_execute_after_nodes() -> bool:
    return bool(get_nodeflow_config().get("engine", {}).get("execute_after_nodes", True))


def get_await_after_nodes() -> bool:
    return bool(get_nodeflow_config().get("engine", {}).get("await_after_nodes", False))


def get_log_level() -> str:
    return str(get_nodeflow_config().get("logging", {}).get("level", "INFO"))


def get_log_format() -> str:
    return str(get_nodeflow_config().get("logging", {}).get("format", "auto"))


# ---------------------------------------------------------------------------
# RunConfig – per-run engine options
# ---------------------------------------------------------------------------


@dataclass
class RunConfig:
    """
    How a run treats its AFTER nodes.

    execute_after_nodes: run AFTER nodes at all
    await_after_nodes: return only after AFTER nodes finish (otherwise detached)
    """

    execute_after_nodes: bool = field(default_factory=get_execute_after_nodes)
    await_after_nodes: bool = field(default_factory=get_await_after_nodes)
