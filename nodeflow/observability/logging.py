"""
Log formatting and per-run trace context.

Every record is stamped with the ids of the run that produced it:

    WorkflowEngine.start()   sets workflow_id, run_id
    Node.execute()           adds node_id
    background AFTER task    inherits a copy of the run's ids at creation

so node and tool code just call ``logger.info(...)``.
"""

import json
import logging
import os
import re
from contextvars import ContextVar, Token
from datetime import UTC, datetime
from typing import Any

trace_context: ContextVar[dict[str, Any] | None] = ContextVar("nodeflow_trace", default=None)

_ANSI = re.compile(r"\x1b\[[0-9;]*m")

# Attributes passed through ``extra=`` that end up in JSON entries
_EXTRA_FIELDS = ("event", "node_id", "latency_ms", "category", "tool_type", "method")

_LEVEL_COLORS = {
    logging.DEBUG: "\x1b[36m",
    logging.INFO: "\x1b[32m",
    logging.WARNING: "\x1b[33m",
    logging.ERROR: "\x1b[31m",
    logging.CRITICAL: "\x1b[35m",
}
_RESET = "\x1b[0m"


def strip_ansi_codes(text: str) -> str:
    return _ANSI.sub("", text)


class StructuredFormatter(logging.Formatter):
    """One JSON object per line: base fields, trace ids, then extras."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": strip_ansi_codes(record.getMessage()),
            **get_trace_context(),
        }
        for name in _EXTRA_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = strip_ansi_codes(value) if isinstance(value, str) else value
        if record.exc_info:
            entry["exception"] = strip_ansi_codes(self.formatException(record.exc_info))
        return json.dumps(entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """
    Coloured single-line output for terminals.

        [INFO    ] [wf:dialogue | run:1a2b3c4d | node:preset-1] ✓ Node 'preset-1' completed
    """

    def _ids(self, record: logging.LogRecord) -> str:
        context = get_trace_context()
        node_id = getattr(record, "node_id", None) or context.get("node_id")
        parts = [
            f"{label}:{value}"
            for label, value in (
                ("wf", context.get("workflow_id")),
                ("run", (context.get("run_id") or "")[-8:]),
                ("node", node_id),
            )
            if value
        ]
        return f"[{' | '.join(parts)}] " if parts else ""

    def format(self, record: logging.LogRecord) -> str:
        color = _LEVEL_COLORS.get(record.levelno, "")
        line = f"{color}[{record.levelname:<8}]{_RESET} {self._ids(record)}{record.getMessage()}"
        event = getattr(record, "event", None)
        if event is not None:
            line += f" [{event}]"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _resolve_format(format: str) -> str:
    if format != "auto":
        return format
    if os.getenv("LOG_FORMAT", "").lower() == "json":
        return "json"
    return "json" if os.getenv("ENV", "development").lower() == "production" else "human"


def configure_logging(level: str = "INFO", format: str = "auto") -> None:
    """
    Install a single stderr handler on the root logger.

    Args:
        level: Root log level name
        format: "json", "human", or "auto" (json when LOG_FORMAT=json or
            ENV=production, human otherwise)
    """
    handler = logging.StreamHandler()
    if _resolve_format(format) == "json":
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(HumanReadableFormatter())

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level.upper())


def set_trace_context(**ids: Any) -> Token:
    """
    Merge ids into the current task's trace context.

    Returns:
        Token for reset_trace_context(), restoring the previous ids
    """
    return trace_context.set({**(trace_context.get() or {}), **ids})


def reset_trace_context(token: Token) -> None:
    trace_context.reset(token)


def get_trace_context() -> dict[str, Any]:
    return dict(trace_context.get() or {})


def clear_trace_context() -> None:
    trace_context.set(None)
