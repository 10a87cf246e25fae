"""
Command-line interface for nodeflow.

Usage:
    nodeflow validate workflows/echo.json
    nodeflow info workflows/echo.json
    nodeflow run workflows/echo.json --input '{"characterId": "c-1", "userInput": "hi"}'
    nodeflow run workflows/echo.json --input @params.json --await-after

``run`` uses the built-in node types only (userInput, passthrough, output),
which is enough to dry-run a definition's data flow.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

from nodeflow.config import RunConfig, get_log_format, get_log_level
from nodeflow.graph.errors import ConfigurationError, NodeExecutionError
from nodeflow.graph.executor import WorkflowEngine
from nodeflow.graph.workflow import WorkflowDefinition
from nodeflow.observability import configure_logging


def _load_definition(path: str) -> WorkflowDefinition:
    return WorkflowDefinition.from_file(Path(path))


def _parse_input(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    if raw.startswith("@"):
        raw = Path(raw[1:]).read_text(encoding="utf-8")
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("--input must be a JSON object")
    return data


def cmd_validate(args: argparse.Namespace) -> int:
    try:
        definition = _load_definition(args.definition)
    except ConfigurationError as e:
        print(f"✗ {args.definition} is invalid:")
        for error in e.errors:
            print(f"  • {error}")
        return 1
    except (ValueError, OSError) as e:
        print(f"✗ {args.definition} could not be loaded:\n{e}")
        return 1

    print(f"✓ {definition.id}: {len(definition.nodes)} nodes, valid")
    return 0


def cmd_info(args: argparse.Namespace) -> int:
    try:
        definition = _load_definition(args.definition)
    except (ConfigurationError, ValueError, OSError) as e:
        print(f"✗ {e}")
        return 1

    print(f"Workflow: {definition.id}  {definition.name}".rstrip())
    if definition.description:
        print(f"  {definition.description}")
    print()
    for node in definition.nodes:
        arrow = f" → {', '.join(node.successors)}" if node.successors else ""
        print(f"  [{node.category.name:<6}] {node.id} ({node.type_name}){arrow}")
        if node.init_params:
            print(f"           init:   {', '.join(node.init_params)}")
        if node.input_fields:
            print(f"           reads:  {', '.join(node.input_fields)}")
        if node.output_fields:
            print(f"           writes: {', '.join(node.output_fields)}")
    print()
    print(f"Main chain: {' → '.join(definition.main_chain_order())}")
    after = definition.after_order()
    if after:
        print(f"After:      {', '.join(after)}")
    return 0


async def _run(engine: WorkflowEngine, params: dict[str, Any], config: RunConfig) -> int:
    try:
        run = await engine.start(params, config)
    except NodeExecutionError as e:
        print(f"✗ Run failed at node '{e.node_id}': {e}", file=sys.stderr)
        return 1

    print(json.dumps(run.output, indent=2, default=str))
    # Let detached AFTER work finish before the event loop closes
    await engine.drain()
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    try:
        engine = WorkflowEngine(_load_definition(args.definition))
        params = _parse_input(args.input)
    except (ConfigurationError, ValueError, OSError) as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1

    config = RunConfig(
        execute_after_nodes=engine.config.execute_after_nodes and not args.no_after,
        await_after_nodes=engine.config.await_after_nodes or args.await_after,
    )
    return asyncio.run(_run(engine, params, config))


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="nodeflow",
        description="Validate and run declarative node workflows",
    )
    parser.add_argument("--log-level", default=get_log_level(), help="Log level (default: INFO)")
    parser.add_argument(
        "--log-format",
        default=get_log_format(),
        choices=["auto", "json", "human"],
        help="Log output format",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    validate_parser = subparsers.add_parser("validate", help="Validate a workflow definition")
    validate_parser.add_argument("definition", help="Path to a workflow JSON file")
    validate_parser.set_defaults(func=cmd_validate)

    info_parser = subparsers.add_parser("info", help="Show nodes and execution order")
    info_parser.add_argument("definition", help="Path to a workflow JSON file")
    info_parser.set_defaults(func=cmd_info)

    run_parser = subparsers.add_parser("run", help="Run a workflow with built-in node types")
    run_parser.add_argument("definition", help="Path to a workflow JSON file")
    run_parser.add_argument(
        "--input", default=None, help="Run parameters as JSON, or @file.json to read a file"
    )
    run_parser.add_argument("--no-after", action="store_true", help="Skip AFTER nodes")
    run_parser.add_argument(
        "--await-after", action="store_true", help="Wait for AFTER nodes before printing"
    )
    run_parser.set_defaults(func=cmd_run)

    args = parser.parse_args(argv)
    configure_logging(level=args.log_level, format=args.log_format)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
