"""
Command-line interface for stepgraph.

Usage:
    stepgraph validate my_package.graphs:deck_graph
    stepgraph run my_package.graphs:build_graph --input '{"topic": "solar"}'
    stepgraph run my_package.graphs:deck_graph --input-file input.json --session-id s-1

``MODULE:ATTR`` names a CompiledGraph, a GraphBuilder, or a zero-argument
callable returning either.
"""

import argparse
import asyncio
import importlib
import json
import sys
import uuid
from pathlib import Path
from typing import Any

from stepgraph.config import RuntimeConfig
from stepgraph.errors import StepGraphError
from stepgraph.graph.builder import CompiledGraph, GraphBuilder
from stepgraph.observability import configure_logging
from stepgraph.runtime.events import WorkflowEvent
from stepgraph.runtime.workflow_runtime import WorkflowRuntime


def load_graph(target: str) -> CompiledGraph:
    """Resolve ``MODULE:ATTR`` to a compiled graph."""
    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Expected MODULE:ATTR, got '{target}'")

    if str(Path.cwd()) not in sys.path:
        sys.path.insert(0, str(Path.cwd()))

    module = importlib.import_module(module_name)
    obj: Any = module
    for part in attr.split("."):
        obj = getattr(obj, part)

    if not isinstance(obj, CompiledGraph | GraphBuilder) and callable(obj):
        obj = obj()
    if isinstance(obj, GraphBuilder):
        obj = obj.compile()
    if not isinstance(obj, CompiledGraph):
        raise TypeError(f"'{target}' is a {type(obj).__name__}, not a graph")
    return obj


class JsonLinesEventSink:
    """Writes each event as one JSON line."""

    def __init__(self, stream=None):
        self.stream = stream or sys.stdout

    def publish(self, session_id: str, event: WorkflowEvent) -> None:
        record = {"session_id": session_id, **event.to_dict()}
        print(json.dumps(record, default=str), file=self.stream, flush=True)


# === COMMANDS ===


def cmd_validate(args: argparse.Namespace) -> int:
    try:
        graph = load_graph(args.target)
    except StepGraphError as e:
        print(f"✗ Invalid graph: {type(e).__name__}: {e}", file=sys.stderr)
        return 1
    except (ImportError, AttributeError, ValueError, TypeError) as e:
        print(f"✗ Could not load '{args.target}': {e}", file=sys.stderr)
        return 2

    print(f"✓ Graph '{graph.id}' is valid")
    print(graph.describe())
    return 0


def _read_input(args: argparse.Namespace) -> dict[str, Any]:
    if args.input_file:
        with open(args.input_file, encoding="utf-8") as f:
            data = json.load(f)
    elif args.input:
        data = json.loads(args.input)
    else:
        data = {}
    if not isinstance(data, dict):
        raise ValueError("Input must be a JSON object of channel values")
    return data


def cmd_run(args: argparse.Namespace) -> int:
    try:
        graph = load_graph(args.target)
        initial = _read_input(args)
    except StepGraphError as e:
        print(f"✗ Invalid graph: {type(e).__name__}: {e}", file=sys.stderr)
        return 1
    except (ImportError, AttributeError, ValueError, TypeError, OSError) as e:
        print(f"✗ {e}", file=sys.stderr)
        return 2

    config = RuntimeConfig()
    if args.max_steps is not None:
        config.max_steps = args.max_steps

    runtime = WorkflowRuntime(config=config, event_sink=JsonLinesEventSink())

    session_id = args.session_id or f"cli-{uuid.uuid4().hex[:8]}"
    try:
        result = asyncio.run(runtime.run(graph, initial, session_id))
    except StepGraphError as e:
        print(f"✗ Run aborted: {type(e).__name__}: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130

    if args.verbose:
        print(f"→ {result.status} after {result.steps_executed} steps", file=sys.stderr)
        print(f"  path: {' -> '.join(result.path)}", file=sys.stderr)
    return 0 if result.completed else 3


def main(argv: list[str] | None = None):
    parser = argparse.ArgumentParser(
        prog="stepgraph",
        description="stepgraph - Validate and run step graphs",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level (default: from configuration, else INFO)",
    )
    parser.add_argument(
        "--log-format",
        choices=["auto", "json", "human"],
        default=None,
        help="Log output format",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    validate_parser = subparsers.add_parser("validate", help="Compile a graph and describe it")
    validate_parser.add_argument("target", help="MODULE:ATTR of the graph")
    validate_parser.set_defaults(func=cmd_validate)

    run_parser = subparsers.add_parser("run", help="Run a graph, printing events as JSON lines")
    run_parser.add_argument("target", help="MODULE:ATTR of the graph")
    run_parser.add_argument("--input", "-i", help="Initial channel values as a JSON object")
    run_parser.add_argument("--input-file", "-f", help="File holding the initial values")
    run_parser.add_argument("--session-id", "-s", help="Session id (default: random)")
    run_parser.add_argument("--max-steps", type=int, default=None, help="Per-run step limit")
    run_parser.add_argument("--verbose", "-v", action="store_true", help="Print a run summary")
    run_parser.set_defaults(func=cmd_run)

    args = parser.parse_args(argv)

    config = RuntimeConfig()
    configure_logging(
        level=args.log_level or config.log_level,
        format=args.log_format or config.log_format,
    )

    if hasattr(args, "func"):
        sys.exit(args.func(args))


if __name__ == "__main__":
    main()
