"""CLI entrypoint for the tool orchestrator.

Exit codes:
- 0: success
- 1: command failed
- 2: configuration error
- 4: workflow ran but at least one attempted step failed
"""

from __future__ import annotations

import argparse
import json
import logging
import sys

from pydantic import ValidationError

from mcp_orchestrator import __version__
from mcp_orchestrator.config import OrchestratorSettings
from mcp_orchestrator.core.orchestrator import Orchestrator
from mcp_orchestrator.errors import ConfigurationError, OrchestratorError
from mcp_orchestrator.logging import configure_logging
from mcp_orchestrator.models import Target
from mcp_orchestrator.rpc.selector import transport_kind
from mcp_orchestrator.workflow.models import WorkflowPlan

logger = logging.getLogger(__name__)


def _parse_arguments_json(value: str | None) -> dict[str, object]:
    if not value:
        return {}
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"--args is not valid JSON: {e}") from e
    if not isinstance(parsed, dict):
        raise ConfigurationError("--args must be a JSON object")
    return parsed


def _describe_transport(target: Target) -> str:
    try:
        return transport_kind(target)
    except ConfigurationError:
        return "invalid"


def _print_plan(plan: WorkflowPlan) -> None:
    for step in plan.steps:
        if step.target is not None and step.operation is not None:
            print(
                f"{step.index}. {step.description} -> "
                f"{step.target.id}/{step.operation.name} (score {step.score:g})"
            )
        else:
            print(f"{step.index}. {step.description} -> (unresolved)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcp-orchestrator",
        description="Invoke tool targets and run multi-step workflows over them",
    )
    parser.add_argument(
        "--version", action="version", version=f"mcp-workflow-orchestrator {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("targets", help="List the registered targets")

    tools = subparsers.add_parser("tools", help="List a target's operations (live)")
    tools.add_argument("--target", required=True, help="Target id")

    invoke = subparsers.add_parser("invoke", help="Call one operation on one target")
    invoke.add_argument("--target", required=True, help="Target id")
    invoke.add_argument("--operation", required=True, help="Operation name")
    invoke.add_argument(
        "--args",
        dest="arguments",
        default=None,
        help='Operation arguments as a JSON object, e.g. \'{"url": "https://example.com"}\'',
    )

    plan = subparsers.add_parser("plan", help="Show how a request would be decomposed")
    plan.add_argument("request", help="Free-text request")

    run = subparsers.add_parser("run", help="Plan and execute a request")
    run.add_argument("request", help="Free-text request")
    run.add_argument("--json", action="store_true", help="Print the full result as JSON")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = OrchestratorSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(settings.log_level)

    try:
        with Orchestrator(settings) as orchestrator:
            if args.command == "targets":
                for target in orchestrator.targets():
                    ops = ", ".join(op.name for op in target.operations) or "-"
                    print(f"{target.id}\t{_describe_transport(target)}\t{ops}")
                return 0

            if args.command == "tools":
                for op in orchestrator.list_operations(args.target):
                    print(f"{op.name}\t{op.description}")
                return 0

            if args.command == "invoke":
                result = orchestrator.invoke(
                    args.target, args.operation, _parse_arguments_json(args.arguments)
                )
                print(result.text or json.dumps(result.to_json(), indent=2, ensure_ascii=False))
                return 0

            if args.command == "plan":
                _print_plan(orchestrator.plan(args.request))
                return 0

            if args.command == "run":
                outcome = orchestrator.handle(args.request)
                if args.json:
                    print(json.dumps(outcome.to_json(), indent=2, ensure_ascii=False, default=str))
                else:
                    print(outcome.summary)
                return 0 if outcome.success else 4

        logger.error("Unknown command", extra={"command": args.command})
        return 2

    except ConfigurationError as e:
        logger.error(str(e))
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    except OrchestratorError as e:
        logger.error("Command failed", extra={"error_kind": e.kind, "error": str(e)})
        print(f"{e.kind}: {e}", file=sys.stderr)
        return 1

    except Exception:
        logger.exception("Command failed")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
