#!/usr/bin/env python3
"""Programmatic workflow example.

This demonstrates using the orchestrator components directly:

* load settings from `.env`
* register the targets declared in a JSON file
* plan and run a free-text request, printing each step

The targets file is passed as an argument (see `examples/targets.json`).
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Sequence

from mcp_orchestrator.config import OrchestratorSettings
from mcp_orchestrator.core.orchestrator import Orchestrator
from mcp_orchestrator.logging import configure_logging


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Plan and run one request (programmatic example).")
    parser.add_argument(
        "--targets",
        type=Path,
        default=Path(__file__).with_name("targets.json"),
        help="JSON file declaring the targets",
    )
    parser.add_argument(
        "request",
        nargs="?",
        default="Navigate to https://www.msg.com/events; then take a screenshot",
        help="Free-text request",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    settings = OrchestratorSettings().model_copy(update={"targets_file": args.targets})
    configure_logging(settings.log_level)

    with Orchestrator(settings) as orchestrator:
        plan = orchestrator.plan(args.request)
        for step in plan.steps:
            chosen = f"{step.target.id}/{step.operation.name}" if step.target and step.operation else "-"
            print(f"Planned step {step.index}: {step.description} ({chosen})")

        outcome = orchestrator.executor.execute(plan)

    for step in outcome.steps:
        print(f"Step {step.index} [{step.status.value}] arguments={step.arguments}")
        if step.context:
            print(f"  context: {step.context.as_dict()}")
    print()
    print(outcome.summary)
    return 0 if outcome.success else 4


if __name__ == "__main__":
    raise SystemExit(main())
