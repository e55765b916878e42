"""Heuristic decomposition of a free-text request into ordered steps."""

from __future__ import annotations

import logging
import re

from mcp_orchestrator.registry.capability_registry import CapabilityRegistry
from mcp_orchestrator.vocabulary import implied_capabilities
from mcp_orchestrator.workflow.models import Step, WorkflowPlan

logger = logging.getLogger(__name__)

_SEQUENCING_RE = re.compile(
    r"\b(?:and then|then|after that|afterwards|once you (?:have|find|get)|followed by|finally)\b",
    re.I,
)

_ACTION_VERBS = (
    r"take|capture|find|navigate|go|visit|open|browse|search|look|get|summari[sz]e|calculate|"
    r"check|book|show|give|create|write|plan|list|tell|compare|analy[sz]e"
)

_SPLIT_RE = re.compile(
    r"(?<=[.!?])\s+"
    r"|\s*;\s*"
    r"|,?\s+(?:and then|and finally|then|after that|afterwards|followed by|finally)\b\s*,?\s*"
    r"|,?\s+and\s+(?=(?:" + _ACTION_VERBS + r")\b)",
    re.I,
)

_LEADING_CONNECTIVE_RE = re.compile(
    r"^(?:(?:and|also|then|next|finally|afterwards|after that|followed by|lastly)\b\s*,?\s*"
    r"|once you (?:have|find|get|know)\b[^,]*,\s*)+",
    re.I,
)


def split_clauses(request: str) -> list[str]:
    clauses: list[str] = []
    for raw in _SPLIT_RE.split(request.strip()):
        clause = _LEADING_CONNECTIVE_RE.sub("", raw.strip()).strip().rstrip(".!?;,").strip()
        if clause:
            clauses.append(clause)
    return clauses


class WorkflowPlanner:
    def __init__(self, registry: CapabilityRegistry, *, min_score: float = 1.0) -> None:
        self._registry = registry
        self.min_score = min_score

    def requires_planning(self, request: str) -> bool:
        """True for explicit sequencing, `;`-joined clauses, or two kinds of work."""

        if _SEQUENCING_RE.search(request):
            return True
        if ";" in request and len([c for c in request.split(";") if c.strip()]) >= 2:
            return True
        return len(implied_capabilities(request)) >= 2

    def plan(self, request: str) -> WorkflowPlan:
        steps = [self._resolve(i, clause) for i, clause in enumerate(split_clauses(request), start=1)]
        plan = WorkflowPlan(request=request, steps=steps)
        logger.info(
            "Planned workflow",
            extra={
                "steps": len(steps),
                "unresolved": [s.index for s in plan.unresolved],
            },
        )
        return plan

    def single_step(self, request: str) -> WorkflowPlan:
        description = request.strip()
        return WorkflowPlan(request=request, steps=[self._resolve(1, description)])

    def _resolve(self, index: int, description: str) -> Step:
        step = Step(index=index, description=description)
        matches = self._registry.match(description, limit=1)
        if not matches:
            return step
        best = matches[0]
        step.score = best.score
        if best.score > self.min_score:
            step.target = best.target
            step.operation = best.operation
            logger.debug(
                "Step resolved",
                extra={
                    "step": index,
                    "target_id": best.target.id,
                    "operation": best.operation.name,
                    "score": best.score,
                },
            )
        return step
