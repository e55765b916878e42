from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

from mcp_orchestrator.models import Operation, Target
from mcp_orchestrator.rpc.protocol import ToolResult


class StepStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True, slots=True)
class ExtractedContext(Mapping[str, str]):
    """Fields pulled out of one step's result for the next step to consume."""

    data: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def of(cls, values: Mapping[str, str]) -> ExtractedContext:
        return cls(data=MappingProxyType(dict(values)))

    def __getitem__(self, key: str) -> str:
        return self.data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self.data)

    def __len__(self) -> int:
        return len(self.data)

    def as_dict(self) -> dict[str, str]:
        return dict(self.data)


@dataclass(frozen=True, slots=True)
class Attempt:
    """One dispatch of a step against one (target, operation)."""

    target_id: str
    operation: str
    arguments: dict[str, Any]
    succeeded: bool
    error: str | None = None
    error_kind: str | None = None
    substitute: bool = False

    def to_json(self) -> dict[str, object]:
        return {
            "target_id": self.target_id,
            "operation": self.operation,
            "arguments": self.arguments,
            "succeeded": self.succeeded,
            "error": self.error,
            "error_kind": self.error_kind,
            "substitute": self.substitute,
        }


@dataclass(slots=True)
class Step:
    index: int
    description: str
    target: Target | None = None
    operation: Operation | None = None
    score: float = 0.0
    arguments: dict[str, Any] = field(default_factory=dict)
    result: ToolResult | None = None
    summary: str = ""
    error: str | None = None
    error_kind: str | None = None
    status: StepStatus = StepStatus.PENDING
    context: ExtractedContext = field(default_factory=ExtractedContext)
    attempts: list[Attempt] = field(default_factory=list)

    @property
    def resolved(self) -> bool:
        return self.target is not None and self.operation is not None

    @property
    def attempted(self) -> bool:
        return self.status in (StepStatus.SUCCEEDED, StepStatus.FAILED)

    def to_json(self) -> dict[str, object]:
        """Caller-facing view. The raw result stays internal; `summary` stands in for it."""

        return {
            "index": self.index,
            "description": self.description,
            "target_id": self.target.id if self.target is not None else None,
            "operation": self.operation.name if self.operation is not None else None,
            "score": self.score,
            "arguments": self.arguments,
            "status": self.status.value,
            "summary": self.summary,
            "error": self.error,
            "error_kind": self.error_kind,
            "context": self.context.as_dict(),
            "attempts": [a.to_json() for a in self.attempts],
        }


@dataclass(slots=True)
class WorkflowPlan:
    request: str
    steps: list[Step] = field(default_factory=list)

    @property
    def unresolved(self) -> list[Step]:
        return [s for s in self.steps if not s.resolved]

    def to_json(self) -> dict[str, object]:
        return {"request": self.request, "steps": [s.to_json() for s in self.steps]}


@dataclass(frozen=True, slots=True)
class WorkflowResult:
    plan: WorkflowPlan
    summary: str
    success: bool

    @property
    def steps(self) -> list[Step]:
        return self.plan.steps

    def to_json(self) -> dict[str, object]:
        return {
            "request": self.plan.request,
            "success": self.success,
            "summary": self.summary,
            "steps": [s.to_json() for s in self.plan.steps],
        }
