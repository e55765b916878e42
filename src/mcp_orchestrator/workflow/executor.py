"""Sequential execution of a workflow plan.

Errors inside a step are recorded on that step and folded into the final
summary; they never abort the plan.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from mcp_orchestrator.errors import NoCapabilityMatchError, OrchestratorError
from mcp_orchestrator.models import Operation, Target
from mcp_orchestrator.registry.history import ChoiceHistory
from mcp_orchestrator.rpc.selector import TransportSelector
from mcp_orchestrator.workflow.arguments import ArgumentBuilder
from mcp_orchestrator.workflow.extractors import DEFAULT_EXTRACTORS, FieldExtractor, extract_context
from mcp_orchestrator.workflow.fallback import SubstitutePolicy
from mcp_orchestrator.workflow.models import (
    Attempt,
    Step,
    StepStatus,
    WorkflowPlan,
    WorkflowResult,
)
from mcp_orchestrator.workflow.summary import summarize, synthesize

logger = logging.getLogger(__name__)


class StepExecutor:
    def __init__(
        self,
        selector: TransportSelector,
        *,
        argument_builder: ArgumentBuilder | None = None,
        substitute_policy: SubstitutePolicy | None = None,
        history: ChoiceHistory | None = None,
        extractors: Iterable[FieldExtractor] = DEFAULT_EXTRACTORS,
    ) -> None:
        self._selector = selector
        self._arguments = argument_builder or ArgumentBuilder()
        self._substitutes = substitute_policy
        self._history = history
        self._extractors = tuple(extractors)

    def execute(self, plan: WorkflowPlan) -> WorkflowResult:
        previous: Step | None = None
        for step in plan.steps:
            # Only the immediately preceding step feeds context, and only if it succeeded.
            context = (
                previous.context
                if previous is not None and previous.status is StepStatus.SUCCEEDED
                else None
            )
            self.run_step(step, context)
            previous = step

        summary, success = synthesize(plan.steps)
        logger.info(
            "Workflow finished",
            extra={
                "success": success,
                "statuses": [s.status.value for s in plan.steps],
            },
        )
        return WorkflowResult(plan=plan, summary=summary, success=success)

    def run_step(self, step: Step, context: Mapping[str, str] | None = None) -> Step:
        if step.target is None or step.operation is None:
            err = NoCapabilityMatchError(
                f"No registered operation matches step {step.index}: {step.description!r}"
            )
            step.status = StepStatus.SKIPPED
            step.error, step.error_kind = str(err), err.kind
            logger.warning("Step skipped", extra={"step": step.index, "reason": err.kind})
            return step

        target, operation = step.target, step.operation
        try:
            self._attempt(step, target, operation, context, substitute=False)
            return step
        except OrchestratorError as e:
            error: Exception = e
        except Exception as e:
            logger.exception("Unexpected error in step", extra={"step": step.index})
            self._fail(step, e)
            return step

        entry = (
            self._substitutes.substitute(step.description, target, operation, error)
            if self._substitutes is not None
            else None
        )
        if entry is None:
            self._fail(step, error)
            return step

        try:
            self._attempt(step, entry.target, entry.operation, context, substitute=True)
        except OrchestratorError as e:
            self._fail(step, e)
        except Exception as e:
            logger.exception("Unexpected error in substitute attempt", extra={"step": step.index})
            self._fail(step, e)
        return step

    def _attempt(
        self,
        step: Step,
        target: Target,
        operation: Operation,
        context: Mapping[str, str] | None,
        *,
        substitute: bool,
    ) -> None:
        # Rebuilt per attempt: a substitute's schema may want different fields.
        arguments = self._arguments.build(step.description, operation, context)
        step.arguments = arguments
        try:
            result = self._selector.call(target, operation.name, arguments)
        except OrchestratorError as e:
            step.attempts.append(
                Attempt(
                    target_id=target.id,
                    operation=operation.name,
                    arguments=arguments,
                    succeeded=False,
                    error=str(e),
                    error_kind=e.kind,
                    substitute=substitute,
                )
            )
            logger.warning(
                "Step attempt failed",
                extra={
                    "step": step.index,
                    "target_id": target.id,
                    "operation": operation.name,
                    "error_kind": e.kind,
                    "error": str(e),
                },
            )
            raise

        step.attempts.append(
            Attempt(
                target_id=target.id,
                operation=operation.name,
                arguments=arguments,
                succeeded=True,
                substitute=substitute,
            )
        )
        step.target, step.operation = target, operation
        step.result = result
        step.summary = summarize(result)
        step.context = extract_context(result, self._extractors)
        step.status = StepStatus.SUCCEEDED
        step.error = step.error_kind = None
        logger.info(
            "Step succeeded",
            extra={
                "step": step.index,
                "target_id": target.id,
                "operation": operation.name,
                "substitute": substitute,
                "context_keys": sorted(step.context),
            },
        )

        if self._history is not None:
            try:
                self._history.record(
                    target_id=target.id, operation=operation.name, step=step.description
                )
            except (OSError, ValueError) as e:
                logger.warning("Could not record choice", extra={"error": str(e)})

    def _fail(self, step: Step, error: Exception) -> None:
        step.status = StepStatus.FAILED
        step.error = str(error)
        step.error_kind = getattr(error, "kind", type(error).__name__)
