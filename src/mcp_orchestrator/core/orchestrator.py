"""Orchestrator facade used by the CLI and the REST adapter."""

from __future__ import annotations

import logging
from types import TracebackType
from typing import Any

import requests

from mcp_orchestrator.config import OrchestratorSettings
from mcp_orchestrator.errors import ConfigurationError
from mcp_orchestrator.models import Operation, Target
from mcp_orchestrator.registry.capability_registry import CapabilityRegistry
from mcp_orchestrator.registry.catalog import TargetCatalog
from mcp_orchestrator.registry.history import ChoiceHistory
from mcp_orchestrator.registry.scoring import HistoryBiasedScorer, KeywordScorer, ScoringStrategy
from mcp_orchestrator.rpc.network_client import NetworkRpcClient
from mcp_orchestrator.rpc.process_client import ProcessRpcClient
from mcp_orchestrator.rpc.protocol import ToolResult
from mcp_orchestrator.rpc.selector import TransportSelector
from mcp_orchestrator.workflow.arguments import (
    ArgumentBuilder,
    DefaultResolutionPolicy,
    EventMarketplaceDefault,
    NoDefault,
)
from mcp_orchestrator.workflow.executor import StepExecutor
from mcp_orchestrator.workflow.fallback import SubstitutePolicy
from mcp_orchestrator.workflow.models import WorkflowPlan, WorkflowResult
from mcp_orchestrator.workflow.planner import WorkflowPlanner

logger = logging.getLogger(__name__)


class Orchestrator:
    """Coordinates target discovery, planning and step execution.

    The targets come from the catalog file named in the settings unless an
    explicit list is passed (tests, embedding applications).
    """

    def __init__(
        self,
        settings: OrchestratorSettings | None = None,
        *,
        targets: list[Target] | None = None,
        http_session: requests.Session | None = None,
    ) -> None:
        self.settings = settings or OrchestratorSettings()
        self._static_targets = targets
        self.catalog = TargetCatalog(self.settings.targets_file)

        self.history: ChoiceHistory | None = None
        scorer: ScoringStrategy = KeywordScorer()
        if self.settings.choice_history_enabled:
            self.history = ChoiceHistory(self.settings.choice_history_file)
            scorer = HistoryBiasedScorer(scorer, self.history)

        self.registry = CapabilityRegistry(scorer)
        self.selector = TransportSelector(
            process_client=ProcessRpcClient.from_settings(self.settings),
            network_client=NetworkRpcClient.from_settings(self.settings, session=http_session),
        )
        self.planner = WorkflowPlanner(self.registry, min_score=self.settings.min_match_score)

        default_policy: DefaultResolutionPolicy = NoDefault()
        if self.settings.default_event_url.strip():
            default_policy = EventMarketplaceDefault(self.settings.default_event_url.strip())
        self.executor = StepExecutor(
            self.selector,
            argument_builder=ArgumentBuilder(default_policy),
            substitute_policy=SubstitutePolicy(self.registry),
            history=self.history,
        )

        self.refresh()
        logger.info("Orchestrator initialized", extra={"targets": len(self.registry.targets())})

    def __enter__(self) -> Orchestrator:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def refresh(self) -> int:
        """Re-register the targets. Returns the number of registered operations."""

        targets = self._static_targets if self._static_targets is not None else self.catalog.load()
        return self.registry.register(targets)

    def targets(self) -> list[Target]:
        return self.registry.targets()

    def target(self, target_id: str) -> Target:
        target = self.registry.target(target_id)
        if target is None:
            raise ConfigurationError(f"Unknown or disabled target: {target_id}")
        return target

    def plan(self, request: str) -> WorkflowPlan:
        if self.planner.requires_planning(request):
            return self.planner.plan(request)
        return self.planner.single_step(request)

    def handle(self, request: str) -> WorkflowResult:
        logger.info("Handling request", extra={"request": request})
        return self.executor.execute(self.plan(request))

    def invoke(
        self, target_id: str, operation: str, arguments: dict[str, Any] | None = None
    ) -> ToolResult:
        return self.selector.call(self.target(target_id), operation, arguments or {})

    def list_operations(self, target_id: str) -> list[Operation]:
        return self.selector.list_operations(self.target(target_id))

    def close(self) -> None:
        self.selector.close()
