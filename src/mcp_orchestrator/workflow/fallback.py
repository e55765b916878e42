"""Substitute selection after a failed step attempt.

A step gets at most two attempts: the primary choice, then one substitute.
Rules are checked in order; the first rule whose conditions hold and which
finds a candidate on another target wins. When no rule applies, an operation
with one of the failed operation's capabilities on another target is used.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from mcp_orchestrator.errors import ConfigurationError
from mcp_orchestrator.models import Operation, Target
from mcp_orchestrator.registry.capability_registry import CapabilityRegistry, RegistryEntry
from mcp_orchestrator.vocabulary import NAVIGATION, REASONING, SEARCH

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 2

_WEB_TASK_RE = re.compile(
    r"\b(web|website|site|page|url|browse|tickets?|concerts?|events?|prices?|book|booking|check)\b"
    r"|https?://|\.(?:com|org|net)\b",
    re.I,
)


@dataclass(frozen=True, slots=True)
class FallbackRule:
    """When an operation with `failed_capability` fails on a step matching
    `step_pattern`, retry with an operation having `substitute_capability`."""

    name: str
    failed_capability: str
    substitute_capability: str
    step_pattern: re.Pattern[str] | None = None

    def applies(self, step_text: str, operation: Operation) -> bool:
        if not operation.has_capability(self.failed_capability):
            return False
        return self.step_pattern is None or bool(self.step_pattern.search(step_text))


DEFAULT_RULES: tuple[FallbackRule, ...] = (
    FallbackRule(
        name="reasoning-to-browser",
        failed_capability=REASONING,
        substitute_capability=NAVIGATION,
        step_pattern=_WEB_TASK_RE,
    ),
    FallbackRule(
        name="search-to-browser",
        failed_capability=SEARCH,
        substitute_capability=NAVIGATION,
        step_pattern=_WEB_TASK_RE,
    ),
)


class SubstitutePolicy:
    def __init__(
        self,
        registry: CapabilityRegistry,
        rules: tuple[FallbackRule, ...] = DEFAULT_RULES,
    ) -> None:
        self._registry = registry
        self._rules = rules

    def substitute(
        self,
        step_text: str,
        target: Target,
        operation: Operation,
        error: Exception,
    ) -> RegistryEntry | None:
        """Pick the substitute for a failed attempt, or None.

        Configuration errors are never retried.
        """

        if isinstance(error, ConfigurationError):
            return None

        for rule in self._rules:
            if not rule.applies(step_text, operation):
                continue
            entry = self._best(step_text, rule.substitute_capability, exclude_target=target.id)
            if entry is not None:
                logger.info(
                    "Substitute chosen",
                    extra={
                        "rule": rule.name,
                        "failed_target": target.id,
                        "substitute_target": entry.target_id,
                        "substitute_operation": entry.operation.name,
                    },
                )
                return entry

        for capability in operation.capabilities:
            entry = self._best(step_text, capability, exclude_target=target.id)
            if entry is not None:
                logger.info(
                    "Substitute chosen",
                    extra={
                        "rule": f"same-capability:{capability}",
                        "failed_target": target.id,
                        "substitute_target": entry.target_id,
                        "substitute_operation": entry.operation.name,
                    },
                )
                return entry
        return None

    def _best(self, step_text: str, capability: str, *, exclude_target: str) -> RegistryEntry | None:
        candidates = self._registry.find_by_capability(capability, exclude_target=exclude_target)
        if not candidates:
            return None
        scorer = self._registry.scorer
        # max() keeps the first of equal scores, so declaration order breaks ties.
        return max(
            candidates,
            key=lambda e: scorer.score(e.operation, step_text, target_id=e.target_id),
        )
