"""Scoring strategies: how well an operation fits a piece of step text."""

from __future__ import annotations

from typing import Protocol

from mcp_orchestrator.models import Operation
from mcp_orchestrator.registry.history import ChoiceHistory
from mcp_orchestrator.vocabulary import (
    CAPTURE,
    CAPTURE_SIGNAL_RE,
    GEOLOCATION,
    INTENT_PATTERNS,
    NAVIGATION,
    PLACE_SIGNAL_RE,
    REASONING,
    REASONING_SIGNAL_RE,
    has_url_signal,
    tokenize,
)


class ScoringStrategy(Protocol):
    def score(self, operation: Operation, step_text: str, *, target_id: str | None = None) -> float:
        """Return a non-negative fitness score; 0 means no match."""


class KeywordScorer:
    """Token overlap with the operation's purpose tags, plus capability boosts.

    - one point per distinct step token found in the operation's tags
    - one more point per step token found in the operation's name
    - +3 navigation for a URL/domain or an explicit "navigate/visit/go to"
    - +3 capture for "screenshot"/"capture"
    - +3 geolocation for place/location words
    - +2 reasoning for summarize/analyze/calculate style words
    """

    navigation_boost = 3.0
    capture_boost = 3.0
    geolocation_boost = 3.0
    reasoning_boost = 2.0

    def score(self, operation: Operation, step_text: str, *, target_id: str | None = None) -> float:
        step_tokens = set(tokenize(step_text))
        score = float(len(step_tokens & set(operation.tags)))
        score += len(step_tokens & set(tokenize(operation.name)))

        if operation.has_capability(NAVIGATION) and (
            has_url_signal(step_text) or INTENT_PATTERNS[NAVIGATION].search(step_text)
        ):
            score += self.navigation_boost
        if operation.has_capability(CAPTURE) and CAPTURE_SIGNAL_RE.search(step_text):
            score += self.capture_boost
        if operation.has_capability(GEOLOCATION) and PLACE_SIGNAL_RE.search(step_text):
            score += self.geolocation_boost
        if operation.has_capability(REASONING) and REASONING_SIGNAL_RE.search(step_text):
            score += self.reasoning_boost
        return score


class HistoryBiasedScorer:
    """Adds a bounded bonus for choices that succeeded before.

    The bonus only breaks near-ties between operations that already match; it
    never makes an unrelated operation match.
    """

    def __init__(
        self,
        base: ScoringStrategy,
        history: ChoiceHistory,
        *,
        weight: float = 0.25,
        max_count: int = 4,
    ) -> None:
        self._base = base
        self._history = history
        self._weight = weight
        self._max_count = max_count

    def score(self, operation: Operation, step_text: str, *, target_id: str | None = None) -> float:
        base = self._base.score(operation, step_text, target_id=target_id)
        if base <= 0 or target_id is None:
            return base
        count = self._history.count(target_id, operation.name)
        return base + self._weight * min(count, self._max_count)
