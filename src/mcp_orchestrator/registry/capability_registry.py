"""In-memory index of (target, operation) pairs, ranked against step text.

Registration builds a complete new snapshot and swaps it in with one reference
assignment; readers grab the current snapshot once and never see a partial one.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from mcp_orchestrator.errors import ConfigurationError
from mcp_orchestrator.models import Operation, Target
from mcp_orchestrator.registry.scoring import KeywordScorer, ScoringStrategy

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RegistryEntry:
    target: Target
    operation: Operation
    index: int

    @property
    def target_id(self) -> str:
        return self.target.id

    @property
    def key(self) -> tuple[str, str]:
        return (self.target.id, self.operation.name)


@dataclass(frozen=True, slots=True)
class CapabilityMatch:
    entry: RegistryEntry
    score: float

    @property
    def target(self) -> Target:
        return self.entry.target

    @property
    def operation(self) -> Operation:
        return self.entry.operation


@dataclass(frozen=True, slots=True)
class _Snapshot:
    entries: tuple[RegistryEntry, ...] = ()
    targets: Mapping[str, Target] = field(default_factory=lambda: MappingProxyType({}))


class CapabilityRegistry:
    def __init__(self, scorer: ScoringStrategy | None = None) -> None:
        self._scorer: ScoringStrategy = scorer or KeywordScorer()
        self._snapshot = _Snapshot()
        self._write_lock = threading.Lock()

    @property
    def scorer(self) -> ScoringStrategy:
        return self._scorer

    def register(self, targets: Iterable[Target]) -> int:
        """Replace the registered targets wholesale. Returns the entry count.

        Disabled targets are skipped.

        Raises:
            ConfigurationError: if two targets share an id.
        """

        with self._write_lock:
            by_id: dict[str, Target] = {}
            entries: list[RegistryEntry] = []
            for target in targets:
                if target.id in by_id:
                    raise ConfigurationError(f"Duplicate target id: {target.id}")
                if not target.enabled:
                    logger.info("Skipping disabled target", extra={"target_id": target.id})
                    continue
                by_id[target.id] = target
                for operation in target.operations:
                    entries.append(RegistryEntry(target=target, operation=operation, index=len(entries)))

            self._snapshot = _Snapshot(entries=tuple(entries), targets=MappingProxyType(by_id))

        logger.info(
            "Registered capabilities",
            extra={"targets": len(by_id), "operations": len(entries)},
        )
        return len(entries)

    def entries(self) -> tuple[RegistryEntry, ...]:
        return self._snapshot.entries

    def targets(self) -> list[Target]:
        return list(self._snapshot.targets.values())

    def target(self, target_id: str) -> Target | None:
        return self._snapshot.targets.get(target_id)

    def get(self, target_id: str, operation_name: str) -> RegistryEntry | None:
        for entry in self._snapshot.entries:
            if entry.key == (target_id, operation_name):
                return entry
        return None

    def match(self, step_text: str, limit: int | None = None) -> list[CapabilityMatch]:
        """Rank operations for `step_text`, best first.

        Only positive scores are returned; ties keep declaration order.
        """

        snapshot = self._snapshot
        scored: list[CapabilityMatch] = []
        for entry in snapshot.entries:
            score = self._scorer.score(entry.operation, step_text, target_id=entry.target_id)
            if score > 0:
                scored.append(CapabilityMatch(entry=entry, score=score))
        scored.sort(key=lambda m: (-m.score, m.entry.index))
        if limit is not None:
            scored = scored[:limit]
        return scored

    def find_by_capability(
        self, capability: str, exclude_target: str | None = None
    ) -> list[RegistryEntry]:
        return [
            entry
            for entry in self._snapshot.entries
            if entry.operation.has_capability(capability) and entry.target_id != exclude_target
        ]
