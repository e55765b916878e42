"""Read-only lookup of declared Targets from a JSON file.

Accepted shapes::

    {"targets": [{"id": "...", "process": {...}, "operations": [...]}, ...]}
    [{"id": "...", ...}, ...]
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path

from pydantic import ValidationError

from mcp_orchestrator.errors import ConfigurationError
from mcp_orchestrator.models import Target

logger = logging.getLogger(__name__)


@dataclass
class TargetCatalog:
    path: Path

    def load(self) -> list[Target]:
        if not self.path.exists():
            logger.warning("Targets file not found", extra={"path": str(self.path)})
            return []
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Targets file {self.path} is not valid JSON: {e}") from e

        items = raw.get("targets") if isinstance(raw, dict) else raw
        if not isinstance(items, list):
            raise ConfigurationError(f"Targets file {self.path} must hold a list of targets")

        try:
            targets = [Target.model_validate(item) for item in items]
        except ValidationError as e:
            raise ConfigurationError(f"Invalid target declaration in {self.path}: {e}") from e

        logger.info("Loaded targets", extra={"path": str(self.path), "count": len(targets)})
        return targets

    def get(self, target_id: str) -> Target | None:
        for target in self.load():
            if target.id == target_id:
                return target
        return None
