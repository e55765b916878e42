"""Persisted record of (target, operation) choices that worked before.

Best-effort: a missing or unreadable file is an empty history, and malformed
records are skipped.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)


class ChoiceRecord(BaseModel):
    target_id: str
    operation: str
    count: int = 0
    last_used_at: str | None = None
    last_step: str | None = None


def _utc_iso_now() -> str:
    return datetime.now(tz=UTC).isoformat()


@dataclass
class ChoiceHistory:
    path: Path

    def __post_init__(self) -> None:
        self._lock = threading.Lock()
        self._cache: dict[tuple[str, str], ChoiceRecord] | None = None

    def _load_unlocked(self) -> dict[tuple[str, str], ChoiceRecord]:
        if self._cache is not None:
            return self._cache
        records: dict[tuple[str, str], ChoiceRecord] = {}
        if self.path.exists():
            try:
                raw = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                logger.warning(
                    "Ignoring unreadable choice history", extra={"path": str(self.path), "error": str(e)}
                )
                raw = []
            if not isinstance(raw, list):
                logger.warning("Ignoring choice history that is not a list", extra={"path": str(self.path)})
                raw = []
            for item in raw:
                try:
                    record = ChoiceRecord.model_validate(item)
                except ValidationError:
                    logger.warning(
                        "Skipping malformed choice record", extra={"path": str(self.path), "record": item}
                    )
                    continue
                records[(record.target_id, record.operation)] = record
        self._cache = records
        return records

    def _save_unlocked(self, records: dict[tuple[str, str], ChoiceRecord]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = [r.model_dump(mode="json") for r in records.values()]
        self.path.write_text(
            json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8"
        )

    def count(self, target_id: str, operation: str) -> int:
        with self._lock:
            record = self._load_unlocked().get((target_id, operation))
            return record.count if record is not None else 0

    def list(self) -> list[ChoiceRecord]:
        with self._lock:
            return list(self._load_unlocked().values())

    def record(self, *, target_id: str, operation: str, step: str | None = None) -> ChoiceRecord:
        with self._lock:
            records = self._load_unlocked()
            current = records.get((target_id, operation)) or ChoiceRecord(
                target_id=target_id, operation=operation
            )
            updated = current.model_copy(
                update={
                    "count": current.count + 1,
                    "last_used_at": _utc_iso_now(),
                    "last_step": step,
                }
            )
            records[(target_id, operation)] = updated
            self._save_unlocked(records)
            return updated
