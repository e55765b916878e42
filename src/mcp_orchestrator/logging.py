"""JSON log lines for the orchestrator.

Every record is one JSON object on stderr. The fields that tie a line to a
piece of work (`target_id`, `operation`, `step`, `error_kind`) sit at the top
level; anything else passed via `extra=` lands under `"extra"`, with values
that look like credentials masked.
"""

from __future__ import annotations

import json
import logging
import re
import sys
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

CONTEXT_FIELDS: tuple[str, ...] = ("target_id", "operation", "step", "error_kind")
REDACTED = "***"

_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}
_SECRET_KEY_RE = re.compile(r"(api[_-]?key|token|secret|password|passwd|authorization|cookie|credential)", re.I)
_SECRET_FLAG_RE = re.compile(r"^(--?[\w-]*(?:key|token|secret|password)[\w-]*=).+$", re.I)


def redact(value: Any, *, key: str | None = None) -> Any:
    """Mask secret-looking values inside mappings, lists and `--flag=value` strings."""

    if key is not None and _SECRET_KEY_RE.search(key) and not isinstance(value, (Mapping, list, tuple)):
        return REDACTED
    if isinstance(value, Mapping):
        return {k: redact(v, key=str(k)) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [redact(v) for v in value]
    if isinstance(value, str):
        return _SECRET_FLAG_RE.sub(lambda m: m.group(1) + REDACTED, value)
    return value


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (record)
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        extra: dict[str, Any] = {}
        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRS or key.startswith("_"):
                continue
            if key in CONTEXT_FIELDS:
                payload[key] = value
            else:
                extra[key] = redact(value, key=key)
        if extra:
            payload["extra"] = extra

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        # Tool arguments may carry values json can't encode natively.
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: str) -> None:
    """Send JSON lines to stderr at `level`; stdout stays free for CLI output."""

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream=sys.stderr)
    handler.setFormatter(JsonFormatter())
    root.addHandler(handler)
    root.setLevel(level.upper())

    # Network targets go through requests; its pool chatter is not ours.
    logging.getLogger("urllib3").setLevel(max(root.level, logging.INFO))
