"""Wire-level helpers for the line-delimited JSON-RPC protocol.

Both transports normalize their responses into :class:`ToolResult`, so the rest
of the system never needs to know how a target was reached.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from mcp_orchestrator.errors import OperationError
from mcp_orchestrator.models import Operation

logger = logging.getLogger(__name__)

JSONRPC_VERSION = "2.0"

METHOD_INITIALIZE = "initialize"
METHOD_INITIALIZED = "notifications/initialized"
METHOD_LIST_TOOLS = "tools/list"
METHOD_CALL_TOOL = "tools/call"


def build_request(request_id: int, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "method": method, "params": params or {}}


def build_notification(method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "method": method, "params": params or {}}


def encode_message(message: dict[str, Any]) -> str:
    """Serialize one message as a single line (no embedded newlines)."""

    return json.dumps(message, ensure_ascii=False, separators=(",", ":")) + "\n"


def parse_line(line: str) -> dict[str, Any] | None:
    """Parse one line of process output.

    Returns None for blank or malformed lines; those are diagnostics, never
    protocol messages.
    """

    text = line.strip()
    if not text:
        return None
    try:
        message = json.loads(text)
    except json.JSONDecodeError:
        logger.debug("Ignoring non-JSON output line", extra={"line": text[:200]})
        return None
    if not isinstance(message, dict):
        logger.debug("Ignoring non-object JSON line", extra={"line": text[:200]})
        return None
    return message


def correlation_id(message: dict[str, Any]) -> int | None:
    """Return the numeric id of a response, or None for notifications."""

    raw = message.get("id")
    # bool is an int subclass; it is never a valid correlation id.
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float) and raw.is_integer():
        return int(raw)
    return None


def error_from_envelope(error: object) -> OperationError:
    """Turn an `error` member into an exception, whatever its shape."""

    if isinstance(error, dict):
        message = error.get("message")
        code = error.get("code")
        return OperationError(
            str(message) if message else json.dumps(error, ensure_ascii=False),
            code=code if isinstance(code, int) and not isinstance(code, bool) else None,
            data=error.get("data"),
        )
    if isinstance(error, str) and error.strip():
        return OperationError(error.strip())
    return OperationError("Target reported an error")


@dataclass(frozen=True, slots=True)
class ToolResult:
    """A normalized operation result.

    `content` follows the tool-call content shape: a list of items with a
    `type` (text, image, resource) and a payload.
    """

    content: list[dict[str, Any]] = field(default_factory=list)
    structured: dict[str, Any] | None = None
    raw: object = None

    @property
    def text(self) -> str:
        parts = [
            item["text"]
            for item in self.content
            if item.get("type") == "text" and isinstance(item.get("text"), str)
        ]
        return "\n".join(parts)

    @property
    def non_text_items(self) -> list[dict[str, Any]]:
        return [item for item in self.content if item.get("type") != "text"]

    def data(self) -> dict[str, Any]:
        """Best-effort structured view: `structured`, else JSON parsed from the text."""

        if self.structured is not None:
            return self.structured
        try:
            parsed = json.loads(self.text)
        except (json.JSONDecodeError, TypeError):
            return {}
        return parsed if isinstance(parsed, dict) else {}

    def to_json(self) -> dict[str, object]:
        out: dict[str, object] = {"content": self.content}
        if self.structured is not None:
            out["structured"] = self.structured
        return out


def _as_content(value: object) -> list[dict[str, Any]]:
    if isinstance(value, list):
        items: list[dict[str, Any]] = []
        for item in value:
            if isinstance(item, dict) and "type" in item:
                items.append(item)
            elif isinstance(item, str):
                items.append({"type": "text", "text": item})
            else:
                items.append({"type": "text", "text": json.dumps(item, ensure_ascii=False)})
        return items
    if isinstance(value, str):
        return [{"type": "text", "text": value}]
    return [{"type": "text", "text": json.dumps(value, ensure_ascii=False, indent=2)}]


def normalize_tool_result(payload: object) -> ToolResult:
    """Normalize a tool-call `result` member (or a bare network body).

    Raises:
        OperationError: if the payload flags itself as an error (`isError`).
    """

    if isinstance(payload, dict):
        content = _as_content(payload["content"]) if "content" in payload else None
        structured = payload.get("structuredContent")
        if not isinstance(structured, dict):
            structured = None

        if payload.get("isError") is True:
            text = ToolResult(content=content or []).text
            raise OperationError(text or "Operation reported an error", data=payload)

        if content is None:
            structured = structured or payload
            content = _as_content(payload)
        return ToolResult(content=content, structured=structured, raw=payload)

    if payload is None:
        return ToolResult(content=[], raw=payload)
    return ToolResult(content=_as_content(payload), raw=payload)


def operations_from_listing(payload: object) -> list[Operation]:
    """Parse a `tools/list` result into operations, skipping malformed entries."""

    tools = payload.get("tools") if isinstance(payload, dict) else payload
    if not isinstance(tools, list):
        return []
    operations: list[Operation] = []
    for tool in tools:
        if not isinstance(tool, dict) or not isinstance(tool.get("name"), str):
            continue
        operations.append(
            Operation.model_validate(
                {
                    "name": tool["name"],
                    "description": tool.get("description") or "",
                    "inputSchema": tool.get("inputSchema") or {},
                }
            )
        )
    return operations
