"""Short human-readable summaries of step results, and the final synthesis."""

from __future__ import annotations

import json
import re
from collections.abc import Sequence

from mcp_orchestrator.rpc.protocol import ToolResult
from mcp_orchestrator.workflow.models import Step, StepStatus

UNSUMMARIZED = "Completed, but the result could not be summarized."
MAX_SUMMARY_CHARS = 400

_SUMMARY_KEYS = ("summary", "answer", "message", "result", "output", "response")
_PAGE_TITLE_RE = re.compile(r"^-?\s*Page Title:\s*(.+)$", re.M)
_PAGE_URL_RE = re.compile(r"^-?\s*Page URL:\s*(\S+)", re.M)
_YAML_FENCE_RE = re.compile(r"```ya?ml", re.I)
_YAML_NODE_RE = re.compile(r"^\s*-\s+[\w-]+(?:\s+\"[^\"]*\")?(?:\s+\[[^\]]*\])*:?\s*$")
_REF_RE = re.compile(r"\[ref=[^\]]+\]")
_HTML_TAG_RE = re.compile(r"<\s*(?:!doctype|html|head|body|div|span|script|table|ul|li|p|a)\b[^>]*>", re.I)


def looks_like_raw_dump(text: str) -> bool:
    """True for accessibility-tree YAML, JSON documents and HTML markup."""

    stripped = text.strip()
    if not stripped:
        return False

    if _YAML_FENCE_RE.search(stripped) or len(_REF_RE.findall(stripped)) >= 2:
        return True
    lines = [line for line in stripped.splitlines() if line.strip()]
    if len(lines) >= 3 and sum(1 for line in lines if _YAML_NODE_RE.match(line)) * 2 >= len(lines):
        return True

    if stripped[0] in "[{":
        try:
            json.loads(stripped)
        except json.JSONDecodeError:
            # Truncated JSON still is not a summary.
            return stripped.count('":') >= 2
        return True

    return len(_HTML_TAG_RE.findall(stripped)) >= 2


def sanitize(summary: str) -> str:
    return UNSUMMARIZED if looks_like_raw_dump(summary) else summary


def _truncate(text: str) -> str:
    if len(text) <= MAX_SUMMARY_CHARS:
        return text
    return text[: MAX_SUMMARY_CHARS - 3].rstrip() + "..."


def summarize(result: ToolResult) -> str:
    data = result.structured or {}
    for key in _SUMMARY_KEYS:
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            return sanitize(_truncate(value.strip()))

    text = result.text.strip()
    if text:
        title = _PAGE_TITLE_RE.search(text)
        url = _PAGE_URL_RE.search(text)
        if title or url:
            parts = [f"Opened {title.group(1).strip()}" if title else "Opened page"]
            if url:
                parts.append(f"({url.group(1)})")
            return " ".join(parts)
        if looks_like_raw_dump(text):
            return UNSUMMARIZED
        lines = [line.strip() for line in text.splitlines() if line.strip()]
        return sanitize(_truncate(" ".join(lines[:3])))

    items = result.non_text_items
    if items:
        kinds = sorted({str(item.get("type", "item")) for item in items})
        noun = "item" if len(items) == 1 else "items"
        return f"Returned {len(items)} {'/'.join(kinds)} {noun}."
    return "Completed with no output."


def synthesize(steps: Sequence[Step]) -> tuple[str, bool]:
    """Concatenate per-step summaries in order.

    Success means every attempted step succeeded; skipped steps never fail
    the workflow.
    """

    lines: list[str] = []
    for step in steps:
        label = f"Step {step.index}"
        if step.status is StepStatus.SUCCEEDED:
            lines.append(f"{label}: {sanitize(step.summary)}")
        elif step.status is StepStatus.FAILED:
            lines.append(f"{label} failed: {step.error}")
        elif step.status is StepStatus.SKIPPED:
            lines.append(f"{label} skipped: {step.error}")
        else:
            lines.append(f"{label} was not run.")

    success = all(s.status is StepStatus.SUCCEEDED for s in steps if s.attempted)
    return "\n".join(lines), success
