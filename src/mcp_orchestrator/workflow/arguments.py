"""Build the arguments dispatched for one step.

Layers, later ones winning on key collision:

1. fields parsed from the step's own text (URL, domain, ``name: value`` pairs)
2. the context extracted from the immediately preceding step, copied verbatim
3. shaping to the operation's input schema (free-text properties)
4. a pluggable default-resolution policy
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from typing import Any, Protocol

from mcp_orchestrator.models import Operation
from mcp_orchestrator.vocabulary import DOMAIN_RE, GEOLOCATION, NAVIGATION, URL_RE

logger = logging.getLogger(__name__)

FREE_TEXT_PROPERTIES: tuple[str, ...] = (
    "query",
    "text_query",
    "search_query",
    "textQuery",
    "q",
    "input",
    "prompt",
    "question",
    "task",
)

_QUOTED_RE = re.compile(r"\"([^\"]+)\"|“([^”]+)”")
_PAIR_RE = re.compile(r"\b([A-Za-z_][A-Za-z0-9_]*)\s*:\s*(\"[^\"]*\"|[^\s,;]+)")
_FIND_RE = re.compile(r"\bfind\s+(?:the\s+|a\s+|an\s+)?(.+?)(?:\s+(?:to|near|that|for)\b|[.,;]|$)", re.I)
_LEADING_FILLER_RE = re.compile(r"^(?:please\s+|can you\s+|could you\s+|use\s+\S+\s+to\s+)+", re.I)
_TRAILING_PUNCT = ".,;:!?)]}'\""


def fields_from_text(text: str) -> dict[str, str]:
    """Explicit fields a step's own text carries."""

    fields: dict[str, str] = {}
    url = URL_RE.search(text)
    if url:
        fields["url"] = url.group(0).rstrip(_TRAILING_PUNCT)

    without_urls = URL_RE.sub(" ", text)
    domain = DOMAIN_RE.search(without_urls)
    if domain:
        fields["domain"] = domain.group(0).lower()
        fields.setdefault("url", f"https://{fields['domain']}")

    for m in _PAIR_RE.finditer(without_urls):
        key, value = m.group(1).lower(), m.group(2).strip('"')
        if value:
            fields.setdefault(key, value)
    return fields


def quoted_phrase(text: str) -> str | None:
    m = _QUOTED_RE.search(text)
    if not m:
        return None
    return (m.group(1) or m.group(2)).strip() or None


def free_text(step_text: str, operation: Operation) -> str:
    """The phrase to put in a free-text property such as ``query``."""

    quoted = quoted_phrase(step_text)
    if quoted:
        return quoted
    if operation.has_capability(GEOLOCATION):
        m = _FIND_RE.search(step_text)
        if m and m.group(1).strip():
            return m.group(1).strip()
    return _LEADING_FILLER_RE.sub("", step_text.strip()).rstrip(_TRAILING_PUNCT).strip()


class DefaultResolutionPolicy(Protocol):
    def apply(self, step_text: str, operation: Operation, arguments: dict[str, Any]) -> dict[str, Any]:
        """Return `arguments`, possibly with defaults filled in."""


class NoDefault:
    def apply(self, step_text: str, operation: Operation, arguments: dict[str, Any]) -> dict[str, Any]:
        return arguments


class EventMarketplaceDefault:
    """Send event/ticket navigation steps that name no site to a fixed marketplace."""

    EVENT_RE = re.compile(r"\b(concerts?|tickets?|events?|shows?|tour|gig|playing)\b", re.I)

    def __init__(self, url: str) -> None:
        self.url = url

    def apply(self, step_text: str, operation: Operation, arguments: dict[str, Any]) -> dict[str, Any]:
        if "url" in arguments or not operation.has_capability(NAVIGATION):
            return arguments
        if not self.EVENT_RE.search(step_text):
            return arguments
        logger.info(
            "Applying event marketplace default",
            extra={"operation": operation.name, "url": self.url},
        )
        return {**arguments, "url": self.url}


class ArgumentBuilder:
    def __init__(self, default_policy: DefaultResolutionPolicy | None = None) -> None:
        self.default_policy: DefaultResolutionPolicy = default_policy or NoDefault()

    def build(
        self,
        step_text: str,
        operation: Operation,
        context: Mapping[str, str] | None = None,
    ) -> dict[str, Any]:
        arguments: dict[str, Any] = dict(fields_from_text(step_text))
        if context:
            arguments.update(context)

        properties = operation.schema_properties
        phrase = free_text(step_text, operation)
        venue = context.get("venue") if context else None
        if venue and operation.has_capability(GEOLOCATION) and venue.lower() not in phrase.lower():
            phrase = f"{phrase} near {venue}"

        if properties:
            for name in FREE_TEXT_PROPERTIES:
                if name in properties and name not in arguments:
                    arguments[name] = phrase
        elif not any(name in arguments for name in FREE_TEXT_PROPERTIES):
            arguments["query"] = phrase

        return self.default_policy.apply(step_text, operation, arguments)
