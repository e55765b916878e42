"""Pull well-known fields out of a step result.

One extractor per field kind. Each looks at the structured payload first and
falls back to patterns over the result text. Nothing here validates what it
finds; a wrong venue name is still a venue name.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from typing import Any, Protocol
from urllib.parse import urlparse

from mcp_orchestrator.rpc.protocol import ToolResult
from mcp_orchestrator.vocabulary import DOMAIN_RE, URL_RE
from mcp_orchestrator.workflow.models import ExtractedContext

_VENUE_SUFFIXES = r"(?:Theater|Theatre|Arena|Stadium|Hall|Center|Centre|Park|Garden|Amphitheater|Club|Ballroom)"
_MONTHS = r"(?:January|February|March|April|May|June|July|August|September|October|November|December)"

_VENUE_PATTERNS = (
    re.compile(r"\bvenue\s*[:\-]\s*([^\n,.]+)", re.I),
    # Accessibility snapshots: `- span "Madison Square Garden"`.
    re.compile(r"\b(?:p|span|text|heading|link)\s+\"([^\"]*" + _VENUE_SUFFIXES + r"[^\"]*)\""),
    re.compile(r"\b((?:[A-Z][\w'&.-]*\s+){1,5}" + _VENUE_SUFFIXES + r")\b"),
    re.compile(r"(?:\bat|@)\s+([A-Z][^,.\n]{3,60})"),
)
_DATE_PATTERNS = (
    re.compile(r"\bdate\s*[:\-]\s*([^\n,]+(?:,\s*\d{4})?)", re.I),
    re.compile(r"\b((?:Mon|Tues|Wednes|Thurs|Fri|Satur|Sun)day,?\s+" + _MONTHS + r"\s+\d{1,2},?\s+\d{4})\b", re.I),
    re.compile(r"\b(" + _MONTHS + r"\s+\d{1,2}(?:,?\s+\d{4})?)\b", re.I),
    re.compile(r"\b(\d{4}-\d{2}-\d{2})\b"),
)
_TIME_PATTERNS = (
    re.compile(r"\btime\s*[:\-]\s*(\d{1,2}(?::\d{2})?\s*(?:AM|PM)?)", re.I),
    re.compile(r"\b(\d{1,2}:\d{2}\s*(?:AM|PM))", re.I),
    re.compile(r"\b(\d{1,2}\s*(?:AM|PM))\b", re.I),
)
_LOCATION_PATTERNS = (
    re.compile(r"\b(?:address|location)\s*[:\-]\s*([^\n]+)", re.I),
)
_TRAILING_PUNCT = ".,;:!?)]}'\""


class FieldExtractor(Protocol):
    kind: str

    def extract(self, data: Mapping[str, Any], text: str) -> str | None:
        """Return the field value, or None when the result does not carry it."""


def _clean(value: str) -> str:
    return " ".join(value.split()).strip(_TRAILING_PUNCT + " ")


def _from_keys(data: Mapping[str, Any], keys: Iterable[str]) -> str | None:
    for key in keys:
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            return _clean(value)
    return None


def _first_match(patterns: Iterable[re.Pattern[str]], text: str) -> str | None:
    for pattern in patterns:
        m = pattern.search(text)
        if m:
            value = _clean(m.group(1))
            if value:
                return value
    return None


class UrlExtractor:
    kind = "url"

    def extract(self, data: Mapping[str, Any], text: str) -> str | None:
        found = _from_keys(data, ("url", "website", "link", "href", "page_url"))
        if found and URL_RE.match(found):
            return found
        m = URL_RE.search(text)
        return m.group(0).rstrip(_TRAILING_PUNCT) if m else None


class DomainExtractor:
    kind = "domain"

    def extract(self, data: Mapping[str, Any], text: str) -> str | None:
        url = UrlExtractor().extract(data, text)
        if url:
            host = urlparse(url).hostname
            if host:
                return host.lower()
        m = DOMAIN_RE.search(text)
        return m.group(0).lower() if m else None


class VenueExtractor:
    kind = "venue"

    def extract(self, data: Mapping[str, Any], text: str) -> str | None:
        return _from_keys(data, ("venue", "venue_name", "place_name")) or _first_match(
            _VENUE_PATTERNS, text
        )


class DateExtractor:
    kind = "date"

    def extract(self, data: Mapping[str, Any], text: str) -> str | None:
        return _from_keys(data, ("date", "event_date", "start_date")) or _first_match(
            _DATE_PATTERNS, text
        )


class TimeExtractor:
    kind = "time"

    def extract(self, data: Mapping[str, Any], text: str) -> str | None:
        return _from_keys(data, ("time", "start_time", "event_time")) or _first_match(
            _TIME_PATTERNS, text
        )


class LocationExtractor:
    kind = "location"

    def extract(self, data: Mapping[str, Any], text: str) -> str | None:
        found = _from_keys(data, ("location", "address", "formatted_address", "vicinity"))
        if found:
            return found
        location = data.get("location")
        if isinstance(location, Mapping):
            lat, lng = location.get("lat"), location.get("lng")
            if isinstance(lat, int | float) and isinstance(lng, int | float):
                return f"{lat},{lng}"
        return _first_match(_LOCATION_PATTERNS, text)


DEFAULT_EXTRACTORS: tuple[FieldExtractor, ...] = (
    UrlExtractor(),
    DomainExtractor(),
    VenueExtractor(),
    DateExtractor(),
    TimeExtractor(),
    LocationExtractor(),
)


def _primary_record(data: Mapping[str, Any]) -> Mapping[str, Any]:
    """Search-style payloads wrap their hits in a list; the first hit wins."""

    for key in ("results", "places", "items", "events"):
        hits = data.get(key)
        if isinstance(hits, list) and hits and isinstance(hits[0], Mapping):
            return {**hits[0], **{k: v for k, v in data.items() if k != key}}
    return data


def extract_context(
    result: ToolResult, extractors: Iterable[FieldExtractor] = DEFAULT_EXTRACTORS
) -> ExtractedContext:
    data = _primary_record(result.data())
    text = result.text
    found: dict[str, str] = {}
    for extractor in extractors:
        value = extractor.extract(data, text)
        if value:
            found[extractor.kind] = value
    return ExtractedContext.of(found)
