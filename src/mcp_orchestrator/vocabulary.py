"""Keyword vocabulary shared by capability inference, scoring and planning.

Everything here is heuristic: plain token sets and regexes, no
language model.
"""

from __future__ import annotations

import re

NAVIGATION = "navigation"
CAPTURE = "capture"
GEOLOCATION = "geolocation"
REASONING = "reasoning"
SEARCH = "search"

KNOWN_CAPABILITIES: tuple[str, ...] = (NAVIGATION, CAPTURE, GEOLOCATION, REASONING, SEARCH)

URL_RE = re.compile(r"https?://[^\s<>\"')\]]+", re.IGNORECASE)
DOMAIN_RE = re.compile(
    r"\b(?:www\.)?(?:[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+(?:com|org|net|io|dev|app|co|edu|gov|ai|info|tv|us|uk|de)\b",
    re.IGNORECASE,
)
_TOKEN_RE = re.compile(r"[a-z0-9]+")

STOPWORDS: frozenset[str] = frozenset(
    {
        "a",
        "an",
        "and",
        "are",
        "as",
        "at",
        "be",
        "by",
        "for",
        "from",
        "get",
        "i",
        "in",
        "into",
        "is",
        "it",
        "its",
        "me",
        "my",
        "of",
        "on",
        "or",
        "please",
        "that",
        "the",
        "then",
        "this",
        "to",
        "use",
        "using",
        "we",
        "what",
        "when",
        "where",
        "which",
        "with",
        "you",
        "your",
    }
)

# Broad vocabulary: used to infer what an operation can do from its name and
# description when the target does not declare capabilities explicitly.
CAPABILITY_KEYWORDS: dict[str, frozenset[str]] = {
    NAVIGATION: frozenset(
        {"navigate", "browse", "browser", "visit", "open", "website", "site", "page", "url", "web", "link", "click"}
    ),
    CAPTURE: frozenset({"screenshot", "capture", "snapshot", "screengrab", "photo", "image"}),
    GEOLOCATION: frozenset(
        {
            "map",
            "place",
            "location",
            "address",
            "near",
            "nearby",
            "nearest",
            "closest",
            "direction",
            "route",
            "geocode",
            "coordinate",
            "city",
            "neighborhood",
        }
    ),
    REASONING: frozenset(
        {
            "agent",
            "reason",
            "reasoning",
            "summarize",
            "summary",
            "explain",
            "analyze",
            "analysis",
            "calculate",
            "report",
            "plan",
            "itinerary",
            "answer",
            "ask",
            "chat",
        }
    ),
    SEARCH: frozenset({"search", "find", "lookup", "query", "news", "trend"}),
}

# Narrow vocabulary: phrases that imply a distinct piece of work. Two distinct
# capabilities implied by one request means it needs planning.
INTENT_PATTERNS: dict[str, re.Pattern[str]] = {
    NAVIGATION: re.compile(r"\b(navigate|go to|visit|browse|open (?:the )?(?:page|site|website|url))\b", re.I),
    CAPTURE: re.compile(r"\b(screenshot|screen shot|capture)\b", re.I),
    GEOLOCATION: re.compile(
        r"\b(directions?|nearest|closest|nearby|near me|google maps|on (?:a|the) map|find places?)\b", re.I
    ),
    REASONING: re.compile(r"\b(summari[sz]e|itinerary|calculate|write (?:a |an )?report|analy[sz]e)\b", re.I),
    SEARCH: re.compile(r"\b(search for|look up|latest news)\b", re.I),
}

# Step-text signals that boost an operation's score for one capability.
CAPTURE_SIGNAL_RE = re.compile(r"\b(screenshot|screen shot|capture)\b", re.I)
PLACE_SIGNAL_RE = re.compile(
    r"\b(place|places|location|locations|address|near|nearby|nearest|closest|directions?|map|maps|city|neighbou?rhood|where is)\b",
    re.I,
)
REASONING_SIGNAL_RE = re.compile(r"\b(summari[sz]e|explain|analy[sz]e|calculate|itinerary|report|reason)\b", re.I)


def _stem(token: str) -> str:
    if len(token) > 4 and token.endswith("ies"):
        return token[:-3] + "y"
    if len(token) > 3 and token.endswith("s") and not token.endswith("ss"):
        return token[:-1]
    return token


def tokenize(text: str) -> list[str]:
    """Lower-case word tokens without stopwords, lightly stemmed, in order."""

    return [_stem(t) for t in _TOKEN_RE.findall(text.lower()) if t not in STOPWORDS]


_STEMMED_KEYWORDS: dict[str, frozenset[str]] = {
    cap: frozenset(_stem(word) for word in words) for cap, words in CAPABILITY_KEYWORDS.items()
}


def has_url_signal(text: str) -> bool:
    return bool(URL_RE.search(text) or DOMAIN_RE.search(text))


def infer_capabilities(text: str) -> tuple[str, ...]:
    """Capabilities suggested by an operation's name and description."""

    tokens = set(tokenize(text))
    return tuple(cap for cap in KNOWN_CAPABILITIES if tokens & _STEMMED_KEYWORDS[cap])


def implied_capabilities(text: str) -> set[str]:
    """Distinct pieces of work a free-text request asks for."""

    found = {cap for cap, pattern in INTENT_PATTERNS.items() if pattern.search(text)}
    if URL_RE.search(text):
        found.add(NAVIGATION)
    return found
