"""Unit tests for JSON-RPC framing and result normalization."""

from __future__ import annotations

import json

import pytest

from mcp_orchestrator.errors import OperationError
from mcp_orchestrator.rpc.protocol import (
    build_notification,
    build_request,
    correlation_id,
    encode_message,
    error_from_envelope,
    normalize_tool_result,
    operations_from_listing,
    parse_line,
)


def test_encoded_messages_are_single_lines() -> None:
    line = encode_message(build_request(1, "tools/call", {"name": "x", "arguments": {"t": "a\nb"}}))
    assert line.endswith("\n")
    assert line.count("\n") == 1
    assert json.loads(line)["params"]["arguments"]["t"] == "a\nb"


def test_notifications_carry_no_id() -> None:
    assert "id" not in build_notification("notifications/initialized")


@pytest.mark.parametrize("line", ["", "   ", "not json", "[1, 2]", '"text"', "{broken"])
def test_parse_line_ignores_non_messages(line: str) -> None:
    assert parse_line(line) is None


def test_correlation_id_accepts_only_numbers() -> None:
    assert correlation_id({"id": 2}) == 2
    assert correlation_id({"id": 3.0}) == 3
    assert correlation_id({"id": True}) is None
    assert correlation_id({"id": "2"}) is None
    assert correlation_id({"method": "notifications/message"}) is None


def test_error_from_envelope_keeps_code_and_message() -> None:
    err = error_from_envelope({"code": -32603, "message": "quota exceeded"})
    assert err.code == -32603
    assert "quota exceeded" in str(err)
    assert "-32603" in str(err)


def test_error_from_envelope_tolerates_odd_shapes() -> None:
    assert str(error_from_envelope("boom")) == "boom"
    assert isinstance(error_from_envelope(None), OperationError)


def test_normalize_content_result() -> None:
    result = normalize_tool_result(
        {
            "content": [
                {"type": "text", "text": "line one"},
                {"type": "image", "data": "AAAA", "mimeType": "image/png"},
                {"type": "text", "text": "line two"},
            ]
        }
    )
    assert result.text == "line one\nline two"
    assert [i["type"] for i in result.non_text_items] == ["image"]


def test_normalize_bare_dict_becomes_structured() -> None:
    result = normalize_tool_result({"venue": "Madison Square Garden", "date": "May 4, 2025"})
    assert result.structured == {"venue": "Madison Square Garden", "date": "May 4, 2025"}
    assert result.data()["venue"] == "Madison Square Garden"
    assert "Madison Square Garden" in result.text


def test_normalize_is_error_raises() -> None:
    with pytest.raises(OperationError) as exc:
        normalize_tool_result({"isError": True, "content": [{"type": "text", "text": "bad url"}]})
    assert "bad url" in str(exc.value)


def test_data_parses_json_text() -> None:
    result = normalize_tool_result({"content": [{"type": "text", "text": '{"url": "https://x.io"}'}]})
    assert result.data() == {"url": "https://x.io"}


def test_operations_from_listing_skips_malformed_entries() -> None:
    ops = operations_from_listing(
        {
            "tools": [
                {"name": "browser_navigate", "description": "Navigate to a URL"},
                {"description": "no name"},
                "junk",
            ]
        }
    )
    assert [op.name for op in ops] == ["browser_navigate"]
    assert "navigation" in ops[0].capabilities
