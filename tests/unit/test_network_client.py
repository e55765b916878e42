"""Unit tests for the HTTP transport (fake transport adapter, no sockets)."""

from __future__ import annotations

import pytest
import requests

from mcp_orchestrator.errors import (
    ConfigurationError,
    ConnectionLostError,
    NoCompatibleEndpointError,
    OperationError,
    RpcTimeoutError,
)
from mcp_orchestrator.models import NetworkEndpoint, Operation, ProcessLaunch, Target
from mcp_orchestrator.rpc.network_client import NetworkRpcClient, is_envelope, join_url


def _client(session: requests.Session) -> NetworkRpcClient:
    return NetworkRpcClient(
        timeout_seconds=5.0,
        paths=["/mcp/invoke", "/invoke", "/tools/call", ""],
        session=session,
    )


def test_posts_operation_envelope_to_first_path(fake_http, http_session, browser_target) -> None:
    fake_http.route(
        "POST",
        "http://browser.test/mcp/invoke",
        body={"result": {"content": [{"type": "text", "text": "navigated"}]}},
    )

    result = _client(http_session).call(browser_target, "browser_navigate", {"url": "https://a.io"})

    assert result.text == "navigated"
    assert fake_http.posted() == [
        (
            "http://browser.test/mcp/invoke",
            {"operation": "browser_navigate", "arguments": {"url": "https://a.io"}},
        )
    ]


def test_probes_paths_in_order_and_caches_the_winner(
    fake_http, http_session, browser_target
) -> None:
    fake_http.route("POST", "http://browser.test/mcp/invoke", status=405, body={"detail": "no"})
    fake_http.route("POST", "http://browser.test/invoke", status=200, body="<html>landing</html>")
    fake_http.route("POST", "http://browser.test/tools/call", body={"content": [{"type": "text", "text": "ok"}]})
    client = _client(http_session)

    assert client.call(browser_target, "browser_navigate", {}).text == "ok"
    assert client.resolved_path("browser") == "/tools/call"

    fake_http.calls.clear()
    client.call(browser_target, "browser_navigate", {})
    assert [url for url, _ in fake_http.posted()] == ["http://browser.test/tools/call"]


def test_endpoint_itself_is_the_last_candidate(fake_http, http_session, browser_target) -> None:
    fake_http.route("POST", "http://browser.test/", body={"result": "plain"})

    result = _client(http_session).call(browser_target, "browser_navigate", {})

    assert result.text == "plain"


def test_error_envelope_stops_probing(fake_http, http_session, browser_target) -> None:
    fake_http.route(
        "POST",
        "http://browser.test/mcp/invoke",
        status=500,
        body={"error": {"code": -32603, "message": "quota exceeded"}},
    )

    with pytest.raises(OperationError, match="quota exceeded"):
        _client(http_session).call(browser_target, "browser_navigate", {})
    assert len(fake_http.posted()) == 1


def test_exhausted_paths_list_every_attempt(fake_http, http_session, browser_target) -> None:
    with pytest.raises(NoCompatibleEndpointError) as exc:
        _client(http_session).call(browser_target, "browser_navigate", {})

    assert len(exc.value.attempts) == 4
    assert "http://browser.test/mcp/invoke -> HTTP 404" in exc.value.attempts


def test_fixed_path_is_the_only_candidate(fake_http, http_session, maps_target) -> None:
    with pytest.raises(NoCompatibleEndpointError):
        _client(http_session).call(maps_target, "maps_search_places", {})
    assert [url for url, _ in fake_http.posted()] == ["http://maps.test/invoke"]


def test_connection_failure_is_connection_lost(fake_http, http_session, browser_target) -> None:
    fake_http.fail("POST", "http://browser.test/mcp/invoke", requests.ConnectionError("refused"))
    with pytest.raises(ConnectionLostError):
        _client(http_session).call(browser_target, "browser_navigate", {})


def test_read_timeout_is_rpc_timeout(fake_http, http_session, browser_target) -> None:
    fake_http.fail("POST", "http://browser.test/mcp/invoke", requests.ReadTimeout("slow"))
    with pytest.raises(RpcTimeoutError):
        _client(http_session).call(browser_target, "browser_navigate", {})


def test_is_error_result_raises_operation_error(fake_http, http_session, browser_target) -> None:
    fake_http.route(
        "POST",
        "http://browser.test/mcp/invoke",
        body={"result": {"isError": True, "content": [{"type": "text", "text": "bad url"}]}},
    )
    with pytest.raises(OperationError, match="bad url"):
        _client(http_session).call(browser_target, "browser_navigate", {})


def test_list_operations_uses_listing_endpoint(fake_http, http_session, browser_target) -> None:
    fake_http.route(
        "GET",
        "http://browser.test/tools",
        body={"tools": [{"name": "browser_click", "description": "Click an element"}]},
    )
    ops = _client(http_session).list_operations(browser_target)
    assert [op.name for op in ops] == ["browser_click"]


def test_list_operations_falls_back_to_declared(http_session, browser_target) -> None:
    ops = _client(http_session).list_operations(browser_target)
    assert [op.name for op in ops] == ["browser_navigate", "browser_take_screenshot"]


def test_process_target_is_a_configuration_error(http_session) -> None:
    target = Target(id="p", process=ProcessLaunch(command="x"), operations=[Operation(name="a")])
    with pytest.raises(ConfigurationError):
        _client(http_session).call(target, "a", {})


def test_helpers() -> None:
    assert is_envelope({"result": 1})
    assert is_envelope({"error": None})
    assert not is_envelope({"detail": "x"})
    assert not is_envelope([1])
    assert join_url("http://a.test/", "/invoke") == "http://a.test/invoke"
    assert join_url("http://a.test", "") == "http://a.test"


def test_endpoint_headers_are_sent(fake_http, http_session) -> None:
    target = Target(
        id="auth",
        network=NetworkEndpoint(url="http://auth.test", path="/invoke", headers={"X-Api-Key": "k"}),
        operations=[Operation(name="a")],
    )
    fake_http.route("POST", "http://auth.test/invoke", body={"result": "ok"})
    seen: list[str | None] = []
    original_send = fake_http.send

    def _send(request, **kwargs):  # noqa: ANN001, ANN202
        seen.append(request.headers.get("X-Api-Key"))
        return original_send(request, **kwargs)

    fake_http.send = _send
    _client(http_session).call(target, "a", {})
    assert seen == ["k"]
