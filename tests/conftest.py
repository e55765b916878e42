"""Test configuration and fixtures."""

from __future__ import annotations

import json
import os
import sys
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest
import requests
from requests.adapters import BaseAdapter

from mcp_orchestrator.config import OrchestratorSettings
from mcp_orchestrator.models import NetworkEndpoint, Operation, ProcessLaunch, Target
from mcp_orchestrator.rpc.process_client import ProcessRpcClient, TimeoutPolicy

FAKE_SERVER = Path(__file__).parent / "fixtures" / "fake_server.py"


@pytest.fixture
def settings_factory(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> Callable[..., OrchestratorSettings]:
    """Build settings from MCP_* environment overrides, isolated from the real env."""

    for key in list(os.environ):
        if key.startswith("MCP_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    monkeypatch.chdir(tmp_path)

    def _make(**env: str) -> OrchestratorSettings:
        defaults = {
            "MCP_TARGETS_FILE": str(tmp_path / "targets.json"),
            "MCP_CHOICE_HISTORY_FILE": str(tmp_path / "agent_state" / "choices.json"),
        }
        for key, value in {**defaults, **env}.items():
            monkeypatch.setenv(key, value)
        return OrchestratorSettings()

    return _make


@pytest.fixture
def process_target() -> Callable[..., Target]:
    """Target spawning the fake JSON-RPC server with extra command-line options."""

    def _make(*options: str, target_id: str = "fake", operations: list[Operation] | None = None) -> Target:
        return Target(
            id=target_id,
            process=ProcessLaunch(command=sys.executable, args=[str(FAKE_SERVER), *options]),
            operations=operations
            or [
                Operation(name="echo", description="Echo the arguments back"),
                Operation(name="fail", description="Always fails"),
            ],
        )

    return _make


@pytest.fixture
def process_client() -> Iterator[ProcessRpcClient]:
    client = ProcessRpcClient(
        timeouts=TimeoutPolicy(handshake=10.0, listing=10.0, call=10.0, slow_call=20.0)
    )
    yield client
    client.close_all()


@pytest.fixture
def browser_target() -> Target:
    return Target(
        id="browser",
        name="Browser",
        network=NetworkEndpoint(url="http://browser.test"),
        operations=[
            Operation(
                name="browser_navigate",
                description="Navigate to a URL",
                inputSchema={
                    "type": "object",
                    "properties": {"url": {"type": "string"}},
                    "required": ["url"],
                },
            ),
            Operation(
                name="browser_take_screenshot",
                description="Take a screenshot of the current page",
                slow=True,
            ),
        ],
    )


@pytest.fixture
def maps_target() -> Target:
    return Target(
        id="maps",
        name="Maps",
        network=NetworkEndpoint(url="http://maps.test", path="/invoke"),
        operations=[
            Operation(
                name="maps_search_places",
                description="Search for places near a location",
                inputSchema={
                    "type": "object",
                    "properties": {"text_query": {"type": "string"}},
                },
            ),
        ],
    )


@pytest.fixture
def agent_target() -> Target:
    return Target(
        id="agent",
        name="Agent",
        network=NetworkEndpoint(url="http://agent.test"),
        operations=[
            Operation(
                name="ask_agent",
                description="Ask the reasoning agent to analyze and summarize",
                inputSchema={"type": "object", "properties": {"input": {"type": "string"}}},
            ),
        ],
    )


class FakeTransport(BaseAdapter):
    """A `requests` transport adapter answering from a route table.

    Unrouted requests get a 404. A route may also hold an exception to raise.
    """

    def __init__(self) -> None:
        super().__init__()
        self.routes: dict[tuple[str, str], object] = {}
        self.calls: list[tuple[str, str, object]] = []

    def route(self, method: str, url: str, status: int = 200, body: object = None) -> None:
        self.routes[(method.upper(), url)] = (status, body)

    def fail(self, method: str, url: str, error: Exception) -> None:
        self.routes[(method.upper(), url)] = error

    def posted(self) -> list[tuple[str, object]]:
        return [(url, json.loads(body) if body else None) for m, url, body in self.calls if m == "POST"]

    def send(self, request, stream=False, timeout=None, verify=True, cert=None, proxies=None):  # noqa: ANN001
        self.calls.append((request.method, request.url, request.body))
        outcome = self.routes.get((request.method, request.url), (404, {"detail": "Not Found"}))
        if isinstance(outcome, Exception):
            raise outcome
        status, body = outcome  # type: ignore[misc]

        resp = requests.Response()
        resp.status_code = status
        resp.request = request
        resp.url = request.url
        resp.encoding = "utf-8"
        if isinstance(body, str):
            resp._content = body.encode("utf-8")
            resp.headers["Content-Type"] = "text/html"
        else:
            resp._content = json.dumps(body).encode("utf-8")
            resp.headers["Content-Type"] = "application/json"
        return resp

    def close(self) -> None:
        pass


@pytest.fixture
def fake_http() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def http_session(fake_http: FakeTransport) -> requests.Session:
    session = requests.Session()
    session.mount("http://", fake_http)
    return session
