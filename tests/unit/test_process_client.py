"""Unit tests for the stdio JSON-RPC client, against a real fake server process."""

from __future__ import annotations

import json
import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from mcp_orchestrator.errors import (
    ConfigurationError,
    ConnectionLostError,
    HandshakeError,
    OperationError,
    RpcTimeoutError,
)
from mcp_orchestrator.models import NetworkEndpoint, Operation, ProcessLaunch, Target
from mcp_orchestrator.rpc.process_client import ProcessRpcClient, ProcessSession, TimeoutPolicy
from mcp_orchestrator.rpc.session_state import SessionState


def _wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


def _recorded(path: Path) -> list[str]:
    return path.read_text(encoding="utf-8").splitlines()


def test_call_returns_normalized_result(process_client: ProcessRpcClient, process_target) -> None:
    target = process_target()

    result = process_client.call(target, "echo", {"text": "hello"})

    assert json.loads(result.text) == {"text": "hello"}
    session = process_client.session("fake")
    assert session is not None
    assert session.state is SessionState.IDLE
    assert session.server_info["name"] == "fake-server"


def test_ready_notification_precedes_first_call(
    process_client: ProcessRpcClient, process_target, tmp_path: Path
) -> None:
    record = tmp_path / "received.txt"
    target = process_target("--record", str(record))

    process_client.call(target, "echo", {})

    assert _recorded(record) == ["initialize", "notifications/initialized", "tools/call"]


def test_error_line_rejects_pending_call_immediately(process_target) -> None:
    client = ProcessRpcClient(
        timeouts=TimeoutPolicy(handshake=10.0, listing=10.0, call=30.0, slow_call=30.0)
    )
    try:
        target = process_target()
        client.initiate(target)

        started = time.monotonic()
        with pytest.raises(OperationError) as exc:
            client.call(target, "fail", {})
        elapsed = time.monotonic() - started

        assert exc.value.code == -32603
        assert "quota exceeded" in str(exc.value)
        assert elapsed < 5.0
    finally:
        client.close_all()


def test_error_wins_over_result_in_same_response(
    process_client: ProcessRpcClient, process_target
) -> None:
    with pytest.raises(OperationError, match="partial failure"):
        process_client.call(process_target(), "fail_with_result", {})


def test_timeout_rejects_only_that_request(process_target) -> None:
    client = ProcessRpcClient(
        timeouts=TimeoutPolicy(handshake=10.0, listing=10.0, call=0.5, slow_call=0.5)
    )
    try:
        target = process_target()
        client.initiate(target)
        session = client.session("fake")
        assert session is not None
        pid = session.pid

        with pytest.raises(RpcTimeoutError):
            client.call(target, "never", {})

        result = client.call(target, "echo", {"text": "still alive"})
        assert json.loads(result.text) == {"text": "still alive"}
        assert client.session("fake") is session
        assert session.pid == pid
    finally:
        client.close_all()


def test_exit_during_handshake_rejects_with_connection_lost(
    process_client: ProcessRpcClient, process_target
) -> None:
    with pytest.raises(ConnectionLostError):
        process_client.call(process_target("--exit-on-initialize"), "echo", {})

    assert process_client.session("fake") is None


def test_next_call_after_handshake_exit_respawns(
    process_client: ProcessRpcClient, process_target, tmp_path: Path
) -> None:
    record = tmp_path / "received.txt"
    marker = tmp_path / "spawned-once"
    target = process_target("--record", str(record), "--exit-once", str(marker))

    with pytest.raises(ConnectionLostError):
        process_client.call(target, "echo", {})
    assert marker.exists()

    result = process_client.call(target, "echo", {"text": "second"})

    assert json.loads(result.text) == {"text": "second"}
    assert _recorded(record) == [
        "initialize",
        "initialize",
        "notifications/initialized",
        "tools/call",
    ]


def test_unanswered_handshake_is_a_handshake_error(process_target) -> None:
    client = ProcessRpcClient(
        timeouts=TimeoutPolicy(handshake=0.5, listing=10.0, call=10.0, slow_call=10.0)
    )
    try:
        with pytest.raises(HandshakeError):
            client.call(process_target("--silent"), "echo", {})
        assert client.session("fake") is None
    finally:
        client.close_all()


def test_concurrent_callers_share_one_handshake(
    process_client: ProcessRpcClient, process_target, tmp_path: Path
) -> None:
    record = tmp_path / "received.txt"
    target = process_target("--record", str(record))

    with ThreadPoolExecutor(max_workers=5) as pool:
        results = list(pool.map(lambda i: process_client.call(target, "echo", {"n": i}), range(5)))

    assert sorted(json.loads(r.text)["n"] for r in results) == [0, 1, 2, 3, 4]
    received = _recorded(record)
    assert received.count("initialize") == 1
    assert received[:2] == ["initialize", "notifications/initialized"]
    assert received.count("tools/call") == 5


def test_close_rejects_outstanding_requests(
    process_client: ProcessRpcClient, process_target
) -> None:
    target = process_target()
    process_client.initiate(target)
    session = process_client.session("fake")
    assert session is not None

    errors: list[BaseException] = []

    def _call() -> None:
        try:
            process_client.call(target, "never", {})
        except BaseException as e:  # noqa: BLE001 (collected for the assertion)
            errors.append(e)

    worker = threading.Thread(target=_call)
    worker.start()
    assert _wait_for(lambda: session.pending_count == 1)

    process_client.close("fake")
    worker.join(timeout=5)

    assert len(errors) == 1
    assert isinstance(errors[0], ConnectionLostError)
    assert session.state is SessionState.CLOSED

    result = process_client.call(target, "echo", {"text": "fresh"})
    assert json.loads(result.text) == {"text": "fresh"}
    assert process_client.session("fake") is not session


def test_process_exit_during_call_rejects_and_next_call_respawns(
    process_client: ProcessRpcClient, process_target
) -> None:
    target = process_target()

    with pytest.raises(ConnectionLostError):
        process_client.call(target, "exit", {})

    result = process_client.call(target, "echo", {"text": "back"})
    assert json.loads(result.text) == {"text": "back"}


def test_noisy_output_is_ignored(process_client: ProcessRpcClient, process_target) -> None:
    result = process_client.call(process_target("--noisy"), "echo", {"text": "ok"})
    assert json.loads(result.text) == {"text": "ok"}


def test_list_operations(process_client: ProcessRpcClient, process_target) -> None:
    ops = process_client.list_operations(process_target())
    assert [op.name for op in ops] == ["echo", "fail"]


def test_spawn_failure_is_connection_lost(process_client: ProcessRpcClient) -> None:
    target = Target(
        id="missing",
        process=ProcessLaunch(command="/nonexistent/definitely-not-a-binary"),
        operations=[Operation(name="echo")],
    )
    with pytest.raises(ConnectionLostError):
        process_client.call(target, "echo", {})
    assert process_client.session("missing") is None


def test_idle_session_is_torn_down(process_target) -> None:
    client = ProcessRpcClient(
        timeouts=TimeoutPolicy(handshake=10.0, listing=10.0, call=10.0, slow_call=10.0),
        idle_timeout_seconds=0.3,
    )
    try:
        target = process_target()
        client.call(target, "echo", {})
        session = client.session("fake")
        assert session is not None

        assert _wait_for(lambda: client.session("fake") is None)
        assert session.state is SessionState.CLOSED

        result = client.call(target, "echo", {"text": "woke up"})
        assert json.loads(result.text) == {"text": "woke up"}
    finally:
        client.close_all()


def test_session_requires_process_launch() -> None:
    target = Target(id="web", network=NetworkEndpoint(url="http://x.test"))
    with pytest.raises(ConfigurationError):
        ProcessSession(
            target,
            timeouts=TimeoutPolicy(),
            client_info={"name": "t", "version": "0"},
            protocol_version="2024-11-05",
        )


def test_slow_operations_use_the_slow_bucket() -> None:
    policy = TimeoutPolicy(handshake=1, listing=2, call=3, slow_call=4)
    assert policy.for_operation(Operation(name="a")) == 3
    assert policy.for_operation(Operation(name="b", slow=True)) == 4
    assert policy.for_operation(None) == 3
