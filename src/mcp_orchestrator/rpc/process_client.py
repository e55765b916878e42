"""Client for targets that speak line-delimited JSON-RPC over stdin/stdout.

One child process per target, owned by :class:`ProcessRpcClient`. Each process
is wrapped in a :class:`ProcessSession` that runs the handshake state machine,
correlates responses to pending requests and cleans up when the process exits.

Protocol ordering (mandatory):

1. ``initialize`` request, id reserved, state INITIALIZING
2. wait for the matching response, state INITIALIZED
3. ``notifications/initialized``, state IDLE
4. operation requests, state CALLING while any are outstanding

Most targets hang silently (rather than erroring) if step 4 happens before 3.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import threading
import time
from collections import deque
from collections.abc import Callable
from concurrent.futures import Future
from dataclasses import dataclass
from typing import IO, Any

from mcp_orchestrator.config import OrchestratorSettings
from mcp_orchestrator.errors import (
    ConfigurationError,
    ConnectionLostError,
    HandshakeError,
    OperationError,
    RpcTimeoutError,
)
from mcp_orchestrator.models import Operation, Target
from mcp_orchestrator.rpc.protocol import (
    METHOD_CALL_TOOL,
    METHOD_INITIALIZE,
    METHOD_INITIALIZED,
    METHOD_LIST_TOOLS,
    ToolResult,
    build_notification,
    build_request,
    correlation_id,
    encode_message,
    error_from_envelope,
    normalize_tool_result,
    operations_from_listing,
    parse_line,
)
from mcp_orchestrator.rpc.session_state import (
    READY_STATES,
    TERMINAL_STATES,
    SessionState,
    transition,
)

logger = logging.getLogger(__name__)

_STDERR_NOISE = ("Downloading", "Installing", "npm ")


@dataclass(frozen=True, slots=True)
class TimeoutPolicy:
    """Timeout buckets, in seconds, by declared request cost."""

    handshake: float = 30.0
    listing: float = 30.0
    call: float = 120.0
    slow_call: float = 300.0

    @classmethod
    def from_settings(cls, settings: OrchestratorSettings) -> TimeoutPolicy:
        return cls(
            handshake=settings.handshake_timeout_seconds,
            listing=settings.listing_timeout_seconds,
            call=settings.call_timeout_seconds,
            slow_call=settings.slow_call_timeout_seconds,
        )

    def for_operation(self, operation: Operation | None) -> float:
        if operation is not None and operation.slow:
            return self.slow_call
        return self.call


@dataclass(frozen=True, slots=True)
class PendingRequest:
    """Bookkeeping for one in-flight request awaiting its response."""

    request_id: int
    method: str
    issued_at: float
    timeout: float
    future: Future[Any]
    timer: threading.Timer


class SessionUnavailableError(ConnectionLostError):
    """The session was already closed when a request was about to be written.

    Nothing reached the target, so the request can safely go to a fresh session.
    """


class ProcessSession:
    """One spawned target process and its protocol state."""

    def __init__(
        self,
        target: Target,
        *,
        timeouts: TimeoutPolicy,
        client_info: dict[str, str],
        protocol_version: str,
        idle_timeout: float = 0.0,
        on_exit: Callable[[ProcessSession], None] | None = None,
    ) -> None:
        if target.process is None:
            raise ConfigurationError(f"Target {target.id} declares no process launch")

        self.target_id = target.id
        self._launch = target.process
        self._timeouts = timeouts
        self._client_info = client_info
        self._protocol_version = protocol_version
        self._idle_timeout = idle_timeout
        self._on_exit = on_exit

        self._lock = threading.RLock()
        self._handshake_lock = threading.Lock()
        self._state = SessionState.INITIALIZING
        self._pending: dict[int, PendingRequest] = {}
        self._next_id = 1
        self._proc: subprocess.Popen[str] | None = None
        self._idle_timer: threading.Timer | None = None
        self._stderr_tail: deque[str] = deque(maxlen=20)
        self._exit_notified = False

        self.server_info: dict[str, Any] = {}
        self.server_capabilities: dict[str, Any] = {}

    # --- Introspection ---

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_terminal(self) -> bool:
        return self._state in TERMINAL_STATES

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc is not None else None

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def stderr_tail(self) -> str:
        return "\n".join(self._stderr_tail)

    # --- Lifecycle ---

    def initialize(self) -> None:
        """Spawn the process (first call only) and complete the handshake.

        Concurrent callers block here until the single in-flight handshake
        finishes; none of them can dispatch an operation before that.
        """

        with self._handshake_lock:
            if self._state in READY_STATES:
                return
            if self.is_terminal:
                raise SessionUnavailableError(f"Target {self.target_id} session is {self._state.value}")

            if self._proc is None:
                self._spawn()

            params = {
                "protocolVersion": self._protocol_version,
                "capabilities": {},
                "clientInfo": self._client_info,
            }
            try:
                with self._lock:
                    future = self._dispatch_locked(
                        METHOD_INITIALIZE,
                        params,
                        timeout=self._timeouts.handshake,
                        allowed=frozenset({SessionState.INITIALIZING}),
                    )
            except ConnectionLostError:
                self._abort("could not write the handshake")
                raise

            try:
                ack = future.result()
            except OperationError as e:
                self._abort(f"handshake rejected: {e}")
                raise HandshakeError(
                    f"Target {self.target_id} rejected the handshake: {e}"
                ) from e
            except RpcTimeoutError as e:
                self._abort("handshake timed out")
                raise HandshakeError(
                    f"Target {self.target_id} did not acknowledge the handshake within "
                    f"{self._timeouts.handshake:g}s. Stderr: {self.stderr_tail()[:500]}"
                ) from e

            if not isinstance(ack, dict):
                self._abort("invalid handshake ack")
                raise HandshakeError(f"Target {self.target_id} sent an invalid handshake ack: {ack!r}")

            try:
                with self._lock:
                    if self.is_terminal:
                        raise ConnectionLostError(
                            f"Target {self.target_id} exited during the handshake"
                        )
                    self._set_state(SessionState.INITIALIZED)
                    info = ack.get("serverInfo")
                    self.server_info = info if isinstance(info, dict) else {}
                    caps = ack.get("capabilities")
                    self.server_capabilities = caps if isinstance(caps, dict) else {}

                    # The ready notification goes out before any operation request.
                    self._write_locked(build_notification(METHOD_INITIALIZED))
                    self._set_state(SessionState.IDLE)
                    self._schedule_idle_close_locked()
            except ConnectionLostError:
                self._abort("could not send the ready notification")
                raise

            logger.info(
                "Target initialized",
                extra={"target_id": self.target_id, "pid": self.pid, "server_info": self.server_info},
            )

    def request(self, method: str, params: dict[str, Any], *, timeout: float) -> Future[Any]:
        """Dispatch one request on an initialized session.

        Returns a future resolved by the matching response, rejected by an
        error envelope, its timeout, or the process exiting.
        """

        with self._lock:
            return self._dispatch_locked(method, params, timeout=timeout, allowed=READY_STATES)

    def close(self) -> None:
        self._teardown(
            SessionState.CLOSED,
            ConnectionLostError(f"Target {self.target_id} session was closed"),
        )

    # --- Internals: process management ---

    def _spawn(self) -> None:
        command = shutil.which(self._launch.command) or self._launch.command
        argv = [command, *self._launch.args]
        env = {**os.environ, **self._launch.env}

        logger.info(
            "Spawning target process",
            extra={"target_id": self.target_id, "argv": argv, "env": dict(self._launch.env)},
        )
        try:
            self._proc = subprocess.Popen(
                argv,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                env=env,
                cwd=self._launch.cwd,
            )
        except OSError as e:
            with self._lock:
                self._set_state(SessionState.FAILED)
            self._notify_exit()
            raise ConnectionLostError(f"Failed to spawn target {self.target_id}: {e}") from e

        proc = self._proc
        threading.Thread(
            target=self._read_stdout,
            args=(proc, proc.stdout),
            name=f"rpc-stdout-{self.target_id}",
            daemon=True,
        ).start()
        threading.Thread(
            target=self._drain_stderr,
            args=(proc.stderr,),
            name=f"rpc-stderr-{self.target_id}",
            daemon=True,
        ).start()

    def _abort(self, reason: str) -> None:
        self._teardown(
            SessionState.FAILED,
            ConnectionLostError(f"Target {self.target_id} session aborted: {reason}"),
        )

    def _teardown(self, final_state: SessionState, error: Exception) -> None:
        with self._lock:
            if not self.is_terminal:
                self._set_state(final_state)
            pending = list(self._pending.values())
            self._pending.clear()
            if self._idle_timer is not None:
                self._idle_timer.cancel()
                self._idle_timer = None

        # Drop the handle first: a caller woken by the rejection below must
        # already get a fresh session on its next call.
        self._notify_exit()

        for item in pending:
            item.timer.cancel()
            if not item.future.done():
                item.future.set_exception(error)
        if pending:
            logger.warning(
                "Rejected outstanding requests",
                extra={"target_id": self.target_id, "count": len(pending), "reason": str(error)},
            )

        proc = self._proc
        if proc is not None and proc.poll() is None:
            try:
                if proc.stdin is not None:
                    proc.stdin.close()
            except (OSError, ValueError):
                pass
            proc.terminate()
            try:
                proc.wait(timeout=2)
            except subprocess.TimeoutExpired:
                proc.kill()

    def _notify_exit(self) -> None:
        with self._lock:
            if self._exit_notified:
                return
            self._exit_notified = True
        if self._on_exit is not None:
            self._on_exit(self)

    def _set_state(self, to: SessionState) -> None:
        previous = self._state
        self._state = transition(current=previous, to=to)
        logger.debug(
            "Session state change",
            extra={"target_id": self.target_id, "from": previous.value, "to": to.value},
        )

    # --- Internals: requests ---

    def _dispatch_locked(
        self,
        method: str,
        params: dict[str, Any],
        *,
        timeout: float,
        allowed: frozenset[SessionState],
    ) -> Future[Any]:
        if self._state not in allowed:
            if self.is_terminal:
                raise SessionUnavailableError(
                    f"Target {self.target_id} session is {self._state.value}"
                )
            raise HandshakeError(
                f"Cannot send {method} to {self.target_id} in state {self._state.value}; "
                "the handshake must complete first"
            )

        request_id = self._next_id
        self._next_id += 1
        future: Future[Any] = Future()
        timer = threading.Timer(timeout, self._expire, args=(request_id,))
        timer.daemon = True
        self._pending[request_id] = PendingRequest(
            request_id=request_id,
            method=method,
            issued_at=time.monotonic(),
            timeout=timeout,
            future=future,
            timer=timer,
        )

        if self._state is SessionState.IDLE:
            self._set_state(SessionState.CALLING)
            if self._idle_timer is not None:
                self._idle_timer.cancel()
                self._idle_timer = None

        try:
            self._write_locked(build_request(request_id, method, params))
        except ConnectionLostError:
            self._pending.pop(request_id, None)
            self._settle_locked()
            raise

        timer.start()
        logger.debug(
            "Request dispatched",
            extra={"target_id": self.target_id, "request_id": request_id, "method": method},
        )
        return future

    def _write_locked(self, message: dict[str, Any]) -> None:
        proc = self._proc
        if proc is None or proc.stdin is None:
            raise ConnectionLostError(f"Target {self.target_id} has no open stdin")
        try:
            proc.stdin.write(encode_message(message))
            proc.stdin.flush()
        except (OSError, ValueError) as e:
            # BrokenPipeError, or ValueError on a closed file.
            raise ConnectionLostError(f"Target {self.target_id} stdin is closed: {e}") from e

    def _expire(self, request_id: int) -> None:
        with self._lock:
            pending = self._pending.pop(request_id, None)
            if pending is None:
                return
            self._settle_locked()

        logger.warning(
            "Request timed out",
            extra={
                "target_id": self.target_id,
                "request_id": request_id,
                "method": pending.method,
                "timeout_seconds": pending.timeout,
            },
        )
        pending.future.set_exception(
            RpcTimeoutError(
                f"{pending.method} on {self.target_id} timed out after {pending.timeout:g}s"
            )
        )

    def _settle_locked(self) -> None:
        if self._state is SessionState.CALLING and not self._pending:
            self._set_state(SessionState.IDLE)
            self._schedule_idle_close_locked()

    def _schedule_idle_close_locked(self) -> None:
        if self._idle_timeout <= 0:
            return
        if self._idle_timer is not None:
            self._idle_timer.cancel()
        self._idle_timer = threading.Timer(self._idle_timeout, self._close_if_idle)
        self._idle_timer.daemon = True
        self._idle_timer.start()

    def _close_if_idle(self) -> None:
        with self._lock:
            if self._state is not SessionState.IDLE or self._pending:
                return
            logger.info(
                "Closing idle target",
                extra={"target_id": self.target_id, "idle_timeout_seconds": self._idle_timeout},
            )
            # Flip the state under the lock so no request slips in before teardown.
            self._set_state(SessionState.CLOSED)
        self._teardown(
            SessionState.CLOSED,
            ConnectionLostError(f"Target {self.target_id} closed after inactivity"),
        )

    # --- Internals: reader threads ---

    def _read_stdout(self, proc: subprocess.Popen[str], stdout: IO[str]) -> None:
        try:
            for line in iter(stdout.readline, ""):
                message = parse_line(line)
                if message is None:
                    if line.strip():
                        logger.warning(
                            "Malformed line from target",
                            extra={"target_id": self.target_id, "line": line.strip()[:200]},
                        )
                    continue
                self._handle_message(message)
        except (OSError, ValueError):
            logger.debug("Stdout reader stopped", extra={"target_id": self.target_id})

        code: int | None
        try:
            code = proc.wait(timeout=1)
        except subprocess.TimeoutExpired:
            code = None
        if not self.is_terminal:
            logger.warning(
                "Target process exited",
                extra={"target_id": self.target_id, "exit_code": code},
            )
        self._teardown(
            SessionState.FAILED,
            ConnectionLostError(f"Target {self.target_id} exited (code {code})"),
        )

    def _drain_stderr(self, stderr: IO[str]) -> None:
        try:
            for line in iter(stderr.readline, ""):
                text = line.rstrip()
                if not text:
                    continue
                self._stderr_tail.append(text)
                level = logging.DEBUG if any(n in text for n in _STDERR_NOISE) else logging.INFO
                logger.log(level, "Target stderr", extra={"target_id": self.target_id, "line": text})
        except (OSError, ValueError):
            pass

    def _handle_message(self, message: dict[str, Any]) -> None:
        request_id = correlation_id(message)
        method = message.get("method")

        if isinstance(method, str):
            if request_id is None:
                logger.debug(
                    "Dropping target notification",
                    extra={"target_id": self.target_id, "method": method},
                )
            else:
                self._answer_target_request(request_id, method)
            return

        if request_id is None:
            logger.debug("Dropping uncorrelated message", extra={"target_id": self.target_id})
            return

        with self._lock:
            pending = self._pending.pop(request_id, None)
            if pending is None:
                logger.debug(
                    "Response for unknown or expired request",
                    extra={"target_id": self.target_id, "request_id": request_id},
                )
                return
            pending.timer.cancel()
            self._settle_locked()

        # Error first: a response carrying `error` is a rejection, whatever else it holds.
        error = message.get("error")
        if error is not None:
            pending.future.set_exception(error_from_envelope(error))
        elif "result" in message:
            pending.future.set_result(message["result"])
        else:
            pending.future.set_exception(
                OperationError(f"Response to {pending.method} carried neither result nor error")
            )

    def _answer_target_request(self, request_id: int, method: str) -> None:
        if method == "ping":
            reply: dict[str, Any] = {"jsonrpc": "2.0", "id": request_id, "result": {}}
        else:
            reply = {
                "jsonrpc": "2.0",
                "id": request_id,
                "error": {"code": -32601, "message": f"Method not supported by client: {method}"},
            }
        with self._lock:
            try:
                self._write_locked(reply)
            except ConnectionLostError:
                logger.debug("Could not answer target request", extra={"target_id": self.target_id})


class ProcessRpcClient:
    """Owns every target process; all access goes through initiate/call/close."""

    def __init__(
        self,
        *,
        timeouts: TimeoutPolicy | None = None,
        protocol_version: str = "2024-11-05",
        client_name: str = "mcp-orchestrator",
        client_version: str = "0.1.0",
        idle_timeout_seconds: float = 0.0,
    ) -> None:
        self._timeouts = timeouts or TimeoutPolicy()
        self._protocol_version = protocol_version
        self._client_info = {"name": client_name, "version": client_version}
        self._idle_timeout = idle_timeout_seconds
        self._sessions: dict[str, ProcessSession] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: OrchestratorSettings) -> ProcessRpcClient:
        return cls(
            timeouts=TimeoutPolicy.from_settings(settings),
            protocol_version=settings.protocol_version,
            client_name=settings.client_name,
            client_version=settings.client_version,
            idle_timeout_seconds=settings.idle_timeout_seconds,
        )

    @property
    def timeouts(self) -> TimeoutPolicy:
        return self._timeouts

    def session(self, target_id: str) -> ProcessSession | None:
        with self._lock:
            return self._sessions.get(target_id)

    def active_targets(self) -> list[str]:
        with self._lock:
            return [tid for tid, s in self._sessions.items() if not s.is_terminal]

    def initiate(self, target: Target) -> ProcessSession:
        """Return an initialized session for `target`, spawning it if needed."""

        with self._lock:
            session = self._sessions.get(target.id)
            if session is None or session.is_terminal:
                session = ProcessSession(
                    target,
                    timeouts=self._timeouts,
                    client_info=self._client_info,
                    protocol_version=self._protocol_version,
                    idle_timeout=self._idle_timeout,
                    on_exit=self._forget,
                )
                self._sessions[target.id] = session
        session.initialize()
        return session

    def call(self, target: Target, operation_name: str, arguments: dict[str, Any]) -> ToolResult:
        timeout = self._timeouts.for_operation(target.get_operation(operation_name))
        payload = self._request(
            target,
            METHOD_CALL_TOOL,
            {"name": operation_name, "arguments": arguments},
            timeout=timeout,
        )
        return normalize_tool_result(payload)

    def list_operations(self, target: Target) -> list[Operation]:
        payload = self._request(target, METHOD_LIST_TOOLS, {}, timeout=self._timeouts.listing)
        return operations_from_listing(payload)

    def close(self, target_id: str) -> None:
        with self._lock:
            session = self._sessions.pop(target_id, None)
        if session is not None:
            logger.info("Closing target", extra={"target_id": target_id})
            session.close()

    def close_all(self) -> None:
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.close()

    def _request(
        self, target: Target, method: str, params: dict[str, Any], *, timeout: float
    ) -> Any:
        # A session can close between initiate() and dispatch (idle teardown,
        # exit). Nothing was written in that case, so one re-spawn is safe.
        for attempt in (1, 2):
            try:
                session = self.initiate(target)
                future = session.request(method, params, timeout=timeout)
            except SessionUnavailableError:
                if attempt == 2:
                    raise
                continue
            return future.result()
        raise AssertionError("unreachable")

    def _forget(self, session: ProcessSession) -> None:
        with self._lock:
            if self._sessions.get(session.target_id) is session:
                del self._sessions[session.target_id]
