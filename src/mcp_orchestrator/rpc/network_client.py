"""Client for targets reachable over HTTP.

Every call is a stateless POST of ``{"operation": ..., "arguments": ...}``.
Targets that do not declare a fixed sub-path are probed over a list of
conventional paths; the first one that answers with a well-formed envelope is
remembered for that target.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

import requests

from mcp_orchestrator.config import DEFAULT_HTTP_PATHS, OrchestratorSettings
from mcp_orchestrator.errors import (
    ConfigurationError,
    ConnectionLostError,
    NoCompatibleEndpointError,
    RpcTimeoutError,
)
from mcp_orchestrator.models import NetworkEndpoint, Operation, Target
from mcp_orchestrator.rpc.protocol import (
    ToolResult,
    error_from_envelope,
    normalize_tool_result,
    operations_from_listing,
)

logger = logging.getLogger(__name__)

_ENVELOPE_KEYS = ("result", "content", "error")
_NOT_HANDLED_STATUSES = (404, 405)


def is_envelope(body: object) -> bool:
    return isinstance(body, dict) and any(key in body for key in _ENVELOPE_KEYS)


def join_url(base: str, path: str) -> str:
    if not path:
        return base
    return base.rstrip("/") + "/" + path.lstrip("/")


class NetworkRpcClient:
    """Stateless HTTP invocation with sub-path discovery."""

    def __init__(
        self,
        *,
        timeout_seconds: float = 60.0,
        listing_timeout_seconds: float = 30.0,
        paths: list[str] | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self._timeout = timeout_seconds
        self._listing_timeout = listing_timeout_seconds
        self._paths = list(paths) if paths is not None else DEFAULT_HTTP_PATHS.split(",")
        self._session = session or requests.Session()
        self._session.headers.update(
            {"Accept": "application/json", "User-Agent": "mcp-orchestrator"}
        )
        self._resolved: dict[str, str] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_settings(
        cls, settings: OrchestratorSettings, *, session: requests.Session | None = None
    ) -> NetworkRpcClient:
        return cls(
            timeout_seconds=settings.http_timeout_seconds,
            listing_timeout_seconds=settings.listing_timeout_seconds,
            paths=settings.parsed_http_paths(),
            session=session,
        )

    def resolved_path(self, target_id: str) -> str | None:
        with self._lock:
            return self._resolved.get(target_id)

    def call(self, target: Target, operation_name: str, arguments: dict[str, Any]) -> ToolResult:
        """POST one operation call; returns the normalized result.

        Raises:
            OperationError: the endpoint answered with an error envelope.
            ConnectionLostError: the endpoint was unreachable.
            RpcTimeoutError: no response within the HTTP timeout.
            NoCompatibleEndpointError: no candidate path answered sensibly.
        """

        endpoint = self._endpoint(target)
        body = {"operation": operation_name, "arguments": arguments}
        attempts: list[str] = []

        for path in self._candidate_paths(target.id, endpoint):
            url = join_url(endpoint.url, path)
            try:
                resp = self._session.post(
                    url, json=body, headers=endpoint.headers or None, timeout=self._timeout
                )
            except requests.Timeout as e:
                raise RpcTimeoutError(
                    f"{operation_name} on {target.id} timed out after {self._timeout:g}s"
                ) from e
            except requests.ConnectionError as e:
                raise ConnectionLostError(f"Target {target.id} is unreachable at {url}: {e}") from e

            if resp.status_code in _NOT_HANDLED_STATUSES:
                attempts.append(f"{url} -> HTTP {resp.status_code}")
                self._forget_path(target.id, path)
                continue
            try:
                payload = resp.json()
            except ValueError:
                attempts.append(f"{url} -> HTTP {resp.status_code}, not JSON")
                self._forget_path(target.id, path)
                continue
            if not is_envelope(payload):
                attempts.append(f"{url} -> HTTP {resp.status_code}, not a result envelope")
                self._forget_path(target.id, path)
                continue

            self._remember_path(target.id, path)
            logger.debug(
                "Network call answered",
                extra={"target_id": target.id, "url": url, "status": resp.status_code},
            )
            # A well-formed error envelope is a real answer: stop probing.
            if payload.get("error") is not None:
                raise error_from_envelope(payload["error"])
            if "result" in payload:
                return normalize_tool_result(payload["result"])
            return normalize_tool_result(payload)

        logger.warning(
            "No compatible endpoint",
            extra={"target_id": target.id, "attempts": attempts},
        )
        raise NoCompatibleEndpointError(
            f"Target {target.id} answered on none of its candidate paths", attempts=attempts
        )

    def list_operations(self, target: Target) -> list[Operation]:
        """Best-effort listing via ``GET <url>/tools``; falls back to declared operations."""

        endpoint = self._endpoint(target)
        url = join_url(endpoint.url, "/tools")
        try:
            resp = self._session.get(
                url, headers=endpoint.headers or None, timeout=self._listing_timeout
            )
            resp.raise_for_status()
            operations = operations_from_listing(resp.json())
        except (requests.RequestException, ValueError) as e:
            logger.debug(
                "Listing unavailable; using declared operations",
                extra={"target_id": target.id, "url": url, "error": str(e)},
            )
            return list(target.operations)
        return operations or list(target.operations)

    def close(self) -> None:
        self._session.close()

    def _endpoint(self, target: Target) -> NetworkEndpoint:
        if target.network is None:
            raise ConfigurationError(f"Target {target.id} declares no network endpoint")
        return target.network

    def _candidate_paths(self, target_id: str, endpoint: NetworkEndpoint) -> list[str]:
        if endpoint.path is not None:
            return [endpoint.path]
        with self._lock:
            cached = self._resolved.get(target_id)
        candidates = [cached] if cached is not None else []
        candidates.extend(p for p in self._paths if p != cached)
        return candidates

    def _remember_path(self, target_id: str, path: str) -> None:
        with self._lock:
            if self._resolved.get(target_id) != path:
                logger.info(
                    "Resolved network path",
                    extra={"target_id": target_id, "path": path or "/"},
                )
            self._resolved[target_id] = path

    def _forget_path(self, target_id: str, path: str) -> None:
        with self._lock:
            if self._resolved.get(target_id) == path:
                del self._resolved[target_id]
