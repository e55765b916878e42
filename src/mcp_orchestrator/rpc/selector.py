"""Choose the transport for a target from its declaration."""

from __future__ import annotations

import logging
from typing import Any, Literal

from mcp_orchestrator.errors import ConfigurationError
from mcp_orchestrator.models import Operation, Target
from mcp_orchestrator.rpc.network_client import NetworkRpcClient
from mcp_orchestrator.rpc.process_client import ProcessRpcClient
from mcp_orchestrator.rpc.protocol import ToolResult

logger = logging.getLogger(__name__)

TransportKind = Literal["process", "network"]


def transport_kind(target: Target) -> TransportKind:
    """Return which transport a target declares.

    Raises:
        ConfigurationError: if the target declares neither or both.
    """

    if target.process is not None and target.network is not None:
        raise ConfigurationError(
            f"Target {target.id} declares both a process and a network endpoint"
        )
    if target.process is not None:
        return "process"
    if target.network is not None:
        return "network"
    raise ConfigurationError(f"Target {target.id} declares neither a process nor a network endpoint")


class TransportSelector:
    """Routes calls to the process or network client."""

    def __init__(self, *, process_client: ProcessRpcClient, network_client: NetworkRpcClient) -> None:
        self.process_client = process_client
        self.network_client = network_client

    def select(self, target: Target) -> ProcessRpcClient | NetworkRpcClient:
        if transport_kind(target) == "process":
            return self.process_client
        return self.network_client

    def call(self, target: Target, operation_name: str, arguments: dict[str, Any]) -> ToolResult:
        client = self.select(target)
        logger.info(
            "Invoking operation",
            extra={
                "target_id": target.id,
                "operation": operation_name,
                "transport": transport_kind(target),
                "argument_keys": sorted(arguments),
            },
        )
        return client.call(target, operation_name, arguments)

    def list_operations(self, target: Target) -> list[Operation]:
        return self.select(target).list_operations(target)

    def close(self) -> None:
        self.process_client.close_all()
        self.network_client.close()
