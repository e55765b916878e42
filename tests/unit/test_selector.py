"""Unit tests for transport selection."""

from __future__ import annotations

from unittest.mock import Mock

import pytest

from mcp_orchestrator.errors import ConfigurationError
from mcp_orchestrator.models import NetworkEndpoint, Operation, ProcessLaunch, Target
from mcp_orchestrator.rpc.network_client import NetworkRpcClient
from mcp_orchestrator.rpc.process_client import ProcessRpcClient
from mcp_orchestrator.rpc.protocol import ToolResult
from mcp_orchestrator.rpc.selector import TransportSelector, transport_kind


def _selector() -> tuple[TransportSelector, Mock, Mock]:
    process = Mock(spec=ProcessRpcClient)
    network = Mock(spec=NetworkRpcClient)
    return TransportSelector(process_client=process, network_client=network), process, network


def test_process_target_goes_to_process_client() -> None:
    selector, process, network = _selector()
    target = Target(id="p", process=ProcessLaunch(command="npx"), operations=[Operation(name="a")])
    process.call.return_value = ToolResult(content=[{"type": "text", "text": "done"}])

    assert selector.call(target, "a", {"x": 1}).text == "done"
    process.call.assert_called_once_with(target, "a", {"x": 1})
    network.call.assert_not_called()


def test_network_target_goes_to_network_client() -> None:
    selector, process, network = _selector()
    target = Target(id="n", network=NetworkEndpoint(url="http://n.test"))

    assert selector.select(target) is network
    selector.list_operations(target)
    network.list_operations.assert_called_once_with(target)
    process.list_operations.assert_not_called()


@pytest.mark.parametrize(
    "target",
    [
        Target(id="neither"),
        Target(
            id="both",
            process=ProcessLaunch(command="npx"),
            network=NetworkEndpoint(url="http://b.test"),
        ),
    ],
)
def test_ambiguous_declaration_is_a_configuration_error(target: Target) -> None:
    selector, process, network = _selector()
    with pytest.raises(ConfigurationError):
        selector.call(target, "a", {})
    with pytest.raises(ConfigurationError):
        transport_kind(target)
    process.call.assert_not_called()
    network.call.assert_not_called()


def test_close_tears_down_both_clients() -> None:
    selector, process, network = _selector()
    selector.close()
    process.close_all.assert_called_once_with()
    network.close.assert_called_once_with()
