"""Unit tests for the targets file."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from mcp_orchestrator.errors import ConfigurationError
from mcp_orchestrator.registry.catalog import TargetCatalog


def _write(path: Path, payload: object) -> Path:
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def test_loads_wrapped_target_list(tmp_path: Path) -> None:
    path = _write(
        tmp_path / "targets.json",
        {
            "targets": [
                {
                    "id": "playwright",
                    "process": {"command": "npx", "args": ["@playwright/mcp@latest"]},
                    "operations": [
                        {
                            "name": "browser_navigate",
                            "description": "Navigate to a URL",
                            "inputSchema": {"type": "object", "properties": {"url": {"type": "string"}}},
                        }
                    ],
                },
                {"id": "maps", "network": {"url": "http://localhost:3001", "path": "/invoke"}},
            ]
        },
    )

    targets = TargetCatalog(path).load()

    assert [t.id for t in targets] == ["playwright", "maps"]
    navigate = targets[0].get_operation("browser_navigate")
    assert navigate is not None
    assert navigate.required_arguments == []
    assert "navigation" in navigate.capabilities
    assert targets[1].network is not None and targets[1].network.path == "/invoke"


def test_loads_bare_list_and_finds_by_id(tmp_path: Path) -> None:
    path = _write(tmp_path / "targets.json", [{"id": "a", "network": {"url": "http://a.test"}}])

    catalog = TargetCatalog(path)

    assert catalog.get("a") is not None
    assert catalog.get("b") is None


def test_missing_file_is_empty(tmp_path: Path) -> None:
    assert TargetCatalog(tmp_path / "nope.json").load() == []


@pytest.mark.parametrize(
    "content",
    ["{not json", json.dumps({"targets": {"id": "a"}}), json.dumps([{"network": {"url": "x"}}])],
)
def test_malformed_files_are_configuration_errors(tmp_path: Path, content: str) -> None:
    path = tmp_path / "targets.json"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(ConfigurationError):
        TargetCatalog(path).load()
