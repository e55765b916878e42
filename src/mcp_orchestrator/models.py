"""Target and Operation declarations.

These mirror what the (external) registry returns for a target: how to reach it
and which operations it exposes. They are validated with pydantic because they
come from JSON files and REST payloads.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from mcp_orchestrator.vocabulary import infer_capabilities, tokenize


class ProcessLaunch(BaseModel):
    """How to spawn a target that speaks JSON-RPC over stdin/stdout."""

    model_config = ConfigDict(frozen=True)

    command: str = Field(..., min_length=1)
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)
    cwd: str | None = None


class NetworkEndpoint(BaseModel):
    """An HTTP endpoint accepting one POST per operation call."""

    model_config = ConfigDict(frozen=True)

    url: str = Field(..., min_length=1)
    # Fixed sub-path; when unset the client probes its conventional paths.
    path: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)


class Operation(BaseModel):
    """One named capability a target exposes. Immutable once declared."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(..., min_length=1)
    description: str = ""
    input_schema: dict[str, Any] = Field(default_factory=dict, alias="inputSchema")
    tags: tuple[str, ...] = ()
    capabilities: tuple[str, ...] = ()
    slow: bool = False

    @model_validator(mode="before")
    @classmethod
    def _infer_tags(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        text = f"{data.get('name', '')} {data.get('description', '')}"
        if not data.get("tags"):
            data["tags"] = tuple(dict.fromkeys(tokenize(text)))
        if not data.get("capabilities"):
            data["capabilities"] = infer_capabilities(text)
        return data

    @property
    def schema_properties(self) -> dict[str, Any]:
        props = self.input_schema.get("properties")
        return props if isinstance(props, dict) else {}

    @property
    def required_arguments(self) -> list[str]:
        required = self.input_schema.get("required")
        return [r for r in required if isinstance(r, str)] if isinstance(required, list) else []

    def has_capability(self, capability: str) -> bool:
        return capability in self.capabilities


class Target(BaseModel):
    """An external tool-execution endpoint.

    Exactly one of `process` or `network` should be declared. That rule is
    enforced at call time by the transport selector, not here, so that a
    misconfigured target still shows up in listings.
    """

    id: str = Field(..., min_length=1)
    name: str = ""
    description: str = ""
    process: ProcessLaunch | None = None
    network: NetworkEndpoint | None = None
    operations: list[Operation] = Field(default_factory=list)
    enabled: bool = True

    @property
    def display_name(self) -> str:
        return self.name or self.id

    def get_operation(self, name: str) -> Operation | None:
        for op in self.operations:
            if op.name == name:
                return op
        return None
