"""Configuration for the tool orchestrator.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

Every variable carries an ``MCP_`` prefix except ``LOG_LEVEL``, which is shared
with the rest of the local tooling.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_HTTP_PATHS = "/mcp/invoke,/invoke,/tools/call,"


class OrchestratorSettings(BaseSettings):
    """Settings for the orchestrator and its protocol clients.

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `OrchestratorSettings(_env_file=path_to_env)`.
    """

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    targets_file: Path = Field(
        default=Path("targets.json"),
        validation_alias="MCP_TARGETS_FILE",
        description="JSON file declaring the Targets (transport + operations)",
    )

    choice_history_file: Path = Field(
        default=Path("agent_state/choices.json"),
        validation_alias="MCP_CHOICE_HISTORY_FILE",
        description="Where prior successful (target, operation) choices are recorded",
    )
    choice_history_enabled: bool = Field(
        default=True,
        validation_alias="MCP_CHOICE_HISTORY_ENABLED",
        description="Bias capability matching with prior successful choices",
    )

    handshake_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        validation_alias="MCP_HANDSHAKE_TIMEOUT_SECONDS",
        description="Timeout for the initialize handshake of a process target",
    )
    listing_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        validation_alias="MCP_LISTING_TIMEOUT_SECONDS",
        description="Timeout for operation listing requests",
    )
    call_timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        validation_alias="MCP_CALL_TIMEOUT_SECONDS",
        description="Timeout for a regular operation call",
    )
    slow_call_timeout_seconds: float = Field(
        default=300.0,
        gt=0,
        validation_alias="MCP_SLOW_CALL_TIMEOUT_SECONDS",
        description="Timeout for operations flagged as slow (browsers, image generation)",
    )
    idle_timeout_seconds: float = Field(
        default=600.0,
        ge=0,
        validation_alias="MCP_IDLE_TIMEOUT_SECONDS",
        description="Tear down a process target after this much inactivity (0 disables)",
    )

    http_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        validation_alias="MCP_HTTP_TIMEOUT_SECONDS",
        description="Per-request timeout for network targets",
    )
    http_paths: str = Field(
        default=DEFAULT_HTTP_PATHS,
        validation_alias="MCP_HTTP_PATHS",
        description=(
            "Comma-separated conventional sub-paths tried in order when a network target "
            "declares no fixed path. An empty entry means the endpoint itself."
        ),
    )

    protocol_version: str = Field(
        default="2024-11-05",
        validation_alias="MCP_PROTOCOL_VERSION",
        description="Protocol version announced in the initialize handshake",
    )
    client_name: str = Field(default="mcp-orchestrator", validation_alias="MCP_CLIENT_NAME")
    client_version: str = Field(default="0.1.0", validation_alias="MCP_CLIENT_VERSION")

    min_match_score: float = Field(
        default=1.0,
        ge=0,
        validation_alias="MCP_MIN_MATCH_SCORE",
        description="A planned step resolves only when its best score is strictly above this",
    )

    default_event_url: str = Field(
        default="",
        validation_alias="MCP_DEFAULT_EVENT_URL",
        description=(
            "Navigation URL used when an event/ticket step resolves no URL of its own. "
            "Empty disables the event marketplace default."
        ),
    )

    cors_origins: str = Field(
        default="http://localhost:5173,http://127.0.0.1:5173",
        validation_alias="MCP_CORS_ORIGINS",
        description="Comma-separated list of allowed CORS origins for the REST adapter.",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    @model_validator(mode="after")
    def _check_timeouts(self) -> OrchestratorSettings:
        if self.slow_call_timeout_seconds < self.call_timeout_seconds:
            raise ValueError(
                "MCP_SLOW_CALL_TIMEOUT_SECONDS must not be shorter than MCP_CALL_TIMEOUT_SECONDS"
            )
        return self

    def parsed_http_paths(self) -> list[str]:
        """Conventional sub-paths in order; '' stands for the endpoint itself."""

        paths: list[str] = []
        for raw in self.http_paths.split(","):
            path = raw.strip()
            if path and not path.startswith("/"):
                path = "/" + path
            if path not in paths:
                paths.append(path)
        return paths

    def parsed_cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]
