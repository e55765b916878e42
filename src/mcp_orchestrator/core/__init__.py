"""Core package initialization."""

from mcp_orchestrator.core.orchestrator import Orchestrator

__all__ = [
    "Orchestrator",
]
