"""MCP Workflow Orchestrator.

Talks to tool targets over two transports:
- child processes speaking line-delimited JSON-RPC on stdin/stdout
- HTTP endpoints taking one POST per operation call

and chains several calls into one request: heuristic planning, capability
matching, context hand-off between steps and one-shot substitution on failure.
"""

__version__ = "0.1.0"

from mcp_orchestrator.config import OrchestratorSettings

__all__ = ["__version__", "OrchestratorSettings"]
