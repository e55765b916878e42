"""FastAPI server adapter for the tool orchestrator.

Design intent:
- Keep planning and invocation logic in `mcp_orchestrator.workflow` / `mcp_orchestrator.rpc`
- Keep server-specific concerns (routing, CORS, error-to-status mapping) here
"""

from __future__ import annotations

__all__ = ["create_app"]

from mcp_orchestrator.server.app import create_app
