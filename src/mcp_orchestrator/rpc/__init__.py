"""Protocol clients for tool targets.

- `process_client`: child processes, line-delimited JSON-RPC over stdio
- `network_client`: HTTP endpoints, one POST per call
- `selector`: picks exactly one of the two per target
"""

__all__: list[str] = []
