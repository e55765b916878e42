"""Error taxonomy shared by the protocol clients and the workflow engine."""

from __future__ import annotations


class OrchestratorError(Exception):
    """Base class for every error raised by the orchestrator."""

    #: Short machine-readable kind, used in step records and REST payloads.
    kind = "orchestrator_error"


class ConfigurationError(OrchestratorError):
    """A target's transport declaration is missing or ambiguous.

    Fatal for the call that hit it; never retried.
    """

    kind = "configuration_error"


class HandshakeError(OrchestratorError):
    """The initialize handshake failed or was not acknowledged in time."""

    kind = "handshake_error"


class ConnectionLostError(OrchestratorError):
    """The target process exited, its stream closed, or the endpoint was unreachable."""

    kind = "connection_lost"


class OperationError(OrchestratorError):
    """A target answered with an explicit error envelope."""

    kind = "operation_error"

    def __init__(self, message: str, *, code: int | None = None, data: object = None) -> None:
        super().__init__(message)
        self.code = code
        self.data = data

    def __str__(self) -> str:
        message = super().__str__()
        if self.code is None:
            return message
        return f"{message} (code {self.code})"


class RpcTimeoutError(OrchestratorError):
    """No response arrived within the request's timeout bucket."""

    kind = "timeout"


class NoCapabilityMatchError(OrchestratorError):
    """No registered operation scored high enough for a step."""

    kind = "no_capability_match"


class NoCompatibleEndpointError(OrchestratorError):
    """A network target answered on none of the candidate sub-paths."""

    kind = "no_compatible_endpoint"

    def __init__(self, message: str, *, attempts: list[str] | None = None) -> None:
        super().__init__(message)
        self.attempts = list(attempts or [])

