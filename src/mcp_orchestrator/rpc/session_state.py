from __future__ import annotations

from enum import Enum


class SessionState(str, Enum):
    INITIALIZING = "initializing"
    INITIALIZED = "initialized"
    CALLING = "calling"
    IDLE = "idle"
    CLOSED = "closed"
    FAILED = "failed"


TERMINAL_STATES: frozenset[SessionState] = frozenset({SessionState.CLOSED, SessionState.FAILED})

# Operation requests may only be written in these states.
READY_STATES: frozenset[SessionState] = frozenset({SessionState.IDLE, SessionState.CALLING})

ALLOWED_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.INITIALIZING: {
        SessionState.INITIALIZED,
        SessionState.CLOSED,
        SessionState.FAILED,
    },
    # INITIALIZED -> IDLE happens once the ready notification has been written.
    SessionState.INITIALIZED: {SessionState.IDLE, SessionState.CLOSED, SessionState.FAILED},
    SessionState.CALLING: {SessionState.IDLE, SessionState.CLOSED, SessionState.FAILED},
    SessionState.IDLE: {SessionState.CALLING, SessionState.CLOSED, SessionState.FAILED},
    SessionState.CLOSED: set(),
    SessionState.FAILED: set(),
}


class IllegalTransitionError(ValueError):
    pass


def transition(*, current: SessionState, to: SessionState) -> SessionState:
    allowed = ALLOWED_TRANSITIONS.get(current, set())
    if to not in allowed:
        raise IllegalTransitionError(f"Illegal transition: {current.value} -> {to.value}")
    return to
