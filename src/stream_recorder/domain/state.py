from enum import Enum, auto


class SessionState(Enum):
    IDLE = auto()
    INITIALIZING = auto()
    STREAMING = auto()
    STOPPING = auto()
    FINALIZED = auto()
    FAILED = auto()


class ConnectionState(Enum):
    DISCONNECTED = auto()
    CONNECTING = auto()
    CONNECTED = auto()
    CLOSING = auto()
    CLOSED = auto()
    FAILED = auto()


SESSION_TERMINAL_STATES = frozenset({SessionState.IDLE, SessionState.FINALIZED, SessionState.FAILED})

VALID_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.IDLE: {SessionState.INITIALIZING},
    SessionState.INITIALIZING: {SessionState.STREAMING, SessionState.FAILED},
    SessionState.STREAMING: {SessionState.STOPPING},
    SessionState.STOPPING: {SessionState.FINALIZED, SessionState.FAILED},
    SessionState.FINALIZED: {SessionState.INITIALIZING},
    SessionState.FAILED: {SessionState.INITIALIZING},
}

VALID_CONNECTION_TRANSITIONS: dict[ConnectionState, set[ConnectionState]] = {
    ConnectionState.DISCONNECTED: {ConnectionState.CONNECTING, ConnectionState.CLOSED},
    ConnectionState.CONNECTING: {ConnectionState.CONNECTED, ConnectionState.FAILED},
    ConnectionState.CONNECTED: {ConnectionState.CLOSING, ConnectionState.CLOSED, ConnectionState.FAILED},
    ConnectionState.CLOSING: {ConnectionState.CLOSED, ConnectionState.FAILED},
    ConnectionState.CLOSED: set(),
    ConnectionState.FAILED: set(),
}


class InvalidTransitionError(Exception):
    pass


def validate_transition(current: SessionState, target: SessionState) -> None:
    if target not in VALID_TRANSITIONS.get(current, set()):
        raise InvalidTransitionError(f"Cannot transition from {current.name} to {target.name}")


def validate_connection_transition(current: ConnectionState, target: ConnectionState) -> None:
    if target not in VALID_CONNECTION_TRANSITIONS.get(current, set()):
        raise InvalidTransitionError(f"Cannot transition connection from {current.name} to {target.name}")
