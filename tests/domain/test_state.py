import pytest

from stream_recorder.domain.state import (
    ConnectionState,
    InvalidTransitionError,
    SessionState,
    validate_connection_transition,
    validate_transition,
)


class TestSessionTransitions:
    def test_idle_to_initializing(self):
        validate_transition(SessionState.IDLE, SessionState.INITIALIZING)

    def test_initializing_to_streaming(self):
        validate_transition(SessionState.INITIALIZING, SessionState.STREAMING)

    def test_initializing_to_failed(self):
        validate_transition(SessionState.INITIALIZING, SessionState.FAILED)

    def test_streaming_to_stopping(self):
        validate_transition(SessionState.STREAMING, SessionState.STOPPING)

    def test_stopping_to_finalized(self):
        validate_transition(SessionState.STOPPING, SessionState.FINALIZED)

    def test_stopping_to_failed(self):
        validate_transition(SessionState.STOPPING, SessionState.FAILED)

    def test_terminal_states_can_start_again(self):
        validate_transition(SessionState.FINALIZED, SessionState.INITIALIZING)
        validate_transition(SessionState.FAILED, SessionState.INITIALIZING)

    def test_invalid_idle_to_streaming(self):
        with pytest.raises(InvalidTransitionError):
            validate_transition(SessionState.IDLE, SessionState.STREAMING)

    def test_invalid_streaming_to_finalized(self):
        with pytest.raises(InvalidTransitionError):
            validate_transition(SessionState.STREAMING, SessionState.FINALIZED)

    def test_invalid_streaming_to_initializing(self):
        with pytest.raises(InvalidTransitionError):
            validate_transition(SessionState.STREAMING, SessionState.INITIALIZING)


class TestConnectionTransitions:
    def test_happy_path(self):
        validate_connection_transition(ConnectionState.DISCONNECTED, ConnectionState.CONNECTING)
        validate_connection_transition(ConnectionState.CONNECTING, ConnectionState.CONNECTED)
        validate_connection_transition(ConnectionState.CONNECTED, ConnectionState.CLOSING)
        validate_connection_transition(ConnectionState.CLOSING, ConnectionState.CLOSED)

    @pytest.mark.parametrize(
        "state",
        [ConnectionState.CONNECTING, ConnectionState.CONNECTED, ConnectionState.CLOSING],
    )
    def test_failed_reachable_from_non_terminal(self, state):
        validate_connection_transition(state, ConnectionState.FAILED)

    def test_failed_is_absorbing(self):
        with pytest.raises(InvalidTransitionError):
            validate_connection_transition(ConnectionState.FAILED, ConnectionState.CONNECTING)

    def test_closed_is_terminal(self):
        with pytest.raises(InvalidTransitionError):
            validate_connection_transition(ConnectionState.CLOSED, ConnectionState.CONNECTING)
