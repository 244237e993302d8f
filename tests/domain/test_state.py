import pytest

from live_coach.domain.errors import InvalidState
from live_coach.domain.state import (
    InvalidTransitionError,
    SessionState,
    VALID_TRANSITIONS,
    validate_transition,
)


class TestStateTransitions:
    def test_idle_to_connecting(self):
        validate_transition(SessionState.IDLE, SessionState.CONNECTING)

    def test_idle_to_closed(self):
        validate_transition(SessionState.IDLE, SessionState.CLOSED)

    def test_connecting_to_authenticating(self):
        validate_transition(SessionState.CONNECTING, SessionState.AUTHENTICATING)

    def test_connecting_to_active(self):
        validate_transition(SessionState.CONNECTING, SessionState.ACTIVE)

    def test_authenticating_to_active(self):
        validate_transition(SessionState.AUTHENTICATING, SessionState.ACTIVE)

    def test_active_to_closing(self):
        validate_transition(SessionState.ACTIVE, SessionState.CLOSING)

    def test_active_to_failed(self):
        validate_transition(SessionState.ACTIVE, SessionState.FAILED)

    def test_closing_to_closed(self):
        validate_transition(SessionState.CLOSING, SessionState.CLOSED)

    def test_closed_rearms_to_idle(self):
        validate_transition(SessionState.CLOSED, SessionState.IDLE)

    def test_failed_rearms_to_idle(self):
        validate_transition(SessionState.FAILED, SessionState.IDLE)

    def test_invalid_idle_to_active(self):
        with pytest.raises(InvalidTransitionError):
            validate_transition(SessionState.IDLE, SessionState.ACTIVE)

    def test_invalid_closed_to_active(self):
        with pytest.raises(InvalidTransitionError):
            validate_transition(SessionState.CLOSED, SessionState.ACTIVE)

    def test_invalid_failed_to_connecting(self):
        with pytest.raises(InvalidTransitionError):
            validate_transition(SessionState.FAILED, SessionState.CONNECTING)

    def test_invalid_active_to_authenticating(self):
        with pytest.raises(InvalidTransitionError):
            validate_transition(SessionState.ACTIVE, SessionState.AUTHENTICATING)

    def test_invalid_closing_to_active(self):
        with pytest.raises(InvalidTransitionError):
            validate_transition(SessionState.CLOSING, SessionState.ACTIVE)

    def test_invalid_transition_is_invalid_state(self):
        with pytest.raises(InvalidState):
            validate_transition(SessionState.IDLE, SessionState.FAILED)


class TestStateProperties:
    def test_every_state_has_transitions(self):
        assert set(VALID_TRANSITIONS) == set(SessionState)

    @pytest.mark.parametrize("state", [SessionState.CLOSED, SessionState.FAILED])
    def test_terminal_states(self, state):
        assert state.is_terminal
        assert not state.accepts_audio

    @pytest.mark.parametrize(
        "state",
        [SessionState.CONNECTING, SessionState.AUTHENTICATING, SessionState.ACTIVE],
    )
    def test_audio_accepted_while_connecting_or_active(self, state):
        assert state.accepts_audio
        assert not state.is_terminal

    @pytest.mark.parametrize("state", [SessionState.IDLE, SessionState.CLOSING])
    def test_audio_refused(self, state):
        assert not state.accepts_audio
