from enum import Enum, auto

from live_coach.domain.errors import InvalidState


class SessionState(Enum):
    IDLE = auto()
    CONNECTING = auto()
    AUTHENTICATING = auto()
    ACTIVE = auto()
    CLOSING = auto()
    CLOSED = auto()
    FAILED = auto()

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.CLOSED, SessionState.FAILED)

    @property
    def accepts_audio(self) -> bool:
        return self in (SessionState.CONNECTING, SessionState.AUTHENTICATING, SessionState.ACTIVE)


VALID_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.IDLE: {SessionState.CONNECTING, SessionState.CLOSED},
    SessionState.CONNECTING: {
        SessionState.AUTHENTICATING,
        SessionState.ACTIVE,
        SessionState.CLOSING,
        SessionState.FAILED,
    },
    SessionState.AUTHENTICATING: {SessionState.ACTIVE, SessionState.CLOSING, SessionState.FAILED},
    SessionState.ACTIVE: {SessionState.CLOSING, SessionState.CLOSED, SessionState.FAILED},
    SessionState.CLOSING: {SessionState.CLOSED, SessionState.FAILED},
    SessionState.CLOSED: {SessionState.IDLE},
    SessionState.FAILED: {SessionState.IDLE},
}


class InvalidTransitionError(InvalidState):
    pass


def validate_transition(current: SessionState, target: SessionState) -> None:
    if target not in VALID_TRANSITIONS.get(current, set()):
        raise InvalidTransitionError(f"Cannot transition from {current.name} to {target.name}")
