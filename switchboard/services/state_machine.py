from enum import Enum


class AuthSessionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"


VALID_TRANSITIONS = {
    AuthSessionStatus.PENDING: [
        AuthSessionStatus.COMPLETED,
        AuthSessionStatus.FAILED,
        AuthSessionStatus.EXPIRED,
    ],
    AuthSessionStatus.COMPLETED: [],
    AuthSessionStatus.FAILED: [],
    AuthSessionStatus.EXPIRED: [],
}


class InvalidTransitionError(Exception):
    def __init__(self, from_state: AuthSessionStatus, to_state: AuthSessionStatus):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition: {from_state.value} -> {to_state.value}")


def can_transition(from_state: AuthSessionStatus, to_state: AuthSessionStatus) -> bool:
    """Check if transition is valid."""
    allowed = VALID_TRANSITIONS.get(from_state, [])
    return to_state in allowed


def transition(from_state: AuthSessionStatus, to_state: AuthSessionStatus) -> AuthSessionStatus:
    """Perform state transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_state, to_state):
        raise InvalidTransitionError(from_state, to_state)
    return to_state


def complete(current_state: AuthSessionStatus) -> AuthSessionStatus:
    """Pairing succeeded."""
    return transition(current_state, AuthSessionStatus.COMPLETED)


def fail(current_state: AuthSessionStatus) -> AuthSessionStatus:
    """Pairing rejected by the provider."""
    return transition(current_state, AuthSessionStatus.FAILED)


def expire(current_state: AuthSessionStatus) -> AuthSessionStatus:
    """Pairing window elapsed."""
    return transition(current_state, AuthSessionStatus.EXPIRED)


def is_terminal(state: AuthSessionStatus) -> bool:
    return not VALID_TRANSITIONS.get(state)
