import pytest
from switchboard.services.state_machine import (
    AuthSessionStatus,
    can_transition,
    transition,
    complete,
    fail,
    expire,
    is_terminal,
    InvalidTransitionError,
)


class TestValidTransitions:
    def test_pending_to_completed(self):
        result = transition(AuthSessionStatus.PENDING, AuthSessionStatus.COMPLETED)
        assert result == AuthSessionStatus.COMPLETED

    def test_pending_to_failed(self):
        result = transition(AuthSessionStatus.PENDING, AuthSessionStatus.FAILED)
        assert result == AuthSessionStatus.FAILED

    def test_pending_to_expired(self):
        result = transition(AuthSessionStatus.PENDING, AuthSessionStatus.EXPIRED)
        assert result == AuthSessionStatus.EXPIRED


class TestInvalidTransitions:
    def test_completed_to_failed(self):
        with pytest.raises(InvalidTransitionError):
            transition(AuthSessionStatus.COMPLETED, AuthSessionStatus.FAILED)

    def test_expired_to_completed(self):
        with pytest.raises(InvalidTransitionError):
            transition(AuthSessionStatus.EXPIRED, AuthSessionStatus.COMPLETED)

    def test_same_state(self):
        with pytest.raises(InvalidTransitionError):
            transition(AuthSessionStatus.PENDING, AuthSessionStatus.PENDING)

    def test_error_message_names_both_states(self):
        with pytest.raises(InvalidTransitionError, match="failed -> pending"):
            transition(AuthSessionStatus.FAILED, AuthSessionStatus.PENDING)


class TestHelperFunctions:
    def test_complete(self):
        assert complete(AuthSessionStatus.PENDING) == AuthSessionStatus.COMPLETED

    def test_complete_twice_fails(self):
        with pytest.raises(InvalidTransitionError):
            complete(AuthSessionStatus.COMPLETED)

    def test_fail(self):
        assert fail(AuthSessionStatus.PENDING) == AuthSessionStatus.FAILED

    def test_expire(self):
        assert expire(AuthSessionStatus.PENDING) == AuthSessionStatus.EXPIRED

    def test_expire_after_completion_fails(self):
        with pytest.raises(InvalidTransitionError):
            expire(AuthSessionStatus.COMPLETED)


class TestCanTransition:
    def test_valid_returns_true(self):
        assert can_transition(AuthSessionStatus.PENDING, AuthSessionStatus.COMPLETED) is True

    def test_invalid_returns_false(self):
        assert can_transition(AuthSessionStatus.COMPLETED, AuthSessionStatus.PENDING) is False


class TestIsTerminal:
    def test_pending_is_not_terminal(self):
        assert is_terminal(AuthSessionStatus.PENDING) is False

    @pytest.mark.parametrize(
        "status",
        [AuthSessionStatus.COMPLETED, AuthSessionStatus.FAILED, AuthSessionStatus.EXPIRED],
    )
    def test_finished_states_are_terminal(self, status):
        assert is_terminal(status) is True
