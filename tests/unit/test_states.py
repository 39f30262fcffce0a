"""
Unit tests for state flags.
"""

import pytest

from vaultapi.vault_server.core.states import (
    State,
    clear_user_states,
    is_active,
    is_blocked,
    is_readonly,
    is_system,
    set_user_states,
)
from vaultapi.vault_server.errors import ErrorCode, VaultError


class TestUserStates:
    """Tests for caller-driven state changes."""

    def test_set_and_clear(self):
        state = set_user_states(State.NONE, State.BLOCKED)
        assert is_blocked(state)
        state = clear_user_states(state, State.BLOCKED)
        assert state == State.NONE

    def test_markers_preserved(self):
        """Changing function bits leaves marker bits untouched."""
        state = set_user_states(State.SYSTEM, State.READONLY)
        assert is_system(state)
        assert is_readonly(state)
        assert clear_user_states(state, State.READONLY) == State.SYSTEM

    @pytest.mark.parametrize("flags", [State.SYSTEM, State.DELETED, State.BLOCKED | State.SYSTEM, 0, -1])
    def test_marker_bits_rejected(self, flags):
        """Marker bits and empty masks are refused with 3100."""
        with pytest.raises(VaultError) as exc_info:
            set_user_states(State.NONE, flags)
        assert exc_info.value.code == ErrorCode.INVALID_PARAMETER

        with pytest.raises(VaultError):
            clear_user_states(State.SYSTEM, flags)


class TestPredicates:
    """Tests for state predicates."""

    @pytest.mark.parametrize(
        "state,active",
        [
            (State.NONE, True),
            (State.READONLY, True),
            (State.SYSTEM, True),
            (State.INACTIVE, False),
            (State.BLOCKED, False),
            (State.DELETED, False),
        ],
    )
    def test_is_active(self, state, active):
        assert is_active(state) is active

    def test_deleted_counts_as_blocked(self):
        assert is_blocked(State.DELETED)
        assert not is_blocked(State.READONLY)
