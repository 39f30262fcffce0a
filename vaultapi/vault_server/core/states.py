"""
State flags for users, objects and registrations.

A state is a 16-bit mask split in two halves:
- Function half (STATE_MASK_FUNCTIONS, 0x0FFF): user-settable flags such as
  INACTIVE, BLOCKED and READONLY
- Marker half (STATE_MASK_MARKERS, 0xF000): server-managed markers such as
  SYSTEM (object administrator) and DELETED (tombstone)

Invariants:
    - External callers only set or clear bits inside STATE_MASK_FUNCTIONS
    - Marker bits change only through named server operations
"""

from __future__ import annotations

from enum import IntFlag

from ..errors import ErrorCode, VaultError

STATE_MASK_FUNCTIONS = 0x0FFF
STATE_MASK_MARKERS = 0xF000


class State(IntFlag):
    """Registration state flags."""

    NONE = 0x0000
    INACTIVE = 0x0001
    BLOCKED = 0x0002
    READONLY = 0x0004
    SYSTEM = 0x1000
    DELETED = 0x2000


def has_all(state: int, flags: int) -> bool:
    return state & flags == flags


def has_any(state: int, flags: int) -> bool:
    return state & flags != 0


def set_states(state: int, flags: int) -> int:
    return (state | flags) & 0xFFFF


def clear_states(state: int, flags: int) -> int:
    return state & ~flags & 0xFFFF


def _check_user_flags(flags: int) -> None:
    if flags <= 0 or flags & ~STATE_MASK_FUNCTIONS:
        raise VaultError(
            ErrorCode.INVALID_PARAMETER,
            details={"state": flags, "reason": "only function state bits may be changed"},
        )


def set_user_states(state: int, flags: int) -> int:
    """Set caller-supplied flags, rejecting marker bits."""
    _check_user_flags(flags)
    return set_states(state, flags)


def clear_user_states(state: int, flags: int) -> int:
    """Clear caller-supplied flags, rejecting marker bits."""
    _check_user_flags(flags)
    return clear_states(state, flags)


def is_active(state: int) -> bool:
    """Not inactive, blocked or deleted."""
    return not has_any(state, State.INACTIVE | State.BLOCKED | State.DELETED)


def is_blocked(state: int) -> bool:
    return has_any(state, State.BLOCKED | State.DELETED)


def is_readonly(state: int) -> bool:
    return has_all(state, State.READONLY)


def is_system(state: int) -> bool:
    return has_all(state, State.SYSTEM)
