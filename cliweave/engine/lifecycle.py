"""Persistent process state machine.

Defines valid transitions and enforces them. Invalid transitions
raise ValueError rather than silently proceeding.

State Diagram:

    ABSENT ──> SPAWNING ──> READY ──> BUSY ──> READY ...
                  ^                     │
                  │                     │ (unexpected exit, silent pass)
                  └────── DEAD <────────┘

    Any state ──> DEAD  (exit, kill, broken pipe)
"""
from __future__ import annotations

from .models import PersistentState

VALID_TRANSITIONS: dict[PersistentState, set[PersistentState]] = {
    PersistentState.ABSENT: {
        PersistentState.SPAWNING,
        PersistentState.DEAD,
    },
    PersistentState.SPAWNING: {
        PersistentState.READY,
        PersistentState.DEAD,
    },
    PersistentState.READY: {
        PersistentState.BUSY,
        PersistentState.DEAD,
    },
    PersistentState.BUSY: {
        PersistentState.READY,
        PersistentState.DEAD,
    },
    PersistentState.DEAD: {
        PersistentState.SPAWNING,  # respawn after the previous process died
        PersistentState.DEAD,
    },
}


def validate_transition(
    current: PersistentState, target: PersistentState,
) -> None:
    """Validate a state transition. Raises ValueError if invalid."""
    allowed = VALID_TRANSITIONS.get(current, set())
    if target not in allowed:
        allowed_str = ", ".join(s.value for s in allowed) or "none (terminal)"
        raise ValueError(
            f"Invalid persistent transition: {current.value} -> {target.value}. "
            f"Allowed from {current.value}: {allowed_str}"
        )
