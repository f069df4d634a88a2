"""Per-invocation execution lifecycle state machine.

Every executor invocation follows a deterministic lifecycle:

    RECEIVED -> VALIDATED -> AUTHORIZED -> MUTATED -> PERSISTED
             -> PUBLISHED -> PRESENTED
    PUBLISHED -> MUTATED                 (follow-up pass)

Exit edges (terminal):
    RECEIVED | VALIDATED | AUTHORIZED -> VALIDATION_FAILED
    VALIDATED -> DENIED
    VALIDATED | AUTHORIZED | MUTATED | PERSISTED | PUBLISHED -> FAULT

Invalid transitions raise LifecycleError. Terminal states cannot be
exited. All transitions are recorded for audit trail.
"""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Any

from policy_pipeline.core.errors import LifecycleError

logger = logging.getLogger(__name__)


class ExecutionState(str, Enum):
    """Lifecycle states for a single executor invocation."""

    RECEIVED = "received"
    VALIDATED = "validated"
    AUTHORIZED = "authorized"
    MUTATED = "mutated"
    PERSISTED = "persisted"
    PUBLISHED = "published"
    PRESENTED = "presented"
    # Error terminals
    DENIED = "denied"
    VALIDATION_FAILED = "validation_failed"
    FAULT = "fault"


TERMINAL_STATES: frozenset[ExecutionState] = frozenset({
    ExecutionState.PRESENTED,
    ExecutionState.DENIED,
    ExecutionState.VALIDATION_FAILED,
    ExecutionState.FAULT,
})

TRANSITIONS: dict[ExecutionState, frozenset[ExecutionState]] = {
    ExecutionState.RECEIVED: frozenset({
        ExecutionState.VALIDATED, ExecutionState.VALIDATION_FAILED,
    }),
    ExecutionState.VALIDATED: frozenset({
        ExecutionState.AUTHORIZED,
        ExecutionState.DENIED,
        ExecutionState.VALIDATION_FAILED,  # subject not found
        ExecutionState.FAULT,              # policy fault, store unavailable
    }),
    ExecutionState.AUTHORIZED: frozenset({
        ExecutionState.MUTATED,
        ExecutionState.VALIDATION_FAILED,  # invariant rejected the mutation
        ExecutionState.FAULT,
    }),
    ExecutionState.MUTATED: frozenset({
        ExecutionState.PERSISTED, ExecutionState.FAULT,
    }),
    ExecutionState.PERSISTED: frozenset({
        ExecutionState.PUBLISHED, ExecutionState.FAULT,
    }),
    ExecutionState.PUBLISHED: frozenset({
        ExecutionState.PRESENTED,
        ExecutionState.MUTATED,            # follow-up pass
        ExecutionState.FAULT,
    }),
}


class ExecutionLifecycle:
    """State machine for one executor invocation.

    Args:
        command_id: The command being executed.
        correlation_id: Correlation ID for tracing.
    """

    def __init__(self, command_id: str, correlation_id: str) -> None:
        self.command_id = command_id
        self.correlation_id = correlation_id
        self.state = ExecutionState.RECEIVED
        self.history: list[tuple[ExecutionState, ExecutionState, float]] = []
        self.created_at = time.monotonic()
        self.passes = 0

    def transition(self, new_state: ExecutionState) -> None:
        """Transition to a new state.

        Raises:
            LifecycleError: If the transition is not valid from the current state.
        """
        if self.state in TERMINAL_STATES:
            raise LifecycleError(
                f"Cannot transition from terminal state {self.state.value}"
            )
        valid = TRANSITIONS.get(self.state, frozenset())
        if new_state not in valid:
            raise LifecycleError(
                f"Invalid transition: {self.state.value} -> {new_state.value}. "
                f"Valid: {sorted(s.value for s in valid)}"
            )
        if new_state is ExecutionState.MUTATED:
            self.passes += 1
        self.history.append((self.state, new_state, time.monotonic()))
        logger.debug(
            "ExecutionLifecycle %s: %s -> %s",
            self.command_id[:8], self.state.value, new_state.value,
        )
        self.state = new_state

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def trail(self) -> tuple[str, ...]:
        """Visited states in order, starting with RECEIVED."""
        return (ExecutionState.RECEIVED.value,) + tuple(t.value for _, t, _ in self.history)

    def reached(self, state: ExecutionState) -> bool:
        return any(t is state for _, t, _ in self.history)

    def total_time(self) -> float:
        return time.monotonic() - self.created_at

    def to_audit_dict(self) -> dict[str, Any]:
        """Serialize for audit logging."""
        return {
            "command_id": self.command_id,
            "correlation_id": self.correlation_id,
            "state": self.state.value,
            "passes": self.passes,
            "history": [
                {"from": f.value, "to": t.value, "at": ts}
                for f, t, ts in self.history
            ],
            "total_time_s": round(self.total_time(), 6),
        }
