"""Tests for the per-invocation execution lifecycle."""

from __future__ import annotations

import pytest

from policy_pipeline.control_plane.lifecycle import (
    TERMINAL_STATES,
    TRANSITIONS,
    ExecutionLifecycle,
    ExecutionState,
)
from policy_pipeline.core.errors import LifecycleError

S = ExecutionState

HAPPY_PATH = [S.VALIDATED, S.AUTHORIZED, S.MUTATED, S.PERSISTED, S.PUBLISHED, S.PRESENTED]


def _walk(states) -> ExecutionLifecycle:
    lifecycle = ExecutionLifecycle("cmd-1", "corr-1")
    for state in states:
        lifecycle.transition(state)
    return lifecycle


class TestTransitions:
    def test_happy_path(self):
        lifecycle = _walk(HAPPY_PATH)
        assert lifecycle.is_terminal
        assert lifecycle.trail == ("received", "validated", "authorized", "mutated",
                                   "persisted", "published", "presented")
        assert lifecycle.passes == 1

    def test_follow_up_pass(self):
        lifecycle = _walk(HAPPY_PATH[:-1] + [S.MUTATED, S.PERSISTED, S.PUBLISHED, S.PRESENTED])
        assert lifecycle.passes == 2
        assert lifecycle.reached(S.PRESENTED)

    def test_cannot_skip_authorization(self):
        lifecycle = _walk([S.VALIDATED])
        with pytest.raises(LifecycleError):
            lifecycle.transition(S.MUTATED)

    def test_denied_only_after_validation(self):
        with pytest.raises(LifecycleError):
            _walk([S.DENIED])
        assert _walk([S.VALIDATED, S.DENIED]).is_terminal

    def test_terminal_states_cannot_be_left(self):
        lifecycle = _walk([S.VALIDATION_FAILED])
        with pytest.raises(LifecycleError, match="terminal"):
            lifecycle.transition(S.VALIDATED)

    def test_lifecycle_error_is_value_error(self):
        assert issubclass(LifecycleError, ValueError)

    @pytest.mark.parametrize("state", [S.AUTHORIZED, S.MUTATED, S.PERSISTED, S.PUBLISHED])
    def test_fault_reachable_after_authorization(self, state):
        assert S.FAULT in TRANSITIONS[state]

    def test_terminal_states_have_no_exits(self):
        assert not any(state in TRANSITIONS for state in TERMINAL_STATES)


class TestAudit:
    def test_audit_dict(self):
        lifecycle = _walk([S.VALIDATED, S.DENIED])
        data = lifecycle.to_audit_dict()
        assert data["state"] == "denied"
        assert data["command_id"] == "cmd-1"
        assert [h["to"] for h in data["history"]] == ["validated", "denied"]
        assert data["total_time_s"] >= 0
