"""Tests for the ordered, fail-fast policy evaluator."""

from __future__ import annotations

from typing import Any

import pytest

from policy_pipeline.control_plane.policy_evaluator import PolicyEvaluator
from policy_pipeline.control_plane.policy_types import Policy, PolicyArgs, PolicyCheck
from policy_pipeline.core.errors import PolicyFault
from policy_pipeline.domain.commands import Actor
from policy_pipeline.domain.time_off import TimeOffRequest


class _Counting:
    """Policy stub returning a fixed check and counting calls."""

    def __init__(self, name: str, allowed: bool = True, reason: str | None = None) -> None:
        self.name = name
        self._check = PolicyCheck(allowed=allowed, reason=reason)
        self.calls = 0

    def check(self, actor: Actor, subject: Any, args: PolicyArgs) -> PolicyCheck:
        self.calls += 1
        return self._check


class _Exploding:
    name = "exploding"

    def check(self, actor, subject, args):
        return subject.missing_attribute


class _Sloppy:
    name = "sloppy"

    def check(self, actor, subject, args):
        return True


class _Meddling:
    """Tries to write to the subject."""

    name = "meddling"

    def check(self, actor, subject, args):
        subject.requester_id = "someone-else"
        return PolicyCheck.allow()


@pytest.fixture
def evaluator() -> PolicyEvaluator:
    return PolicyEvaluator()


@pytest.fixture
def actor() -> Actor:
    return Actor("alice")


class TestOrdering:
    def test_all_pass_names_every_policy(self, evaluator, actor):
        policies = [_Counting("enabled"), _Counting("can_request")]
        decision = evaluator.evaluate(actor, None, policies)
        assert decision.allowed
        assert decision.policies_run == ("enabled", "can_request")
        assert decision.denied_by is None

    def test_first_denial_short_circuits(self, evaluator, actor):
        first = _Counting("enabled")
        denier = _Counting("can_request", allowed=False, reason="not authorized")
        later = _Counting("later")
        decision = evaluator.evaluate(actor, None, [first, denier, later])

        assert not decision.allowed
        assert decision.denied_by == "can_request"
        assert decision.reason == "not authorized"
        assert decision.policies_run == ("enabled", "can_request")
        assert (first.calls, denier.calls, later.calls) == (1, 1, 0)

    def test_denial_without_reason_uses_policy_name(self, evaluator, actor):
        decision = evaluator.evaluate(actor, None, [_Counting("gate", allowed=False)])
        assert decision.reason == "gate"

    def test_no_policies_is_an_explicit_allow(self, evaluator, actor):
        decision = evaluator.evaluate(actor, None, [])
        assert decision.allowed
        assert decision.policies_run == ()

    def test_evaluation_is_idempotent(self, evaluator, actor):
        policies = [_Counting("a"), _Counting("b", allowed=False, reason="no")]
        first = evaluator.evaluate(actor, None, policies)
        second = evaluator.evaluate(actor, None, policies)
        assert (first.allowed, first.denied_by, first.policies_run) == (
            second.allowed, second.denied_by, second.policies_run,
        )

    def test_stubs_satisfy_protocol(self):
        assert isinstance(_Counting("x"), Policy)


class TestFaults:
    def test_exception_becomes_policy_fault(self, evaluator, actor):
        later = _Counting("later")
        with pytest.raises(PolicyFault) as info:
            evaluator.evaluate(actor, None, [_Exploding(), later])
        assert info.value.policy_name == "exploding"
        assert later.calls == 0

    def test_wrong_return_type_is_a_fault(self, evaluator, actor):
        with pytest.raises(PolicyFault, match="sloppy"):
            evaluator.evaluate(actor, None, [_Sloppy()])


class TestSideEffects:
    def test_policies_cannot_touch_the_aggregate(self, evaluator, actor):
        subject = TimeOffRequest(requester_id="alice")
        with pytest.raises(PolicyFault):
            evaluator.evaluate(actor, subject, [_Meddling()])
        assert subject.requester_id == "alice"

    def test_subject_id_is_reported(self, evaluator, actor):
        subject = TimeOffRequest(aggregate_id="req-1")
        decision = evaluator.evaluate(actor, subject, [_Counting("a")])
        assert decision.subject_id == "req-1"
        assert decision.actor_id == "alice"
