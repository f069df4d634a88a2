"""Tests for the aggregate base and the TimeOffRequest aggregate."""

from __future__ import annotations

from decimal import Decimal

import pytest

from policy_pipeline.core.errors import InvariantViolation, SealedAggregateError
from policy_pipeline.domain.time_off import PlanCatalog, RequestStatus, TimeOffRequest
from policy_pipeline.domain.values import Quantity, TimeOffPlan

STANDARD = TimeOffPlan("standard", "Standard", max_days=Decimal("10"), carryover_days=Decimal("3"))
FLEX = TimeOffPlan("flex", "Flex", max_days=Decimal("2"), requires_approval=False)


def _pending(quantity: str = "3", plan: TimeOffPlan = STANDARD) -> TimeOffRequest:
    request = TimeOffRequest()
    request.create(tenant_id="acme", requester_id="alice", plan=plan, quantity=Quantity(quantity))
    return request


def _approved(quantity: str = "3") -> TimeOffRequest:
    request = _pending(quantity)
    request.approve("bob")
    return request


class TestSealing:
    def test_direct_write_is_rejected(self):
        request = _pending()
        with pytest.raises(SealedAggregateError):
            request.status = RequestStatus.APPROVED
        assert request.status is RequestStatus.PENDING

    def test_sealed_error_is_attribute_error(self):
        assert issubclass(SealedAggregateError, AttributeError)

    def test_record_outside_mutation_is_rejected(self):
        with pytest.raises(SealedAggregateError):
            TimeOffRequest()._record("created")

    def test_snapshot_is_detached(self):
        request = _pending()
        copy = request.snapshot()
        copy.cancel()
        assert request.status is RequestStatus.PENDING
        assert copy.pending_changes and copy.is_sealed


class TestCreate:
    def test_create_records_event(self):
        request = _pending("3")
        assert request.is_pending
        assert request.quantity == Decimal("3")
        (change,) = request.pending_changes
        assert change.name == "created"
        assert change.sequence == 1
        assert dict(change.payload) == {"quantity": Decimal("3")}

    def test_create_copies_plan_rules(self):
        request = _pending(plan=FLEX, quantity="1")
        assert request.requires_approval is False
        assert request.carryover_allowance == Decimal("0")

    def test_cannot_create_twice(self):
        request = _pending()
        with pytest.raises(InvariantViolation) as info:
            request.create(tenant_id="acme", requester_id="alice", plan=STANDARD, quantity=Quantity("1"))
        assert info.value.rule == "already_created"
        assert len(request.pending_changes) == 1

    def test_plan_maximum(self):
        request = TimeOffRequest()
        with pytest.raises(InvariantViolation) as info:
            request.create(tenant_id="acme", requester_id="alice", plan=STANDARD, quantity=Quantity("11"))
        assert info.value.field == "quantity"
        assert request.status is RequestStatus.DRAFT
        assert request.sequence == 0
        assert request.pending_changes == ()


class TestTransitions:
    def test_update_quantity(self):
        request = _pending("3")
        request.update_quantity(Quantity("4"))
        assert request.quantity == Decimal("4")
        assert request.pending_changes[-1].name == "quantity_changed"
        assert request.sequence == 2

    def test_update_quantity_requires_pending(self):
        request = _approved()
        with pytest.raises(InvariantViolation):
            request.update_quantity(Quantity("4"))
        assert request.quantity == Decimal("3")

    def test_no_double_approval(self):
        request = _approved()
        with pytest.raises(InvariantViolation) as info:
            request.approve("carol")
        assert info.value.rule == "approve_requires_pending"
        assert request.approved_by == "bob"

    def test_automatic_approval_needs_unattended_plan(self):
        request = _pending()
        with pytest.raises(InvariantViolation) as info:
            request.approve("system", automatic=True)
        assert info.value.rule == "approval_required"
        assert request.is_pending

        unattended = _pending("1", plan=FLEX)
        unattended.approve("system", automatic=True)
        assert unattended.is_approved

    def test_deny(self):
        request = _pending()
        request.deny("busy season")
        assert request.status is RequestStatus.DENIED
        assert request.denial_reason == "busy season"

    def test_cancel_is_final(self):
        request = _pending()
        request.cancel()
        with pytest.raises(InvariantViolation):
            request.cancel()

    def test_cannot_cancel_denied(self):
        request = _pending()
        request.deny("no")
        with pytest.raises(InvariantViolation) as info:
            request.cancel()
        assert info.value.rule == "cancel_not_allowed"


class TestCarryover:
    def test_cannot_use_carryover_before_approval(self):
        request = _pending()
        with pytest.raises(InvariantViolation) as info:
            request.apply_carryover(Quantity("1"))
        assert info.value.message == "cannot use carryover before approval"
        assert request.carryover_used == Decimal("0")

    def test_apply_carryover(self):
        request = _approved("3")
        request.apply_carryover(Quantity("2"))
        assert request.carryover_used == Decimal("2")
        assert request.remaining_days == Decimal("1")

    def test_allowance_is_cumulative(self):
        request = _approved("3")
        request.apply_carryover(Quantity("2"))
        with pytest.raises(InvariantViolation) as info:
            request.apply_carryover(Quantity("2"))
        assert info.value.rule == "carryover_allowance"
        assert request.carryover_used == Decimal("2")

    def test_cannot_exceed_quantity(self):
        request = _approved("1")
        with pytest.raises(InvariantViolation) as info:
            request.apply_carryover(Quantity("2"))
        assert info.value.rule == "carryover_exceeds_quantity"
        assert request.remaining_days == Decimal("1")


class TestAllOrNothing:
    def test_failed_mutation_restores_state_and_sequence(self):
        request = _approved("3")
        before = (request.status, request.carryover_used, request.sequence, len(request.pending_changes))
        with pytest.raises(InvariantViolation):
            request.apply_carryover(Quantity("5"))
        after = (request.status, request.carryover_used, request.sequence, len(request.pending_changes))
        assert before == after
        assert request.is_sealed

    def test_pull_changes_drains(self):
        request = _approved()
        names = [c.name for c in request.pull_changes()]
        assert names == ["created", "approved"]
        assert request.pull_changes() == ()


class TestPlanCatalog:
    def test_lookup(self):
        catalog = PlanCatalog([STANDARD, FLEX])
        assert catalog.get("flex") is FLEX
        assert catalog.get("missing") is None
        assert "standard" in catalog
        assert len(catalog) == 2
