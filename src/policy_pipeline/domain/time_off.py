"""Time-off requests: the reference aggregate.

Lifecycle::

    DRAFT -> PENDING -> APPROVED -> (carryover applied, any number of times)
                     -> DENIED
    PENDING | APPROVED -> CANCELLED

Every operation either completes and records exactly one event, or
raises :class:`InvariantViolation` and leaves the request untouched.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from policy_pipeline.core.errors import InvariantViolation

from .aggregate import Aggregate, mutation
from .values import Quantity, TimeOffPlan


class RequestStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    CANCELLED = "cancelled"


@dataclass(eq=False)
class TimeOffRequest(Aggregate):
    """A request for days off under a :class:`TimeOffPlan`."""

    tenant_id: str = ""
    requester_id: str = ""
    plan_id: str = ""
    status: RequestStatus = RequestStatus.DRAFT
    quantity: Decimal = Decimal("0")
    reason: str = ""
    requires_approval: bool = True
    approved_by: str | None = None
    denial_reason: str | None = None
    carryover_used: Decimal = Decimal("0")
    carryover_allowance: Decimal = Decimal("0")

    # -- Queries -----------------------------------------------------------

    @property
    def is_pending(self) -> bool:
        return self.status is RequestStatus.PENDING

    @property
    def is_approved(self) -> bool:
        return self.status is RequestStatus.APPROVED

    @property
    def remaining_days(self) -> Decimal:
        """Days still charged against the plan after carryover."""
        return self.quantity - self.carryover_used

    # -- Mutations ---------------------------------------------------------

    @mutation
    def create(
        self,
        *,
        tenant_id: str,
        requester_id: str,
        plan: TimeOffPlan,
        quantity: Quantity,
        reason: str = "",
    ) -> None:
        """Submit a draft.  Invariant: a request is created exactly once."""
        if self.status is not RequestStatus.DRAFT:
            raise InvariantViolation(
                "already_created", f"request is already {self.status.value}",
            )
        if quantity.amount > plan.max_days:
            raise InvariantViolation(
                "plan_max_days",
                f"{quantity} days exceeds plan maximum of {plan.max_days}",
                field="quantity",
            )
        self.tenant_id = tenant_id
        self.requester_id = requester_id
        self.plan_id = plan.plan_id
        self.quantity = quantity.amount
        self.reason = reason
        self.requires_approval = plan.requires_approval
        self.carryover_allowance = plan.carryover_days
        self.status = RequestStatus.PENDING
        self._record("created", quantity=quantity.amount)

    @mutation
    def update_quantity(self, quantity: Quantity) -> None:
        """Invariant: only pending requests can change size."""
        self._require(RequestStatus.PENDING, "update_requires_pending")
        previous = self.quantity
        self.quantity = quantity.amount
        self._record("quantity_changed", previous=previous, quantity=quantity.amount)

    @mutation
    def approve(self, approver_id: str, *, automatic: bool = False) -> None:
        """Invariant: no double approval; approval-gated plans need a human."""
        self._require(RequestStatus.PENDING, "approve_requires_pending")
        if automatic and self.requires_approval:
            raise InvariantViolation(
                "approval_required",
                "plan requires approval; request cannot be finalized automatically",
            )
        self.status = RequestStatus.APPROVED
        self.approved_by = approver_id
        self._record("approved", approved_by=approver_id, automatic=automatic)

    @mutation
    def deny(self, reason: str) -> None:
        self._require(RequestStatus.PENDING, "deny_requires_pending")
        self.status = RequestStatus.DENIED
        self.denial_reason = reason
        self._record("denied", reason=reason)

    @mutation
    def cancel(self) -> None:
        """Invariant: denied or cancelled requests are final."""
        if self.status not in (RequestStatus.PENDING, RequestStatus.APPROVED):
            raise InvariantViolation(
                "cancel_not_allowed",
                f"cannot cancel a {self.status.value} request",
            )
        self.status = RequestStatus.CANCELLED
        self._record("cancelled")

    @mutation
    def apply_carryover(self, days: Quantity) -> None:
        """Invariant: carryover only after approval, never beyond limits."""
        if not self.is_approved:
            raise InvariantViolation(
                "carryover_before_approval",
                "cannot use carryover before approval",
            )
        total = self.carryover_used + days.amount
        if total > self.carryover_allowance:
            raise InvariantViolation(
                "carryover_allowance",
                f"carryover of {total} exceeds allowance of {self.carryover_allowance}",
                field="days",
            )
        if total > self.quantity:
            raise InvariantViolation(
                "carryover_exceeds_quantity",
                f"carryover of {total} exceeds requested {self.quantity} days",
                field="days",
            )
        self.carryover_used = total
        self._record("carryover_applied", days=days.amount, carryover_used=total)

    # -- Helpers -----------------------------------------------------------

    def _require(self, status: RequestStatus, rule: str) -> None:
        if self.status is not status:
            raise InvariantViolation(
                rule, f"request is {self.status.value}, expected {status.value}",
            )


class PlanCatalog:
    """Read-only lookup of plans by id."""

    def __init__(self, plans: Iterable[TimeOffPlan] = ()) -> None:
        self._plans: Mapping[str, TimeOffPlan] = {p.plan_id: p for p in plans}

    def get(self, plan_id: str) -> TimeOffPlan | None:
        return self._plans.get(plan_id)

    def __contains__(self, plan_id: object) -> bool:
        return plan_id in self._plans

    def __len__(self) -> int:
        return len(self._plans)
