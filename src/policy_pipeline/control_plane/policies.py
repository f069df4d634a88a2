"""Concrete policies.

Each policy is a small class with a ``name`` and a ``check``.  New
rules are added as new classes; the evaluator never changes.  Order
matters: cheap pre-conditions (feature flags, tenancy) belong first.
"""

from __future__ import annotations

from typing import Any

from policy_pipeline.domain.commands import Actor
from policy_pipeline.domain.time_off import PlanCatalog, TimeOffRequest

from .policy_types import PolicyArgs, PolicyCheck

NOT_AUTHORIZED = "not authorized"


# ---------------------------------------------------------------------------
# Generic
# ---------------------------------------------------------------------------

class FeatureEnabled:
    """Denies when a feature flag is off in the execution context."""

    def __init__(self, feature: str) -> None:
        self.feature = feature
        self.name = f"feature_enabled:{feature}"

    def check(self, actor: Actor, subject: Any, args: PolicyArgs) -> PolicyCheck:
        if args.context.feature_enabled(self.feature):
            return PolicyCheck.allow()
        return PolicyCheck.deny(f"feature {self.feature!r} is disabled")


class HasCapability:
    """Denies actors lacking a capability."""

    def __init__(self, capability: str, name: str | None = None) -> None:
        self.capability = capability
        self.name = name or f"has_capability:{capability}"

    def check(self, actor: Actor, subject: Any, args: PolicyArgs) -> PolicyCheck:
        if actor.can(self.capability):
            return PolicyCheck.allow()
        return PolicyCheck.deny(NOT_AUTHORIZED)


class SameTenant:
    """The actor must belong to the subject's (or the context's) tenant."""

    name = "same_tenant"

    def check(self, actor: Actor, subject: Any, args: PolicyArgs) -> PolicyCheck:
        tenant = getattr(subject, "tenant_id", "") or args.context.tenant_id
        if not tenant or actor.tenant_id == tenant:
            return PolicyCheck.allow()
        return PolicyCheck.deny("actor belongs to another tenant")


# ---------------------------------------------------------------------------
# Time off
# ---------------------------------------------------------------------------

class CanRequest(HasCapability):
    def __init__(self) -> None:
        super().__init__("time_off:request", name="can_request")


class CanApprove:
    """Approvers need the capability and cannot approve their own request."""

    name = "can_approve"

    def check(self, actor: Actor, subject: TimeOffRequest, args: PolicyArgs) -> PolicyCheck:
        if not actor.can("time_off:approve"):
            return PolicyCheck.deny(NOT_AUTHORIZED)
        if subject.requester_id == actor.actor_id:
            return PolicyCheck.deny("cannot approve own request")
        return PolicyCheck.allow()


class IsRequester:
    """Only the requester (or an approver) may act on a request."""

    name = "is_requester"

    def check(self, actor: Actor, subject: TimeOffRequest, args: PolicyArgs) -> PolicyCheck:
        if subject.requester_id == actor.actor_id or actor.can("time_off:approve"):
            return PolicyCheck.allow()
        return PolicyCheck.deny(NOT_AUTHORIZED)


class PlanEnabled:
    """The plan named in the command (or on the subject) must exist and be enabled."""

    name = "plan_enabled"

    def __init__(self, plans: PlanCatalog) -> None:
        self._plans = plans

    def check(self, actor: Actor, subject: Any, args: PolicyArgs) -> PolicyCheck:
        plan_id = args.get("plan_id") or getattr(subject, "plan_id", "")
        plan = self._plans.get(plan_id)
        if plan is None:
            return PolicyCheck.deny(f"unknown plan {plan_id!r}")
        if not plan.enabled:
            return PolicyCheck.deny(f"plan {plan_id!r} is disabled")
        return PolicyCheck.allow()


class WithinPlanLimit:
    """The requested quantity must not exceed the plan's maximum."""

    name = "within_plan_limit"

    def __init__(self, plans: PlanCatalog) -> None:
        self._plans = plans

    def check(self, actor: Actor, subject: Any, args: PolicyArgs) -> PolicyCheck:
        plan_id = args.get("plan_id") or getattr(subject, "plan_id", "")
        plan = self._plans.get(plan_id)
        if plan is None:
            return PolicyCheck.deny(f"unknown plan {plan_id!r}")
        quantity = args.get("quantity")
        if quantity is not None and quantity > plan.max_days:
            return PolicyCheck.deny(
                f"{quantity} days exceeds plan maximum of {plan.max_days}"
            )
        return PolicyCheck.allow()
