"""Time-off use cases: schemas, policies and operations wired together.

``create`` chains into ``auto_approve`` as a follow-up pass when the
plan does not require approval.
"""

from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal
from typing import Any

from pydantic import Field

from policy_pipeline.core.errors import InvariantViolation
from policy_pipeline.domain.commands import Actor, Command, ExecutionContext
from policy_pipeline.domain.time_off import PlanCatalog, TimeOffRequest
from policy_pipeline.domain.values import Quantity
from policy_pipeline.presentation.presenter import ABSENT, Presenter
from policy_pipeline.presentation.time_off import TimeOffRequestPresenter

from .policies import (
    CanApprove,
    CanRequest,
    FeatureEnabled,
    HasCapability,
    IsRequester,
    PlanEnabled,
    SameTenant,
    WithinPlanLimit,
)
from .use_case import CommandSchema, UseCase

FEATURE = "time_off"
DEFAULT_PLAN_ID = "standard"


# ---------------------------------------------------------------------------
# Command schemas
# ---------------------------------------------------------------------------

class CreateRequest(CommandSchema):
    plan_id: str = Field(default=DEFAULT_PLAN_ID, min_length=1)
    quantity: Decimal = Field(gt=0, allow_inf_nan=False)
    reason: str = ""


class RequestRef(CommandSchema):
    request_id: str = Field(min_length=1)


class UpdateQuantity(RequestRef):
    quantity: Decimal = Field(gt=0, allow_inf_nan=False)


class DenyRequest(RequestRef):
    reason: str = Field(min_length=1)


class ApplyCarryover(RequestRef):
    days: Decimal = Field(gt=0, allow_inf_nan=False)


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------

def build_time_off_use_cases(
    plans: PlanCatalog,
    *,
    presenter: Presenter | None = None,
) -> tuple[UseCase, ...]:
    """Return every time-off use case bound to *plans*."""
    presenter = presenter or TimeOffRequestPresenter()

    def related(request: TimeOffRequest, context: ExecutionContext) -> Mapping[str, Any]:
        return {"plan": plans.get(request.plan_id) or ABSENT}

    def new_request(payload: CreateRequest, actor: Actor, context: ExecutionContext) -> TimeOffRequest:
        return TimeOffRequest()

    def create(request: TimeOffRequest, payload: CreateRequest, actor: Actor, context: ExecutionContext) -> None:
        plan = plans.get(payload.plan_id)
        if plan is None:
            raise InvariantViolation("unknown_plan", f"unknown plan {payload.plan_id!r}", field="plan_id")
        request.create(
            tenant_id=context.tenant_id or actor.tenant_id,
            requester_id=actor.actor_id,
            plan=plan,
            quantity=Quantity(payload.quantity),
            reason=payload.reason,
        )

    def finalize_if_unattended(request: TimeOffRequest, payload: Any, command: Command) -> Command | None:
        if request.is_pending and not request.requires_approval:
            return command.derive("auto_approve", {"request_id": request.aggregate_id})
        return None

    def apply_carryover(request: TimeOffRequest, payload: ApplyCarryover, actor: Actor, context: ExecutionContext) -> None:
        plan = plans.get(request.plan_id)
        if plan is not None and not plan.allows_carryover:
            raise InvariantViolation(
                "carryover_not_allowed", f"plan {plan.plan_id!r} has no carryover", field="days",
            )
        request.apply_carryover(Quantity(payload.days))

    common = dict(presenter=presenter, related=related)
    enabled = FeatureEnabled(FEATURE)

    return (
        UseCase(
            name="create",
            schema=CreateRequest,
            operation=create,
            policies=(enabled, SameTenant(), CanRequest(), PlanEnabled(plans), WithinPlanLimit(plans)),
            factory=new_request,
            follow_up=finalize_if_unattended,
            **common,
        ),
        UseCase(
            name="auto_approve",
            schema=RequestRef,
            operation=lambda r, p, a, c: r.approve(a.actor_id, automatic=True),
            policies=(HasCapability("time_off:auto_approve"),),
            subject_field="request_id",
            **common,
        ),
        UseCase(
            name="update_quantity",
            schema=UpdateQuantity,
            operation=lambda r, p, a, c: r.update_quantity(Quantity(p.quantity)),
            policies=(enabled, SameTenant(), IsRequester(), WithinPlanLimit(plans)),
            subject_field="request_id",
            **common,
        ),
        UseCase(
            name="approve",
            schema=RequestRef,
            operation=lambda r, p, a, c: r.approve(a.actor_id),
            policies=(enabled, SameTenant(), CanApprove()),
            subject_field="request_id",
            **common,
        ),
        UseCase(
            name="deny",
            schema=DenyRequest,
            operation=lambda r, p, a, c: r.deny(p.reason),
            policies=(enabled, SameTenant(), CanApprove()),
            subject_field="request_id",
            **common,
        ),
        UseCase(
            name="cancel",
            schema=RequestRef,
            operation=lambda r, p, a, c: r.cancel(),
            policies=(enabled, SameTenant(), IsRequester()),
            subject_field="request_id",
            **common,
        ),
        UseCase(
            name="apply_carryover",
            schema=ApplyCarryover,
            operation=apply_carryover,
            policies=(enabled, SameTenant(), IsRequester()),
            subject_field="request_id",
            **common,
        ),
    )
