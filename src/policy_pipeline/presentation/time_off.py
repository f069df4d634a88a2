"""Views of time-off requests."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from policy_pipeline.domain.time_off import TimeOffRequest

from .presenter import ABSENT, Field, Presenter


def _plan_name(request: TimeOffRequest, related: Mapping[str, Any]) -> Any:
    plan = related.get("plan")
    if plan is None or plan is ABSENT or not plan.name:
        return ABSENT
    return plan.name


class TimeOffRequestPresenter(Presenter):
    """Public view of a request.  Internal bookkeeping stays hidden."""

    kind = "time_off_request"
    fields = (
        Field("id", "aggregate_id"),
        Field("status", lambda r, _: r.status.value),
        Field("requester_id"),
        Field("plan_id"),
        Field("plan_name", _plan_name),
        Field("quantity"),
        Field("remaining_days"),
        Field("reason", lambda r, _: r.reason or None),
        Field("approved_by"),
        Field("denial_reason"),
        Field("carryover_used"),
        Field("version"),
    )


class TimeOffSummaryPresenter(Presenter):
    """Compact row for listings."""

    kind = "time_off_summary"
    fields = (
        Field("id", "aggregate_id"),
        Field("status", lambda r, _: r.status.value),
        Field("requester_id"),
        Field("quantity"),
        Field("requester_name", "related:requester.name"),
    )
