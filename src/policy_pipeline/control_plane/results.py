"""Typed outcomes of one executor invocation.

Exactly one of :class:`Success`, :class:`Denied`,
:class:`ValidationFailed` or :class:`Fault` is returned by
``UseCaseExecutor.execute``.  Business outcomes are never raised.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, ClassVar

from policy_pipeline.core.enums import ExecutionStatus, FaultKind, FaultStep
from policy_pipeline.domain.events import DomainEvent
from policy_pipeline.presentation.presenter import View

from .policy_types import PolicyDecision


@dataclass(frozen=True, kw_only=True)
class ExecutionResult:
    """Fields shared by every outcome."""

    status: ClassVar[ExecutionStatus]

    command_id: str = ""
    correlation_id: str = ""
    trail: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.status is ExecutionStatus.SUCCESS

    def summary(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "command_id": self.command_id,
            "correlation_id": self.correlation_id,
            "trail": list(self.trail),
        }


@dataclass(frozen=True, kw_only=True)
class Success(ExecutionResult):
    status: ClassVar[ExecutionStatus] = ExecutionStatus.SUCCESS

    view: View
    events: tuple[DomainEvent, ...] = ()
    decision: PolicyDecision | None = None


@dataclass(frozen=True, kw_only=True)
class Denied(ExecutionResult):
    status: ClassVar[ExecutionStatus] = ExecutionStatus.DENIED

    reason: str
    denied_by: str = ""
    decision: PolicyDecision | None = None


@dataclass(frozen=True, kw_only=True)
class ValidationFailed(ExecutionResult):
    """Malformed command fields, or a domain invariant rejected the mutation."""

    status: ClassVar[ExecutionStatus] = ExecutionStatus.VALIDATION_FAILED

    fields: Mapping[str, str] = field(default_factory=dict)
    rule: str | None = None


@dataclass(frozen=True, kw_only=True)
class Fault(ExecutionResult):
    """Unexpected failure, wrapped with the step it happened at.

    ``committed`` tells "nothing happened" apart from "state changed
    but events may not have been delivered".  When committed, ``view``
    reflects the committed state, ``events`` lists every committed
    event and ``undelivered`` those the publisher did not accept.
    """

    status: ClassVar[ExecutionStatus] = ExecutionStatus.FAULT

    error: str
    step: FaultStep
    kind: FaultKind = FaultKind.INTERNAL
    committed: bool = False
    view: View | None = None
    events: tuple[DomainEvent, ...] = ()
    undelivered: tuple[DomainEvent, ...] = ()

    @property
    def is_conflict(self) -> bool:
        return self.kind is FaultKind.CONFLICT
