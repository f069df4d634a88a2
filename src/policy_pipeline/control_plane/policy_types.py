"""Core type definitions for policy evaluation.

    Policy.check -> PolicyCheck        (one policy)
    PolicyEvaluator.evaluate -> PolicyDecision   (ordered list)
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from policy_pipeline.core.ids import new_id, utc_now
from policy_pipeline.domain.commands import Actor, ExecutionContext


class PolicyCheck(BaseModel):
    """Outcome of a single policy check."""

    model_config = ConfigDict(frozen=True)

    allowed: bool
    reason: str | None = None

    @classmethod
    def allow(cls) -> PolicyCheck:
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: str) -> PolicyCheck:
        return cls(allowed=False, reason=reason)


class PolicyDecision(BaseModel):
    """Result of evaluating an ordered list of policies. Immutable.

    An allowed decision names every policy that ran.  A denial names
    the policies that ran up to and including the denying one.
    """

    model_config = ConfigDict(frozen=True)

    decision_id: str = Field(default_factory=new_id)
    timestamp: datetime = Field(default_factory=utc_now)
    actor_id: str = ""
    subject_id: str = ""

    allowed: bool
    policies_run: tuple[str, ...] = ()
    denied_by: str | None = None
    reason: str | None = None


@dataclass(frozen=True)
class PolicyArgs:
    """Optional arguments handed to every policy of a use case."""

    params: Mapping[str, Any] = field(default_factory=dict)
    context: ExecutionContext = field(default_factory=ExecutionContext)

    def get(self, key: str, default: Any = None) -> Any:
        return self.params.get(key, default)


@runtime_checkable
class Policy(Protocol):
    """A named predicate over (actor, subject, args).

    ``check`` returns a denial for expected business rejections and
    raises only for genuine faults.  It must not mutate the subject.
    """

    name: str

    def check(self, actor: Actor, subject: Any, args: PolicyArgs) -> PolicyCheck: ...
