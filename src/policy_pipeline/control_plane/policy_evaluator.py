"""Ordered, fail-fast policy evaluator.

Responsibilities:
    1. Evaluate policies in the order the use case lists them.
    2. Stop at the first denial and report the denying policy and reason.
    3. Report an all-pass as an explicit decision naming every policy.
    4. Turn an unexpected exception inside a policy into PolicyFault.

Policies see a detached snapshot of an aggregate subject, so evaluation
has no observable side effect on the aggregate the executor will mutate.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from policy_pipeline.core.errors import PolicyFault
from policy_pipeline.domain.aggregate import Aggregate
from policy_pipeline.domain.commands import Actor

from .policy_types import Policy, PolicyArgs, PolicyCheck, PolicyDecision

logger = logging.getLogger(__name__)


def policy_name(policy: Any) -> str:
    return getattr(policy, "name", None) or type(policy).__name__


class PolicyEvaluator:
    """Evaluates an ordered sequence of :class:`Policy` objects."""

    def evaluate(
        self,
        actor: Actor,
        subject: Any,
        policies: Sequence[Policy],
        args: PolicyArgs | None = None,
    ) -> PolicyDecision:
        """Return the decision for *policies* against *subject*.

        Raises:
            PolicyFault: If a policy raises or returns something other
                than a :class:`PolicyCheck`.
        """
        args = args or PolicyArgs()
        view = subject.snapshot() if isinstance(subject, Aggregate) else subject
        subject_id = getattr(subject, "aggregate_id", "") or ""
        ran: list[str] = []

        for policy in policies:
            name = policy_name(policy)
            try:
                check = policy.check(actor, view, args)
            except PolicyFault:
                raise
            except Exception as exc:
                logger.error(
                    "Policy %s faulted for actor=%s subject=%s: %s",
                    name, actor.actor_id, subject_id, exc,
                    exc_info=True,
                )
                raise PolicyFault(name, f"{type(exc).__name__}: {exc}") from exc

            if not isinstance(check, PolicyCheck):
                raise PolicyFault(name, f"returned {type(check).__name__}, not PolicyCheck")

            ran.append(name)
            if not check.allowed:
                logger.info(
                    "Policy %s denied actor=%s subject=%s: %s",
                    name, actor.actor_id, subject_id, check.reason,
                )
                return PolicyDecision(
                    actor_id=actor.actor_id,
                    subject_id=subject_id,
                    allowed=False,
                    policies_run=tuple(ran),
                    denied_by=name,
                    reason=check.reason or name,
                )

        return PolicyDecision(
            actor_id=actor.actor_id,
            subject_id=subject_id,
            allowed=True,
            policies_run=tuple(ran),
        )
