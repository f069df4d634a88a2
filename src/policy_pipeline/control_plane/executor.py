"""Use Case Executor: the single entry point for state changes.

Fixed order per invocation::

    validate -> resolve subject -> authorize
             -> [mutate -> persist -> publish] (+ follow-up passes)
             -> present

Design invariants
-----------------
1.  No policy runs and no aggregate is loaded for a command that fails
    structural validation.
2.  No mutation is attempted unless every policy allowed it.
3.  Events are published only after ``store.save`` committed, and only
    the events recorded by that committed mutation.
4.  Publication failure never rolls back the committed write; the
    ``Fault`` says ``committed=True`` and lists the undelivered events.
5.  The bracketed commit phase is shielded from cancellation: once the
    mutation started it runs to completion before ``CancelledError``
    reaches the caller.
6.  Business outcomes are returned as :class:`ExecutionResult`, never
    raised.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import ValidationError

from policy_pipeline.core.clock import IClock, WallClock
from policy_pipeline.core.config import Settings
from policy_pipeline.core.enums import FaultKind, FaultStep
from policy_pipeline.core.errors import (
    AggregateNotFound,
    InvariantViolation,
    PolicyFault,
    PublishError,
    StoreError,
    UnknownCommandError,
    VersionConflict,
)
from policy_pipeline.domain.aggregate import Aggregate
from policy_pipeline.domain.commands import SYSTEM_ACTOR, Actor, Command, ExecutionContext
from policy_pipeline.domain.events import DomainEvent, events_from_changes
from policy_pipeline.infrastructure.aggregate_store import IAggregateStore
from policy_pipeline.infrastructure.event_bus import IEventPublisher
from policy_pipeline.observability.logger import reset_trace_id, set_trace_id
from policy_pipeline.presentation.presenter import View

from .audit_log import AuditEntry, AuditLog
from .lifecycle import ExecutionLifecycle, ExecutionState
from .policy_evaluator import PolicyEvaluator
from .policy_types import PolicyArgs, PolicyDecision
from .results import Denied, ExecutionResult, Fault, Success, ValidationFailed
from .use_case import CommandSchema, UseCase

logger = logging.getLogger(__name__)

#: Upper bound on chained follow-up passes for one invocation.
MAX_FOLLOW_UPS = 3


async def _settle(task: asyncio.Future[ExecutionResult]) -> ExecutionResult:
    """Wait for *task* to finish, absorbing further cancellation requests."""
    while True:
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.done():
                return task.result()


def _field_errors(exc: ValidationError) -> dict[str, str]:
    errors: dict[str, str] = {}
    for error in exc.errors():
        key = ".".join(str(part) for part in error["loc"]) or "__root__"
        errors.setdefault(key, error["msg"])
    return errors


class UseCaseExecutor:
    """Runs commands through their registered :class:`UseCase`.

    Usage::

        executor = UseCaseExecutor(store, bus, use_cases=build_time_off_use_cases(plans))
        result = await executor.execute(command, actor, context)
        if isinstance(result, Success):
            render(result.view)
    """

    def __init__(
        self,
        store: IAggregateStore,
        publisher: IEventPublisher,
        *,
        evaluator: PolicyEvaluator | None = None,
        use_cases: Iterable[UseCase] = (),
        clock: IClock | None = None,
        audit_log: AuditLog | None = None,
        follow_ups_enabled: bool = True,
        max_follow_ups: int = MAX_FOLLOW_UPS,
    ) -> None:
        self._store = store
        self._publisher = publisher
        self._evaluator = evaluator or PolicyEvaluator()
        self._clock = clock or WallClock()
        self._audit_log = audit_log
        self._follow_ups_enabled = follow_ups_enabled
        self._max_follow_ups = max_follow_ups
        self._use_cases: dict[str, UseCase] = {}
        for use_case in use_cases:
            self.register(use_case)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: IAggregateStore,
        publisher: IEventPublisher,
        **kwargs: Any,
    ) -> UseCaseExecutor:
        """Build an executor honoring ``settings.executor``."""
        cfg = settings.executor
        if cfg.audit_enabled and "audit_log" not in kwargs:
            kwargs["audit_log"] = AuditLog(persist_path=cfg.audit_path)
        kwargs.setdefault("follow_ups_enabled", cfg.follow_ups_enabled)
        return cls(store, publisher, **kwargs)

    # -- Registry ----------------------------------------------------------

    def register(self, use_case: UseCase) -> None:
        if use_case.name in self._use_cases:
            raise ValueError(f"use case {use_case.name!r} is already registered")
        self._use_cases[use_case.name] = use_case

    def use_case(self, name: str) -> UseCase:
        try:
            return self._use_cases[name]
        except KeyError:
            raise UnknownCommandError(name) from None

    @property
    def command_names(self) -> tuple[str, ...]:
        return tuple(self._use_cases)

    @property
    def audit_log(self) -> AuditLog | None:
        return self._audit_log

    # -- Entry point -------------------------------------------------------

    async def execute(
        self,
        command: Command,
        actor: Actor,
        context: ExecutionContext | None = None,
    ) -> ExecutionResult:
        """Validate, authorize, mutate, persist, publish and present.

        Raises:
            asyncio.CancelledError: If the caller cancels.  Before the
                mutation started nothing has changed; after, the commit
                phase is finished first.
        """
        context = context or ExecutionContext()
        token = set_trace_id(command.correlation_id)
        try:
            lifecycle = ExecutionLifecycle(command.command_id, command.correlation_id)
            logger.debug("Executing %s (%s) for actor=%s", command.name, command.command_id, actor.actor_id)

            result = await self._run(command, actor, context, lifecycle)
            await self._finish(command, actor, lifecycle, result)
            return result
        finally:
            reset_trace_id(token)

    async def _run(
        self,
        command: Command,
        actor: Actor,
        context: ExecutionContext,
        lifecycle: ExecutionLifecycle,
    ) -> ExecutionResult:
        # 1. Structural validation
        try:
            use_case = self.use_case(command.name)
        except UnknownCommandError as exc:
            return self._validation_failed(lifecycle, {"type": str(exc)}, rule="unknown_command")
        try:
            payload = use_case.schema.model_validate(dict(command.fields))
        except ValidationError as exc:
            return self._validation_failed(lifecycle, _field_errors(exc), rule="schema")
        lifecycle.transition(ExecutionState.VALIDATED)

        # 2. Subject resolution and authorization (cancellable)
        try:
            subject = await self._resolve(use_case, payload, actor, context)
        except AggregateNotFound as exc:
            return self._validation_failed(
                lifecycle, {use_case.subject_field or "id": str(exc)}, rule="not_found",
            )
        except StoreError as exc:
            return self._fault(lifecycle, FaultStep.RESOLUTION, FaultKind.STORE_UNAVAILABLE, exc)
        except Exception as exc:
            return self._fault(lifecycle, FaultStep.RESOLUTION, FaultKind.INTERNAL, exc)

        args = PolicyArgs(params=payload.model_dump(), context=context)
        try:
            decision = self._evaluator.evaluate(actor, subject, use_case.policies, args)
        except PolicyFault as exc:
            return self._fault(lifecycle, FaultStep.AUTHORIZATION, FaultKind.POLICY_FAULT, exc)

        if not decision.allowed:
            lifecycle.transition(ExecutionState.DENIED)
            return Denied(
                reason=decision.reason or "denied",
                denied_by=decision.denied_by or "",
                decision=decision,
                **self._stamp(lifecycle),
            )
        lifecycle.transition(ExecutionState.AUTHORIZED)

        # 3-7. Commit phase (not cancellable)
        task = asyncio.ensure_future(
            self._commit(use_case, command, payload, subject, actor, context, decision, lifecycle)
        )
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            logger.warning(
                "Cancellation requested while committing %s; finishing the commit first",
                command.command_id,
            )
            result = await _settle(task)
            await self._finish(command, actor, lifecycle, result)
            raise

    async def _resolve(
        self,
        use_case: UseCase,
        payload: CommandSchema,
        actor: Actor,
        context: ExecutionContext,
    ) -> Aggregate:
        if use_case.factory is not None:
            return use_case.factory(payload, actor, context)
        return await self._store.load(getattr(payload, use_case.subject_field))

    # -- Commit phase ------------------------------------------------------

    async def _commit(
        self,
        use_case: UseCase,
        command: Command,
        payload: CommandSchema,
        aggregate: Aggregate,
        actor: Actor,
        context: ExecutionContext,
        decision: PolicyDecision,
        lifecycle: ExecutionLifecycle,
    ) -> ExecutionResult:
        published: list[DomainEvent] = []
        last_committed = aggregate
        current, current_command, current_payload, current_actor = use_case, command, payload, actor

        def committed_fault(step: FaultStep, kind: FaultKind, exc: BaseException,
                            undelivered: tuple[DomainEvent, ...] = ()) -> Fault:
            return self._fault(
                lifecycle, step, kind, exc,
                committed=True,
                view=self._present(use_case, last_committed, context),
                events=tuple(published) + undelivered,
                undelivered=undelivered,
            )

        while True:
            follow_up = lifecycle.passes > 0

            # 3. Mutation
            try:
                current.operation(aggregate, current_payload, current_actor, context)
            except InvariantViolation as exc:
                if follow_up:
                    return committed_fault(FaultStep.MUTATION, FaultKind.FOLLOW_UP_REJECTED, exc)
                return self._validation_failed(lifecycle, {exc.field: exc.message}, rule=exc.rule)
            except Exception as exc:
                if follow_up:
                    return committed_fault(FaultStep.MUTATION, FaultKind.INTERNAL, exc)
                return self._fault(lifecycle, FaultStep.MUTATION, FaultKind.INTERNAL, exc)

            if current.emits_events and not aggregate.pending_changes:
                exc = RuntimeError(f"{current.name} changed state without recording an event")
                if follow_up:
                    return committed_fault(FaultStep.MUTATION, FaultKind.INTERNAL, exc)
                return self._fault(lifecycle, FaultStep.MUTATION, FaultKind.INTERNAL, exc)
            lifecycle.transition(ExecutionState.MUTATED)

            # 4. Persistence
            try:
                version = await self._store.save(aggregate, aggregate.version)
            except VersionConflict as exc:
                if follow_up:
                    return committed_fault(FaultStep.PERSISTENCE, FaultKind.CONFLICT, exc)
                return self._fault(lifecycle, FaultStep.PERSISTENCE, FaultKind.CONFLICT, exc)
            except Exception as exc:
                kind = FaultKind.STORE_UNAVAILABLE if isinstance(exc, StoreError) else FaultKind.INTERNAL
                if follow_up:
                    return committed_fault(FaultStep.PERSISTENCE, kind, exc)
                return self._fault(lifecycle, FaultStep.PERSISTENCE, kind, exc)
            aggregate.mark_committed(version)
            last_committed = aggregate.snapshot()
            lifecycle.transition(ExecutionState.PERSISTED)

            events = events_from_changes(
                aggregate,
                aggregate.pull_changes(),
                occurred_at=self._clock.now(),
                correlation_id=current_command.correlation_id,
                causation_id=current_command.command_id,
                actor_id=current_actor.actor_id,
            )

            # 5. Publication
            for index, event in enumerate(events):
                try:
                    await self._publisher.publish(event)
                except Exception as exc:
                    kind = (
                        FaultKind.PUBLISHER_UNAVAILABLE if isinstance(exc, PublishError)
                        else FaultKind.INTERNAL
                    )
                    return committed_fault(FaultStep.PUBLICATION, kind, exc, undelivered=events[index:])
                published.append(event)
            lifecycle.transition(ExecutionState.PUBLISHED)

            # 6. Follow-up
            derived = self._derive_follow_up(current, aggregate, current_payload, current_command, lifecycle)
            if derived is None:
                break
            try:
                current = self.use_case(derived.name)
                current_payload = current.schema.model_validate(dict(derived.fields))
            except (UnknownCommandError, ValidationError) as exc:
                return committed_fault(FaultStep.MUTATION, FaultKind.INTERNAL, exc)
            current_command, current_actor = derived, SYSTEM_ACTOR
            logger.info(
                "Follow-up %s (%s) derived from %s",
                derived.name, derived.command_id, derived.causation_id,
            )

        # 7. Presentation
        view = self._present(use_case, aggregate, context)
        lifecycle.transition(ExecutionState.PRESENTED)
        return Success(view=view, events=tuple(published), decision=decision, **self._stamp(lifecycle))

    def _derive_follow_up(
        self,
        use_case: UseCase,
        aggregate: Aggregate,
        payload: CommandSchema,
        command: Command,
        lifecycle: ExecutionLifecycle,
    ) -> Command | None:
        if not self._follow_ups_enabled or use_case.follow_up is None:
            return None
        if lifecycle.passes > self._max_follow_ups:
            logger.warning(
                "Follow-up chain for %s stopped after %d passes",
                lifecycle.command_id, lifecycle.passes,
            )
            return None
        return use_case.follow_up(aggregate, payload, command)

    def _present(self, use_case: UseCase, aggregate: Aggregate, context: ExecutionContext) -> View:
        related: Mapping[str, Any] = {}
        if use_case.related is not None:
            try:
                related = use_case.related(aggregate, context)
            except Exception as exc:
                logger.warning("Related context for %s unavailable: %s", use_case.name, exc)
        return use_case.presenter.build(aggregate, related)

    # -- Outcomes ----------------------------------------------------------

    @staticmethod
    def _stamp(lifecycle: ExecutionLifecycle) -> dict[str, Any]:
        return {
            "command_id": lifecycle.command_id,
            "correlation_id": lifecycle.correlation_id,
            "trail": lifecycle.trail,
        }

    def _validation_failed(
        self,
        lifecycle: ExecutionLifecycle,
        fields: Mapping[str, str],
        *,
        rule: str | None = None,
    ) -> ValidationFailed:
        lifecycle.transition(ExecutionState.VALIDATION_FAILED)
        logger.info("Command %s failed validation (%s): %s", lifecycle.command_id, rule, dict(fields))
        return ValidationFailed(fields=dict(fields), rule=rule, **self._stamp(lifecycle))

    def _fault(
        self,
        lifecycle: ExecutionLifecycle,
        step: FaultStep,
        kind: FaultKind,
        exc: BaseException,
        **details: Any,
    ) -> Fault:
        lifecycle.transition(ExecutionState.FAULT)
        if step is FaultStep.PUBLICATION:
            logger.warning(
                "Command %s committed but publication failed: %s",
                lifecycle.command_id, exc,
            )
        elif kind is FaultKind.CONFLICT:
            logger.info("Command %s lost a version race: %s", lifecycle.command_id, exc)
        else:
            logger.error(
                "Command %s faulted at %s (%s): %s",
                lifecycle.command_id, step.value, kind.value, exc,
                exc_info=exc,
            )
        return Fault(
            error=str(exc) or type(exc).__name__,
            step=step,
            kind=kind,
            **details,
            **self._stamp(lifecycle),
        )

    async def _finish(
        self,
        command: Command,
        actor: Actor,
        lifecycle: ExecutionLifecycle,
        result: ExecutionResult,
    ) -> None:
        logger.info(
            "Command %s (%s) -> %s",
            command.name, command.command_id, result.status.value,
        )
        if self._audit_log is None:
            return
        payload: dict[str, Any] = {
            "command": command.name,
            "result": result.summary(),
            "lifecycle": lifecycle.to_audit_dict(),
        }
        decision = getattr(result, "decision", None)
        if decision is not None:
            payload["decision"] = decision.model_dump(mode="json")
        try:
            await self._audit_log.append(
                AuditEntry(
                    correlation_id=command.correlation_id,
                    command_id=command.command_id,
                    actor_id=actor.actor_id,
                    event_type="execution_completed",
                    payload=payload,
                )
            )
        except Exception as exc:
            logger.warning("Audit write for %s failed: %s", command.command_id, exc)
