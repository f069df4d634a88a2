"""Use case definitions.

A :class:`UseCase` binds a command name to everything the executor
needs for it: the structural schema, the ordered policies, how to
resolve the subject, the single aggregate operation, an optional
follow-up and the presenter.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict

from policy_pipeline.domain.aggregate import Aggregate
from policy_pipeline.domain.commands import Actor, Command, ExecutionContext
from policy_pipeline.presentation.presenter import Presenter

from .policy_types import Policy


class CommandSchema(BaseModel):
    """Base for command field schemas.  Unknown fields are rejected."""

    model_config = ConfigDict(extra="forbid", frozen=True)


Operation = Callable[[Any, Any, Actor, ExecutionContext], None]
Factory = Callable[[Any, Actor, ExecutionContext], Aggregate]
FollowUp = Callable[[Any, Any, Command], "Command | None"]
RelatedLoader = Callable[[Any, ExecutionContext], Mapping[str, Any]]


@dataclass(frozen=True)
class UseCase:
    """One named state change.

    Exactly one of ``subject_field`` (payload field naming the aggregate
    to load) or ``factory`` (builds a fresh, unsaved aggregate) is set.
    ``follow_up`` inspects the committed aggregate and may return a
    derived command that the executor runs as a second
    mutate-persist-publish pass.
    """

    name: str
    schema: type[CommandSchema]
    operation: Operation
    presenter: Presenter
    policies: tuple[Policy, ...] = ()
    subject_field: str | None = None
    factory: Factory | None = None
    follow_up: FollowUp | None = None
    related: RelatedLoader | None = None
    emits_events: bool = True

    def __post_init__(self) -> None:
        if (self.subject_field is None) == (self.factory is None):
            raise ValueError(
                f"use case {self.name!r} needs exactly one of subject_field or factory"
            )
        object.__setattr__(self, "policies", tuple(self.policies))

    @property
    def creates(self) -> bool:
        return self.factory is not None
