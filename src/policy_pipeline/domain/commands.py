"""Commands, actors and the explicit execution context.

A :class:`Command` is consumed once by an executor invocation and never
persisted.  :class:`Actor` and :class:`ExecutionContext` are supplied by
the caller and read-only within the pipeline.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from policy_pipeline.core.ids import new_id


def _freeze(mapping: Mapping[str, Any] | None) -> Mapping[str, Any]:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class Command:
    """Immutable request to perform one named state change."""

    name: str
    fields: Mapping[str, Any] = field(default_factory=dict)
    command_id: str = field(default_factory=new_id)
    correlation_id: str = field(default_factory=new_id)
    causation_id: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", _freeze(self.fields))

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], **kwargs: Any) -> Command:
        """Build from a flat mapping carrying the operation under ``type``."""
        fields = dict(data)
        name = fields.pop("type", None)
        if not isinstance(name, str) or not name:
            raise ValueError("command mapping needs a non-empty 'type'")
        return cls(name=name, fields=fields, **kwargs)

    def derive(self, name: str, fields: Mapping[str, Any]) -> Command:
        """Build a follow-up command in the same causal chain."""
        return Command(
            name=name,
            fields=fields,
            correlation_id=self.correlation_id,
            causation_id=self.command_id,
        )


@dataclass(frozen=True)
class Actor:
    """Identity and capability context of whoever issues a command."""

    actor_id: str
    tenant_id: str = ""
    capabilities: frozenset[str] = frozenset()
    roles: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        object.__setattr__(self, "capabilities", frozenset(self.capabilities))
        object.__setattr__(self, "roles", frozenset(self.roles))

    def can(self, capability: str) -> bool:
        return "*" in self.capabilities or capability in self.capabilities


#: Actor used for follow-up mutations the pipeline performs by itself.
SYSTEM_ACTOR = Actor(actor_id="system", capabilities=frozenset({"*"}))


@dataclass(frozen=True)
class ExecutionContext:
    """Explicit per-invocation context (tenant, locale, feature flags).

    Replaces any ambient "current session" state: policies and
    presenters read what they need from here.
    """

    tenant_id: str = ""
    locale: str = "en"
    features: frozenset[str] = frozenset()
    attributes: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "features", frozenset(self.features))
        object.__setattr__(self, "attributes", _freeze(self.attributes))

    def feature_enabled(self, name: str) -> bool:
        return name in self.features

    def attribute(self, key: str, default: Any = None) -> Any:
        return self.attributes.get(key, default)
