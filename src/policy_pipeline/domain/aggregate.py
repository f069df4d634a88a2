"""Aggregate base class.

Design invariants
-----------------
1.  An aggregate is **sealed** outside its own mutation operations:
    any attribute write raises :class:`SealedAggregateError`.  Mutation
    operations are therefore the only path to changing state.
2.  A mutation operation is **all-or-nothing**: if it raises, every
    attribute is restored to its pre-call value and any events it
    recorded are discarded.
3.  Each recorded event takes the next ``sequence`` number.  The
    sequence is part of the aggregate state, so it is persisted with
    the aggregate and guarded by the same optimistic version check.
4.  ``version`` is the committed store version; only the store moves it.
"""

from __future__ import annotations

import copy
import functools
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, TypeVar

from policy_pipeline.core.errors import SealedAggregateError
from policy_pipeline.core.ids import new_id

F = TypeVar("F", bound=Callable[..., Any])


@dataclass(frozen=True)
class RecordedChange:
    """An event recorded by a mutation, not yet committed."""

    name: str
    sequence: int
    payload: tuple[tuple[str, Any], ...]


@dataclass(eq=False)
class Aggregate:
    """Domain entity with identity and self-enforced invariants."""

    aggregate_id: str = field(default_factory=new_id)
    version: int = 0
    sequence: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "_pending", [])
        object.__setattr__(self, "_sealed", True)

    # -- Sealing -----------------------------------------------------------

    def __setattr__(self, name: str, value: Any) -> None:
        if self.__dict__.get("_sealed", False):
            raise SealedAggregateError(
                f"{type(self).__name__}.{name} can only change inside a "
                f"mutation operation"
            )
        object.__setattr__(self, name, value)

    @property
    def is_sealed(self) -> bool:
        return self.__dict__.get("_sealed", False)

    @contextmanager
    def _unsealed(self) -> Iterator[None]:
        object.__setattr__(self, "_sealed", False)
        try:
            yield
        finally:
            object.__setattr__(self, "_sealed", True)

    # -- Events ------------------------------------------------------------

    def _record(self, name: str, **payload: Any) -> None:
        """Record an event inside a mutation operation."""
        if self.is_sealed:
            raise SealedAggregateError("events can only be recorded while mutating")
        self.sequence += 1
        self._pending.append(
            RecordedChange(name=name, sequence=self.sequence, payload=tuple(payload.items()))
        )

    @property
    def pending_changes(self) -> tuple[RecordedChange, ...]:
        return tuple(self._pending)

    def pull_changes(self) -> tuple[RecordedChange, ...]:
        """Drain recorded events.  Called once the write has committed."""
        drained = tuple(self._pending)
        self._pending.clear()
        return drained

    # -- Store hooks -------------------------------------------------------

    def mark_committed(self, version: int) -> None:
        object.__setattr__(self, "version", version)

    def snapshot(self: A) -> A:
        """Detached deep copy with no pending changes."""
        clone = copy.deepcopy(self)
        object.__setattr__(clone, "_pending", [])
        return clone

    @property
    def aggregate_type(self) -> str:
        return type(self).__name__


A = TypeVar("A", bound=Aggregate)


def mutation(fn: F) -> F:
    """Mark a method as a mutation operation (all-or-nothing, unsealed)."""

    @functools.wraps(fn)
    def wrapper(self: Aggregate, *args: Any, **kwargs: Any) -> Any:
        if not self.is_sealed:
            raise SealedAggregateError(
                f"{fn.__name__}: nested mutation operations are not allowed"
            )
        before = copy.deepcopy(
            {k: v for k, v in self.__dict__.items() if k not in ("_pending", "_sealed")}
        )
        pending_before = len(self._pending)
        with self._unsealed():
            try:
                return fn(self, *args, **kwargs)
            except Exception:
                self.__dict__.update(before)
                del self._pending[pending_before:]
                raise

    return wrapper  # type: ignore[return-value]
