"""Query resolver.

Composes filter predicates, joins, ordering and a :class:`Limit` over
a read source.  Resolution works on a detached snapshot taken from the
source, never mutates it, and may run concurrently with executions;
it can observe a snapshot that predates an in-flight write.

Usage::

    query = (
        Query()
        .where(field_equals("status", RequestStatus.PENDING) & ~field_equals("requester_id", "u1"))
        .join("requester", people, local_key="requester_id")
        .order_by("quantity", descending=True)
        .limit(Limit("10"))
    )
    rows = await QueryResolver(store).resolve(query)
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any, Protocol

from policy_pipeline.domain.values import Limit
from policy_pipeline.presentation.presenter import ABSENT, Presenter, View

logger = logging.getLogger(__name__)


class ReadSource(Protocol):
    """Anything that can hand out a detached snapshot of its items."""

    async def snapshot(self) -> list[Any]: ...


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------

class Predicate:
    """Composable boolean test over an item (``&``, ``|``, ``~``)."""

    def __init__(self, fn: Callable[[Any], bool], description: str = "") -> None:
        self._fn = fn
        self.description = description or getattr(fn, "__name__", "predicate")

    def __call__(self, item: Any) -> bool:
        return bool(self._fn(item))

    def __and__(self, other: Predicate) -> Predicate:
        return Predicate(
            lambda item: self(item) and other(item),
            f"({self.description} and {other.description})",
        )

    def __or__(self, other: Predicate) -> Predicate:
        return Predicate(
            lambda item: self(item) or other(item),
            f"({self.description} or {other.description})",
        )

    def __invert__(self) -> Predicate:
        return Predicate(lambda item: not self(item), f"not {self.description}")

    def __repr__(self) -> str:
        return f"Predicate({self.description})"


def _get(item: Any, name: str) -> Any:
    if isinstance(item, Mapping):
        return item.get(name, ABSENT)
    return getattr(item, name, ABSENT)


def where(fn: Callable[[Any], bool], description: str = "") -> Predicate:
    return Predicate(fn, description)


def field_equals(name: str, value: Any) -> Predicate:
    return Predicate(lambda item: _get(item, name) == value, f"{name} == {value!r}")


def field_in(name: str, values: Iterable[Any]) -> Predicate:
    allowed = frozenset(values)
    return Predicate(lambda item: _get(item, name) in allowed, f"{name} in {sorted(map(repr, allowed))}")


# ---------------------------------------------------------------------------
# Query
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class _Join:
    name: str
    source: ReadSource | Iterable[Any]
    local_key: str
    foreign_key: str


@dataclass(frozen=True)
class _Order:
    key: str | Callable[[Any], Any]
    descending: bool


@dataclass(frozen=True)
class Query:
    """Immutable query description; every builder returns a new query."""

    predicates: tuple[Predicate, ...] = ()
    joins: tuple[_Join, ...] = ()
    ordering: tuple[_Order, ...] = ()
    row_limit: Limit = field(default_factory=lambda: Limit("all"))

    def where(self, predicate: Predicate) -> Query:
        return replace(self, predicates=self.predicates + (predicate,))

    def join(
        self,
        name: str,
        source: ReadSource | Iterable[Any],
        *,
        local_key: str,
        foreign_key: str = "id",
    ) -> Query:
        """Attach the matching item of *source* as ``related[name]``.

        Unmatched rows get :data:`ABSENT`, never an error.
        """
        return replace(self, joins=self.joins + (_Join(name, source, local_key, foreign_key),))

    def order_by(self, key: str | Callable[[Any], Any], *, descending: bool = False) -> Query:
        return replace(self, ordering=self.ordering + (_Order(key, descending),))

    def limit(self, limit: Limit | str | int | None) -> Query:
        return replace(self, row_limit=limit if isinstance(limit, Limit) else Limit(limit))


@dataclass(frozen=True)
class QueryRow:
    """A matching item and the related items joined onto it."""

    item: Any
    related: Mapping[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------

class QueryResolver:
    """Resolves :class:`Query` objects against a read source."""

    def __init__(self, source: ReadSource) -> None:
        self._source = source

    async def resolve(self, query: Query) -> tuple[QueryRow, ...]:
        items = await self._source.snapshot()
        matched = [item for item in items if all(p(item) for p in query.predicates)]

        # Stable multi-key sort: apply keys last-to-first.
        for order in reversed(query.ordering):
            matched.sort(key=_sort_key(order.key, order.descending), reverse=order.descending)

        matched = query.row_limit.apply(matched)

        indexes = [await _index(join) for join in query.joins]
        rows = tuple(
            QueryRow(
                item=item,
                related={
                    join.name: index.get(_get(item, join.local_key), ABSENT)
                    for join, index in zip(query.joins, indexes)
                },
            )
            for item in matched
        )
        logger.debug("Query resolved %d/%d rows", len(rows), len(items))
        return rows

    async def present(self, query: Query, presenter: Presenter) -> tuple[View, ...]:
        """Resolve and build one view per row."""
        return tuple(presenter.build(row.item, row.related) for row in await self.resolve(query))


def _sort_key(key: str | Callable[[Any], Any], descending: bool = False) -> Callable[[Any], Any]:
    if callable(key):
        return key

    def by_field(item: Any) -> tuple[bool, Any]:
        value = _get(item, key)
        missing = value is None or value is ABSENT
        # Missing values sort last in either direction.
        return (missing != descending, None if missing else value)

    return by_field


async def _index(join: _Join) -> dict[Any, Any]:
    snapshot: Callable[[], Awaitable[list[Any]]] | None = getattr(join.source, "snapshot", None)
    items = await snapshot() if snapshot is not None else list(join.source)  # type: ignore[arg-type]
    return {_get(item, join.foreign_key): item for item in items}
