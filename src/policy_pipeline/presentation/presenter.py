"""Presenters: pure builders of read-only views.

A presenter declares exactly which fields it exposes.  Each field is
resolved from the aggregate (or from related read-only context) and
falls back to a declared default when the data is missing; the default
is :data:`ABSENT` unless stated otherwise.  Building a view never
raises and never mutates its inputs.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class _Absent:
    """Explicit marker for optional data that is not there."""

    _instance: _Absent | None = None

    def __new__(cls) -> _Absent:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False

    def __reduce__(self) -> str:
        return "ABSENT"


ABSENT = _Absent()


def _plain(value: Any) -> Any:
    """JSON-friendly rendering of a view value."""
    if value is ABSENT:
        return None
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, View):
        return value.to_dict()
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


@dataclass(frozen=True)
class View:
    """Derived, read-only projection.  Attribute-equal views compare equal."""

    kind: str
    items: tuple[tuple[str, Any], ...]

    def __getitem__(self, key: str) -> Any:
        for name, value in self.items:
            if name == key:
                return value
        raise KeyError(key)

    def __iter__(self) -> Iterator[str]:
        return (name for name, _ in self.items)

    def __len__(self) -> int:
        return len(self.items)

    @property
    def fields(self) -> tuple[str, ...]:
        return tuple(name for name, _ in self.items)

    def get(self, key: str, default: Any = None) -> Any:
        try:
            return self[key]
        except KeyError:
            return default

    def is_absent(self, key: str) -> bool:
        return self[key] is ABSENT

    def as_dict(self) -> dict[str, Any]:
        return dict(self.items)

    def to_dict(self) -> dict[str, Any]:
        """Serialization-ready dict (absent -> None, Decimal -> str)."""
        return {name: _plain(value) for name, value in self.items}


Resolver = Callable[[Any, Mapping[str, Any]], Any]


@dataclass(frozen=True)
class Field:
    """One exposed view field.

    ``source`` is an attribute path on the subject (``"plan.name"``),
    a ``"related:<key>"`` lookup into related context, or a callable
    ``(subject, related) -> value``.  ``None`` values resolve to
    ``default``.
    """

    name: str
    source: str | Resolver | None = None
    default: Any = ABSENT

    def resolve(self, subject: Any, related: Mapping[str, Any]) -> Any:
        source = self.source if self.source is not None else self.name
        if callable(source):
            value = source(subject, related)
        elif source.startswith("related:"):
            value = _lookup(related, source[len("related:"):].split("."))
        else:
            value = _lookup(subject, source.split("."))
        return self.default if value is None or value is ABSENT else value


def _lookup(root: Any, path: list[str]) -> Any:
    value = root
    for part in path:
        if value is None or value is ABSENT:
            return ABSENT
        if isinstance(value, Mapping):
            value = value.get(part, ABSENT)
        else:
            value = getattr(value, part, ABSENT)
    return value


class Presenter:
    """Builds a :class:`View` exposing exactly the declared ``fields``."""

    kind: str = "view"
    fields: tuple[Field, ...] = ()

    def __init__(self, kind: str | None = None, fields: tuple[Field, ...] | None = None) -> None:
        if kind is not None:
            self.kind = kind
        if fields is not None:
            self.fields = tuple(fields)
        names = [f.name for f in self.fields]
        if len(names) != len(set(names)):
            raise ValueError(f"{type(self).__name__}: duplicate field names {names}")

    @property
    def field_names(self) -> tuple[str, ...]:
        return tuple(f.name for f in self.fields)

    def build(self, subject: Any, related: Mapping[str, Any] | None = None) -> View:
        related = related or {}
        items: list[tuple[str, Any]] = []
        for declared in self.fields:
            try:
                value = declared.resolve(subject, related)
            except Exception as exc:
                logger.warning(
                    "%s: field %s could not be resolved, marking absent: %s",
                    type(self).__name__, declared.name, exc,
                )
                value = declared.default
            items.append((declared.name, value))
        return View(kind=self.kind, items=tuple(items))
