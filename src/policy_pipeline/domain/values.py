"""Value objects.

Design invariants
-----------------
1.  Every value object is a ``frozen=True`` dataclass: equality and
    hashing come from attribute values, never identity.
2.  Derived values are computed once in ``__post_init__`` and stored
    as (non-init) fields; nothing is recomputed on access.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any


class _Unbounded:
    """Marker for "no limit"."""

    _instance: _Unbounded | None = None

    def __new__(cls) -> _Unbounded:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNBOUNDED"

    def __reduce__(self) -> str:
        return "UNBOUNDED"


UNBOUNDED = _Unbounded()

#: Inputs meaning "no limit" (case-insensitive).
UNBOUNDED_TOKENS = frozenset({"all", "*", "unbounded"})

DEFAULT_LIMIT = 25


@dataclass(frozen=True)
class Limit:
    """Result-size limit parsed from caller input.

    ``"all"`` resolves to :data:`UNBOUNDED`; a positive integer string
    resolves to that integer; anything else (``"-1"``, ``"0"``,
    ``"abc"``, ``None``) resolves to ``default``.
    """

    raw: Any = None
    default: int = DEFAULT_LIMIT
    value: int | _Unbounded = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "value", self._resolve())

    def _resolve(self) -> int | _Unbounded:
        if isinstance(self.raw, bool):
            return self.default
        if isinstance(self.raw, int):
            return self.raw if self.raw > 0 else self.default
        if isinstance(self.raw, str):
            text = self.raw.strip()
            if text.lower() in UNBOUNDED_TOKENS:
                return UNBOUNDED
            if text.isdecimal():
                try:
                    number = int(text)
                except ValueError:  # beyond int() digit limit
                    return self.default
                return number if number > 0 else self.default
        return self.default

    @property
    def is_unbounded(self) -> bool:
        return self.value is UNBOUNDED

    def apply(self, items: list[Any]) -> list[Any]:
        """Truncate *items* to the limit."""
        if self.value is UNBOUNDED:
            return list(items)
        return list(items[: self.value])


@dataclass(frozen=True)
class Quantity:
    """A strictly positive amount of days."""

    amount: Decimal

    def __post_init__(self) -> None:
        try:
            amount = Decimal(str(self.amount))
        except (InvalidOperation, ValueError) as exc:
            raise ValueError(f"Not a quantity: {self.amount!r}") from exc
        if not amount.is_finite() or amount <= 0:
            raise ValueError(f"Quantity must be positive, got {amount}")
        object.__setattr__(self, "amount", amount)

    def __str__(self) -> str:
        return str(self.amount)


@dataclass(frozen=True)
class TimeOffPlan:
    """Rules of a time-off plan a request is filed under."""

    plan_id: str
    name: str = ""
    max_days: Decimal = Decimal("25")
    requires_approval: bool = True
    carryover_days: Decimal = Decimal("0")
    enabled: bool = True

    @property
    def allows_carryover(self) -> bool:
        return self.carryover_days > 0
