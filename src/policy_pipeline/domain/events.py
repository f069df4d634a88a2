"""Domain events.

Design invariants
-----------------
1.  Every event is **immutable** (``frozen=True``); the payload is a
    snapshot stored as a tuple of ``(key, value)`` pairs.
2.  ``event_id`` is a UUID4 generated at creation time; it serves as the
    idempotency / dedup key in the event store.
3.  ``sequence`` increases by exactly one per event for a given
    ``aggregate_id``.
4.  ``correlation_id`` links every event produced by the same command
    chain (including follow-up commands); ``causation_id`` is the id of
    the command that directly produced the event.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from policy_pipeline.core.ids import new_id as _uuid
from policy_pipeline.core.ids import utc_now as _now

from .aggregate import Aggregate, RecordedChange


@dataclass(frozen=True)
class DomainEvent:
    """Immutable fact describing one committed change to an aggregate."""

    name: str
    aggregate_id: str
    aggregate_type: str = ""
    sequence: int = 0
    payload: tuple[tuple[str, Any], ...] = ()
    occurred_at: datetime = field(default_factory=_now)
    event_id: str = field(default_factory=_uuid)
    correlation_id: str = ""
    causation_id: str = ""
    actor_id: str = ""

    def payload_dict(self) -> dict[str, Any]:
        """Return a mutable dict copy of the payload."""
        return dict(self.payload)


def events_from_changes(
    aggregate: Aggregate,
    changes: tuple[RecordedChange, ...],
    *,
    occurred_at: datetime,
    correlation_id: str = "",
    causation_id: str = "",
    actor_id: str = "",
) -> tuple[DomainEvent, ...]:
    """Turn committed changes into publishable events."""
    return tuple(
        DomainEvent(
            name=change.name,
            aggregate_id=aggregate.aggregate_id,
            aggregate_type=aggregate.aggregate_type,
            sequence=change.sequence,
            payload=change.payload,
            occurred_at=occurred_at,
            correlation_id=correlation_id,
            causation_id=causation_id,
            actor_id=actor_id,
        )
        for change in changes
    )
