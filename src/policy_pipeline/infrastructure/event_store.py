"""Append-only event store for replay, audit, and reconciliation.

Design invariants
-----------------
1.  ``append()`` is **idempotent** on ``event.event_id``: appending
    the same event twice is a silent no-op.
2.  ``read()`` returns events in **append order**; positions are
    0-based and ``after_position`` skips everything up to and
    including that position.
3.  ``replay()`` yields events lazily for memory-efficient reprocessing.
4.  The store is **append-only**: events can never be deleted or
    modified.  ``clear()`` exists only for testing.

This module provides:

*  ``IEventStore``: the protocol.
*  ``InMemoryEventStore``: list-backed implementation for tests and
   local development.
*  ``JsonFileEventStore``: append-to-JSONL-file implementation for
   durable local persistence.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Iterator
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Protocol

from policy_pipeline.domain.events import DomainEvent

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# JSON helpers (Decimal / datetime safe)
# ---------------------------------------------------------------------------

def _encode_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return {"__decimal__": str(value)}
    if isinstance(value, datetime):
        return {"__datetime__": value.isoformat()}
    if isinstance(value, (list, tuple)):
        return [_encode_value(v) for v in value]
    if isinstance(value, dict):
        return {k: _encode_value(v) for k, v in value.items()}
    return value


def _decode_value(value: Any) -> Any:
    if isinstance(value, dict):
        if set(value) == {"__decimal__"}:
            return Decimal(value["__decimal__"])
        if set(value) == {"__datetime__"}:
            return datetime.fromisoformat(value["__datetime__"])
        return {k: _decode_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return tuple(_decode_value(v) for v in value)
    return value


def event_to_dict(event: DomainEvent) -> dict[str, Any]:
    """Serialize an event to a JSON-safe dict."""
    return {
        "event_id": event.event_id,
        "name": event.name,
        "aggregate_id": event.aggregate_id,
        "aggregate_type": event.aggregate_type,
        "sequence": event.sequence,
        "payload": [[k, _encode_value(v)] for k, v in event.payload],
        "occurred_at": event.occurred_at.isoformat(),
        "correlation_id": event.correlation_id,
        "causation_id": event.causation_id,
        "actor_id": event.actor_id,
    }


def event_from_dict(d: dict[str, Any]) -> DomainEvent:
    """Deserialize a dict produced by :func:`event_to_dict`."""
    return DomainEvent(
        event_id=d["event_id"],
        name=d["name"],
        aggregate_id=d["aggregate_id"],
        aggregate_type=d.get("aggregate_type", ""),
        sequence=int(d.get("sequence", 0)),
        payload=tuple((k, _decode_value(v)) for k, v in d.get("payload", [])),
        occurred_at=datetime.fromisoformat(d["occurred_at"]),
        correlation_id=d.get("correlation_id", ""),
        causation_id=d.get("causation_id", ""),
        actor_id=d.get("actor_id", ""),
    )


def _matches(
    event: DomainEvent,
    aggregate_id: str | None,
    name: str | None,
    correlation_id: str | None,
) -> bool:
    if aggregate_id is not None and event.aggregate_id != aggregate_id:
        return False
    if name is not None and event.name != name:
        return False
    if correlation_id is not None and event.correlation_id != correlation_id:
        return False
    return True


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------

class IEventStore(Protocol):
    """Append-only event log for replay and audit."""

    async def append(self, event: DomainEvent) -> None:
        """Persist an event.  Idempotent on ``event.event_id``."""
        ...

    async def read(
        self,
        aggregate_id: str | None = None,
        name: str | None = None,
        correlation_id: str | None = None,
        after_position: int | None = None,
        limit: int = 10_000,
    ) -> list[DomainEvent]:
        """Read events in append order, with optional filters."""
        ...

    def replay(
        self,
        name: str | None = None,
        from_timestamp: datetime | None = None,
    ) -> AsyncIterator[DomainEvent]:
        """Yield events lazily for state reconstruction."""
        ...


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------

class InMemoryEventStore:
    """List-backed event store.  No persistence across restarts."""

    def __init__(self) -> None:
        self._events: list[DomainEvent] = []
        self._seen_ids: set[str] = set()

    async def append(self, event: DomainEvent) -> None:
        """Append *event*.  No-op if ``event_id`` already stored."""
        if event.event_id in self._seen_ids:
            return
        self._seen_ids.add(event.event_id)
        self._events.append(event)

    async def read(
        self,
        aggregate_id: str | None = None,
        name: str | None = None,
        correlation_id: str | None = None,
        after_position: int | None = None,
        limit: int = 10_000,
    ) -> list[DomainEvent]:
        start = after_position + 1 if after_position is not None else 0
        out: list[DomainEvent] = []
        for event in self._events[start:]:
            if not _matches(event, aggregate_id, name, correlation_id):
                continue
            out.append(event)
            if len(out) >= limit:
                break
        return out

    async def replay(
        self,
        name: str | None = None,
        from_timestamp: datetime | None = None,
    ) -> AsyncIterator[DomainEvent]:
        for event in list(self._events):
            if name is not None and event.name != name:
                continue
            if from_timestamp is not None and event.occurred_at < from_timestamp:
                continue
            yield event

    async def get_by_correlation(self, correlation_id: str) -> list[DomainEvent]:
        return [e for e in self._events if e.correlation_id == correlation_id]

    # -- Testing helpers ---------------------------------------------------

    def clear(self) -> None:
        """Remove all events.  Testing only."""
        self._events.clear()
        self._seen_ids.clear()

    def __len__(self) -> int:
        return len(self._events)


# ---------------------------------------------------------------------------
# JSON-Lines file implementation
# ---------------------------------------------------------------------------

class JsonFileEventStore:
    """Append-only JSONL file store.  Durable across restarts.

    Each line is one event as produced by :func:`event_to_dict`.
    Unparseable lines are skipped with a warning.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._seen_ids: set[str] = set()
        if self._path.exists():
            self._load_seen_ids()

    @property
    def path(self) -> Path:
        return self._path

    def _load_seen_ids(self) -> None:
        for _, d in self._iter_dicts():
            eid = d.get("event_id")
            if eid:
                self._seen_ids.add(eid)

    def _iter_dicts(self) -> Iterator[tuple[int, dict[str, Any]]]:
        if not self._path.exists():
            return
        with self._path.open() as f:
            position = 0
            for lineno, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    d = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning("Skipping corrupt event line %d in %s", lineno, self._path)
                    continue
                yield position, d
                position += 1

    def _iter_events(self) -> Iterator[tuple[int, DomainEvent]]:
        for position, d in self._iter_dicts():
            try:
                yield position, event_from_dict(d)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping unreadable event in %s: %s", self._path, exc)

    async def append(self, event: DomainEvent) -> None:
        if event.event_id in self._seen_ids:
            return
        line = json.dumps(event_to_dict(event))
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("a") as f:
            f.write(line + "\n")
        self._seen_ids.add(event.event_id)

    async def read(
        self,
        aggregate_id: str | None = None,
        name: str | None = None,
        correlation_id: str | None = None,
        after_position: int | None = None,
        limit: int = 10_000,
    ) -> list[DomainEvent]:
        out: list[DomainEvent] = []
        for position, event in self._iter_events():
            if after_position is not None and position <= after_position:
                continue
            if not _matches(event, aggregate_id, name, correlation_id):
                continue
            out.append(event)
            if len(out) >= limit:
                break
        return out

    async def replay(
        self,
        name: str | None = None,
        from_timestamp: datetime | None = None,
    ) -> AsyncIterator[DomainEvent]:
        for _, event in self._iter_events():
            if name is not None and event.name != name:
                continue
            if from_timestamp is not None and event.occurred_at < from_timestamp:
                continue
            yield event

    async def get_by_correlation(self, correlation_id: str) -> list[DomainEvent]:
        return await self.read(correlation_id=correlation_id)

    def __len__(self) -> int:
        return len(self._seen_ids)
