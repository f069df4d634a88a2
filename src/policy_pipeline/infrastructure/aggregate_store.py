"""Aggregate store with optimistic versioning.

Design invariants
-----------------
1.  ``save(aggregate, expected_version)`` commits only if the stored
    version still equals ``expected_version`` and returns the new
    version (``expected_version + 1``); otherwise it raises
    :class:`VersionConflict` and stores nothing.
2.  The store keeps detached snapshots: callers never share an
    instance with the store or with each other, so readers only ever
    observe committed state.
3.  A brand-new aggregate is saved with ``expected_version=0``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Generic, Protocol, TypeVar

from policy_pipeline.core.errors import AggregateNotFound, StoreUnavailable, VersionConflict
from policy_pipeline.domain.aggregate import Aggregate

logger = logging.getLogger(__name__)

A = TypeVar("A", bound=Aggregate)


class IAggregateStore(Protocol):
    """Load/save contract the executor depends on."""

    async def load(self, aggregate_id: str) -> Aggregate:
        """Return a detached copy.  Raises ``AggregateNotFound``."""
        ...

    async def save(self, aggregate: Aggregate, expected_version: int) -> int:
        """Commit and return the new version.  Raises ``VersionConflict``."""
        ...


class InMemoryAggregateStore(Generic[A]):
    """Dict-backed store.  No persistence across restarts.

    Parameters
    ----------
    write_latency
        Seconds to sleep between the version check and the write.
        Simulates I/O so concurrent saves genuinely interleave; the
        per-store lock keeps the compare-and-set atomic regardless.
    """

    def __init__(self, *, write_latency: float = 0.0) -> None:
        self._items: dict[str, A] = {}
        self._lock = asyncio.Lock()
        self._write_latency = write_latency
        self._available = True
        self.load_count = 0
        self.save_count = 0

    async def load(self, aggregate_id: str) -> A:
        self._ensure_available()
        self.load_count += 1
        stored = self._items.get(aggregate_id)
        if stored is None:
            raise AggregateNotFound(aggregate_id)
        return stored.snapshot()

    async def save(self, aggregate: A, expected_version: int) -> int:
        self._ensure_available()
        async with self._lock:
            current = self._items.get(aggregate.aggregate_id)
            actual = current.version if current is not None else 0
            if actual != expected_version:
                logger.info(
                    "Version conflict on %s: expected v%d, have v%d",
                    aggregate.aggregate_id, expected_version, actual,
                )
                raise VersionConflict(aggregate.aggregate_id, expected_version, actual)
            if self._write_latency:
                await asyncio.sleep(self._write_latency)
            committed = expected_version + 1
            stored = aggregate.snapshot()
            stored.mark_committed(committed)
            self._items[aggregate.aggregate_id] = stored
            self.save_count += 1
        return committed

    # -- Read source -------------------------------------------------------

    async def snapshot(self) -> list[A]:
        """Detached copies of every committed aggregate."""
        self._ensure_available()
        return [item.snapshot() for item in self._items.values()]

    # -- Testing helpers ---------------------------------------------------

    def set_available(self, available: bool) -> None:
        self._available = available

    def _ensure_available(self) -> None:
        if not self._available:
            raise StoreUnavailable("aggregate store is unavailable")

    def __contains__(self, aggregate_id: object) -> bool:
        return aggregate_id in self._items

    def __len__(self) -> int:
        return len(self._items)
