"""Event publishers.

Design goals
------------
1.  **Name-routed dispatching**: subscribers register for an event
    name (``"created"``) or for every event (``WILDCARD``).
2.  **Decoupled delivery**: the executor hands an event to
    ``publish()`` and never waits on subscriber processing.
    ``publish()`` either accepts the event or raises ``PublishError``.
3.  **Handler isolation**: a failing handler never affects other
    handlers or the publisher; failures land in ``dead_letters``.
4.  **Event store integration**: if an ``IEventStore`` is provided,
    every accepted event is appended (idempotently, best-effort),
    giving a single canonical stream for replay and reconciliation.

This module provides:

*  ``IEventPublisher``: the protocol the executor depends on.
*  ``InMemoryEventBus``: deterministic, in-process bus that dispatches
   inside ``publish()``; for tests and single-process tools.
*  ``QueuedEventPublisher``: asyncio-queue backed publisher with
   worker tasks and bounded retries (at-least-once delivery).
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Protocol, runtime_checkable

from policy_pipeline.core.config import PublisherConfig
from policy_pipeline.core.errors import PublishError
from policy_pipeline.domain.events import DomainEvent

from .event_store import IEventStore

logger = logging.getLogger(__name__)

EventHandler = Callable[[DomainEvent], Awaitable[None]]

#: Subscribe with this name to receive every event.
WILDCARD = "*"


@runtime_checkable
class IEventPublisher(Protocol):
    """Publish/subscribe boundary for domain events."""

    async def publish(self, event: DomainEvent) -> None:
        """Accept *event* for delivery or raise ``PublishError``."""
        ...

    def subscribe(self, event_name: str, handler: EventHandler) -> None:
        """Register *handler* for *event_name* (or ``WILDCARD``)."""
        ...


class _Subscriptions:
    """Shared handler registry and observability counters."""

    def __init__(self, event_store: IEventStore | None) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._history: list[DomainEvent] = []
        self._error_counts: dict[str, int] = defaultdict(int)
        self._dead_letters: list[tuple[DomainEvent, str]] = []
        self._messages_processed = 0
        self._event_store = event_store

    def subscribe(self, event_name: str, handler: EventHandler) -> None:
        self._handlers[event_name].append(handler)

    def handlers_for(self, event: DomainEvent) -> list[EventHandler]:
        return list(self._handlers.get(event.name, [])) + list(self._handlers.get(WILDCARD, []))

    async def _store(self, event: DomainEvent) -> None:
        if self._event_store is None:
            return
        try:
            await self._event_store.append(event)
        except Exception:
            logger.exception("Event store append failed for %s", event.name)

    def _dead_letter(self, event: DomainEvent, exc: Exception) -> None:
        self._error_counts[event.name] += 1
        self._dead_letters.append((event, str(exc)))

    # -- Observability -----------------------------------------------------

    def get_history(self, event_name: str | None = None) -> list[DomainEvent]:
        """Return accepted events, optionally filtered by name."""
        if event_name is None:
            return list(self._history)
        return [e for e in self._history if e.name == event_name]

    def clear_history(self) -> None:
        self._history.clear()

    def get_error_counts(self) -> dict[str, int]:
        return dict(self._error_counts)

    @property
    def dead_letters(self) -> list[tuple[DomainEvent, str]]:
        return list(self._dead_letters)

    def clear_dead_letters(self) -> list[tuple[DomainEvent, str]]:
        """Drain and return dead letters."""
        drained = self._dead_letters[:]
        self._dead_letters.clear()
        return drained

    @property
    def messages_processed(self) -> int:
        return self._messages_processed

    @property
    def event_store(self) -> IEventStore | None:
        return self._event_store


# ---------------------------------------------------------------------------
# In-memory, synchronous dispatch
# ---------------------------------------------------------------------------

class InMemoryEventBus(_Subscriptions):
    """Deterministic, in-process event bus.

    Handlers run inside ``publish()`` in subscription order.  Handler
    errors are isolated; ``publish()`` only raises when the bus itself
    is unavailable.
    """

    def __init__(self, *, event_store: IEventStore | None = None) -> None:
        super().__init__(event_store)
        self._available = True

    async def publish(self, event: DomainEvent) -> None:
        if not self._available:
            raise PublishError("event bus is unavailable")

        self._history.append(event)
        await self._store(event)

        for handler in self.handlers_for(event):
            try:
                await handler(event)
                self._messages_processed += 1
            except Exception as exc:
                self._dead_letter(event, exc)
                logger.exception("Handler error on %s: %s", event.name, exc)

    def set_available(self, available: bool) -> None:
        """Toggle availability. Primary use: testing."""
        self._available = available


# ---------------------------------------------------------------------------
# Queued, asynchronous delivery
# ---------------------------------------------------------------------------

class QueuedEventPublisher(_Subscriptions):
    """Asynchronous publisher backed by an ``asyncio.Queue``.

    ``publish()`` only enqueues; worker tasks deliver to handlers at
    their own pace.  A failing handler is retried up to
    ``max_attempts`` times with linear backoff, then dead-lettered.
    Handlers must therefore be idempotent on ``event.event_id``.

    With more than one worker, events may be delivered out of order.
    """

    def __init__(
        self,
        *,
        queue_size: int = 10_000,
        workers: int = 1,
        max_attempts: int = 3,
        retry_backoff: float = 0.05,
        event_store: IEventStore | None = None,
    ) -> None:
        super().__init__(event_store)
        self._queue: asyncio.Queue[DomainEvent] = asyncio.Queue(maxsize=queue_size)
        self._worker_count = workers
        self._max_attempts = max_attempts
        self._retry_backoff = retry_backoff
        self._workers: list[asyncio.Task[None]] = []
        self._running = False

    @classmethod
    def from_config(
        cls,
        config: PublisherConfig,
        event_store: IEventStore | None = None,
    ) -> QueuedEventPublisher:
        return cls(
            queue_size=config.queue_size,
            workers=config.workers,
            max_attempts=config.max_attempts,
            retry_backoff=config.retry_backoff_seconds,
            event_store=event_store,
        )

    # -- Lifecycle ---------------------------------------------------------

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._workers = [
            asyncio.create_task(self._work(), name=f"event-publisher-{i}")
            for i in range(self._worker_count)
        ]

    async def stop(self, *, drain: bool = True) -> None:
        """Stop accepting events; optionally wait for queued deliveries."""
        self._running = False
        if drain:
            await self._queue.join()
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def join(self) -> None:
        """Wait until every accepted event has been processed."""
        await self._queue.join()

    # -- Core API ----------------------------------------------------------

    async def publish(self, event: DomainEvent) -> None:
        if not self._running:
            raise PublishError("publisher is not running")
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull as exc:
            raise PublishError(
                f"publisher queue full ({self._queue.maxsize}); event {event.name} refused"
            ) from exc
        self._history.append(event)
        await self._store(event)

    async def _work(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._deliver(event)
            finally:
                self._queue.task_done()

    async def _deliver(self, event: DomainEvent) -> None:
        for handler in self.handlers_for(event):
            for attempt in range(1, self._max_attempts + 1):
                try:
                    await handler(event)
                    self._messages_processed += 1
                    break
                except Exception as exc:
                    if attempt >= self._max_attempts:
                        self._dead_letter(event, exc)
                        logger.error(
                            "Handler gave up on %s after %d attempts: %s",
                            event.name, attempt, exc,
                            exc_info=True,
                        )
                    else:
                        logger.warning(
                            "Handler error on %s (attempt %d/%d): %s",
                            event.name, attempt, self._max_attempts, exc,
                        )
                        await asyncio.sleep(self._retry_backoff * attempt)
