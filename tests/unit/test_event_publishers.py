"""Tests for the in-memory bus and the queued publisher.

Covers:
- name-routed and wildcard subscriptions
- handler error isolation and dead letters
- event store integration
- queued delivery with bounded retries
"""

from __future__ import annotations

import asyncio

import pytest

from policy_pipeline.core.config import PublisherConfig
from policy_pipeline.core.errors import PublishError
from policy_pipeline.domain.events import DomainEvent
from policy_pipeline.infrastructure.event_bus import (
    WILDCARD,
    IEventPublisher,
    InMemoryEventBus,
    QueuedEventPublisher,
)
from policy_pipeline.infrastructure.event_store import InMemoryEventStore


def _event(name: str = "created", sequence: int = 1, **payload) -> DomainEvent:
    return DomainEvent(
        name=name,
        aggregate_id="req-1",
        aggregate_type="TimeOffRequest",
        sequence=sequence,
        payload=tuple(payload.items()),
    )


# ---------------------------------------------------------------------------
# InMemoryEventBus
# ---------------------------------------------------------------------------

class TestInMemoryEventBus:
    def test_satisfies_protocol(self):
        assert isinstance(InMemoryEventBus(), IEventPublisher)
        assert isinstance(QueuedEventPublisher(), IEventPublisher)

    @pytest.mark.asyncio
    async def test_routes_by_name(self):
        bus = InMemoryEventBus()
        created: list[DomainEvent] = []
        everything: list[DomainEvent] = []

        async def on_created(event: DomainEvent) -> None:
            created.append(event)

        async def on_any(event: DomainEvent) -> None:
            everything.append(event)

        bus.subscribe("created", on_created)
        bus.subscribe(WILDCARD, on_any)

        await bus.publish(_event("created"))
        await bus.publish(_event("approved", sequence=2))

        assert [e.name for e in created] == ["created"]
        assert [e.name for e in everything] == ["created", "approved"]
        assert bus.messages_processed == 3
        assert [e.name for e in bus.get_history("approved")] == ["approved"]

    @pytest.mark.asyncio
    async def test_handler_errors_are_isolated(self):
        bus = InMemoryEventBus()
        received: list[DomainEvent] = []

        async def broken(event: DomainEvent) -> None:
            raise RuntimeError("mailer down")

        async def healthy(event: DomainEvent) -> None:
            received.append(event)

        bus.subscribe("created", broken)
        bus.subscribe("created", healthy)
        await bus.publish(_event())

        assert len(received) == 1
        assert bus.get_error_counts() == {"created": 1}
        (event, error), = bus.clear_dead_letters()
        assert error == "mailer down"
        assert bus.dead_letters == []

    @pytest.mark.asyncio
    async def test_unavailable_bus_refuses(self):
        bus = InMemoryEventBus()
        bus.set_available(False)
        with pytest.raises(PublishError):
            await bus.publish(_event())
        assert bus.get_history() == []

    @pytest.mark.asyncio
    async def test_appends_to_event_store(self):
        store = InMemoryEventStore()
        bus = InMemoryEventBus(event_store=store)
        event = _event()
        await bus.publish(event)
        await bus.publish(event)
        assert len(store) == 1
        assert bus.event_store is store


# ---------------------------------------------------------------------------
# QueuedEventPublisher
# ---------------------------------------------------------------------------

class TestQueuedEventPublisher:
    @pytest.mark.asyncio
    async def test_refuses_when_not_running(self):
        publisher = QueuedEventPublisher()
        with pytest.raises(PublishError):
            await publisher.publish(_event())

    @pytest.mark.asyncio
    async def test_publish_does_not_wait_for_handlers(self):
        publisher = QueuedEventPublisher()
        gate = asyncio.Event()
        delivered: list[DomainEvent] = []

        async def slow(event: DomainEvent) -> None:
            await gate.wait()
            delivered.append(event)

        publisher.subscribe("created", slow)
        await publisher.start()
        try:
            await publisher.publish(_event())
            assert delivered == []
            gate.set()
            await asyncio.wait_for(publisher.join(), timeout=1)
            assert len(delivered) == 1
        finally:
            await publisher.stop()

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        publisher = QueuedEventPublisher(max_attempts=3, retry_backoff=0)
        attempts = 0

        async def flaky(event: DomainEvent) -> None:
            nonlocal attempts
            attempts += 1
            if attempts < 3:
                raise ConnectionError("transient")

        publisher.subscribe("created", flaky)
        await publisher.start()
        await publisher.publish(_event())
        await asyncio.wait_for(publisher.stop(), timeout=1)

        assert attempts == 3
        assert publisher.dead_letters == []
        assert publisher.messages_processed == 1

    @pytest.mark.asyncio
    async def test_gives_up_into_dead_letters(self):
        publisher = QueuedEventPublisher(max_attempts=2, retry_backoff=0)
        calls = 0

        async def always_fails(event: DomainEvent) -> None:
            nonlocal calls
            calls += 1
            raise RuntimeError("boom")

        publisher.subscribe("created", always_fails)
        await publisher.start()
        await publisher.publish(_event())
        await asyncio.wait_for(publisher.stop(), timeout=1)

        assert calls == 2
        assert publisher.get_error_counts() == {"created": 1}
        assert len(publisher.dead_letters) == 1

    @pytest.mark.asyncio
    async def test_queue_full_is_a_publish_error(self):
        publisher = QueuedEventPublisher(queue_size=1)
        gate = asyncio.Event()

        async def blocked(event: DomainEvent) -> None:
            await gate.wait()

        publisher.subscribe(WILDCARD, blocked)
        await publisher.start()
        try:
            await publisher.publish(_event(sequence=1))
            await asyncio.sleep(0)  # worker takes the first event
            await publisher.publish(_event(sequence=2))
            with pytest.raises(PublishError, match="queue full"):
                await publisher.publish(_event(sequence=3))
        finally:
            gate.set()
            await publisher.stop()

    @pytest.mark.asyncio
    async def test_from_config(self):
        store = InMemoryEventStore()
        publisher = QueuedEventPublisher.from_config(PublisherConfig(workers=2), store)
        await publisher.start()
        assert publisher.is_running
        await publisher.publish(_event())
        await publisher.stop()
        assert not publisher.is_running
        assert len(store) == 1
