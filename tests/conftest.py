"""Shared fixtures for the policy-pipeline test suite."""

from __future__ import annotations

from decimal import Decimal

import pytest

from policy_pipeline.control_plane.audit_log import AuditLog
from policy_pipeline.control_plane.executor import UseCaseExecutor
from policy_pipeline.control_plane.time_off_use_cases import build_time_off_use_cases
from policy_pipeline.core.clock import SimClock
from policy_pipeline.domain.commands import Actor, ExecutionContext
from policy_pipeline.domain.time_off import PlanCatalog
from policy_pipeline.domain.values import TimeOffPlan
from policy_pipeline.infrastructure.aggregate_store import InMemoryAggregateStore
from policy_pipeline.infrastructure.event_bus import InMemoryEventBus
from policy_pipeline.infrastructure.event_store import InMemoryEventStore


# ---------------------------------------------------------------------------
# Plans
# ---------------------------------------------------------------------------

STANDARD = TimeOffPlan(
    "standard", "Standard leave",
    max_days=Decimal("25"), requires_approval=True, carryover_days=Decimal("5"),
)
FLEX = TimeOffPlan("flex", "Flex day", max_days=Decimal("2"), requires_approval=False)
FROZEN = TimeOffPlan("frozen", "Frozen plan", enabled=False)


@pytest.fixture
def plans() -> PlanCatalog:
    return PlanCatalog([STANDARD, FLEX, FROZEN])


# ---------------------------------------------------------------------------
# Actors and context
# ---------------------------------------------------------------------------

@pytest.fixture
def requester() -> Actor:
    return Actor("alice", tenant_id="acme", capabilities=frozenset({"time_off:request"}))


@pytest.fixture
def approver() -> Actor:
    return Actor(
        "bob", tenant_id="acme",
        capabilities=frozenset({"time_off:request", "time_off:approve"}),
    )


@pytest.fixture
def outsider() -> Actor:
    return Actor("mallory", tenant_id="acme")


@pytest.fixture
def context() -> ExecutionContext:
    return ExecutionContext(tenant_id="acme", features=frozenset({"time_off"}))


# ---------------------------------------------------------------------------
# Infrastructure
# ---------------------------------------------------------------------------

@pytest.fixture
def clock() -> SimClock:
    return SimClock()


@pytest.fixture
def store() -> InMemoryAggregateStore:
    return InMemoryAggregateStore()


@pytest.fixture
def event_store() -> InMemoryEventStore:
    return InMemoryEventStore()


@pytest.fixture
def bus(event_store: InMemoryEventStore) -> InMemoryEventBus:
    return InMemoryEventBus(event_store=event_store)


@pytest.fixture
def audit_log() -> AuditLog:
    return AuditLog()


@pytest.fixture
def executor(store, bus, plans, clock, audit_log) -> UseCaseExecutor:
    return UseCaseExecutor(
        store,
        bus,
        use_cases=build_time_off_use_cases(plans),
        clock=clock,
        audit_log=audit_log,
    )

