"""Tests for predicates, queries and the query resolver."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from decimal import Decimal

import pytest

from policy_pipeline.domain.time_off import RequestStatus, TimeOffRequest
from policy_pipeline.domain.values import Limit, Quantity, TimeOffPlan
from policy_pipeline.infrastructure.aggregate_store import InMemoryAggregateStore
from policy_pipeline.presentation.presenter import ABSENT
from policy_pipeline.presentation.time_off import TimeOffSummaryPresenter
from policy_pipeline.query import Query, QueryResolver, field_equals, field_in, where

PLAN = TimeOffPlan("standard", max_days=Decimal("20"))


@dataclass(frozen=True)
class Person:
    id: str
    name: str


PEOPLE = [Person("alice", "Alice"), Person("bob", "Bob")]


async def _seed(store: InMemoryAggregateStore) -> None:
    rows = [
        ("r1", "alice", "3", None),
        ("r2", "bob", "5", "approve"),
        ("r3", "carol", "1", None),
        ("r4", "alice", "8", "cancel"),
    ]
    for request_id, requester, quantity, then in rows:
        request = TimeOffRequest(aggregate_id=request_id)
        request.create(tenant_id="acme", requester_id=requester, plan=PLAN, quantity=Quantity(quantity))
        if then == "approve":
            request.approve("manager")
        elif then == "cancel":
            request.cancel()
        await store.save(request, 0)


@pytest.fixture
def store() -> InMemoryAggregateStore:
    return InMemoryAggregateStore()


class TestPredicates:
    def test_composition(self):
        item = {"status": "pending", "requester_id": "alice"}
        pending = field_equals("status", "pending")
        alice = field_equals("requester_id", "alice")
        assert (pending & alice)(item)
        assert not (pending & ~alice)(item)
        assert (~pending | alice)(item)
        assert field_in("status", ["pending", "approved"])(item)
        assert "status" in repr(pending)

    def test_missing_field_never_matches(self):
        assert not field_equals("nope", None)({"status": "pending"})

    def test_where_wraps_callables(self):
        big = where(lambda r: r["quantity"] > 4, "big")
        assert big({"quantity": 5})
        assert big.description == "big"


class TestQueryBuilder:
    def test_builders_return_new_queries(self):
        base = Query()
        narrowed = base.where(field_equals("status", "pending")).limit("5")
        assert base.predicates == ()
        assert base.row_limit.is_unbounded
        assert narrowed.row_limit == Limit("5")
        assert len(narrowed.predicates) == 1


class TestResolver:
    @pytest.mark.asyncio
    async def test_filter_and_order(self, store):
        await _seed(store)
        query = (
            Query()
            .where(field_in("status", [RequestStatus.PENDING, RequestStatus.APPROVED]))
            .order_by("quantity", descending=True)
        )
        rows = await QueryResolver(store).resolve(query)
        assert [r.item.aggregate_id for r in rows] == ["r2", "r1", "r3"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("descending", [False, True])
    async def test_missing_values_sort_last(self, store, descending):
        await _seed(store)
        query = Query().order_by("approved_by", descending=descending)
        rows = await QueryResolver(store).resolve(query)
        assert rows[0].item.aggregate_id == "r2"
        assert all(r.item.approved_by is None for r in rows[1:])

    @pytest.mark.asyncio
    async def test_limit_uses_value_object(self, store):
        await _seed(store)
        rows = await QueryResolver(store).resolve(Query().order_by("quantity").limit("2"))
        assert [r.item.aggregate_id for r in rows] == ["r3", "r1"]
        everything = await QueryResolver(store).resolve(Query().limit("all"))
        assert len(everything) == 4
        fallback = await QueryResolver(store).resolve(Query().limit(Limit("-1", default=3)))
        assert len(fallback) == 3

    @pytest.mark.asyncio
    async def test_join_attaches_related(self, store):
        await _seed(store)
        query = Query().join("requester", PEOPLE, local_key="requester_id").order_by("aggregate_id")
        rows = await QueryResolver(store).resolve(query)
        related = {r.item.aggregate_id: r.related["requester"] for r in rows}
        assert related["r1"].name == "Alice"
        assert related["r3"] is ABSENT

    @pytest.mark.asyncio
    async def test_present_rows(self, store):
        await _seed(store)
        query = (
            Query()
            .where(field_equals("requester_id", "carol") | field_equals("requester_id", "bob"))
            .join("requester", PEOPLE, local_key="requester_id")
            .order_by("aggregate_id")
        )
        views = await QueryResolver(store).present(query, TimeOffSummaryPresenter())
        assert [v["requester_name"] for v in views] == ["Bob", ABSENT]
        assert views[1].to_dict()["requester_name"] is None

    @pytest.mark.asyncio
    async def test_resolving_never_mutates_the_source(self, store):
        await _seed(store)
        resolver = QueryResolver(store)
        (row,) = await resolver.resolve(Query().where(field_equals("aggregate_id", "r1")))
        row.item.cancel()
        again = await resolver.resolve(Query().where(field_equals("aggregate_id", "r1")))
        assert again[0].item.status is RequestStatus.PENDING
        assert again[0].item.version == 1
        assert again[0].item.pending_changes == ()

    @pytest.mark.asyncio
    async def test_concurrent_reads_during_writes(self, store):
        await _seed(store)
        resolver = QueryResolver(store)
        pending = Query().where(field_equals("status", RequestStatus.PENDING))

        async def approve_r1() -> None:
            request = await store.load("r1")
            request.approve("manager")
            await store.save(request, 1)

        results = await asyncio.gather(resolver.resolve(pending), approve_r1(), resolver.resolve(pending))
        for rows in (results[0], results[2]):
            assert {r.item.aggregate_id for r in rows} <= {"r1", "r3"}
        final = await resolver.resolve(pending)
        assert [r.item.aggregate_id for r in final] == ["r3"]
