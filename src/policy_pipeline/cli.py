"""CLI entry point for the command pipeline."""

from __future__ import annotations

import json
from decimal import Decimal
from typing import Any

import click


@click.group()
def main() -> None:
    """Policy-gated command pipeline."""


@main.command()
@click.option("--config", default=None, help="Config file path (TOML)")
@click.option("--event-log", default=None, help="Write published events to this JSONL file")
@click.option("--log-level", default=None, help="Override observability.log_level")
def demo(config: str | None, event_log: str | None, log_level: str | None) -> None:
    """Run the time-off scenario and print each outcome as JSON."""
    import asyncio

    from .core.config import load_settings
    from .observability.logger import setup_logging

    overrides: dict[str, Any] = {}
    if event_log:
        overrides["storage"] = {"event_log_path": event_log}
    if log_level:
        overrides["observability"] = {"log_level": log_level}
    settings = load_settings(config, overrides)
    setup_logging(settings.observability.log_level, settings.observability.log_format)

    outcomes = asyncio.run(_run_demo(settings))
    click.echo(json.dumps(outcomes, indent=2, default=str))


async def _run_demo(settings: Any) -> list[dict[str, Any]]:
    from .control_plane.executor import UseCaseExecutor
    from .control_plane.time_off_use_cases import build_time_off_use_cases
    from .domain.commands import Actor, Command, ExecutionContext
    from .domain.time_off import PlanCatalog
    from .domain.values import TimeOffPlan
    from .infrastructure.aggregate_store import InMemoryAggregateStore
    from .infrastructure.event_bus import InMemoryEventBus
    from .infrastructure.event_store import InMemoryEventStore, JsonFileEventStore, event_to_dict

    plans = PlanCatalog([
        TimeOffPlan("standard", "Standard leave", max_days=Decimal("25"), carryover_days=Decimal("5")),
        TimeOffPlan("flex", "Flex day", max_days=Decimal("2"), requires_approval=False),
    ])
    path = settings.storage.event_log_path
    event_store = JsonFileEventStore(path) if path else InMemoryEventStore()
    executor = UseCaseExecutor.from_settings(
        settings,
        InMemoryAggregateStore(),
        InMemoryEventBus(event_store=event_store),
        use_cases=build_time_off_use_cases(plans),
    )

    context = ExecutionContext(tenant_id="acme", features=frozenset(settings.features))
    alice = Actor("alice", tenant_id="acme", capabilities=frozenset({"time_off:request"}))
    bob = Actor("bob", tenant_id="acme", capabilities=frozenset({"time_off:request", "time_off:approve"}))

    outcomes: list[dict[str, Any]] = []

    async def run(actor: Actor, data: dict[str, Any]) -> Any:
        result = await executor.execute(Command.from_mapping(data), actor, context)
        outcome: dict[str, Any] = {"actor": actor.actor_id, "command": data, **result.summary()}
        for attr in ("reason", "fields", "error"):
            if hasattr(result, attr):
                outcome[attr] = getattr(result, attr)
        view = getattr(result, "view", None)
        if view is not None:
            outcome["view"] = view.to_dict()
        outcome["events"] = [event_to_dict(e) for e in getattr(result, "events", ())]
        outcomes.append(outcome)
        return result

    created = await run(alice, {"type": "create", "plan_id": "standard", "quantity": "3", "reason": "trip"})
    request_id = created.view["id"] if created.ok else ""
    await run(alice, {"type": "apply_carryover", "request_id": request_id, "days": "2"})
    await run(alice, {"type": "approve", "request_id": request_id})
    await run(bob, {"type": "approve", "request_id": request_id})
    await run(alice, {"type": "apply_carryover", "request_id": request_id, "days": "2"})
    await run(alice, {"type": "create", "plan_id": "flex", "quantity": "1"})
    await run(alice, {"type": "create", "quantity": "-1"})
    return outcomes


@main.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--name", default=None, help="Only events with this name")
@click.option("--aggregate-id", default=None, help="Only events of this aggregate")
def replay(path: str, name: str | None, aggregate_id: str | None) -> None:
    """Print events stored in a JSONL event log, one per line."""
    import asyncio

    from .infrastructure.event_store import JsonFileEventStore, event_to_dict

    async def _collect() -> list[dict[str, Any]]:
        store = JsonFileEventStore(path)
        return [
            event_to_dict(event)
            async for event in store.replay(name=name)
            if aggregate_id is None or event.aggregate_id == aggregate_id
        ]

    events = asyncio.run(_collect())
    for event in events:
        click.echo(json.dumps(event, default=str))
    click.echo(f"{len(events)} event(s)", err=True)
