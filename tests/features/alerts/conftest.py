"""BDD step definitions for the alert lifecycle feature."""

import asyncio
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

import pytest
from pytest_bdd import given, parsers, then, when

from healthwatch.adapters.clock import ManualClock
from healthwatch.adapters.events import InMemoryEventChannel
from healthwatch.core.engine import MonitoringEngine, MonitorSettings
from healthwatch.core.models import AlertState, HealthAlert
from healthwatch.factory import build_in_memory_engine

T0 = 1_700_000_000.0


@dataclass
class AlertScenarioContext:
    """Shared state between steps in an alert scenario."""

    loop: asyncio.AbstractEventLoop
    clock: ManualClock = field(default_factory=lambda: ManualClock(T0))
    channel: InMemoryEventChannel = field(default_factory=InMemoryEventChannel)
    engine: MonitoringEngine | None = None
    signals: dict[str, Any] = field(default_factory=dict)
    error: Exception | None = None

    def run(self, coro: Any) -> Any:
        """Run a coroutine on the scenario's event loop."""
        return self.loop.run_until_complete(coro)

    def alerts_for(self, service: str) -> list[HealthAlert]:
        assert self.engine is not None
        return self.run(self.engine.alerts.list_alerts(service_name=service))

    def latest_alert(self, service: str) -> HealthAlert:
        return self.alerts_for(service)[0]


@pytest.fixture
def ctx() -> Iterator[AlertScenarioContext]:
    """Fresh scenario context with its own event loop."""
    loop = asyncio.new_event_loop()
    yield AlertScenarioContext(loop=loop)
    # Sync probes run in the default executor
    loop.run_until_complete(loop.shutdown_default_executor())
    loop.close()


# === Background Steps ===
@given("a monitoring engine on a manual clock")
def step_engine(ctx: AlertScenarioContext) -> None:
    ctx.engine = build_in_memory_engine(
        clock=ctx.clock, publisher=ctx.channel, settings=MonitorSettings(probe_timeout=1)
    )


@given(parsers.parse('a service "{name}" with thresholds "{thresholds}"'))
def step_service(ctx: AlertScenarioContext, name: str, thresholds: str) -> None:
    assert ctx.engine is not None
    parsed = dict(part.strip().split(" ", 1) for part in thresholds.split(";"))

    def probe() -> Any:
        signal = ctx.signals[name]
        if isinstance(signal, Exception):
            raise signal
        return signal

    ctx.engine.health.register_service(name, probe, 30, parsed)


# === Actions ===
@when(parsers.parse('the "{name}" probe reports {value:g}'))
def step_probe_reports(ctx: AlertScenarioContext, name: str, value: float) -> None:
    assert ctx.engine is not None
    ctx.signals[name] = value
    ctx.clock.advance(30)
    ctx.run(ctx.engine.health.evaluate(name))


@when(parsers.parse('the "{name}" probe fails'))
def step_probe_fails(ctx: AlertScenarioContext, name: str) -> None:
    assert ctx.engine is not None
    ctx.signals[name] = ConnectionError("connection refused")
    ctx.clock.advance(30)
    ctx.run(ctx.engine.health.evaluate(name))


@when("the operator acknowledges the alert")
def step_acknowledge(ctx: AlertScenarioContext) -> None:
    assert ctx.engine is not None
    try:
        ctx.run(ctx.engine.alerts.acknowledge(ctx.latest_alert("api").id))
    except Exception as e:
        ctx.error = e


@when("the operator resolves the alert")
def step_resolve(ctx: AlertScenarioContext) -> None:
    assert ctx.engine is not None
    ctx.run(ctx.engine.alerts.resolve(ctx.latest_alert("api").id))


# === Assertions ===
@then(parsers.parse('there is {count:d} open alert for "{name}"'))
def step_open_alerts(ctx: AlertScenarioContext, count: int, name: str) -> None:
    assert ctx.engine is not None
    active = ctx.run(ctx.engine.alerts.active_alerts())
    assert len([a for a in active if a.service_name == name]) == count


@then(parsers.parse('"{name}" has {count:d} alerts in total'))
def step_total_alerts(ctx: AlertScenarioContext, name: str, count: int) -> None:
    assert len(ctx.alerts_for(name)) == count


@then(parsers.parse('the alert level is "{level}"'))
def step_alert_level(ctx: AlertScenarioContext, level: str) -> None:
    assert ctx.latest_alert("api").level == level


@then(parsers.parse("the alert has {count:d} occurrences"))
def step_occurrences(ctx: AlertScenarioContext, count: int) -> None:
    assert ctx.latest_alert("api").metadata["occurrences"] == count


@then(parsers.parse('the alert for "{name}" is {state}'))
def step_alert_state(ctx: AlertScenarioContext, name: str, state: str) -> None:
    assert ctx.latest_alert(name).state is AlertState(state)


@then(parsers.parse('the published events are "{names}"'))
def step_published(ctx: AlertScenarioContext, names: str) -> None:
    assert ctx.channel.names() == [n.strip() for n in names.split(",")]


@then(parsers.parse('the operation fails with "{error_name}"'))
def step_operation_fails(ctx: AlertScenarioContext, error_name: str) -> None:
    assert ctx.error is not None
    assert type(ctx.error).__name__ == error_name


@then(parsers.parse('the health of "{name}" is "{status}"'))
def step_health(ctx: AlertScenarioContext, name: str, status: str) -> None:
    assert ctx.engine is not None
    assert ctx.engine.health.last_status(name) == status
