"""
governance-orchestrator — unit tests for the observability event bus

File: tests/unit/observability/test_events.py
Last updated: 2026-10-17

Purpose
- Validate fanout resilience, replay filtering and critical-event persistence.

What this test file should cover
- Typed and wildcard subscriptions, unsubscribe.
- Subscriber exception isolation and dispatch error capture.
- Replay by time, type, workflow and limit over the ring buffer.
- Persistence hook invoked only for critical event types.
- Async subscribers drained from a running loop.

Functional requirements
- Offline and deterministic.

Non-functional requirements
- No sleep-based synchronization.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from governance_orchestrator.domain.events import EventType, GovernanceEvent
from governance_orchestrator.domain.ids import generate_event_id
from governance_orchestrator.observability.events import EventBus

T0 = datetime(2026, 10, 17, 12, 0, tzinfo=UTC)


def _event(
    event_type: EventType, *, seconds: int = 0, correlation_id: str | None = None
) -> GovernanceEvent:
    return GovernanceEvent(
        event_id=generate_event_id(),
        event_type=event_type,
        timestamp=T0 + timedelta(seconds=seconds),
        correlation_id=correlation_id,
        payload={"seconds": seconds},
    )


def test_typed_and_wildcard_subscribers_see_matching_events() -> None:
    bus = EventBus(buffer_size=10)
    everything: list[str] = []
    completed: list[str] = []

    bus.subscribe(None, lambda event: everything.append(event.event_type.value))
    bus.subscribe("task:completed", lambda event: completed.append(event.event_id))

    bus.emit(EventType.TASK_STARTED, {"taskId": "t-1"})
    done, errors = bus.emit(EventType.TASK_COMPLETED, {"taskId": "t-1"})

    assert errors == ()
    assert everything == ["task:started", "task:completed"]
    assert completed == [done.event_id]


def test_unsubscribe_stops_delivery() -> None:
    bus = EventBus()
    seen: list[EventType] = []
    token = bus.subscribe(None, lambda event: seen.append(event.event_type))

    bus.emit(EventType.KPI_UPDATED, {})
    assert bus.unsubscribe(token) is True
    assert bus.unsubscribe(token) is False
    bus.emit(EventType.KPI_UPDATED, {})

    assert seen == [EventType.KPI_UPDATED]


def test_failing_subscriber_is_isolated_and_recorded() -> None:
    bus = EventBus()
    healthy: list[str] = []

    def broken(_event: GovernanceEvent) -> None:
        raise RuntimeError("dashboard offline")

    bus.subscribe(None, broken)
    bus.subscribe(None, lambda event: healthy.append(event.event_type.value))

    event, errors = bus.emit(EventType.PIPELINE_STARTED, {"workflowId": "wf-1"})

    assert healthy == ["pipeline:started"]
    (error,) = errors
    assert error.stage == "subscriber"
    assert error.event_id == event.event_id
    assert error.error_type == "RuntimeError"
    assert error.message == "dashboard offline"
    assert bus.dispatch_errors() == errors
    assert bus.dispatch_errors(limit=0) == ()


def test_replay_filters_by_time_type_workflow_and_limit() -> None:
    bus = EventBus(buffer_size=10)
    bus.publish(_event(EventType.PIPELINE_STARTED, seconds=0, correlation_id="wf-a"))
    bus.publish(_event(EventType.TASK_COMPLETED, seconds=1, correlation_id="wf-a"))
    bus.publish(_event(EventType.TASK_COMPLETED, seconds=2, correlation_id="wf-b"))
    bus.publish(_event(EventType.PIPELINE_COMPLETED, seconds=3, correlation_id="wf-a"))

    def seconds(events: tuple[GovernanceEvent, ...]) -> list[object]:
        return [event.payload["seconds"] for event in events]

    assert seconds(bus.replay()) == [0, 1, 2, 3]
    assert seconds(bus.replay(since=T0 + timedelta(seconds=1))) == [2, 3]
    assert seconds(bus.replay(event_type="task:completed")) == [1, 2]
    assert seconds(bus.replay(correlation_id="wf-a")) == [0, 1, 3]
    assert seconds(bus.replay(correlation_id="wf-a", limit=2)) == [1, 3]
    assert bus.replay(limit=0) == ()


def test_replay_is_bounded_by_the_ring_buffer() -> None:
    bus = EventBus(buffer_size=2)
    for second in range(3):
        bus.publish(_event(EventType.KPI_UPDATED, seconds=second))

    assert [event.payload["seconds"] for event in bus.replay()] == [1, 2]


def test_replay_rejects_naive_since() -> None:
    with pytest.raises(ValueError, match="timezone-aware"):
        EventBus().replay(since=datetime(2026, 10, 17))


def test_persistence_runs_only_for_critical_events_and_failures_are_kept() -> None:
    persisted: list[EventType] = []

    def persist(event: GovernanceEvent) -> None:
        persisted.append(event.event_type)
        if event.event_type is EventType.TASK_FAILED:
            raise OSError("disk full")

    bus = EventBus(persist_event=persist)
    bus.emit(EventType.TASK_STARTED, {})
    bus.emit(EventType.EXECUTION_LOCKED, {})
    failed, errors = bus.emit(EventType.TASK_FAILED, {})

    assert persisted == [EventType.EXECUTION_LOCKED, EventType.TASK_FAILED]
    (error,) = errors
    assert error.stage == "persistence"
    assert error.error_type == "OSError"
    assert bus.replay()[-1] == failed


def test_custom_critical_types_and_replaced_callback() -> None:
    first: list[str] = []
    second: list[str] = []
    bus = EventBus(
        persist_event=lambda event: first.append(event.event_id),
        critical_event_types=[EventType.KPI_ALERT],
    )

    bus.emit(EventType.PIPELINE_COMPLETED, {})
    bus.emit(EventType.KPI_ALERT, {})
    bus.set_persistence_callback(lambda event: second.append(event.event_id))
    bus.emit(EventType.KPI_ALERT, {})

    assert len(first) == 1
    assert len(second) == 1


def test_invalid_construction_and_event_types_raise() -> None:
    with pytest.raises(ValueError):
        EventBus(buffer_size=0)
    with pytest.raises(ValueError):
        EventBus(buffer_size=True)
    with pytest.raises(ValueError, match="invalid event_type"):
        EventBus().emit("pipeline:exploded", {})
    with pytest.raises(ValueError):
        EventBus().subscribe(None, "not callable")  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_async_subscribers_are_scheduled_and_drained() -> None:
    bus = EventBus()
    received: list[str] = []

    async def record(event: GovernanceEvent) -> None:
        received.append(event.event_type.value)

    async def explode(_event: GovernanceEvent) -> None:
        raise ValueError("async subscriber failed")

    bus.subscribe(None, record)
    bus.subscribe(EventType.PIPELINE_ERROR, explode)

    _, errors = bus.emit(EventType.PIPELINE_ERROR, {"error": "boom"})
    assert errors == ()

    drained = await bus.drain_async()

    assert received == ["pipeline:error"]
    assert [error.message for error in drained] == ["async subscriber failed"]


def test_async_subscriber_runs_inline_without_a_loop() -> None:
    bus = EventBus()
    received: list[str] = []

    async def record(event: GovernanceEvent) -> None:
        received.append(event.event_type.value)

    bus.subscribe(None, record)
    bus.emit(EventType.TODO_CREATED, {})

    assert received == ["todo:created"]
