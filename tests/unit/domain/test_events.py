"""Event envelope validation and JSON round trip."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from governance_orchestrator.domain.events import (
    CRITICAL_EVENT_TYPES,
    EventType,
    GovernanceEvent,
)
from governance_orchestrator.domain.ids import generate_event_id

from ... import FIXED_NOW


def _event(**changes: object) -> GovernanceEvent:
    values: dict[str, object] = {
        "event_id": generate_event_id(),
        "event_type": EventType.TASK_COMPLETED,
        "timestamp": FIXED_NOW,
        "correlation_id": "wf-0001",
        "payload": {"task_id": "task-1", "attempts": 2, "tags": ["a", None]},
    }
    values.update(changes)
    return GovernanceEvent(**values)  # type: ignore[arg-type]


def test_json_round_trip() -> None:
    event = _event()

    raw = event.to_json()

    assert '"event_type":"task:completed"' in raw
    assert '"timestamp":"2026-10-17T12:00:00.000000Z"' in raw
    assert GovernanceEvent.from_json(raw) == event


def test_envelope_normalizes_inputs() -> None:
    offset = timezone(timedelta(hours=9))
    event = _event(
        event_type="kpi:alert",
        timestamp=datetime(2026, 10, 17, 21, 0, tzinfo=offset),
        correlation_id="  wf-0001  ",
        payload={"values": (1, 2)},
    )

    assert event.event_type is EventType.KPI_ALERT
    assert event.timestamp == FIXED_NOW
    assert event.timestamp.utcoffset() == timedelta(0)
    assert event.correlation_id == "wf-0001"
    assert event.payload == {"values": [1, 2]}


@pytest.mark.parametrize(
    ("changes", "message"),
    [
        ({"event_id": "evt-bogus"}, "invalid ULID part"),
        ({"event_type": "pipeline:exploded"}, "unsupported event type"),
        ({"timestamp": datetime(2026, 10, 17)}, "timezone-aware"),
        ({"correlation_id": " "}, "must not be empty"),
        ({"payload": {"x": float("nan")}}, "finite"),
        ({"payload": {1: "x"}}, "keys must be strings"),
        ({"payload": ["not", "an", "object"]}, "expected object"),
    ],
)
def test_invalid_envelopes_are_rejected(changes: dict[str, object], message: str) -> None:
    with pytest.raises(ValueError, match=message):
        _event(**changes)


def test_from_json_errors() -> None:
    with pytest.raises(ValueError, match="invalid JSON"):
        GovernanceEvent.from_json("{")
    with pytest.raises(ValueError, match="root must be an object"):
        GovernanceEvent.from_json("1")
    with pytest.raises(ValueError, match="missing required fields"):
        GovernanceEvent.from_json('{"event_type": "task:failed"}')


def test_correlation_id_is_optional() -> None:
    event = _event(correlation_id=None)

    assert GovernanceEvent.from_dict(event.to_dict()).correlation_id is None


def test_critical_types_cover_terminal_and_lock_events() -> None:
    assert EventType.PIPELINE_COMPLETED in CRITICAL_EVENT_TYPES
    assert EventType.EXECUTION_LOCKED in CRITICAL_EVENT_TYPES
    assert EventType.TASK_STARTED not in CRITICAL_EVENT_TYPES
    assert all(member.value.count(":") == 1 for member in EventType)
