"""Lifecycle event types and the serializable envelope carried by the event bus."""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum

from governance_orchestrator.domain import ids

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]


class EventType(StrEnum):
    """Lifecycle events emitted by the orchestration core."""

    PIPELINE_STARTED = "pipeline:started"
    PIPELINE_STAGE_COMPLETED = "pipeline:stage_completed"
    PIPELINE_STAGE_BLOCKED = "pipeline:stage_blocked"
    PIPELINE_COMPLETED = "pipeline:completed"
    PIPELINE_ERROR = "pipeline:error"

    WORKFLOW_DOCUMENT_PRODUCED = "workflow:document_produced"
    WORKFLOW_REQUIRES_APPROVAL = "workflow:requires_approval"
    WORKFLOW_ESCALATED = "workflow:escalated"

    EXECUTION_LOCKED = "execution:locked"
    EXECUTION_UNLOCKED = "execution:unlocked"

    KPI_UPDATED = "kpi:updated"
    KPI_ALERT = "kpi:alert"
    KPI_THRESHOLD_BREACH = "kpi:threshold_breach"

    TODO_CREATED = "todo:created"
    TODO_STATE_CHANGED = "todo:state_changed"
    TASK_CREATED = "task:created"
    TASK_STARTED = "task:started"
    TASK_COMPLETED = "task:completed"
    TASK_FAILED = "task:failed"
    TASK_BLOCKED = "task:blocked"


# Events whose loss would break crash-resume auditing.
CRITICAL_EVENT_TYPES: frozenset[EventType] = frozenset(
    {
        EventType.PIPELINE_COMPLETED,
        EventType.PIPELINE_ERROR,
        EventType.WORKFLOW_ESCALATED,
        EventType.EXECUTION_LOCKED,
        EventType.EXECUTION_UNLOCKED,
        EventType.TASK_FAILED,
    }
)


@dataclass(slots=True)
class GovernanceEvent:
    """Serializable event envelope delivered to bus subscribers."""

    event_id: str
    event_type: EventType
    timestamp: datetime
    correlation_id: str | None
    payload: dict[str, JSONValue]

    def __post_init__(self) -> None:
        ids.validate_event_id(self.event_id)
        self.event_type = _as_event_type(self.event_type, "GovernanceEvent.event_type")
        self.timestamp = _as_utc_datetime(self.timestamp, "GovernanceEvent.timestamp")
        self.correlation_id = _as_optional_str(
            self.correlation_id, "GovernanceEvent.correlation_id"
        )
        self.payload = _as_json_object(self.payload, "GovernanceEvent.payload")

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "timestamp": _datetime_to_iso8601z(self.timestamp),
            "correlation_id": self.correlation_id,
            "payload": _as_json_object(self.payload, "GovernanceEvent.payload"),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> GovernanceEvent:
        if not isinstance(data, dict):
            raise ValueError(f"GovernanceEvent: expected object, got {type(data).__name__}")
        missing = sorted({"event_id", "event_type", "timestamp", "payload"} - set(data))
        if missing:
            raise ValueError(f"GovernanceEvent: missing required fields: {missing}")
        return cls(
            event_id=_as_str(data["event_id"], "GovernanceEvent.event_id"),
            event_type=_as_event_type(data["event_type"], "GovernanceEvent.event_type"),
            timestamp=_as_utc_datetime(data["timestamp"], "GovernanceEvent.timestamp"),
            correlation_id=_as_optional_str(
                data.get("correlation_id"), "GovernanceEvent.correlation_id"
            ),
            payload=_as_json_object(data["payload"], "GovernanceEvent.payload"),
        )

    @classmethod
    def from_json(cls, raw: str) -> GovernanceEvent:
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValueError(f"GovernanceEvent: invalid JSON: {exc}") from exc
        if not isinstance(parsed, dict):
            raise ValueError("GovernanceEvent: JSON root must be an object")
        return cls.from_dict(parsed)


def _as_str(value: object, path: str, *, max_len: int = 4096) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{path}: expected string, got {type(value).__name__}")
    parsed = value.strip()
    if not parsed:
        raise ValueError(f"{path}: must not be empty")
    if len(parsed) > max_len:
        raise ValueError(f"{path}: must be <= {max_len} characters")
    return parsed


def _as_optional_str(value: object, path: str) -> str | None:
    if value is None:
        return None
    return _as_str(value, path, max_len=256)


def _as_event_type(value: object, path: str) -> EventType:
    if isinstance(value, EventType):
        return value
    if not isinstance(value, str):
        raise ValueError(f"{path}: expected string event type, got {type(value).__name__}")
    try:
        return EventType(value)
    except ValueError as exc:
        allowed = ", ".join(member.value for member in EventType)
        raise ValueError(f"{path}: unsupported event type {value!r}; allowed: {allowed}") from exc


def _as_utc_datetime(value: object, path: str) -> datetime:
    parsed: datetime
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        normalized = value[:-1] + "+00:00" if value.endswith("Z") else value
        try:
            parsed = datetime.fromisoformat(normalized)
        except ValueError as exc:
            raise ValueError(f"{path}: invalid ISO-8601 datetime: {value!r}") from exc
    else:
        raise ValueError(
            f"{path}: expected datetime or ISO-8601 string, got {type(value).__name__}"
        )

    if parsed.tzinfo is None or parsed.utcoffset() is None:
        raise ValueError(f"{path}: datetime must be timezone-aware UTC")
    return parsed.astimezone(UTC)


def _datetime_to_iso8601z(value: datetime) -> str:
    normalized = _as_utc_datetime(value, "GovernanceEvent.timestamp")
    return normalized.isoformat(timespec="microseconds").replace("+00:00", "Z")


def _as_json_value(value: object, path: str, *, depth: int = 0) -> JSONValue:
    if depth > 16:
        raise ValueError(f"{path}: JSON nesting too deep")

    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError(f"{path}: float value must be finite")
        return value
    if isinstance(value, str):
        return value
    if isinstance(value, (list, tuple)):
        return [
            _as_json_value(item, f"{path}[{idx}]", depth=depth + 1)
            for idx, item in enumerate(value)
        ]
    if isinstance(value, dict):
        out: dict[str, JSONValue] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise ValueError(f"{path}: object keys must be strings")
            out[key] = _as_json_value(item, f"{path}.{key}", depth=depth + 1)
        return out
    raise ValueError(f"{path}: value is not JSON-serializable ({type(value).__name__})")


def _as_json_object(value: object, path: str) -> dict[str, JSONValue]:
    parsed = _as_json_value(value, path)
    if not isinstance(parsed, dict):
        raise ValueError(f"{path}: expected object")
    return parsed


__all__ = ["CRITICAL_EVENT_TYPES", "EventType", "GovernanceEvent"]
