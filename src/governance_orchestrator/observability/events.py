"""In-process event bus with replay and critical-event persistence hooks."""

from __future__ import annotations

import asyncio
import inspect
import threading
from collections import deque
from collections.abc import Awaitable, Callable, Coroutine, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Final, cast

from governance_orchestrator.domain.events import (
    CRITICAL_EVENT_TYPES,
    EventType,
    GovernanceEvent,
    JSONValue,
)
from governance_orchestrator.domain.ids import generate_event_id

Subscriber = Callable[[GovernanceEvent], object]
PersistenceCallback = Callable[[GovernanceEvent], object]

_DEFAULT_ERROR_BUFFER: Final[int] = 1024


@dataclass(frozen=True, slots=True)
class DispatchError:
    """Dispatch/persistence failure captured without interrupting publishers."""

    stage: str
    event_id: str
    target: str
    error_type: str
    message: str


@dataclass(frozen=True, slots=True)
class _Subscription:
    token: int
    event_type: EventType | None
    callback: Subscriber


class EventBus:
    """
    Resilient publish/subscribe bus shared by every component of the core.

    Subscribers run in registration order on the publisher's call stack, so
    events published by one workflow driver reach observers in the order they
    were emitted. A failing subscriber never interrupts the publisher: its
    exception is captured as a :class:`DispatchError`.
    """

    def __init__(
        self,
        *,
        buffer_size: int = 2048,
        persist_event: PersistenceCallback | None = None,
        critical_event_types: Sequence[EventType] | None = None,
    ) -> None:
        if isinstance(buffer_size, bool) or not isinstance(buffer_size, int):
            raise ValueError(f"buffer_size must be an integer, got {type(buffer_size).__name__}")
        if buffer_size <= 0:
            raise ValueError("buffer_size must be > 0")
        if persist_event is not None and not callable(persist_event):
            raise ValueError("persistence callback must be callable")

        self._buffer = deque[GovernanceEvent](maxlen=buffer_size)
        self._subscriptions: dict[int, _Subscription] = {}
        self._pending_async_tasks: set[asyncio.Task[None]] = set()
        self._dispatch_errors = deque[DispatchError](maxlen=_DEFAULT_ERROR_BUFFER)
        self._next_token = 1
        self._lock = threading.RLock()
        self._persist_event = persist_event
        self._critical_event_types = (
            frozenset(critical_event_types)
            if critical_event_types is not None
            else CRITICAL_EVENT_TYPES
        )

    def set_persistence_callback(self, callback: PersistenceCallback | None) -> None:
        """Replace persistence callback used for critical events."""

        if callback is not None and not callable(callback):
            raise ValueError("persistence callback must be callable")
        with self._lock:
            self._persist_event = callback

    def subscribe(self, event_type: str | EventType | None, callback: Subscriber) -> int:
        """Subscribe callback to an event type or all events when ``event_type`` is ``None``."""

        if not callable(callback):
            raise ValueError("callback must be callable")
        normalized = _as_event_type(event_type) if event_type is not None else None

        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._subscriptions[token] = _Subscription(
                token=token, event_type=normalized, callback=callback
            )
        return token

    def unsubscribe(self, token: int) -> bool:
        """Unsubscribe callback token. Returns ``True`` when token existed."""

        with self._lock:
            return self._subscriptions.pop(token, None) is not None

    def publish(self, event: GovernanceEvent) -> tuple[DispatchError, ...]:
        """Publish an event from synchronous code."""

        if not isinstance(event, GovernanceEvent):
            raise ValueError(f"event must be GovernanceEvent, got {type(event).__name__}")
        with self._lock:
            self._buffer.append(event)
            subscriptions = tuple(self._subscriptions.values())
            persistence = self._persist_event

        targets: list[tuple[str, Callable[[GovernanceEvent], object]]] = []
        if event.event_type in self._critical_event_types and persistence is not None:
            targets.append(("persistence", persistence))
        targets.extend(
            ("subscriber", item.callback)
            for item in subscriptions
            if item.event_type is None or item.event_type is event.event_type
        )

        running_loop = _current_running_loop()
        errors: list[DispatchError] = []
        for stage, callback in targets:
            error = self._invoke_callback(
                callback=callback, event=event, stage=stage, running_loop=running_loop
            )
            if error is not None:
                errors.append(error)

        if errors:
            with self._lock:
                self._dispatch_errors.extend(errors)
        return tuple(errors)

    def emit(
        self,
        event_type: str | EventType,
        payload: Mapping[str, object],
        *,
        correlation_id: str | None = None,
    ) -> tuple[GovernanceEvent, tuple[DispatchError, ...]]:
        """Create and publish an event from sync code."""

        event = GovernanceEvent(
            event_id=generate_event_id(),
            event_type=_as_event_type(event_type),
            timestamp=datetime.now(tz=UTC),
            correlation_id=correlation_id,
            payload=cast("dict[str, JSONValue]", dict(payload)),
        )
        return event, self.publish(event)

    async def drain_async(self) -> tuple[DispatchError, ...]:
        """Await async subscriber tasks scheduled by ``publish`` and return all errors."""

        with self._lock:
            pending = tuple(self._pending_async_tasks)
            self._pending_async_tasks.clear()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        with self._lock:
            return tuple(self._dispatch_errors)

    def replay(
        self,
        *,
        since: datetime | None = None,
        event_type: str | EventType | None = None,
        correlation_id: str | None = None,
        limit: int | None = None,
    ) -> tuple[GovernanceEvent, ...]:
        """Replay buffered events in publish order, optionally for one workflow."""

        if since is not None and (since.tzinfo is None or since.utcoffset() is None):
            raise ValueError("since datetime must be timezone-aware")
        type_filter = _as_event_type(event_type) if event_type is not None else None

        with self._lock:
            events = tuple(self._buffer)

        filtered = [
            event
            for event in events
            if (since is None or event.timestamp > since)
            and (type_filter is None or event.event_type is type_filter)
            and (correlation_id is None or event.correlation_id == correlation_id)
        ]
        if limit is not None:
            if limit <= 0:
                return ()
            filtered = filtered[-limit:]
        return tuple(filtered)

    def dispatch_errors(self, *, limit: int | None = None) -> tuple[DispatchError, ...]:
        """Return recorded subscriber/persistence failures."""

        with self._lock:
            errors = tuple(self._dispatch_errors)
        if limit is None:
            return errors
        if limit <= 0:
            return ()
        return errors[-limit:]

    def _invoke_callback(
        self,
        *,
        callback: Callable[[GovernanceEvent], object],
        event: GovernanceEvent,
        stage: str,
        running_loop: asyncio.AbstractEventLoop | None,
    ) -> DispatchError | None:
        target = _callback_name(callback)
        try:
            result = callback(event)
            if inspect.isawaitable(result):
                coroutine = _as_coroutine(result)
                if running_loop is None:
                    asyncio.run(coroutine)
                    return None
                task = running_loop.create_task(coroutine)
                with self._lock:
                    self._pending_async_tasks.add(task)
                task.add_done_callback(
                    lambda done: self._on_async_callback_done(
                        done, stage=stage, target=target, event=event
                    )
                )
            return None
        except Exception as exc:  # noqa: BLE001
            return _dispatch_error(stage=stage, event=event, target=target, exc=exc)

    def _on_async_callback_done(
        self,
        task: asyncio.Task[None],
        *,
        stage: str,
        target: str,
        event: GovernanceEvent,
    ) -> None:
        with self._lock:
            self._pending_async_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if isinstance(exc, Exception):
            error = _dispatch_error(stage=stage, event=event, target=target, exc=exc)
            with self._lock:
                self._dispatch_errors.append(error)


def _as_event_type(value: str | EventType) -> EventType:
    if isinstance(value, EventType):
        return value
    if not isinstance(value, str):
        raise ValueError(f"event_type must be string/EventType, got {type(value).__name__}")
    try:
        return EventType(value.strip())
    except ValueError as exc:
        allowed = ", ".join(item.value for item in EventType)
        raise ValueError(f"invalid event_type {value!r}; allowed: {allowed}") from exc


def _callback_name(callback: object) -> str:
    name = getattr(callback, "__qualname__", None) or getattr(callback, "__name__", None)
    if isinstance(name, str) and name:
        return name
    return callback.__class__.__name__


def _current_running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


def _as_coroutine(value: object) -> Coroutine[Any, Any, None]:
    if inspect.iscoroutine(value):
        return cast("Coroutine[Any, Any, None]", value)
    return _await_awaitable(cast("Awaitable[None]", value))


async def _await_awaitable(awaitable: Awaitable[None]) -> None:
    await awaitable


def _dispatch_error(
    *, stage: str, event: GovernanceEvent, target: str, exc: Exception
) -> DispatchError:
    return DispatchError(
        stage=stage,
        event_id=event.event_id,
        target=target,
        error_type=exc.__class__.__name__,
        message=str(exc),
    )


__all__ = [
    "DispatchError",
    "EventBus",
    "PersistenceCallback",
    "Subscriber",
]
