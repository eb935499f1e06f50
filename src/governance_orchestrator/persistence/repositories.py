"""
governance-orchestrator — module skeleton

File: src/governance_orchestrator/persistence/repositories.py
Last updated: 2026-10-17

Purpose
- Store interfaces for workflow contexts, todos, tasks and critical events,
  with SQLite-backed and in-memory implementations.

What should be included in this file
- ``TaskStore`` / ``WorkflowStore`` protocols shared by both backends.
- Query patterns the todo manager needs (tasks of a workflow in creation
  order, ready tasks by priority, counts by status).

Functional requirements
- Inserting tasks is idempotent on ``(workflow_id, stage, specialist_code)``.
- Status updates support a compare-and-set guard so a stale writer cannot
  overwrite a newer status.
- Every write is committed before the call returns.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from typing import Final, Protocol, cast, runtime_checkable

from governance_orchestrator.domain.events import GovernanceEvent
from governance_orchestrator.domain.models import (
    OrchestratorTask,
    OrchestratorTodo,
    TaskStatus,
    WorkflowContext,
    WorkflowStatus,
)
from governance_orchestrator.persistence.state_db import RowValue, SQLParams, StateDB

_MAX_PAGE_SIZE: Final[int] = 1_000


@runtime_checkable
class TaskStore(Protocol):
    """Durable home of todos and tasks; the todo manager is its only writer."""

    def save_todo(self, todo: OrchestratorTodo) -> OrchestratorTodo: ...

    def get_todo(self, todo_id: str) -> OrchestratorTodo | None: ...

    def get_todo_for_workflow(self, workflow_id: str) -> OrchestratorTodo | None: ...

    def list_todos(self) -> list[OrchestratorTodo]: ...

    def add_tasks(self, tasks: Sequence[OrchestratorTask]) -> tuple[OrchestratorTask, ...]: ...

    def save_task(
        self,
        task: OrchestratorTask,
        *,
        expected_status: TaskStatus | None = None,
    ) -> bool: ...

    def get_task(self, task_id: str) -> OrchestratorTask | None: ...

    def list_tasks(self, workflow_id: str) -> list[OrchestratorTask]: ...

    def list_tasks_by_status(
        self,
        statuses: Iterable[TaskStatus],
        *,
        limit: int | None = None,
    ) -> list[OrchestratorTask]: ...

    def count_tasks(self, status: TaskStatus) -> int: ...


@runtime_checkable
class WorkflowStore(Protocol):
    """Durable home of workflow contexts, keyed by workflow id."""

    def save(self, context: WorkflowContext) -> WorkflowContext: ...

    def get(self, workflow_id: str) -> WorkflowContext | None: ...

    def list(
        self, *, statuses: Iterable[WorkflowStatus] | None = None
    ) -> list[WorkflowContext]: ...


# ---------------------------------------------------------------------------
# SQLite backend
# ---------------------------------------------------------------------------


class _BaseRepo:
    def __init__(self, db: StateDB) -> None:
        self._db = db
        self._db.migrate()

    @staticmethod
    def _validate_limit(limit: int | None) -> None:
        if limit is not None and (limit <= 0 or limit > _MAX_PAGE_SIZE):
            raise ValueError(f"limit must be in [1, {_MAX_PAGE_SIZE}]")


class SqliteTaskStore(_BaseRepo):
    """Todo/task repository over the ``todos`` and ``tasks`` tables."""

    def save_todo(self, todo: OrchestratorTodo) -> OrchestratorTodo:
        payload = todo.to_dict()
        self._db.execute(
            """
            INSERT INTO todos (
                id, workflow_id, issue_id, workflow_type, current_state, status,
                payload_json, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                current_state=excluded.current_state,
                status=excluded.status,
                payload_json=excluded.payload_json,
                updated_at=excluded.updated_at
            """,
            (
                todo.id,
                todo.workflow_id,
                todo.issue_id,
                todo.workflow_type.value,
                todo.current_state.value,
                todo.status.value,
                todo.to_json(),
                _iso(payload["created_at"]),
                _iso(payload["updated_at"]),
            ),
        )
        return todo

    def get_todo(self, todo_id: str) -> OrchestratorTodo | None:
        row = self._db.query_one("SELECT payload_json FROM todos WHERE id = ?", (todo_id,))
        return None if row is None else OrchestratorTodo.from_json(_row_text(row, "todos"))

    def get_todo_for_workflow(self, workflow_id: str) -> OrchestratorTodo | None:
        row = self._db.query_one(
            "SELECT payload_json FROM todos WHERE workflow_id = ?", (workflow_id,)
        )
        return None if row is None else OrchestratorTodo.from_json(_row_text(row, "todos"))

    def list_todos(self) -> list[OrchestratorTodo]:
        rows = self._db.query_all("SELECT payload_json FROM todos ORDER BY created_at, id")
        return [OrchestratorTodo.from_json(_row_text(row, "todos")) for row in rows]

    def add_tasks(self, tasks: Sequence[OrchestratorTask]) -> tuple[OrchestratorTask, ...]:
        """Insert tasks whose key is new; return the stored task for every key."""

        stored: list[OrchestratorTask] = []
        with self._db.transaction() as conn:
            for task in tasks:
                self._db.execute(
                    """
                    INSERT INTO tasks (
                        id, todo_id, workflow_id, stage, specialist_code, sequence,
                        status, priority, payload_json, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(workflow_id, stage, specialist_code) DO NOTHING
                    """,
                    _task_params(task),
                    conn=conn,
                )
                row = self._db.query_one(
                    """
                    SELECT payload_json FROM tasks
                    WHERE workflow_id = ? AND stage = ? AND specialist_code = ?
                    """,
                    (task.workflow_id, task.stage.value, task.specialist_code.value),
                    conn=conn,
                )
                if row is None:
                    raise RuntimeError(f"task {task.id} vanished inside its own transaction")
                stored.append(OrchestratorTask.from_json(_row_text(row, "tasks")))
        return tuple(stored)

    def save_task(
        self,
        task: OrchestratorTask,
        *,
        expected_status: TaskStatus | None = None,
    ) -> bool:
        sql = """
            UPDATE tasks
            SET status = ?, priority = ?, payload_json = ?, updated_at = ?
            WHERE id = ?
        """
        params: list[RowValue] = [
            task.status.value,
            task.priority,
            task.to_json(),
            _iso(task.to_dict()["updated_at"]),
            task.id,
        ]
        if expected_status is not None:
            sql += " AND status = ?"
            params.append(expected_status.value)
        return self._db.execute(sql, cast("SQLParams", tuple(params))) == 1

    def get_task(self, task_id: str) -> OrchestratorTask | None:
        row = self._db.query_one("SELECT payload_json FROM tasks WHERE id = ?", (task_id,))
        return None if row is None else OrchestratorTask.from_json(_row_text(row, "tasks"))

    def list_tasks(self, workflow_id: str) -> list[OrchestratorTask]:
        rows = self._db.query_all(
            "SELECT payload_json FROM tasks WHERE workflow_id = ? ORDER BY sequence, id",
            (workflow_id,),
        )
        return [OrchestratorTask.from_json(_row_text(row, "tasks")) for row in rows]

    def list_tasks_by_status(
        self,
        statuses: Iterable[TaskStatus],
        *,
        limit: int | None = None,
    ) -> list[OrchestratorTask]:
        self._validate_limit(limit)
        values = sorted({status.value for status in statuses})
        if not values:
            return []
        placeholders = ",".join("?" for _ in values)
        sql = (
            f"SELECT payload_json FROM tasks WHERE status IN ({placeholders}) "
            "ORDER BY priority DESC, created_at, sequence, id"
        )
        params: list[RowValue] = list(values)
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        rows = self._db.query_all(sql, cast("SQLParams", tuple(params)))
        return [OrchestratorTask.from_json(_row_text(row, "tasks")) for row in rows]

    def count_tasks(self, status: TaskStatus) -> int:
        row = self._db.query_one(
            "SELECT COUNT(*) AS total FROM tasks WHERE status = ?", (status.value,)
        )
        total = None if row is None else row["total"]
        return total if isinstance(total, int) else 0


class SqliteWorkflowStore(_BaseRepo):
    """Workflow-context repository over the ``workflows`` table."""

    def save(self, context: WorkflowContext) -> WorkflowContext:
        payload = context.to_dict()
        updated_at = datetime.now(tz=UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")
        self._db.execute(
            """
            INSERT INTO workflows (
                id, workflow_type, issue_id, current_state, status,
                payload_json, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                current_state=excluded.current_state,
                status=excluded.status,
                payload_json=excluded.payload_json,
                updated_at=excluded.updated_at
            """,
            (
                context.id,
                context.workflow_type.value,
                context.issue_id,
                context.current_state.value,
                context.status.value,
                context.to_json(),
                _iso(payload["started_at"]),
                updated_at,
            ),
        )
        return context

    def get(self, workflow_id: str) -> WorkflowContext | None:
        row = self._db.query_one(
            "SELECT payload_json FROM workflows WHERE id = ?", (workflow_id,)
        )
        return None if row is None else WorkflowContext.from_json(_row_text(row, "workflows"))

    def list(self, *, statuses: Iterable[WorkflowStatus] | None = None) -> list[WorkflowContext]:
        sql = "SELECT payload_json FROM workflows"
        params: tuple[RowValue, ...] = ()
        if statuses is not None:
            values = tuple(sorted({status.value for status in statuses}))
            if not values:
                return []
            sql += f" WHERE status IN ({','.join('?' for _ in values)})"
            params = values
        sql += " ORDER BY created_at, id"
        rows = self._db.query_all(sql, params)
        return [WorkflowContext.from_json(_row_text(row, "workflows")) for row in rows]


class SqliteEventLog(_BaseRepo):
    """Append-only log of critical events; usable as an event-bus persistence callback."""

    def __call__(self, event: GovernanceEvent) -> None:
        self.append(event)

    def append(self, event: GovernanceEvent) -> None:
        payload = event.to_dict()
        self._db.execute(
            """
            INSERT INTO governance_events (
                event_id, event_type, correlation_id, timestamp, payload_json
            ) VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(event_id) DO NOTHING
            """,
            (
                event.event_id,
                event.event_type.value,
                event.correlation_id,
                _iso(payload["timestamp"]),
                event.to_json(),
            ),
        )

    def list(self, *, correlation_id: str | None = None, limit: int = 100) -> list[GovernanceEvent]:
        self._validate_limit(limit)
        if correlation_id is None:
            rows = self._db.query_all(
                "SELECT payload_json FROM governance_events ORDER BY timestamp, event_id LIMIT ?",
                (limit,),
            )
        else:
            rows = self._db.query_all(
                """
                SELECT payload_json FROM governance_events
                WHERE correlation_id = ?
                ORDER BY timestamp, event_id LIMIT ?
                """,
                (correlation_id, limit),
            )
        return [GovernanceEvent.from_json(_row_text(row, "governance_events")) for row in rows]


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------


class InMemoryTaskStore:
    """Dict-backed ``TaskStore`` for tests and ephemeral runs."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._todos: dict[str, OrchestratorTodo] = {}
        self._tasks: dict[str, OrchestratorTask] = {}
        self._keys: dict[tuple[str, str, str], str] = {}

    def save_todo(self, todo: OrchestratorTodo) -> OrchestratorTodo:
        with self._lock:
            existing = self.get_todo_for_workflow(todo.workflow_id)
            if existing is not None and existing.id != todo.id:
                raise ValueError(f"workflow {todo.workflow_id} already has todo {existing.id}")
            self._todos[todo.id] = todo
        return todo

    def get_todo(self, todo_id: str) -> OrchestratorTodo | None:
        with self._lock:
            return self._todos.get(todo_id)

    def get_todo_for_workflow(self, workflow_id: str) -> OrchestratorTodo | None:
        with self._lock:
            for todo in self._todos.values():
                if todo.workflow_id == workflow_id:
                    return todo
        return None

    def list_todos(self) -> list[OrchestratorTodo]:
        with self._lock:
            return sorted(self._todos.values(), key=lambda item: (item.created_at, item.id))

    def add_tasks(self, tasks: Sequence[OrchestratorTask]) -> tuple[OrchestratorTask, ...]:
        stored: list[OrchestratorTask] = []
        with self._lock:
            for task in tasks:
                key = (task.workflow_id, task.stage.value, task.specialist_code.value)
                existing_id = self._keys.get(key)
                if existing_id is None:
                    self._tasks[task.id] = task
                    self._keys[key] = task.id
                    existing_id = task.id
                stored.append(self._tasks[existing_id])
        return tuple(stored)

    def save_task(
        self,
        task: OrchestratorTask,
        *,
        expected_status: TaskStatus | None = None,
    ) -> bool:
        with self._lock:
            current = self._tasks.get(task.id)
            if current is None:
                return False
            if expected_status is not None and current.status is not expected_status:
                return False
            self._tasks[task.id] = task
        return True

    def get_task(self, task_id: str) -> OrchestratorTask | None:
        with self._lock:
            return self._tasks.get(task_id)

    def list_tasks(self, workflow_id: str) -> list[OrchestratorTask]:
        with self._lock:
            selected = [task for task in self._tasks.values() if task.workflow_id == workflow_id]
        return sorted(selected, key=lambda item: (item.sequence, item.id))

    def list_tasks_by_status(
        self,
        statuses: Iterable[TaskStatus],
        *,
        limit: int | None = None,
    ) -> list[OrchestratorTask]:
        wanted = frozenset(statuses)
        with self._lock:
            selected = [task for task in self._tasks.values() if task.status in wanted]
        selected.sort(key=lambda item: (-item.priority, item.created_at, item.sequence, item.id))
        return selected if limit is None else selected[:limit]

    def count_tasks(self, status: TaskStatus) -> int:
        with self._lock:
            return sum(1 for task in self._tasks.values() if task.status is status)


class InMemoryWorkflowStore:
    """Dict-backed ``WorkflowStore``."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._contexts: dict[str, WorkflowContext] = {}

    def save(self, context: WorkflowContext) -> WorkflowContext:
        with self._lock:
            self._contexts[context.id] = context
        return context

    def get(self, workflow_id: str) -> WorkflowContext | None:
        with self._lock:
            return self._contexts.get(workflow_id)

    def list(self, *, statuses: Iterable[WorkflowStatus] | None = None) -> list[WorkflowContext]:
        with self._lock:
            contexts = list(self._contexts.values())
        if statuses is not None:
            wanted = frozenset(statuses)
            contexts = [context for context in contexts if context.status in wanted]
        return sorted(contexts, key=lambda item: (item.started_at, item.id))


def _task_params(task: OrchestratorTask) -> SQLParams:
    payload = task.to_dict()
    return (
        task.id,
        task.todo_id,
        task.workflow_id,
        task.stage.value,
        task.specialist_code.value,
        task.sequence,
        task.status.value,
        task.priority,
        task.to_json(),
        _iso(payload["created_at"]),
        _iso(payload["updated_at"]),
    )


def _iso(value: object) -> str:
    if not isinstance(value, str):
        raise ValueError(f"expected serialized timestamp, got {type(value).__name__}")
    return value


def _row_text(row: dict[str, RowValue], table: str) -> str:
    value = row.get("payload_json")
    if not isinstance(value, str):
        raise ValueError(f"{table}.payload_json must be TEXT")
    return value


__all__ = [
    "InMemoryTaskStore",
    "InMemoryWorkflowStore",
    "SqliteEventLog",
    "SqliteTaskStore",
    "SqliteWorkflowStore",
    "TaskStore",
    "WorkflowStore",
]
