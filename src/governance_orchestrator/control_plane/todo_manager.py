"""
Durable, resumable task lists for governance workflows.

Every workflow owns exactly one todo and an ordered list of tasks, one per
``(stage, specialist)`` pair. The manager is the only writer of task status;
each change is written to the :class:`TaskStore` first and only then
announced on the event bus, so an observer never sees a status the store
could lose in a crash.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog

from governance_orchestrator.domain.errors import GovernanceError
from governance_orchestrator.domain.events import EventType
from governance_orchestrator.domain.ids import generate_task_id, generate_todo_id
from governance_orchestrator.domain.models import (
    JSONValue,
    OrchestratorTask,
    OrchestratorTodo,
    SpecialistCode,
    TaskSpec,
    TaskStatus,
    TodoStatus,
    WorkflowState,
    WorkflowType,
)
from governance_orchestrator.domain.tables import INITIAL_STATE, TERMINAL_STATES

if TYPE_CHECKING:
    from governance_orchestrator.observability.events import EventBus
    from governance_orchestrator.persistence.repositories import TaskStore

Clock = Callable[[], datetime]

_CANCELLABLE_STATUSES = frozenset(
    {TaskStatus.PENDING, TaskStatus.BLOCKED, TaskStatus.IN_PROGRESS}
)


class TodoError(GovernanceError):
    """Base class for todo/task bookkeeping failures."""


class TaskNotFoundError(TodoError, KeyError):
    def __init__(self, ref: str) -> None:
        self.ref = ref
        super().__init__(f"no such task or todo: {ref}")


class TaskConflictError(TodoError):
    """Another writer holds the stage, or the task changed underneath the caller."""


class InvalidTaskStateError(TodoError):
    def __init__(self, task: OrchestratorTask, action: str) -> None:
        self.task_id = task.id
        self.status = task.status
        super().__init__(f"cannot {action} task {task.id} in status {task.status}")


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


class TodoManager:
    """Owns todo and task status for every workflow."""

    def __init__(
        self,
        store: TaskStore,
        *,
        event_bus: EventBus | None = None,
        clock: Clock | None = None,
        logger: Any | None = None,
    ) -> None:
        self._store = store
        self._event_bus = event_bus
        self._clock = clock if clock is not None else _utc_now
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def store(self) -> TaskStore:
        return self._store

    # ------------------------------------------------------------------
    # Todos
    # ------------------------------------------------------------------

    def create_todo(
        self,
        workflow_id: str,
        issue_id: str,
        workflow_type: WorkflowType,
        initial_state: WorkflowState = INITIAL_STATE,
    ) -> OrchestratorTodo:
        """Create the workflow's todo; an existing todo is returned unchanged."""

        existing = self._store.get_todo_for_workflow(workflow_id)
        if existing is not None:
            return existing
        now = self._clock()
        todo = self._store.save_todo(
            OrchestratorTodo(
                id=generate_todo_id(),
                workflow_id=workflow_id,
                issue_id=issue_id,
                workflow_type=workflow_type,
                current_state=initial_state,
                status=TodoStatus.ACTIVE,
                created_at=now,
                updated_at=now,
            )
        )
        self._logger.info("todo_created", workflow_id=workflow_id, todo_id=todo.id)
        self._emit(EventType.TODO_CREATED, workflow_id, {"todo": todo.to_dict()})
        return todo

    def get_todo(self, workflow_id: str) -> OrchestratorTodo | None:
        return self._store.get_todo_for_workflow(workflow_id)

    def update_state(self, workflow_id: str, state: WorkflowState) -> OrchestratorTodo:
        todo = self._require_todo(workflow_id)
        if state is WorkflowState.CANCELLED:
            status = TodoStatus.CANCELLED
        elif state in TERMINAL_STATES:
            status = TodoStatus.COMPLETED
        else:
            status = todo.status
        updated = self._store.save_todo(
            OrchestratorTodo(
                id=todo.id,
                workflow_id=todo.workflow_id,
                issue_id=todo.issue_id,
                workflow_type=todo.workflow_type,
                current_state=state,
                status=status,
                created_at=todo.created_at,
                updated_at=self._clock(),
                blocked_reason=todo.blocked_reason,
            )
        )
        self._emit(
            EventType.TODO_STATE_CHANGED,
            workflow_id,
            {
                "todo": updated.to_dict(),
                "fromState": todo.current_state.value,
                "toState": state.value,
            },
        )
        return updated

    def unblock_todo(self, workflow_id: str) -> OrchestratorTodo:
        """Return blocked tasks to ``pending`` and reactivate the todo."""

        todo = self._require_todo(workflow_id)
        for task in self._store.list_tasks(workflow_id):
            if task.status is TaskStatus.BLOCKED:
                self._write(
                    task.evolve(status=TaskStatus.PENDING, error=None, updated_at=self._clock()),
                    expected=TaskStatus.BLOCKED,
                )
        updated = self._set_todo_status(todo, TodoStatus.ACTIVE, blocked_reason=None)
        self._emit(
            EventType.TODO_STATE_CHANGED,
            workflow_id,
            {
                "todo": updated.to_dict(),
                "fromState": todo.current_state.value,
                "toState": updated.current_state.value,
            },
        )
        return updated

    def cancel_pending(self, workflow_id: str) -> int:
        """Cancel every task that has not finished; returns how many were cancelled."""

        cancelled = 0
        for task in self._store.list_tasks(workflow_id):
            if task.status in _CANCELLABLE_STATUSES:
                self._write(
                    task.evolve(status=TaskStatus.CANCELLED, updated_at=self._clock()),
                    expected=task.status,
                )
                cancelled += 1
        todo = self._store.get_todo_for_workflow(workflow_id)
        if todo is not None and todo.status is not TodoStatus.CANCELLED:
            self._set_todo_status(todo, TodoStatus.CANCELLED, blocked_reason=None)
        self._logger.info("todo_cancelled", workflow_id=workflow_id, cancelled_tasks=cancelled)
        return cancelled

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def create_tasks(
        self,
        workflow_id: str,
        stage: WorkflowState,
        specs: Sequence[TaskSpec],
    ) -> tuple[OrchestratorTask, ...]:
        """
        Create one task per spec for ``stage``.

        Idempotent on ``(workflow_id, stage, specialist_code)``: a key that
        already exists yields the stored task and emits nothing.
        """

        todo = self._require_todo(workflow_id)
        next_sequence = len(self._store.list_tasks(workflow_id))
        now = self._clock()
        candidates = [
            OrchestratorTask(
                id=generate_task_id(),
                todo_id=todo.id,
                workflow_id=workflow_id,
                stage=stage,
                specialist_code=spec.specialist_code,
                name=spec.name,
                sequence=next_sequence + index,
                priority=spec.priority,
                max_retries=spec.max_retries,
                description=spec.description,
                payload=dict(spec.payload),
                created_at=now,
                updated_at=now,
            )
            for index, spec in enumerate(specs)
        ]
        stored = self._store.add_tasks(candidates)
        candidate_ids = {task.id for task in candidates}
        for task in stored:
            if task.id in candidate_ids:
                self._emit(EventType.TASK_CREATED, workflow_id, {"task": task.to_dict()})
        return stored

    def get_task(self, task_id: str) -> OrchestratorTask:
        task = self._store.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def list_tasks(self, workflow_id: str) -> list[OrchestratorTask]:
        return self._store.list_tasks(workflow_id)

    def next_pending_task(self, workflow_id: str) -> OrchestratorTask | None:
        for task in self._store.list_tasks(workflow_id):
            if task.status is TaskStatus.PENDING:
                return task
        return None

    def ready_tasks(self, limit: int | None = None) -> list[OrchestratorTask]:
        """Pending tasks across all workflows, highest priority first."""
        return self._store.list_tasks_by_status((TaskStatus.PENDING,), limit=limit)

    def queue_depth(self) -> int:
        return self._store.count_tasks(TaskStatus.PENDING)

    def mark_in_progress(self, task_id: str) -> OrchestratorTask:
        task = self.get_task(task_id)
        if task.status is not TaskStatus.PENDING:
            raise InvalidTaskStateError(task, "start")
        for other in self._store.list_tasks(task.workflow_id):
            if (
                other.id != task.id
                and other.stage is task.stage
                and other.status is TaskStatus.IN_PROGRESS
            ):
                raise TaskConflictError(
                    f"task {other.id} is already in progress for "
                    f"{task.workflow_id}/{task.stage}"
                )
        now = self._clock()
        started = self._write(
            task.evolve(status=TaskStatus.IN_PROGRESS, started_at=now, updated_at=now),
            expected=TaskStatus.PENDING,
        )
        self._emit(EventType.TASK_STARTED, task.workflow_id, {"task": started.to_dict()})
        return started

    def mark_completed(
        self, task_id: str, result: dict[str, JSONValue] | None = None
    ) -> OrchestratorTask:
        task = self.get_task(task_id)
        if task.status is not TaskStatus.IN_PROGRESS:
            raise InvalidTaskStateError(task, "complete")
        now = self._clock()
        completed = self._write(
            task.evolve(
                status=TaskStatus.COMPLETED,
                result=result,
                error=None,
                completed_at=now,
                updated_at=now,
            ),
            expected=TaskStatus.IN_PROGRESS,
        )
        self._emit(EventType.TASK_COMPLETED, task.workflow_id, {"task": completed.to_dict()})
        return completed

    def mark_failed(
        self,
        task_id: str,
        error: str,
        retryable: bool = False,
        *,
        attempts: int | None = None,
        result: dict[str, JSONValue] | None = None,
    ) -> OrchestratorTask:
        """
        Record a failed attempt.

        A retryable failure with budget left puts the task back to ``pending``;
        anything else fails it for good and emits ``task:failed``. ``attempts``
        records attempts made elsewhere (the specialist retry loop) in one call.
        """

        task = self.get_task(task_id)
        if task.status not in (TaskStatus.IN_PROGRESS, TaskStatus.PENDING):
            raise InvalidTaskStateError(task, "fail")
        retry_count = task.retry_count + (1 if attempts is None else attempts)
        now = self._clock()
        if retryable and retry_count < task.max_retries:
            requeued = self._write(
                task.evolve(
                    status=TaskStatus.PENDING,
                    retry_count=retry_count,
                    error=error,
                    started_at=None,
                    updated_at=now,
                ),
                expected=task.status,
            )
            self._logger.info(
                "todo_task_requeued",
                task_id=task.id,
                workflow_id=task.workflow_id,
                retry_count=retry_count,
                max_retries=task.max_retries,
            )
            return requeued

        failed = self._write(
            task.evolve(
                status=TaskStatus.FAILED,
                retry_count=min(retry_count, task.max_retries),
                error=error,
                result=result if result is not None else task.result,
                completed_at=now,
                updated_at=now,
            ),
            expected=task.status,
        )
        self._logger.warning(
            "todo_task_failed", task_id=task.id, workflow_id=task.workflow_id, error=error
        )
        self._emit(EventType.TASK_FAILED, task.workflow_id, {"task": failed.to_dict()})
        return failed

    def block_task(self, task_id: str, reason: str) -> OrchestratorTask:
        task = self.get_task(task_id)
        if task.is_terminal:
            raise InvalidTaskStateError(task, "block")
        blocked = self._write(
            task.evolve(status=TaskStatus.BLOCKED, error=reason, updated_at=self._clock()),
            expected=task.status,
        )
        todo = self._store.get_todo_for_workflow(task.workflow_id)
        if todo is not None:
            self._set_todo_status(todo, TodoStatus.BLOCKED, blocked_reason=reason)
        self._emit(
            EventType.TASK_BLOCKED,
            task.workflow_id,
            {"task": blocked.to_dict(), "reason": reason},
        )
        return blocked

    def reopen_stage(
        self,
        workflow_id: str,
        stage: WorkflowState,
        statuses: Iterable[TaskStatus] = (TaskStatus.COMPLETED, TaskStatus.FAILED),
    ) -> list[OrchestratorTask]:
        """Return finished tasks of ``stage`` to ``pending`` with a fresh retry budget."""

        wanted = frozenset(statuses)
        reopened: list[OrchestratorTask] = []
        for task in self._store.list_tasks(workflow_id):
            if task.stage is stage and task.status in wanted:
                reopened.append(
                    self._write(
                        task.evolve(
                            status=TaskStatus.PENDING,
                            retry_count=0,
                            result=None,
                            error=None,
                            started_at=None,
                            completed_at=None,
                            updated_at=self._clock(),
                        ),
                        expected=task.status,
                    )
                )
        if reopened:
            self._logger.info(
                "todo_stage_reopened",
                workflow_id=workflow_id,
                stage=stage.value,
                tasks=[task.id for task in reopened],
            )
        return reopened

    def recover(self) -> list[OrchestratorTask]:
        """Reset tasks a crash left ``in_progress`` back to ``pending``."""

        reset: list[OrchestratorTask] = []
        for task in self._store.list_tasks_by_status((TaskStatus.IN_PROGRESS,)):
            reset.append(
                self._write(
                    task.evolve(
                        status=TaskStatus.PENDING, started_at=None, updated_at=self._clock()
                    ),
                    expected=TaskStatus.IN_PROGRESS,
                )
            )
        if reset:
            self._logger.info("todo_recovered", reset_tasks=[task.id for task in reset])
        return reset

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_todo(self, workflow_id: str) -> OrchestratorTodo:
        todo = self._store.get_todo_for_workflow(workflow_id)
        if todo is None:
            raise TaskNotFoundError(f"todo for workflow {workflow_id}")
        return todo

    def _write(self, task: OrchestratorTask, *, expected: TaskStatus) -> OrchestratorTask:
        if not self._store.save_task(task, expected_status=expected):
            raise TaskConflictError(f"task {task.id} changed concurrently (expected {expected})")
        return task

    def _set_todo_status(
        self, todo: OrchestratorTodo, status: TodoStatus, *, blocked_reason: str | None
    ) -> OrchestratorTodo:
        return self._store.save_todo(
            OrchestratorTodo(
                id=todo.id,
                workflow_id=todo.workflow_id,
                issue_id=todo.issue_id,
                workflow_type=todo.workflow_type,
                current_state=todo.current_state,
                status=status,
                created_at=todo.created_at,
                updated_at=self._clock(),
                blocked_reason=blocked_reason,
            )
        )

    def _emit(self, event_type: EventType, workflow_id: str, payload: dict[str, object]) -> None:
        if self._event_bus is None:
            return
        self._event_bus.emit(
            event_type, {"workflowId": workflow_id, **payload}, correlation_id=workflow_id
        )


def specs_for_stage(
    codes: Iterable[SpecialistCode],
    *,
    stage: WorkflowState,
    max_retries: int,
    payload: dict[str, JSONValue] | None = None,
) -> list[TaskSpec]:
    """One ``TaskSpec`` per specialist code, earlier codes at higher priority."""

    base_payload = dict(payload or {})
    specs: list[TaskSpec] = []
    for index, code in enumerate(codes):
        specs.append(
            TaskSpec(
                specialist_code=code,
                name=f"{stage.value}:{code.value}",
                description=f"{code.value} output for the {stage.value} stage",
                priority=max(0, 100 - index * 10),
                max_retries=max_retries,
                payload=dict(base_payload),
            )
        )
    return specs


__all__ = [
    "InvalidTaskStateError",
    "TaskConflictError",
    "TaskNotFoundError",
    "TodoError",
    "TodoManager",
    "specs_for_stage",
]
