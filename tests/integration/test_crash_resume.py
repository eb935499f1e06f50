"""Restart an orchestrator over the same state database and finish interrupted work."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import pytest

from governance_orchestrator.config.loader import load_config
from governance_orchestrator.control_plane.orchestrator import Orchestrator
from governance_orchestrator.domain.events import EventType
from governance_orchestrator.domain.models import (
    SpecialistCode,
    TaskStatus,
    WorkflowState,
    WorkflowStatus,
)
from governance_orchestrator.persistence.repositories import SqliteEventLog
from governance_orchestrator.persistence.state_db import StateDB

from .. import ScriptedProvider, make_issue

pytestmark = pytest.mark.integration


def _sqlite_config(tmp_path: Path) -> dict[str, Any]:
    return load_config(
        profile="test",
        cli_overrides={
            "storage.backend": "sqlite",
            "storage.state_db": str(tmp_path / "state.sqlite"),
        },
        environ={},
        search_dir=tmp_path,
    )


@pytest.mark.asyncio
async def test_restart_resets_interrupted_task_and_finishes_workflow(tmp_path: Path) -> None:
    config = _sqlite_config(tmp_path)
    first_provider = ScriptedProvider()
    first = Orchestrator.from_config(config, first_provider)
    try:
        todo = await first.process_issue(make_issue())
        triaged = await first.run_stage(todo.workflow_id)
        assert triaged.current_state is WorkflowState.TRIAGE
        (triage_task,) = [
            task
            for task in first.todo_manager.list_tasks(todo.workflow_id)
            if task.stage is WorkflowState.TRIAGE
        ]
        # The process dies while the analyst is working on triage.
        first.todo_manager.mark_in_progress(triage_task.id)
        before = [
            (task.id, task.status) for task in first.todo_manager.list_tasks(todo.workflow_id)
        ]
    finally:
        await first.stop()

    second_provider = ScriptedProvider()
    second = Orchestrator.from_config(config, second_provider)
    try:
        reopened = second.todo_manager.list_tasks(todo.workflow_id)
        assert [(task.id, task.status) for task in reopened] == before

        (reset,) = second.todo_manager.recover()
        assert reset.id == triage_task.id
        pending = {
            task.id
            for task in second.todo_manager.list_tasks(todo.workflow_id)
            if task.status is TaskStatus.PENDING
        }
        assert pending == {
            task_id for task_id, status in before if status is not TaskStatus.COMPLETED
        }

        await second.start()
        await asyncio.wait_for(second.join(), timeout=10)

        context = second.get_workflow(todo.workflow_id)
        assert context is not None
        assert context.current_state is WorkflowState.CLOSED
        assert context.status is WorkflowStatus.COMPLETED
        assert context.history[0].to_state is WorkflowState.TRIAGE

        tasks = second.todo_manager.list_tasks(todo.workflow_id)
        assert {task.status for task in tasks} == {TaskStatus.COMPLETED}
        assert len(tasks) == 12
        # Intake finished before the restart and is not repeated.
        assert first_provider.count(SpecialistCode.RESEARCHER) == 1
        assert second_provider.count(SpecialistCode.RESEARCHER) == 1
        assert second_provider.count(SpecialistCode.ANALYST) == 3
    finally:
        await second.stop()

    log = SqliteEventLog(StateDB(tmp_path / "state.sqlite"))
    persisted = [event.event_type for event in log.list(correlation_id=todo.workflow_id)]
    assert EventType.PIPELINE_COMPLETED in persisted


@pytest.mark.asyncio
async def test_restart_leaves_finished_and_cancelled_workflows_alone(tmp_path: Path) -> None:
    config = _sqlite_config(tmp_path)
    first = Orchestrator.from_config(config, ScriptedProvider())
    try:
        cancelled = await first.process_issue(make_issue(1))
        await first.cancel_workflow(cancelled.workflow_id, "duplicate of an earlier proposal")
        pending = await first.process_issue(make_issue(2))
    finally:
        await first.stop()

    provider = ScriptedProvider()
    second = Orchestrator.from_config(config, provider)
    try:
        readmitted = await second.recover()
        assert readmitted == [pending.workflow_id]

        await second.start(recover=False)
        await asyncio.wait_for(second.join(), timeout=10)

        still_cancelled = second.get_workflow(cancelled.workflow_id)
        assert still_cancelled is not None
        assert still_cancelled.status is WorkflowStatus.CANCELLED
        finished = second.get_workflow(pending.workflow_id)
        assert finished is not None and finished.current_state is WorkflowState.CLOSED
    finally:
        await second.stop()
