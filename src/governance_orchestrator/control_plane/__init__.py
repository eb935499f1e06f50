"""
governance-orchestrator — module skeleton

File: src/governance_orchestrator/control_plane/__init__.py
Last updated: 2026-10-17

Purpose
- Control plane: issue scoring, the guarded workflow state machine, durable
  todo/task tracking and the orchestrator that drives workflows end to end.

Functional requirements
- Workflow state changes go through ``WorkflowStateMachine`` only.
"""

from governance_orchestrator.control_plane.orchestrator import (
    Orchestrator,
    OrchestratorError,
    OrchestratorSettings,
    WorkflowNotFoundError,
)
from governance_orchestrator.control_plane.priority import (
    classify_risk,
    score_issue,
    select_workflow_type,
)
from governance_orchestrator.control_plane.state_machine import (
    AcceptanceCriteriaError,
    InvalidTransitionError,
    TransitionError,
    WorkflowStateMachine,
)
from governance_orchestrator.control_plane.todo_manager import (
    InvalidTaskStateError,
    TaskConflictError,
    TaskNotFoundError,
    TodoError,
    TodoManager,
)

__all__ = [
    "AcceptanceCriteriaError",
    "InvalidTaskStateError",
    "InvalidTransitionError",
    "Orchestrator",
    "OrchestratorError",
    "OrchestratorSettings",
    "TaskConflictError",
    "TaskNotFoundError",
    "TodoError",
    "TodoManager",
    "TransitionError",
    "WorkflowNotFoundError",
    "WorkflowStateMachine",
    "classify_risk",
    "score_issue",
    "select_workflow_type",
]
