"""
governance-orchestrator — domain layer

File: src/governance_orchestrator/domain/__init__.py

Purpose
- Domain types shared across planes: Issue, WorkflowContext, OrchestratorTodo,
  OrchestratorTask, SpecialistOutput, PipelineResult, KPIAlert.

What should be included in this file
- Re-export of core domain entities for convenience.
- Keep domain layer free of IO side effects.

Functional requirements
- Domain objects must be serializable and versioned.
"""

from governance_orchestrator.domain.models import (
    Issue,
    OrchestratorTask,
    OrchestratorTodo,
    PipelineResult,
    SpecialistOutput,
    WorkflowContext,
    WorkflowState,
    WorkflowType,
)

__all__ = [
    "Issue",
    "OrchestratorTask",
    "OrchestratorTodo",
    "PipelineResult",
    "SpecialistOutput",
    "WorkflowContext",
    "WorkflowState",
    "WorkflowType",
]
