"""Shared factories and fakes for the governance-orchestrator test suite."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from governance_orchestrator.control_plane.orchestrator import Orchestrator, OrchestratorSettings
from governance_orchestrator.control_plane.todo_manager import TodoManager
from governance_orchestrator.domain.models import (
    DifficultyLevel,
    FeasibilityFactors,
    ImpactFactors,
    Issue,
    PriorityScore,
    SpecialistCode,
    TopicCategory,
    UrgencyFactors,
    WorkflowContext,
    WorkflowType,
)
from governance_orchestrator.domain.tables import SPECIALISTS
from governance_orchestrator.integration_plane.collaborators import (
    InMemoryDocumentRegistry,
    InMemoryExecutionLock,
)
from governance_orchestrator.observability.events import EventBus
from governance_orchestrator.observability.kpi import KPICollector
from governance_orchestrator.persistence.repositories import (
    InMemoryTaskStore,
    TaskStore,
    WorkflowStore,
)
from governance_orchestrator.synthesis_plane.providers.base import BackoffConfig
from governance_orchestrator.synthesis_plane.specialists import SpecialistManager
from governance_orchestrator.synthesis_plane.task_queue import BoundedTaskQueue

# Long enough for every specialist's minimum and well inside every token budget.
GOOD_OUTPUT = " ".join(["evidence-backed governance analysis"] * 40)

FIXED_NOW = datetime(2026, 10, 17, 12, 0, tzinfo=UTC)


def make_issue(
    index: int = 1,
    *,
    workflow_type: WorkflowType | None = WorkflowType.B,
    category: TopicCategory = TopicCategory.COMMUNITY_GOVERNANCE,
    title: str | None = None,
    high_priority: bool = False,
    risk_penalty: int = 0,
    signal_ids: tuple[str, ...] = ("sig-1", "sig-2"),
) -> Issue:
    impact = ImpactFactors()
    urgency = UrgencyFactors()
    if high_priority:
        impact = ImpactFactors(revenue_potential=30, user_base_affected=15, strategic_alignment=15)
        urgency = UrgencyFactors(time_sensitivity=20)
    return Issue(
        id=f"issue-{index:04d}",
        title=title if title is not None else f"Community treasury proposal number {index}",
        category=category,
        description="Fund a quarterly community grants round.",
        signal_ids=signal_ids,
        impact=impact,
        urgency=urgency,
        feasibility=FeasibilityFactors(technical_readiness=5),
        risk_penalty=risk_penalty,
        workflow_type=workflow_type,
    )


def make_context(
    workflow_type: WorkflowType = WorkflowType.B,
    *,
    workflow_id: str = "wf-test-0001",
    title: str = "Adopt a quarterly grants round",
    total: int = 60,
    **changes: object,
) -> WorkflowContext:
    context = WorkflowContext(
        id=workflow_id,
        workflow_type=workflow_type,
        issue_id="issue-0001",
        issue_title=title,
        priority_score=PriorityScore(
            topic_weight=min(total, 100),
            impact=0,
            urgency=0,
            feasibility=max(0, total - 100),
            risk_penalty=0,
            total=total,
        ),
        started_at=FIXED_NOW,
    )
    return context.evolve(**changes) if changes else context


def specialist_in(prompt: str) -> SpecialistCode:
    for definition in SPECIALISTS.values():
        if f"You are the {definition.name} " in prompt:
            return definition.code
    raise AssertionError("prompt does not name a specialist")


@dataclass
class ScriptedProvider:
    """Provider fake that answers by specialist and records every call."""

    content: str = GOOD_OUTPUT
    overrides: dict[SpecialistCode, str] = field(default_factory=dict)
    calls: list[tuple[SpecialistCode, DifficultyLevel]] = field(default_factory=list)
    hold: asyncio.Event | None = None

    async def invoke(self, prompt: str, difficulty: DifficultyLevel) -> str:
        code = specialist_in(prompt)
        self.calls.append((code, difficulty))
        if self.hold is not None:
            await self.hold.wait()
        return self.overrides.get(code, self.content)

    def count(self, code: SpecialistCode) -> int:
        return sum(1 for called, _ in self.calls if called is code)


class ManualClock:
    def __init__(self, start: datetime = FIXED_NOW) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now += timedelta(**delta)


def build_orchestrator(
    provider: ScriptedProvider,
    *,
    settings: OrchestratorSettings | None = None,
    clock: ManualClock | None = None,
    task_store: TaskStore | None = None,
    workflow_store: WorkflowStore | None = None,
    document_registry: InMemoryDocumentRegistry | None = None,
    execution_lock: InMemoryExecutionLock | None = None,
) -> Orchestrator:
    bus = EventBus()
    kpi = KPICollector(event_bus=bus)
    specialists = SpecialistManager(
        provider,
        task_queue=BoundedTaskQueue(max_workers=2, capacity=16),
        backoff=BackoffConfig(initial_delay_seconds=0.0, max_delay_seconds=0.0),
        kpi=kpi,
    )
    return Orchestrator(
        specialists,
        todo_manager=TodoManager(
            task_store if task_store is not None else InMemoryTaskStore(), event_bus=bus
        ),
        workflow_store=workflow_store,
        kpi=kpi,
        event_bus=bus,
        document_registry=document_registry,
        execution_lock=execution_lock,
        settings=(
            settings
            if settings is not None
            else OrchestratorSettings(max_concurrent_workflows=2, admission_queue_size=8)
        ),
        clock=clock,
    )
