"""
Workflow façade: admission, stage driving and collaborator hand-offs.

An issue enters through :meth:`Orchestrator.process_issue`, which scores it,
creates the workflow context and todo, and queues the workflow id on a bounded
FIFO admission queue. A fixed pool of worker tasks takes ids off the queue and
drives each workflow stage by stage until it completes, blocks on unmet
acceptance criteria, waits on an execution approval, escalates or errors.

Contexts are re-read from the :class:`WorkflowStore` before every change and
written back before the next ``await``, so operator calls such as
:meth:`Orchestrator.cancel_workflow` interleave safely with a running driver.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from statistics import fmean
from typing import TYPE_CHECKING, Any, Final

import structlog

from governance_orchestrator.constants import DEFAULT_MIN_CONSENSUS_SCORE
from governance_orchestrator.control_plane.priority import (
    classify_risk,
    score_issue,
    select_workflow_type,
)
from governance_orchestrator.control_plane.state_machine import (
    KPI_RESULTS_KEY,
    STAGE_OUTPUTS_KEY,
    AcceptanceCriteriaError,
    WorkflowStateMachine,
    passed_stage_outputs,
)
from governance_orchestrator.control_plane.todo_manager import TodoManager, specs_for_stage
from governance_orchestrator.domain.errors import GovernanceError
from governance_orchestrator.domain.events import EventType
from governance_orchestrator.domain.ids import generate_workflow_id
from governance_orchestrator.domain.models import (
    DifficultyLevel,
    DocumentRef,
    DocumentType,
    Issue,
    JSONValue,
    OrchestratorTask,
    OrchestratorTodo,
    PipelineResult,
    PipelineStatus,
    ReviewStatus,
    RiskLevel,
    SpecialistCode,
    SpecialistTask,
    TaskStatus,
    WorkflowContext,
    WorkflowState,
    WorkflowStatus,
)
from governance_orchestrator.domain.tables import WORKFLOW_LOCKED_ACTIONS, stage_document_types
from governance_orchestrator.integration_plane.collaborators import (
    DocumentRegistry,
    ExecutionLock,
    InMemoryDocumentRegistry,
    InMemoryExecutionLock,
    InMemoryVotingGateway,
    VotingGateway,
)
from governance_orchestrator.observability.events import EventBus
from governance_orchestrator.observability.kpi import (
    DecisionPacketMetrics,
    ExecutionStage,
    KPICollector,
)
from governance_orchestrator.observability.logging import correlation_scope
from governance_orchestrator.persistence.repositories import (
    InMemoryTaskStore,
    InMemoryWorkflowStore,
    SqliteEventLog,
    SqliteTaskStore,
    SqliteWorkflowStore,
    TaskStore,
    WorkflowStore,
)
from governance_orchestrator.persistence.state_db import StateDB
from governance_orchestrator.synthesis_plane.providers.base import BackoffConfig
from governance_orchestrator.synthesis_plane.quality_gate import DefaultQualityGate
from governance_orchestrator.synthesis_plane.specialists import (
    SpecialistExhaustedError,
    SpecialistManager,
)
from governance_orchestrator.synthesis_plane.task_queue import BoundedTaskQueue
from governance_orchestrator.utils.concurrency import (
    AdmissionQueue,
    CancellationToken,
    OperationCancelledError,
    run_with_timeout,
)

if TYPE_CHECKING:
    from governance_orchestrator.synthesis_plane.providers.base import LLMProvider

S = WorkflowState
Clock = Callable[[], datetime]

ISSUE_KEY: Final[str] = "issue"
# State value whose completion effects (documents, KPI samples) already ran.
STAGE_FINALIZED_KEY: Final[str] = "stage_finalized"
DECIDED_AT_KEY: Final[str] = "decided_at"
APPROVED_AT_KEY: Final[str] = "approved_at"
LOCKED_ACTION_KEY: Final[str] = "locked_action"

# Unlisted actions resolve to HIGH risk.
_DEFAULT_LOCKED_ACTION: Final[str] = "execute_governance_action"

_OPEN_STATUSES: Final[tuple[WorkflowStatus, ...]] = (
    WorkflowStatus.ACTIVE,
    WorkflowStatus.BLOCKED,
    WorkflowStatus.LOCKED,
    WorkflowStatus.ESCALATED,
)
_RESUMABLE_STATUSES: Final[frozenset[WorkflowStatus]] = frozenset(
    {WorkflowStatus.BLOCKED, WorkflowStatus.ESCALATED}
)
_RESULT_STATUS: Final[Mapping[WorkflowStatus, PipelineStatus]] = {
    WorkflowStatus.COMPLETED: PipelineStatus.COMPLETED,
    WorkflowStatus.REJECTED: PipelineStatus.REJECTED,
    WorkflowStatus.CANCELLED: PipelineStatus.REJECTED,
    WorkflowStatus.LOCKED: PipelineStatus.LOCKED,
    WorkflowStatus.BLOCKED: PipelineStatus.PENDING_APPROVAL,
    WorkflowStatus.ESCALATED: PipelineStatus.PENDING_APPROVAL,
    WorkflowStatus.ERRORED: PipelineStatus.ERROR,
}


class OrchestratorError(GovernanceError):
    """Raised when an operator request does not fit the workflow's current status."""


class WorkflowNotFoundError(OrchestratorError, KeyError):
    def __init__(self, workflow_id: str) -> None:
        self.workflow_id = workflow_id
        super().__init__(f"no such workflow: {workflow_id}")


@dataclass(frozen=True, slots=True)
class OrchestratorSettings:
    max_concurrent_workflows: int = 10
    admission_queue_size: int = 100
    stage_timeout_seconds: float = 300.0
    workflow_timeout_seconds: float = 168 * 3600.0
    heartbeat_interval_seconds: float = 30.0
    min_consensus_score: float = DEFAULT_MIN_CONSENSUS_SCORE
    max_retries: int = 3

    def __post_init__(self) -> None:
        if self.max_concurrent_workflows <= 0:
            raise ValueError("max_concurrent_workflows must be > 0")
        if self.admission_queue_size <= 0:
            raise ValueError("admission_queue_size must be > 0")
        for name in (
            "stage_timeout_seconds",
            "workflow_timeout_seconds",
            "heartbeat_interval_seconds",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0")
        if not 0 <= self.min_consensus_score <= 100:
            raise ValueError("min_consensus_score must be within 0..100")
        if self.max_retries < 1:
            raise ValueError("max_retries must be >= 1")

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> OrchestratorSettings:
        section = config["orchestrator"]
        return cls(
            max_concurrent_workflows=int(section["max_concurrent_workflows"]),
            admission_queue_size=int(section["admission_queue_size"]),
            stage_timeout_seconds=float(section["stage_timeout_seconds"]),
            workflow_timeout_seconds=float(section["workflow_timeout_seconds"]),
            heartbeat_interval_seconds=float(section["heartbeat_interval_seconds"]),
            min_consensus_score=float(section["min_consensus_score"]),
            max_retries=int(config["retry"]["max_retries"]),
        )


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


class Orchestrator:
    """Drives governance workflows from issue intake to a terminal state."""

    def __init__(
        self,
        specialists: SpecialistManager,
        *,
        todo_manager: TodoManager | None = None,
        workflow_store: WorkflowStore | None = None,
        state_machine: WorkflowStateMachine | None = None,
        kpi: KPICollector | None = None,
        event_bus: EventBus | None = None,
        document_registry: DocumentRegistry | None = None,
        voting_gateway: VotingGateway | None = None,
        execution_lock: ExecutionLock | None = None,
        settings: OrchestratorSettings | None = None,
        clock: Clock | None = None,
        logger: Any | None = None,
    ) -> None:
        self._settings = settings if settings is not None else OrchestratorSettings()
        self._event_bus = event_bus if event_bus is not None else EventBus()
        self._specialists = specialists
        self._todos = (
            todo_manager
            if todo_manager is not None
            else TodoManager(InMemoryTaskStore(), event_bus=self._event_bus)
        )
        self._workflows: WorkflowStore = (
            workflow_store if workflow_store is not None else InMemoryWorkflowStore()
        )
        self._state_machine = (
            state_machine
            if state_machine is not None
            else WorkflowStateMachine(min_consensus_score=self._settings.min_consensus_score)
        )
        self._kpi = kpi if kpi is not None else KPICollector(event_bus=self._event_bus)
        self._registry: DocumentRegistry = (
            document_registry if document_registry is not None else InMemoryDocumentRegistry()
        )
        self._voting: VotingGateway = (
            voting_gateway if voting_gateway is not None else InMemoryVotingGateway()
        )
        self._lock: ExecutionLock = (
            execution_lock if execution_lock is not None else InMemoryExecutionLock()
        )
        self._clock = clock if clock is not None else _utc_now
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

        self._admission: AdmissionQueue[str] = AdmissionQueue(self._settings.admission_queue_size)
        self._queued: set[str] = set()
        self._tokens: dict[str, CancellationToken] = {}
        self._workers: list[asyncio.Task[None]] = []
        self._heartbeat: asyncio.Task[None] | None = None

    @classmethod
    def from_config(
        cls,
        config: Mapping[str, Any],
        provider: LLMProvider,
        *,
        event_bus: EventBus | None = None,
        logger: Any | None = None,
    ) -> Orchestrator:
        """Wire every component from a validated configuration mapping."""

        settings = OrchestratorSettings.from_config(config)
        bus = event_bus if event_bus is not None else EventBus()
        kpi_section = config["kpi"]
        kpi = KPICollector(
            event_bus=bus,
            window_capacity=int(kpi_section["window_capacity"]),
            heartbeat_capacity=int(kpi_section["heartbeat_capacity"]),
            alert_capacity=int(kpi_section["alert_capacity"]),
        )
        retry = config["retry"]
        specialists_section = config["specialists"]
        specialists = SpecialistManager(
            provider,
            quality_gate=DefaultQualityGate.from_config(config["quality_gate"]),
            task_queue=BoundedTaskQueue(
                max_workers=int(specialists_section["max_concurrent_tasks"]),
                capacity=int(specialists_section["queue_capacity"]),
            ),
            backoff=BackoffConfig(
                initial_delay_seconds=float(retry["initial_delay_seconds"]),
                multiplier=float(retry["multiplier"]),
                max_delay_seconds=float(retry["max_delay_seconds"]),
            ),
            max_retries=settings.max_retries,
            kpi=kpi,
        )

        storage = config["storage"]
        task_store: TaskStore
        workflow_store: WorkflowStore
        if storage["backend"] == "sqlite":
            db = StateDB(storage["state_db"])
            task_store = SqliteTaskStore(db)
            workflow_store = SqliteWorkflowStore(db)
            bus.set_persistence_callback(SqliteEventLog(db))
        else:
            task_store = InMemoryTaskStore()
            workflow_store = InMemoryWorkflowStore()

        return cls(
            specialists,
            todo_manager=TodoManager(task_store, event_bus=bus),
            workflow_store=workflow_store,
            state_machine=WorkflowStateMachine(min_consensus_score=settings.min_consensus_score),
            kpi=kpi,
            event_bus=bus,
            settings=settings,
            logger=logger,
        )

    @property
    def settings(self) -> OrchestratorSettings:
        return self._settings

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def kpi(self) -> KPICollector:
        return self._kpi

    @property
    def specialists(self) -> SpecialistManager:
        return self._specialists

    @property
    def todo_manager(self) -> TodoManager:
        return self._todos

    @property
    def state_machine(self) -> WorkflowStateMachine:
        return self._state_machine

    @property
    def admission(self) -> AdmissionQueue[str]:
        return self._admission

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, *, recover: bool = True) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(), name=f"governance-worker-{index}")
            for index in range(self._settings.max_concurrent_workflows)
        ]
        self._heartbeat = asyncio.create_task(self._heartbeat_loop(), name="governance-heartbeat")
        self._logger.info("orchestrator_started", workers=len(self._workers))
        if recover:
            await self.recover()

    async def stop(self) -> None:
        tasks = list(self._workers)
        if self._heartbeat is not None:
            tasks.append(self._heartbeat)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._workers = []
        self._heartbeat = None
        await self._specialists.task_queue.close()
        self._logger.info("orchestrator_stopped")

    async def join(self) -> None:
        """Wait until every admitted workflow has been driven to rest."""
        await self._admission.join()

    async def recover(self) -> list[str]:
        """Reset interrupted tasks and re-admit every active workflow."""

        reset = self._todos.recover()
        admitted: list[str] = []
        for context in self._workflows.list(statuses=(WorkflowStatus.ACTIVE,)):
            if not self._is_runnable(context):
                continue
            self._seed_stage(context)
            await self._admit(context.id)
            admitted.append(context.id)
        self._logger.info(
            "orchestrator_recovered", reset_tasks=len(reset), readmitted=len(admitted)
        )
        return admitted

    # ------------------------------------------------------------------
    # Intake and queries
    # ------------------------------------------------------------------

    async def process_issue(self, issue: Issue) -> OrchestratorTodo:
        """
        Start a workflow for ``issue`` and queue it for a worker.

        Suspends while the admission queue is full. An issue that already has
        an open workflow returns that workflow's todo.
        """

        for existing in self._workflows.list(statuses=_OPEN_STATUSES):
            if existing.issue_id == issue.id:
                todo = self._todos.get_todo(existing.id)
                if todo is not None:
                    return todo

        score = score_issue(issue)
        workflow_type = select_workflow_type(issue)
        now = self._clock()
        context = self._save(
            WorkflowContext(
                id=generate_workflow_id(),
                workflow_type=workflow_type,
                issue_id=issue.id,
                issue_title=issue.title,
                risk_level=classify_risk(workflow_type, score),
                priority_score=score,
                started_at=now,
                metadata={ISSUE_KEY: issue.to_dict()},
            )
        )
        todo = self._todos.create_todo(context.id, issue.id, workflow_type)
        self._seed_stage(context)
        self._emit(EventType.PIPELINE_STARTED, context.id, {"context": context.to_dict()})
        self._kpi.record_execution_timing(
            ExecutionStage.SIGNAL_TO_ISSUE,
            max(0.0, (now - issue.created_at).total_seconds() * 1000.0),
        )
        self._logger.info(
            "orchestrator_issue_accepted",
            workflow_id=context.id,
            issue_id=issue.id,
            workflow_type=workflow_type.value,
            priority=score.total,
            risk_level=context.risk_level.value if context.risk_level else None,
        )
        await self._admit(context.id)
        return todo

    def get_workflow(self, workflow_id: str) -> WorkflowContext | None:
        return self._workflows.get(workflow_id)

    def list_workflows(
        self, *, statuses: Iterable[WorkflowStatus] | None = None
    ) -> list[WorkflowContext]:
        return self._workflows.list(statuses=statuses)

    def get_result(self, workflow_id: str) -> PipelineResult | None:
        """The workflow's result, or ``None`` while it is still active."""

        context = self._require(workflow_id)
        if context.status is WorkflowStatus.ACTIVE:
            return None
        return self._result_for(context)

    # ------------------------------------------------------------------
    # Operator actions
    # ------------------------------------------------------------------

    async def cancel_workflow(
        self, workflow_id: str, reason: str = "cancelled by operator"
    ) -> WorkflowContext:
        """Cancel a workflow; cancelling one that already finished is a no-op."""

        context = self._require(workflow_id)
        if self._state_machine.is_terminal(context.current_state):
            return context
        held_lock = context.lock_id if context.status is WorkflowStatus.LOCKED else None
        cancelled = self._save(
            self._state_machine.cancel(context, reason, triggered_by="operator")
        )
        self._todos.cancel_pending(workflow_id)
        self._todos.update_state(workflow_id, S.CANCELLED)
        token = self._tokens.pop(workflow_id, None)
        if token is not None:
            token.cancel()
        if held_lock is not None:
            await self._lock.unlock_action(held_lock)
        self._emit(
            EventType.PIPELINE_COMPLETED,
            workflow_id,
            {"result": self._result_for(cancelled).to_dict()},
        )
        self._logger.info("orchestrator_workflow_cancelled", workflow_id=workflow_id, reason=reason)
        return cancelled

    async def resume_workflow(self, workflow_id: str) -> WorkflowContext:
        """Re-admit a blocked or escalated workflow; failed tasks get a fresh budget."""

        context = self._require(workflow_id)
        if context.status not in _RESUMABLE_STATUSES:
            raise OrchestratorError(
                f"workflow {workflow_id} is {context.status}; "
                "only blocked or escalated workflows can be resumed"
            )
        self._todos.reopen_stage(workflow_id, context.current_state, statuses=(TaskStatus.FAILED,))
        self._todos.unblock_todo(workflow_id)
        resumed = self._save(context.evolve(status=WorkflowStatus.ACTIVE, error=None))
        self._logger.info(
            "orchestrator_workflow_resumed",
            workflow_id=workflow_id,
            stage=resumed.current_state.value,
            previous_status=context.status.value,
        )
        await self._admit(workflow_id)
        return resumed

    async def attach_document(
        self, workflow_id: str, doc_type: DocumentType, content: str
    ) -> str:
        context = self._require(workflow_id)
        if self._state_machine.is_terminal(context.current_state):
            raise OrchestratorError(f"workflow {workflow_id} is already {context.current_state}")
        return await self._register_document(
            workflow_id, DocumentType(doc_type), content, stage=context.current_state
        )

    def record_review(self, workflow_id: str, status: ReviewStatus) -> WorkflowContext:
        context = self._require(workflow_id)
        if context.current_state is not S.REVIEW:
            raise OrchestratorError(
                f"workflow {workflow_id} is in {context.current_state}, not review"
            )
        updated = self._save(context.evolve(review_status=ReviewStatus(status)))
        self._logger.info(
            "orchestrator_review_recorded", workflow_id=workflow_id, review_status=str(status)
        )
        return updated

    def record_consensus(self, workflow_id: str, score: float) -> WorkflowContext:
        if not 0 <= score <= 100:
            raise ValueError("consensus score must be within 0..100")
        context = self._require(workflow_id)
        if self._state_machine.is_terminal(context.current_state):
            raise OrchestratorError(f"workflow {workflow_id} is already {context.current_state}")
        updated = self._save(context.evolve(consensus_score=float(score)))
        self._logger.info("orchestrator_consensus_recorded", workflow_id=workflow_id, score=score)
        return updated

    async def approve_execution(self, workflow_id: str, approval_id: str) -> WorkflowContext:
        """Release the execution lock and advance past ``exec_locked``."""

        if not approval_id.strip():
            raise ValueError("approval_id must be non-empty")
        context = self._require(workflow_id)
        awaiting = (
            context.current_state is S.EXEC_LOCKED and context.status is WorkflowStatus.LOCKED
        )
        if not awaiting:
            raise OrchestratorError(f"workflow {workflow_id} is not awaiting execution approval")
        if context.lock_id is not None:
            await self._lock.unlock_action(context.lock_id)

        context = self._reload_active(workflow_id)
        approved = self._save(
            context.evolve(
                status=WorkflowStatus.ACTIVE,
                approval_id=approval_id,
                metadata={**context.metadata, APPROVED_AT_KEY: self._clock().isoformat()},
            )
        )
        self._emit(
            EventType.EXECUTION_UNLOCKED,
            workflow_id,
            {"actionId": approved.lock_id, "workflowId": workflow_id, "approvalId": approval_id},
        )
        decided_at = _metadata_datetime(approved, DECIDED_AT_KEY)
        if decided_at is not None:
            self._kpi.record_execution_timing(
                ExecutionStage.DP_TO_APPROVAL, self._elapsed_ms(decided_at)
            )
        self._logger.info(
            "orchestrator_execution_approved", workflow_id=workflow_id, approval_id=approval_id
        )

        target = self._state_machine.recommend_next_state(approved)
        if target is None:
            raise OrchestratorError(f"workflow {workflow_id} has no transition out of exec_locked")
        moved = self._state_machine.transition(
            approved, target, reason=f"execution approved ({approval_id})", triggered_by="approval"
        )
        entered = await self._enter_state(moved, S.EXEC_LOCKED)
        if self._is_runnable(entered):
            await self._admit(workflow_id)
        return entered

    # ------------------------------------------------------------------
    # Stage driving
    # ------------------------------------------------------------------

    async def run_stage(
        self, workflow_id: str, *, cancel_token: CancellationToken | None = None
    ) -> WorkflowContext:
        """
        Run the current stage's pending tasks in order, then request the
        recommended transition.

        Returns the context as it stands afterwards: advanced, ``blocked`` on
        unmet criteria, ``locked`` awaiting approval or ``escalated``.
        """

        context = self._require(workflow_id)
        if not self._is_runnable(context):
            raise OrchestratorError(
                f"workflow {workflow_id} cannot run: status {context.status}, "
                f"state {context.current_state}"
            )
        token = (
            cancel_token
            if cancel_token is not None
            else self._tokens.setdefault(workflow_id, CancellationToken())
        )
        stage = context.current_state
        self._seed_stage(context)

        try:
            await run_with_timeout(
                self._run_stage_tasks(workflow_id, stage, token),
                self._settings.stage_timeout_seconds,
                token,
            )
        except TimeoutError:
            self._fail_in_progress(workflow_id, stage, "stage timed out")
            return self._escalate(
                workflow_id,
                f"stage {stage} exceeded {self._settings.stage_timeout_seconds:g}s",
                report_error=True,
            )
        except SpecialistExhaustedError as exc:
            return self._escalate(workflow_id, str(exc))

        context = await self._finalize_stage(self._reload_active(workflow_id), stage)
        return await self._advance_state(context, stage)

    async def _run_stage_tasks(
        self, workflow_id: str, stage: WorkflowState, token: CancellationToken
    ) -> None:
        while True:
            task = self._next_stage_task(workflow_id, stage)
            if task is None:
                return
            token.raise_if_cancelled()
            await self._run_task(task, token)

    async def _run_task(self, task: OrchestratorTask, token: CancellationToken) -> None:
        context = self._reload_active(task.workflow_id)
        started = self._todos.mark_in_progress(task.id)
        dispatch = SpecialistTask(
            task_id=started.id,
            workflow_id=started.workflow_id,
            specialist_code=started.specialist_code,
            stage=started.stage,
            difficulty=self._dispatch_difficulty(context, started),
            payload=dict(started.payload),
        )
        with correlation_scope(task_id=started.id):
            try:
                output = await self._specialists.dispatch(
                    dispatch,
                    max_retries=max(1, started.max_retries - started.retry_count),
                    cancel_token=token,
                )
            except OperationCancelledError:
                raise
            except Exception as exc:
                self._todos.mark_failed(
                    started.id,
                    f"{type(exc).__name__}: {exc}",
                    attempts=max(1, started.max_retries - started.retry_count),
                )
                self._kpi.record_operation(False)
                raise
        self._reload_active(task.workflow_id)

        if output.success:
            result: dict[str, JSONValue] = {**output.summary(), "content": output.content}
            self._todos.mark_completed(started.id, result)
            self._record_stage_output(started.workflow_id, started.stage, started.specialist_code)
            self._kpi.record_operation(True)
            return

        reason = output.error or "specialist output rejected"
        self._todos.mark_failed(
            started.id, reason, attempts=output.attempts, result=output.summary()
        )
        self._kpi.record_operation(False)
        raise SpecialistExhaustedError(started.id, output.attempts, reason)

    async def _finalize_stage(
        self, context: WorkflowContext, stage: WorkflowState
    ) -> WorkflowContext:
        if context.metadata.get(STAGE_FINALIZED_KEY) == stage.value:
            return context

        for doc_type in stage_document_types(context.workflow_type, stage):
            await self._register_document(
                context.id, doc_type, self._stage_content(context.id, stage), stage=stage
            )

        context = self._reload_active(context.id)
        metadata = dict(context.metadata)
        changes: dict[str, object] = {}

        if stage is S.DELIBERATION and context.consensus_score is None:
            confidences = self._stage_confidences(context.id, stage)
            if confidences:
                changes["consensus_score"] = min(100.0, max(0.0, fmean(confidences)))

        if stage is S.REVIEW and context.review_status is None:
            if SpecialistCode.REVIEWER.value in passed_stage_outputs(context, stage):
                changes["review_status"] = ReviewStatus.APPROVED

        if stage is S.DECISION_PACKET:
            passed = passed_stage_outputs(context, stage)
            required = self._specialists.stage_specialists(stage)
            self._kpi.record_decision_packet(
                DecisionPacketMetrics(
                    has_all_fields=all(code.value in passed for code in required),
                    option_count=len(passed),
                    has_red_team_analysis=SpecialistCode.RED_TEAM.value in passed,
                    source_count=_signal_count(context) + len(context.documents),
                    risk_level=context.risk_level or RiskLevel.LOW,
                )
            )
            self._kpi.record_execution_timing(
                ExecutionStage.ISSUE_TO_DECISION, self._elapsed_ms(context.started_at)
            )
            metadata[DECIDED_AT_KEY] = self._clock().isoformat()

        if stage is S.OUTCOME_PROOF:
            kpi_results: dict[str, JSONValue] = dict(self._kpi.export_metrics())
            metadata[KPI_RESULTS_KEY] = kpi_results

        metadata[STAGE_FINALIZED_KEY] = stage.value
        return self._save(context.evolve(metadata=metadata, **changes))

    async def _advance_state(
        self, context: WorkflowContext, stage: WorkflowState
    ) -> WorkflowContext:
        target = self._state_machine.recommend_next_state(context)
        if target is None:
            return context
        try:
            moved = self._state_machine.transition(
                context, target, reason=f"{stage} stage completed"
            )
        except AcceptanceCriteriaError as exc:
            return self._block(context, stage, exc.missing)
        return await self._enter_state(moved, stage)

    async def _enter_state(
        self, context: WorkflowContext, from_stage: WorkflowState
    ) -> WorkflowContext:
        target = context.current_state
        metadata = dict(context.metadata)
        metadata.pop(STAGE_FINALIZED_KEY, None)
        context = self._save(context.evolve(metadata=metadata))
        self._todos.update_state(context.id, target)
        self._emit(
            EventType.PIPELINE_STAGE_COMPLETED,
            context.id,
            {"context": context.to_dict(), "stage": from_stage.value},
        )
        self._kpi.publish_dashboard()

        if self._state_machine.is_terminal(target):
            return self._complete(context)
        if target is S.EXEC_LOCKED:
            return await self._lock_execution(context)
        if target is S.REVIEW:
            context = await self._submit_vote(context)
        elif target is S.DECISION_PACKET and from_stage is S.REVIEW:
            context = self._reopen_for_rework(context)
        self._seed_stage(context)
        return context

    # ------------------------------------------------------------------
    # Stage effects
    # ------------------------------------------------------------------

    async def _register_document(
        self,
        workflow_id: str,
        doc_type: DocumentType,
        content: str,
        *,
        stage: WorkflowState,
    ) -> str:
        context = self._reload_active(workflow_id)
        document_id = await self._registry.create_document(
            doc_type,
            content,
            {
                "workflow_id": workflow_id,
                "issue_id": context.issue_id,
                "workflow_type": context.workflow_type.value,
                "stage": stage.value,
            },
        )
        context = self._reload_active(workflow_id)
        self._save(
            context.evolve(
                documents=(
                    *context.documents,
                    DocumentRef(doc_type=doc_type, document_id=document_id),
                )
            )
        )
        self._emit(
            EventType.WORKFLOW_DOCUMENT_PRODUCED,
            workflow_id,
            {"workflowId": workflow_id, "documentId": document_id, "documentType": doc_type.value},
        )
        self._logger.info(
            "orchestrator_document_registered",
            workflow_id=workflow_id,
            document_id=document_id,
            doc_type=doc_type.value,
        )
        return document_id

    async def _submit_vote(self, context: WorkflowContext) -> WorkflowContext:
        voting_id = await self._voting.submit_for_vote(
            workflow_id=context.id,
            title=context.issue_title,
            risk_level=context.risk_level or RiskLevel.HIGH,
            document_ids=context.document_ids(),
        )
        context = self._reload_active(context.id)
        self._logger.info(
            "orchestrator_vote_submitted", workflow_id=context.id, voting_id=voting_id
        )
        return self._save(context.evolve(voting_id=voting_id))

    def _reopen_for_rework(self, context: WorkflowContext) -> WorkflowContext:
        for state in (S.DECISION_PACKET, S.REVIEW):
            self._todos.reopen_stage(context.id, state)
        outputs = _stage_outputs(context)
        outputs.pop(S.DECISION_PACKET.value, None)
        outputs.pop(S.REVIEW.value, None)
        self._logger.info("orchestrator_changes_requested", workflow_id=context.id)
        return self._save(
            context.evolve(
                review_status=None, metadata={**context.metadata, STAGE_OUTPUTS_KEY: outputs}
            )
        )

    async def _lock_execution(self, context: WorkflowContext) -> WorkflowContext:
        action = WORKFLOW_LOCKED_ACTIONS.get(context.workflow_type, _DEFAULT_LOCKED_ACTION)
        action_risk = self._specialists.risk_level_for_action(action)
        reason = f"{action} requires approval before execution"
        lock_id = await self._lock.lock_action(
            workflow_id=context.id, action=action, risk_level=action_risk, reason=reason
        )
        context = self._reload_active(context.id)
        locked = self._save(
            context.evolve(
                status=WorkflowStatus.LOCKED,
                lock_id=lock_id,
                metadata={**context.metadata, LOCKED_ACTION_KEY: action},
            )
        )
        self._emit(
            EventType.EXECUTION_LOCKED,
            context.id,
            {"actionId": lock_id, "action": action, "reason": reason, "workflowId": context.id},
        )
        self._emit(
            EventType.WORKFLOW_REQUIRES_APPROVAL,
            context.id,
            {"workflowId": context.id, "riskLevel": (context.risk_level or action_risk).value},
        )
        self._logger.info(
            "orchestrator_execution_locked", workflow_id=context.id, action=action, lock_id=lock_id
        )
        return locked

    def _complete(self, context: WorkflowContext) -> WorkflowContext:
        status = (
            WorkflowStatus.REJECTED
            if context.current_state is S.REJECTED
            else WorkflowStatus.COMPLETED
        )
        context = self._save(context.evolve(status=status))
        self._kpi.record_execution_timing(
            ExecutionStage.END_TO_END, self._elapsed_ms(context.started_at)
        )
        approved_at = _metadata_datetime(context, APPROVED_AT_KEY)
        if approved_at is not None and context.current_state in (S.EXECUTED, S.VERIFIED):
            self._kpi.record_execution_timing(
                ExecutionStage.APPROVAL_TO_EXECUTION, self._elapsed_ms(approved_at)
            )
        self._emit(
            EventType.PIPELINE_COMPLETED,
            context.id,
            {"result": self._result_for(context).to_dict()},
        )
        self._logger.info(
            "orchestrator_workflow_completed",
            workflow_id=context.id,
            final_state=context.current_state.value,
            status=status.value,
        )
        self._tokens.pop(context.id, None)
        return context

    def _block(
        self, context: WorkflowContext, stage: WorkflowState, missing: tuple[str, ...]
    ) -> WorkflowContext:
        blocked = self._save(
            context.evolve(
                status=WorkflowStatus.BLOCKED, error=f"unmet criteria: {', '.join(missing)}"
            )
        )
        self._logger.info(
            "orchestrator_stage_blocked",
            workflow_id=context.id,
            stage=stage.value,
            missing=list(missing),
        )
        self._emit(
            EventType.PIPELINE_STAGE_BLOCKED,
            context.id,
            {"context": blocked.to_dict(), "stage": stage.value, "missing": list(missing)},
        )
        return blocked

    def _escalate(
        self, workflow_id: str, reason: str, *, report_error: bool = False
    ) -> WorkflowContext:
        context = self._require(workflow_id)
        if context.status is WorkflowStatus.CANCELLED or self._state_machine.is_terminal(
            context.current_state
        ):
            return context
        escalated = self._save(context.evolve(status=WorkflowStatus.ESCALATED, error=reason))
        self._logger.warning(
            "orchestrator_workflow_escalated",
            workflow_id=workflow_id,
            stage=escalated.current_state.value,
            reason=reason,
        )
        self._emit(
            EventType.WORKFLOW_ESCALATED,
            workflow_id,
            {"workflowId": workflow_id, "stage": escalated.current_state.value, "reason": reason},
        )
        self._emit(
            EventType.WORKFLOW_REQUIRES_APPROVAL,
            workflow_id,
            {"workflowId": workflow_id, "riskLevel": _risk_value(escalated)},
        )
        if report_error:
            self._emit(
                EventType.PIPELINE_ERROR,
                workflow_id,
                {"context": escalated.to_dict(), "error": reason},
            )
        return escalated

    def _fail(self, workflow_id: str, exc: Exception) -> None:
        error = f"{type(exc).__name__}: {exc}"
        self._kpi.record_operation(False)
        self._logger.exception(
            "orchestrator_workflow_errored", workflow_id=workflow_id, error=error
        )
        context = self._workflows.get(workflow_id)
        if context is None or self._state_machine.is_terminal(context.current_state):
            return
        errored = self._save(context.evolve(status=WorkflowStatus.ERRORED, error=error))
        self._emit(
            EventType.PIPELINE_ERROR, workflow_id, {"context": errored.to_dict(), "error": error}
        )

    def _fail_in_progress(self, workflow_id: str, stage: WorkflowState, reason: str) -> None:
        # A timed-out task has used its whole budget.
        for task in self._todos.list_tasks(workflow_id):
            if task.stage is stage and task.status is TaskStatus.IN_PROGRESS:
                self._todos.mark_failed(
                    task.id, reason, attempts=max(1, task.max_retries - task.retry_count)
                )
                self._kpi.record_operation(False)

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    async def _admit(self, workflow_id: str) -> None:
        if workflow_id in self._queued:
            return
        self._queued.add(workflow_id)
        try:
            await self._admission.put(workflow_id)
        except asyncio.CancelledError:
            self._queued.discard(workflow_id)
            raise

    async def _worker(self) -> None:
        while True:
            workflow_id = await self._admission.get()
            self._queued.discard(workflow_id)
            try:
                await self._drive(workflow_id)
            finally:
                self._admission.task_done()

    async def _drive(self, workflow_id: str) -> None:
        context = self._workflows.get(workflow_id)
        if context is None or not self._is_runnable(context):
            return
        token = self._tokens.setdefault(workflow_id, CancellationToken())
        timeout = self._settings.workflow_timeout_seconds
        remaining = timeout - self._elapsed_ms(context.started_at) / 1000.0

        with correlation_scope(workflow_id=workflow_id):
            try:
                if remaining <= 0:
                    raise TimeoutError("workflow deadline already passed")
                await run_with_timeout(self._drive_stages(workflow_id, token), remaining, token)
            except TimeoutError:
                self._escalate(workflow_id, f"workflow exceeded {timeout:g}s", report_error=True)
            except OperationCancelledError:
                self._logger.info("orchestrator_drive_cancelled", workflow_id=workflow_id)
            except Exception as exc:
                self._fail(workflow_id, exc)

    async def _drive_stages(self, workflow_id: str, token: CancellationToken) -> None:
        while True:
            context = self._require(workflow_id)
            if not self._is_runnable(context):
                return
            transitions = len(context.history)
            updated = await self.run_stage(workflow_id, cancel_token=token)
            if updated.status is not WorkflowStatus.ACTIVE or len(updated.history) == transitions:
                return

    async def _heartbeat_loop(self) -> None:
        while True:
            self._kpi.record_heartbeat()
            self._kpi.record_queue_depth(self._todos.queue_depth())
            self._kpi.publish_dashboard()
            await asyncio.sleep(self._settings.heartbeat_interval_seconds)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require(self, workflow_id: str) -> WorkflowContext:
        context = self._workflows.get(workflow_id)
        if context is None:
            raise WorkflowNotFoundError(workflow_id)
        return context

    def _reload_active(self, workflow_id: str) -> WorkflowContext:
        context = self._require(workflow_id)
        if context.status is WorkflowStatus.CANCELLED:
            raise OperationCancelledError(f"workflow {workflow_id} was cancelled")
        return context

    def _save(self, context: WorkflowContext) -> WorkflowContext:
        return self._workflows.save(context)

    def _is_runnable(self, context: WorkflowContext) -> bool:
        return (
            context.status is WorkflowStatus.ACTIVE
            and not self._state_machine.is_terminal(context.current_state)
            and not self._state_machine.is_blocked(context)
        )

    def _seed_stage(self, context: WorkflowContext) -> tuple[OrchestratorTask, ...]:
        stage = context.current_state
        codes = self._specialists.stage_specialists(stage)
        if not codes:
            return ()
        payload: dict[str, JSONValue] = {
            "issue_id": context.issue_id,
            "issue_title": context.issue_title,
            "issue_description": _issue_field(context, "description"),
            "workflow_type": context.workflow_type.value,
            "risk_level": _risk_value(context),
            "priority": context.priority_score.total if context.priority_score else None,
        }
        return self._todos.create_tasks(
            context.id,
            stage,
            specs_for_stage(
                codes, stage=stage, max_retries=self._settings.max_retries, payload=payload
            ),
        )

    def _next_stage_task(self, workflow_id: str, stage: WorkflowState) -> OrchestratorTask | None:
        for task in self._todos.list_tasks(workflow_id):
            if task.stage is stage and task.status is TaskStatus.PENDING:
                return task
        return None

    def _dispatch_difficulty(
        self, context: WorkflowContext, task: OrchestratorTask
    ) -> DifficultyLevel | None:
        # The stage's lead specialist writes its documents at the document's tier.
        codes = self._specialists.stage_specialists(task.stage)
        doc_types = stage_document_types(context.workflow_type, task.stage)
        if not codes or not doc_types or task.specialist_code is not codes[0]:
            return None
        levels = [
            self._specialists.get_specialist(task.specialist_code).difficulty,
            *(self._specialists.difficulty_for_document(doc_type) for doc_type in doc_types),
        ]
        return max(levels, key=lambda level: level.rank)

    def _record_stage_output(
        self, workflow_id: str, stage: WorkflowState, code: SpecialistCode
    ) -> None:
        context = self._reload_active(workflow_id)
        outputs = _stage_outputs(context)
        recorded = passed_stage_outputs(context, stage)
        if code.value not in recorded:
            outputs[stage.value] = [*recorded, code.value]
        self._save(context.evolve(metadata={**context.metadata, STAGE_OUTPUTS_KEY: outputs}))

    def _completed_results(
        self, workflow_id: str, stage: WorkflowState
    ) -> list[tuple[SpecialistCode, dict[str, JSONValue]]]:
        return [
            (task.specialist_code, task.result)
            for task in self._todos.list_tasks(workflow_id)
            if task.stage is stage and task.status is TaskStatus.COMPLETED and task.result
        ]

    def _stage_content(self, workflow_id: str, stage: WorkflowState) -> str:
        sections = [
            f"## {code.value}\n\n{result['content']}"
            for code, result in self._completed_results(workflow_id, stage)
            if isinstance(result.get("content"), str)
        ]
        return "\n\n".join(sections)

    def _stage_confidences(self, workflow_id: str, stage: WorkflowState) -> list[float]:
        confidences: list[float] = []
        for _, result in self._completed_results(workflow_id, stage):
            value = result.get("confidence")
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                confidences.append(float(value))
        return confidences

    def _result_for(self, context: WorkflowContext) -> PipelineResult:
        status = _RESULT_STATUS.get(context.status, PipelineStatus.PENDING_APPROVAL)
        end = context.completed_at or self._clock()
        return PipelineResult(
            workflow_id=context.id,
            issue_id=context.issue_id,
            workflow_type=context.workflow_type,
            success=status is PipelineStatus.COMPLETED,
            status=status,
            final_state=context.current_state,
            document_ids=context.document_ids(),
            voting_id=context.voting_id,
            approval_id=context.approval_id,
            lock_id=context.lock_id,
            risk_level=context.risk_level,
            error=context.error,
            duration_ms=max(0.0, (end - context.started_at).total_seconds() * 1000.0),
        )

    def _elapsed_ms(self, since: datetime) -> float:
        return max(0.0, (self._clock() - since).total_seconds() * 1000.0)

    def _emit(self, event_type: EventType, workflow_id: str, payload: dict[str, object]) -> None:
        self._event_bus.emit(event_type, payload, correlation_id=workflow_id)


def _stage_outputs(context: WorkflowContext) -> dict[str, JSONValue]:
    raw = context.metadata.get(STAGE_OUTPUTS_KEY)
    if not isinstance(raw, dict):
        return {}
    return {key: list(value) for key, value in raw.items() if isinstance(value, list)}


def _issue_field(context: WorkflowContext, name: str) -> JSONValue:
    issue = context.metadata.get(ISSUE_KEY)
    if not isinstance(issue, dict):
        return None
    return issue.get(name)


def _signal_count(context: WorkflowContext) -> int:
    signals = _issue_field(context, "signal_ids")
    return len(signals) if isinstance(signals, list) else 0


def _risk_value(context: WorkflowContext) -> str:
    return (context.risk_level or RiskLevel.HIGH).value


def _metadata_datetime(context: WorkflowContext, key: str) -> datetime | None:
    raw = context.metadata.get(key)
    if not isinstance(raw, str):
        return None
    return datetime.fromisoformat(raw)


__all__ = [
    "APPROVED_AT_KEY",
    "DECIDED_AT_KEY",
    "ISSUE_KEY",
    "LOCKED_ACTION_KEY",
    "STAGE_FINALIZED_KEY",
    "Orchestrator",
    "OrchestratorError",
    "OrchestratorSettings",
    "WorkflowNotFoundError",
]
