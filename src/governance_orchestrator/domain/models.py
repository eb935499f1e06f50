"""Dataclass domain models with strict validation and canonical serialization."""

from __future__ import annotations

import json
import math
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, is_dataclass, replace
from datetime import UTC, datetime
from enum import Enum, StrEnum
from typing import NoReturn, TypeVar, cast

from governance_orchestrator.constants import (
    DOMAIN_SCHEMA_VERSION,
    PRIORITY_SCORE_MAX,
    PRIORITY_SCORE_MIN,
)

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

TModel = TypeVar("TModel", bound="CanonicalModel")
TEnum = TypeVar("TEnum", bound=Enum)

_MAX_TEXT = 65536
_MAX_JSON_DEPTH = 16


class WorkflowType(StrEnum):
    A = "A"
    B = "B"
    C = "C"
    D = "D"
    E = "E"


class WorkflowState(StrEnum):
    INTAKE = "intake"
    TRIAGE = "triage"
    RESEARCH = "research"
    DELIBERATION = "deliberation"
    DECISION_PACKET = "decision_packet"
    REVIEW = "review"
    PUBLISH = "publish"
    EXEC_LOCKED = "exec_locked"
    OUTCOME_PROOF = "outcome_proof"
    EXECUTED = "executed"
    VERIFIED = "verified"
    CLOSED = "closed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class WorkflowStatus(StrEnum):
    ACTIVE = "active"
    BLOCKED = "blocked"
    LOCKED = "locked"
    ESCALATED = "escalated"
    COMPLETED = "completed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    ERRORED = "errored"


class TopicCategory(StrEnum):
    MOSSLAND_EXPANSION = "mossland_expansion"
    BLOCKCHAIN_AI_ECOSYSTEM = "blockchain_ai_ecosystem"
    COMMUNITY_GOVERNANCE = "community_governance"
    TECHNICAL_INFRASTRUCTURE = "technical_infrastructure"
    OPEN_GENERAL = "open_general"


class RiskLevel(StrEnum):
    LOW = "LOW"
    MID = "MID"
    HIGH = "HIGH"


class DifficultyLevel(StrEnum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _DIFFICULTY_ORDER.index(self)

    def escalate(self) -> DifficultyLevel:
        """Return the next harder level, saturating at ``critical``."""
        index = min(self.rank + 1, len(_DIFFICULTY_ORDER) - 1)
        return _DIFFICULTY_ORDER[index]


_DIFFICULTY_ORDER: tuple[DifficultyLevel, ...] = (
    DifficultyLevel.SIMPLE,
    DifficultyLevel.MODERATE,
    DifficultyLevel.COMPLEX,
    DifficultyLevel.CRITICAL,
)


class SpecialistCode(StrEnum):
    RESEARCHER = "RES"
    ANALYST = "ANA"
    DRAFTER = "DRA"
    REVIEWER = "REV"
    RED_TEAM = "RED"
    SUMMARIZER = "SUM"
    TRANSLATOR = "TRN"
    ARCHIVIST = "ARC"


class DocumentType(StrEnum):
    DECISION_PACKET = "DP"
    GOVERNANCE_PROPOSAL = "GP"
    RESOLUTION_MEMO = "RM"
    REVIEW_COMMENTARY = "RC"
    WORKING_GROUP_CHARTER = "WGC"
    WORKING_GROUP_REPORT = "WGR"
    ECOSYSTEM_REPORT = "ER"
    PARTNERSHIP_PROPOSAL = "PP"
    PARTNERSHIP_AGREEMENT = "PA"
    DEVELOPER_GRANT_PROPOSAL = "DGP"
    DEVELOPER_GRANT = "DG"
    MILESTONE_REPORT = "MR"
    RETROSPECTIVE_REPORT = "RR"
    DIGEST_REPORT = "DR"
    ACADEMIC_REPORT = "AR"


class ReviewStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    CHANGES_REQUESTED = "changes_requested"
    REJECTED = "rejected"


class TaskStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    BLOCKED = "blocked"
    CANCELLED = "cancelled"


class TodoStatus(StrEnum):
    ACTIVE = "active"
    BLOCKED = "blocked"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PipelineStatus(StrEnum):
    COMPLETED = "completed"
    PENDING_APPROVAL = "pending_approval"
    LOCKED = "locked"
    REJECTED = "rejected"
    ERROR = "error"


class KPICategory(StrEnum):
    DECISION_QUALITY = "decision_quality"
    EXECUTION_SPEED = "execution_speed"
    SYSTEM_HEALTH = "system_health"


class AlertSeverity(StrEnum):
    WARNING = "warning"
    CRITICAL = "critical"


TERMINAL_TASK_STATUSES: frozenset[TaskStatus] = frozenset(
    {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED}
)


class CanonicalModel:
    """Mixin for canonical dict/json serialization."""

    def to_dict(self) -> dict[str, JSONValue]:
        serialized = _serialize_value(self, self.__class__.__name__)
        if not isinstance(serialized, dict):
            _fail(self.__class__.__name__, "serialized model must be an object")
        return serialized

    def to_json(self) -> str:
        return _canonical_json(self.to_dict())

    @classmethod
    def from_json(cls: type[TModel], raw: str) -> TModel:
        if not isinstance(raw, str):
            _fail(cls.__name__, f"expected JSON string, got {type(raw).__name__}")
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            _fail(cls.__name__, f"invalid JSON: {exc}")
        if not isinstance(parsed, dict):
            _fail(cls.__name__, "JSON root must be an object")
        return cls.from_dict(parsed)

    @classmethod
    def from_dict(cls: type[TModel], data: Mapping[str, object]) -> TModel:
        _fail(cls.__name__, "from_dict is not implemented for this model type")


# ---------------------------------------------------------------------------
# Priority scoring inputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ImpactFactors(CanonicalModel):
    revenue_potential: int = 0
    user_base_affected: int = 0
    strategic_alignment: int = 0

    def __post_init__(self) -> None:
        _check_level(self.revenue_potential, (0, 10, 20, 30), "ImpactFactors.revenue_potential")
        _check_level(self.user_base_affected, (0, 5, 10, 15), "ImpactFactors.user_base_affected")
        _check_level(
            self.strategic_alignment, (0, 5, 10, 15), "ImpactFactors.strategic_alignment"
        )

    @property
    def score(self) -> int:
        return self.revenue_potential + self.user_base_affected + self.strategic_alignment

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> ImpactFactors:
        parsed = _expect_object(
            data,
            "ImpactFactors",
            required=set(),
            optional={"revenue_potential", "user_base_affected", "strategic_alignment"},
        )
        return cls(
            revenue_potential=_as_int(parsed.get("revenue_potential", 0), "revenue_potential"),
            user_base_affected=_as_int(parsed.get("user_base_affected", 0), "user_base_affected"),
            strategic_alignment=_as_int(
                parsed.get("strategic_alignment", 0), "strategic_alignment"
            ),
        )


@dataclass(frozen=True, slots=True)
class UrgencyFactors(CanonicalModel):
    time_sensitivity: int = 0
    competitive_pressure: int = 0
    dependency_blocking: int = 0

    def __post_init__(self) -> None:
        _check_level(self.time_sensitivity, (0, 10, 20), "UrgencyFactors.time_sensitivity")
        _check_level(self.competitive_pressure, (0, 5, 10), "UrgencyFactors.competitive_pressure")
        _check_level(self.dependency_blocking, (0, 5, 10), "UrgencyFactors.dependency_blocking")

    @property
    def score(self) -> int:
        return self.time_sensitivity + self.competitive_pressure + self.dependency_blocking

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> UrgencyFactors:
        parsed = _expect_object(
            data,
            "UrgencyFactors",
            required=set(),
            optional={"time_sensitivity", "competitive_pressure", "dependency_blocking"},
        )
        return cls(
            time_sensitivity=_as_int(parsed.get("time_sensitivity", 0), "time_sensitivity"),
            competitive_pressure=_as_int(
                parsed.get("competitive_pressure", 0), "competitive_pressure"
            ),
            dependency_blocking=_as_int(
                parsed.get("dependency_blocking", 0), "dependency_blocking"
            ),
        )


@dataclass(frozen=True, slots=True)
class FeasibilityFactors(CanonicalModel):
    technical_readiness: int = 0
    resource_availability: int = 0
    clear_requirements: int = 0

    def __post_init__(self) -> None:
        levels = (0, 5, 10)
        _check_level(self.technical_readiness, levels, "FeasibilityFactors.technical_readiness")
        _check_level(
            self.resource_availability, levels, "FeasibilityFactors.resource_availability"
        )
        _check_level(self.clear_requirements, levels, "FeasibilityFactors.clear_requirements")

    @property
    def score(self) -> int:
        return self.technical_readiness + self.resource_availability + self.clear_requirements

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> FeasibilityFactors:
        parsed = _expect_object(
            data,
            "FeasibilityFactors",
            required=set(),
            optional={"technical_readiness", "resource_availability", "clear_requirements"},
        )
        return cls(
            technical_readiness=_as_int(
                parsed.get("technical_readiness", 0), "technical_readiness"
            ),
            resource_availability=_as_int(
                parsed.get("resource_availability", 0), "resource_availability"
            ),
            clear_requirements=_as_int(parsed.get("clear_requirements", 0), "clear_requirements"),
        )


@dataclass(frozen=True, slots=True)
class PriorityScore(CanonicalModel):
    topic_weight: int
    impact: int
    urgency: int
    feasibility: int
    risk_penalty: int
    total: int

    def __post_init__(self) -> None:
        if self.risk_penalty > 0:
            _fail("PriorityScore.risk_penalty", "must be <= 0")
        if not PRIORITY_SCORE_MIN <= self.total <= PRIORITY_SCORE_MAX:
            _fail(
                "PriorityScore.total",
                f"must be within {PRIORITY_SCORE_MIN}..{PRIORITY_SCORE_MAX}",
            )

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> PriorityScore:
        parsed = _expect_object(
            data,
            "PriorityScore",
            required={"topic_weight", "impact", "urgency", "feasibility", "risk_penalty", "total"},
        )
        return cls(
            topic_weight=_as_int(parsed["topic_weight"], "PriorityScore.topic_weight"),
            impact=_as_int(parsed["impact"], "PriorityScore.impact"),
            urgency=_as_int(parsed["urgency"], "PriorityScore.urgency"),
            feasibility=_as_int(parsed["feasibility"], "PriorityScore.feasibility"),
            risk_penalty=_as_int(parsed["risk_penalty"], "PriorityScore.risk_penalty"),
            total=_as_int(parsed["total"], "PriorityScore.total"),
        )


# ---------------------------------------------------------------------------
# Issue and workflow context
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Issue(CanonicalModel):
    """Detected governance issue; immutable once its workflow starts."""

    id: str
    title: str
    category: TopicCategory
    description: str = ""
    source: str = "manual"
    signal_ids: tuple[str, ...] = ()
    impact: ImpactFactors = field(default_factory=ImpactFactors)
    urgency: UrgencyFactors = field(default_factory=UrgencyFactors)
    feasibility: FeasibilityFactors = field(default_factory=FeasibilityFactors)
    risk_penalty: int = 0
    workflow_type: WorkflowType | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))

    def __post_init__(self) -> None:
        _as_str(self.id, "Issue.id", max_len=256)
        _as_str(self.title, "Issue.title", max_len=1024)
        if not isinstance(self.category, TopicCategory):
            _fail("Issue.category", f"expected TopicCategory, got {type(self.category).__name__}")
        if self.risk_penalty > 0:
            _fail("Issue.risk_penalty", "must be <= 0")
        _as_datetime(self.created_at, "Issue.created_at")

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Issue:
        parsed = _expect_object(
            data,
            "Issue",
            required={"id", "title", "category"},
            optional={
                "description",
                "source",
                "signal_ids",
                "impact",
                "urgency",
                "feasibility",
                "risk_penalty",
                "workflow_type",
                "created_at",
            },
        )
        workflow_type = parsed.get("workflow_type")
        return cls(
            id=_as_str(parsed["id"], "Issue.id", max_len=256),
            title=_as_str(parsed["title"], "Issue.title", max_len=1024),
            category=_as_enum(TopicCategory, parsed["category"], "Issue.category"),
            description=_as_text(parsed.get("description", ""), "Issue.description"),
            source=_as_str(parsed.get("source", "manual"), "Issue.source", max_len=256),
            signal_ids=_as_str_tuple(parsed.get("signal_ids", ()), "Issue.signal_ids"),
            impact=ImpactFactors.from_dict(_as_mapping(parsed.get("impact", {}), "Issue.impact")),
            urgency=UrgencyFactors.from_dict(
                _as_mapping(parsed.get("urgency", {}), "Issue.urgency")
            ),
            feasibility=FeasibilityFactors.from_dict(
                _as_mapping(parsed.get("feasibility", {}), "Issue.feasibility")
            ),
            risk_penalty=_as_int(parsed.get("risk_penalty", 0), "Issue.risk_penalty"),
            workflow_type=(
                _as_enum(WorkflowType, workflow_type, "Issue.workflow_type")
                if workflow_type is not None
                else None
            ),
            created_at=_as_datetime(
                parsed.get("created_at", datetime.now(tz=UTC)), "Issue.created_at"
            ),
        )


@dataclass(frozen=True, slots=True)
class DocumentRef(CanonicalModel):
    doc_type: DocumentType
    document_id: str

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> DocumentRef:
        parsed = _expect_object(data, "DocumentRef", required={"doc_type", "document_id"})
        return cls(
            doc_type=_as_enum(DocumentType, parsed["doc_type"], "DocumentRef.doc_type"),
            document_id=_as_str(parsed["document_id"], "DocumentRef.document_id", max_len=256),
        )


@dataclass(frozen=True, slots=True)
class StateTransitionRecord(CanonicalModel):
    from_state: WorkflowState
    to_state: WorkflowState
    at: datetime
    reason: str
    triggered_by: str

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> StateTransitionRecord:
        parsed = _expect_object(
            data,
            "StateTransitionRecord",
            required={"from_state", "to_state", "at", "reason", "triggered_by"},
        )
        return cls(
            from_state=_as_enum(WorkflowState, parsed["from_state"], "from_state"),
            to_state=_as_enum(WorkflowState, parsed["to_state"], "to_state"),
            at=_as_datetime(parsed["at"], "StateTransitionRecord.at"),
            reason=_as_text(parsed["reason"], "StateTransitionRecord.reason"),
            triggered_by=_as_str(parsed["triggered_by"], "StateTransitionRecord.triggered_by"),
        )


@dataclass(frozen=True, slots=True)
class WorkflowContext(CanonicalModel):
    """
    Runtime state of one governance workflow.

    Instances are frozen. Every change produces a new context through
    :meth:`evolve`; the state machine is the only writer of ``current_state``,
    ``completed_stages`` and ``history`` outside the cancel/escalate escape
    hatches.
    """

    id: str
    workflow_type: WorkflowType
    issue_id: str
    issue_title: str
    current_state: WorkflowState = WorkflowState.INTAKE
    status: WorkflowStatus = WorkflowStatus.ACTIVE
    risk_level: RiskLevel | None = None
    priority_score: PriorityScore | None = None
    documents: tuple[DocumentRef, ...] = ()
    voting_id: str | None = None
    approval_id: str | None = None
    lock_id: str | None = None
    review_status: ReviewStatus | None = None
    consensus_score: float | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    completed_at: datetime | None = None
    completed_stages: tuple[WorkflowState, ...] = ()
    history: tuple[StateTransitionRecord, ...] = ()
    error: str | None = None
    metadata: dict[str, JSONValue] = field(default_factory=dict)
    schema_version: int = DOMAIN_SCHEMA_VERSION

    def __post_init__(self) -> None:
        _as_str(self.id, "WorkflowContext.id", max_len=256)
        _as_str(self.issue_id, "WorkflowContext.issue_id", max_len=256)
        if self.consensus_score is not None and not 0 <= self.consensus_score <= 100:
            _fail("WorkflowContext.consensus_score", "must be within 0..100")
        _as_json_object(self.metadata, "WorkflowContext.metadata")

    def evolve(self, **changes: object) -> WorkflowContext:
        return replace(self, **changes)

    def document_ids(self) -> tuple[str, ...]:
        return tuple(item.document_id for item in self.documents)

    def has_document(self, doc_type: DocumentType) -> bool:
        return any(item.doc_type is doc_type for item in self.documents)

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> WorkflowContext:
        parsed = _expect_object(
            data,
            "WorkflowContext",
            required={"id", "workflow_type", "issue_id", "issue_title", "current_state"},
            optional={
                "status",
                "risk_level",
                "priority_score",
                "documents",
                "voting_id",
                "approval_id",
                "lock_id",
                "review_status",
                "consensus_score",
                "started_at",
                "completed_at",
                "completed_stages",
                "history",
                "error",
                "metadata",
                "schema_version",
            },
        )
        risk_level = parsed.get("risk_level")
        priority = parsed.get("priority_score")
        review_status = parsed.get("review_status")
        consensus = parsed.get("consensus_score")
        completed_at = parsed.get("completed_at")
        return cls(
            id=_as_str(parsed["id"], "WorkflowContext.id", max_len=256),
            workflow_type=_as_enum(WorkflowType, parsed["workflow_type"], "workflow_type"),
            issue_id=_as_str(parsed["issue_id"], "WorkflowContext.issue_id", max_len=256),
            issue_title=_as_str(parsed["issue_title"], "WorkflowContext.issue_title"),
            current_state=_as_enum(WorkflowState, parsed["current_state"], "current_state"),
            status=_as_enum(WorkflowStatus, parsed.get("status", "active"), "status"),
            risk_level=(
                _as_enum(RiskLevel, risk_level, "risk_level") if risk_level is not None else None
            ),
            priority_score=(
                PriorityScore.from_dict(_as_mapping(priority, "priority_score"))
                if priority is not None
                else None
            ),
            documents=tuple(
                DocumentRef.from_dict(_as_mapping(item, "documents[]"))
                for item in _as_sequence(parsed.get("documents", ()), "documents")
            ),
            voting_id=_as_optional_str(parsed.get("voting_id"), "voting_id"),
            approval_id=_as_optional_str(parsed.get("approval_id"), "approval_id"),
            lock_id=_as_optional_str(parsed.get("lock_id"), "lock_id"),
            review_status=(
                _as_enum(ReviewStatus, review_status, "review_status")
                if review_status is not None
                else None
            ),
            consensus_score=(
                _as_float(consensus, "consensus_score") if consensus is not None else None
            ),
            started_at=_as_datetime(parsed.get("started_at"), "WorkflowContext.started_at"),
            completed_at=(
                _as_datetime(completed_at, "WorkflowContext.completed_at")
                if completed_at is not None
                else None
            ),
            completed_stages=tuple(
                _as_enum(WorkflowState, item, "completed_stages[]")
                for item in _as_sequence(parsed.get("completed_stages", ()), "completed_stages")
            ),
            history=tuple(
                StateTransitionRecord.from_dict(_as_mapping(item, "history[]"))
                for item in _as_sequence(parsed.get("history", ()), "history")
            ),
            error=_as_optional_str(parsed.get("error"), "error"),
            metadata=_as_json_object(parsed.get("metadata", {}), "WorkflowContext.metadata"),
            schema_version=_as_int(
                parsed.get("schema_version", DOMAIN_SCHEMA_VERSION), "schema_version"
            ),
        )


# ---------------------------------------------------------------------------
# Todo / task records
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class TaskSpec:
    """Request to create one task for a workflow stage."""

    specialist_code: SpecialistCode
    name: str
    description: str = ""
    priority: int = 50
    max_retries: int = 3
    payload: dict[str, JSONValue] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.specialist_code, SpecialistCode):
            _fail("TaskSpec.specialist_code", "must be a registered specialist code")
        _as_str(self.name, "TaskSpec.name", max_len=256)
        if not 0 <= self.priority <= 100:
            _fail("TaskSpec.priority", "must be within 0..100")
        if self.max_retries < 1:
            _fail("TaskSpec.max_retries", "must be >= 1")
        _as_json_object(self.payload, "TaskSpec.payload")


@dataclass(frozen=True, slots=True)
class OrchestratorTodo(CanonicalModel):
    id: str
    workflow_id: str
    issue_id: str
    workflow_type: WorkflowType
    current_state: WorkflowState
    status: TodoStatus
    created_at: datetime
    updated_at: datetime
    blocked_reason: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> OrchestratorTodo:
        parsed = _expect_object(
            data,
            "OrchestratorTodo",
            required={
                "id",
                "workflow_id",
                "issue_id",
                "workflow_type",
                "current_state",
                "status",
                "created_at",
                "updated_at",
            },
            optional={"blocked_reason"},
        )
        return cls(
            id=_as_str(parsed["id"], "OrchestratorTodo.id"),
            workflow_id=_as_str(parsed["workflow_id"], "OrchestratorTodo.workflow_id"),
            issue_id=_as_str(parsed["issue_id"], "OrchestratorTodo.issue_id"),
            workflow_type=_as_enum(WorkflowType, parsed["workflow_type"], "workflow_type"),
            current_state=_as_enum(WorkflowState, parsed["current_state"], "current_state"),
            status=_as_enum(TodoStatus, parsed["status"], "status"),
            created_at=_as_datetime(parsed["created_at"], "OrchestratorTodo.created_at"),
            updated_at=_as_datetime(parsed["updated_at"], "OrchestratorTodo.updated_at"),
            blocked_reason=_as_optional_str(parsed.get("blocked_reason"), "blocked_reason"),
        )


@dataclass(frozen=True, slots=True)
class OrchestratorTask(CanonicalModel):
    """Durable unit of work for one workflow stage and one specialist."""

    id: str
    todo_id: str
    workflow_id: str
    stage: WorkflowState
    specialist_code: SpecialistCode
    name: str
    sequence: int
    status: TaskStatus = TaskStatus.PENDING
    priority: int = 50
    retry_count: int = 0
    max_retries: int = 3
    description: str = ""
    payload: dict[str, JSONValue] = field(default_factory=dict)
    result: dict[str, JSONValue] | None = None
    error: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    started_at: datetime | None = None
    completed_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.sequence < 0:
            _fail("OrchestratorTask.sequence", "must be >= 0")
        if self.retry_count < 0:
            _fail("OrchestratorTask.retry_count", "must be >= 0")

    @property
    def key(self) -> tuple[str, WorkflowState, SpecialistCode]:
        return (self.workflow_id, self.stage, self.specialist_code)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_TASK_STATUSES

    def evolve(self, **changes: object) -> OrchestratorTask:
        return replace(self, **changes)

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> OrchestratorTask:
        parsed = _expect_object(
            data,
            "OrchestratorTask",
            required={
                "id",
                "todo_id",
                "workflow_id",
                "stage",
                "specialist_code",
                "name",
                "sequence",
                "status",
            },
            optional={
                "priority",
                "retry_count",
                "max_retries",
                "description",
                "payload",
                "result",
                "error",
                "created_at",
                "updated_at",
                "started_at",
                "completed_at",
            },
        )
        result = parsed.get("result")
        started_at = parsed.get("started_at")
        completed_at = parsed.get("completed_at")
        return cls(
            id=_as_str(parsed["id"], "OrchestratorTask.id"),
            todo_id=_as_str(parsed["todo_id"], "OrchestratorTask.todo_id"),
            workflow_id=_as_str(parsed["workflow_id"], "OrchestratorTask.workflow_id"),
            stage=_as_enum(WorkflowState, parsed["stage"], "OrchestratorTask.stage"),
            specialist_code=_as_enum(
                SpecialistCode, parsed["specialist_code"], "OrchestratorTask.specialist_code"
            ),
            name=_as_str(parsed["name"], "OrchestratorTask.name"),
            sequence=_as_int(parsed["sequence"], "OrchestratorTask.sequence"),
            status=_as_enum(TaskStatus, parsed["status"], "OrchestratorTask.status"),
            priority=_as_int(parsed.get("priority", 50), "OrchestratorTask.priority"),
            retry_count=_as_int(parsed.get("retry_count", 0), "OrchestratorTask.retry_count"),
            max_retries=_as_int(parsed.get("max_retries", 3), "OrchestratorTask.max_retries"),
            description=_as_text(parsed.get("description", ""), "OrchestratorTask.description"),
            payload=_as_json_object(parsed.get("payload", {}), "OrchestratorTask.payload"),
            result=(
                _as_json_object(result, "OrchestratorTask.result") if result is not None else None
            ),
            error=_as_optional_str(parsed.get("error"), "OrchestratorTask.error"),
            created_at=_as_datetime(parsed.get("created_at"), "OrchestratorTask.created_at"),
            updated_at=_as_datetime(parsed.get("updated_at"), "OrchestratorTask.updated_at"),
            started_at=(
                _as_datetime(started_at, "OrchestratorTask.started_at")
                if started_at is not None
                else None
            ),
            completed_at=(
                _as_datetime(completed_at, "OrchestratorTask.completed_at")
                if completed_at is not None
                else None
            ),
        )


# ---------------------------------------------------------------------------
# Specialist dispatch
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SpecialistTask:
    task_id: str
    workflow_id: str
    specialist_code: SpecialistCode
    stage: WorkflowState | None = None
    difficulty: DifficultyLevel | None = None
    payload: dict[str, JSONValue] = field(default_factory=dict)

    @classmethod
    def from_task(cls, task: OrchestratorTask) -> SpecialistTask:
        return cls(
            task_id=task.id,
            workflow_id=task.workflow_id,
            specialist_code=task.specialist_code,
            stage=task.stage,
            payload=dict(task.payload),
        )


@dataclass(frozen=True, slots=True)
class QualityVerdict(CanonicalModel):
    passed: bool
    confidence: float
    issues: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not 0 <= self.confidence <= 100:
            _fail("QualityVerdict.confidence", "must be within 0..100")

    @property
    def reason(self) -> str:
        if self.passed:
            return "passed"
        if not self.issues:
            return f"confidence {self.confidence:g} below threshold"
        return "; ".join(self.issues)


@dataclass(frozen=True, slots=True)
class SpecialistOutput(CanonicalModel):
    task_id: str
    specialist_code: SpecialistCode
    success: bool
    content: str
    verdict: QualityVerdict | None
    attempts: int
    difficulty: DifficultyLevel
    duration_ms: float = 0.0
    error: str | None = None

    def summary(self) -> dict[str, JSONValue]:
        """Compact JSON form persisted as a task result."""
        return {
            "specialist_code": self.specialist_code.value,
            "success": self.success,
            "attempts": self.attempts,
            "difficulty": self.difficulty.value,
            "confidence": self.verdict.confidence if self.verdict is not None else None,
            "content_length": len(self.content),
            "duration_ms": self.duration_ms,
        }


@dataclass(frozen=True, slots=True)
class PipelineResult(CanonicalModel):
    workflow_id: str
    issue_id: str
    workflow_type: WorkflowType
    success: bool
    status: PipelineStatus
    final_state: WorkflowState
    document_ids: tuple[str, ...] = ()
    voting_id: str | None = None
    approval_id: str | None = None
    lock_id: str | None = None
    risk_level: RiskLevel | None = None
    error: str | None = None
    duration_ms: float = 0.0


# ---------------------------------------------------------------------------
# KPI records
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class MetricSample:
    value: float
    timestamp: datetime


@dataclass(frozen=True, slots=True)
class KPIAlert(CanonicalModel):
    id: str
    metric: str
    category: KPICategory
    severity: AlertSeverity
    message: str
    current_value: float
    target_value: float
    timestamp: datetime


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


def _canonical_json(value: JSONValue) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _check_level(value: int, allowed: tuple[int, ...], path: str) -> None:
    if isinstance(value, bool) or value not in allowed:
        _fail(path, f"must be one of {allowed}, got {value!r}")


def _expect_object(
    value: object,
    path: str,
    *,
    required: set[str],
    optional: set[str] | None = None,
) -> dict[str, object]:
    if not isinstance(value, Mapping):
        _fail(path, f"expected object, got {type(value).__name__}")

    parsed: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            _fail(path, f"object keys must be strings, got {type(key).__name__}")
        parsed[key] = item

    allowed = required | (optional or set())
    unknown = sorted(key for key in parsed if key not in allowed)
    if unknown:
        _fail(path, f"unexpected fields: {unknown}")

    missing = sorted(key for key in required if key not in parsed)
    if missing:
        _fail(path, f"missing required fields: {missing}")

    return parsed


def _as_mapping(value: object, path: str) -> Mapping[str, object]:
    if not isinstance(value, Mapping):
        _fail(path, f"expected object, got {type(value).__name__}")
    return value


def _as_str(value: object, path: str, *, max_len: int = 4096) -> str:
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    normalized = value.strip()
    if not normalized:
        _fail(path, "must not be empty")
    if len(normalized) > max_len:
        _fail(path, f"must be <= {max_len} characters")
    return normalized


def _as_text(value: object, path: str) -> str:
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    if len(value) > _MAX_TEXT:
        _fail(path, f"must be <= {_MAX_TEXT} characters")
    return value


def _as_optional_str(value: object, path: str) -> str | None:
    if value is None:
        return None
    return _as_str(value, path)


def _as_int(value: object, path: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        _fail(path, f"expected integer, got {type(value).__name__}")
    return value


def _as_float(value: object, path: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        _fail(path, f"expected number, got {type(value).__name__}")
    parsed = float(value)
    if not math.isfinite(parsed):
        _fail(path, "must be finite")
    return parsed


def _as_datetime(value: object, path: str) -> datetime:
    parsed: datetime
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value[:-1] + "+00:00" if value.endswith("Z") else value
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            _fail(path, f"invalid ISO-8601 datetime: {value!r} ({exc})")
    else:
        _fail(path, f"expected datetime or ISO-8601 string, got {type(value).__name__}")

    if parsed.tzinfo is None or parsed.utcoffset() is None:
        _fail(path, "datetime must be timezone-aware UTC")
    return parsed.astimezone(UTC)


def _datetime_to_iso8601z(value: datetime) -> str:
    normalized = _as_datetime(value, "datetime")
    return normalized.isoformat(timespec="microseconds").replace("+00:00", "Z")


def _as_enum(enum_type: type[TEnum], value: object, path: str) -> TEnum:
    if isinstance(value, enum_type):
        return value
    if not isinstance(value, str):
        _fail(path, f"expected string enum value, got {type(value).__name__}")
    try:
        return enum_type(value)
    except ValueError:
        allowed = ", ".join(sorted(item.value for item in enum_type))
        _fail(path, f"invalid value {value!r}; expected one of: {allowed}")


def _as_sequence(value: object, path: str) -> list[object]:
    if isinstance(value, (list, tuple)):
        return list(value)
    _fail(path, f"expected array, got {type(value).__name__}")


def _as_str_tuple(value: object, path: str) -> tuple[str, ...]:
    return tuple(
        _as_str(item, f"{path}[{index}]") for index, item in enumerate(_as_sequence(value, path))
    )


def _as_json_value(value: object, path: str, *, depth: int = 0) -> JSONValue:
    if depth > _MAX_JSON_DEPTH:
        _fail(path, f"JSON nesting exceeds max depth {_MAX_JSON_DEPTH}")

    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            _fail(path, "float values must be finite")
        return value
    if isinstance(value, str):
        return value
    if isinstance(value, (list, tuple)):
        return [
            _as_json_value(item, f"{path}[{idx}]", depth=depth + 1)
            for idx, item in enumerate(value)
        ]
    if isinstance(value, Mapping):
        parsed: dict[str, JSONValue] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                _fail(path, f"object key must be string, got {type(key).__name__}")
            parsed[key] = _as_json_value(item, f"{path}.{key}", depth=depth + 1)
        return parsed

    _fail(path, f"value is not JSON-serializable ({type(value).__name__})")


def _as_json_object(value: object, path: str) -> dict[str, JSONValue]:
    parsed = _as_json_value(value, path)
    if not isinstance(parsed, dict):
        _fail(path, "expected JSON object")
    return parsed


def _serialize_value(value: object, path: str) -> JSONValue:
    if value is None or isinstance(value, bool):
        return cast("JSONValue", value)
    if isinstance(value, Enum):
        raw = value.value
        if not isinstance(raw, str):
            _fail(path, "enum value must be string")
        return raw
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            _fail(path, "float values must be finite")
        return value
    if isinstance(value, str):
        return value
    if isinstance(value, datetime):
        return _datetime_to_iso8601z(value)
    if isinstance(value, (tuple, list)):
        return [_serialize_value(item, f"{path}[]") for item in value]
    if isinstance(value, Mapping):
        out: dict[str, JSONValue] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                _fail(path, "dict keys must be strings")
            out[key] = _serialize_value(item, f"{path}.{key}")
        return out
    if is_dataclass(value):
        out_obj: dict[str, JSONValue] = {}
        for dataclass_field in fields(value):
            out_obj[dataclass_field.name] = _serialize_value(
                getattr(value, dataclass_field.name),
                f"{path}.{dataclass_field.name}",
            )
        return out_obj

    _fail(path, f"cannot serialize value of type {type(value).__name__}")


__all__ = [
    "AlertSeverity",
    "CanonicalModel",
    "DifficultyLevel",
    "DocumentRef",
    "DocumentType",
    "FeasibilityFactors",
    "ImpactFactors",
    "Issue",
    "JSONValue",
    "KPIAlert",
    "KPICategory",
    "MetricSample",
    "OrchestratorTask",
    "OrchestratorTodo",
    "PipelineResult",
    "PipelineStatus",
    "PriorityScore",
    "QualityVerdict",
    "ReviewStatus",
    "RiskLevel",
    "SpecialistCode",
    "SpecialistOutput",
    "SpecialistTask",
    "StateTransitionRecord",
    "TERMINAL_TASK_STATUSES",
    "TaskSpec",
    "TaskStatus",
    "TodoStatus",
    "TopicCategory",
    "UrgencyFactors",
    "WorkflowContext",
    "WorkflowState",
    "WorkflowStatus",
    "WorkflowType",
]
