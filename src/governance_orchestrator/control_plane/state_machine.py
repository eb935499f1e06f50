"""
governance-orchestrator — module skeleton

File: src/governance_orchestrator/control_plane/state_machine.py
Last updated: 2026-10-17

Purpose
- Guarded workflow state machine: per-type transition tables plus named
  acceptance criteria keyed by the target state.

What should be included in this file
- Transition validation, path enumeration and next-state recommendation.
- The cancel and forced-transition escape hatches for operator repair.

Functional requirements
- A successful transition returns a new context; the input is never mutated.
- A failed transition raises and leaves the caller's context as it was.
- Unmet criteria are reported by name.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from types import MappingProxyType
from typing import Any, Final

import structlog

from governance_orchestrator.constants import (
    DEFAULT_MIN_CONSENSUS_SCORE,
    HIGH_PRIORITY_THRESHOLD,
    MAX_PATH_DEPTH,
    MIN_ISSUE_TITLE_LENGTH,
    PRIORITY_SCORE_MAX,
    PRIORITY_SCORE_MIN,
    REGISTRY_ID_PREFIX,
)
from governance_orchestrator.domain.errors import GovernanceError
from governance_orchestrator.domain.models import (
    ReviewStatus,
    RiskLevel,
    StateTransitionRecord,
    WorkflowContext,
    WorkflowState,
    WorkflowStatus,
    WorkflowType,
)
from governance_orchestrator.domain.tables import (
    APPROVAL_GATED_STATES,
    STAGE_SPECIALISTS,
    TERMINAL_STATES,
    TRANSITION_TABLES,
    decision_document_types,
)

S = WorkflowState
Clock = Callable[[], datetime]

FORCED_REASON_PREFIX: Final[str] = "[FORCED]"

# Metadata key holding the specialist codes whose output passed, per stage.
STAGE_OUTPUTS_KEY: Final[str] = "stage_outputs"
KPI_RESULTS_KEY: Final[str] = "kpi_results"


class TransitionError(GovernanceError):
    """Base class for rejected state transitions."""


class InvalidTransitionError(TransitionError):
    """The edge is not in the workflow type's transition table."""

    def __init__(
        self,
        workflow_type: WorkflowType,
        from_state: WorkflowState,
        to_state: WorkflowState,
        detail: str | None = None,
    ) -> None:
        self.workflow_type = workflow_type
        self.from_state = from_state
        self.to_state = to_state
        message = f"type {workflow_type}: {from_state} -> {to_state} is not a valid transition"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class AcceptanceCriteriaError(TransitionError):
    """The edge is legal but the target state's acceptance criteria are unmet."""

    def __init__(self, target: WorkflowState, missing: Sequence[str]) -> None:
        self.target = target
        self.missing = tuple(missing)
        super().__init__(f"cannot enter {target}: unmet criteria {', '.join(self.missing)}")


@dataclass(frozen=True, slots=True)
class AcceptanceCriterion:
    name: str
    description: str
    check: Callable[[WorkflowContext, float], bool]


@dataclass(frozen=True, slots=True)
class CriteriaResult:
    state: WorkflowState
    passed: bool
    missing: tuple[str, ...]


def _issue_title_descriptive(context: WorkflowContext, _: float) -> bool:
    return len(context.issue_title.strip()) > MIN_ISSUE_TITLE_LENGTH


def _priority_scored(context: WorkflowContext, _: float) -> bool:
    score = context.priority_score
    return score is not None and PRIORITY_SCORE_MIN <= score.total <= PRIORITY_SCORE_MAX


def _risk_level_resolved(context: WorkflowContext, _: float) -> bool:
    return context.risk_level is not None


def _stage_outputs_recorded(context: WorkflowContext, _: float) -> bool:
    required = STAGE_SPECIALISTS.get(context.current_state, ())
    if not required:
        return True
    recorded = passed_stage_outputs(context, context.current_state)
    return all(code.value in recorded for code in required)


def _consensus_reached(context: WorkflowContext, min_consensus: float) -> bool:
    return context.consensus_score is not None and context.consensus_score >= min_consensus


def _decision_packet_documented(context: WorkflowContext, _: float) -> bool:
    doc_types = decision_document_types(context.workflow_type)
    return any(context.has_document(doc_type) for doc_type in doc_types)


def _review_approved(context: WorkflowContext, _: float) -> bool:
    reviewed = context.current_state is S.REVIEW or S.REVIEW in context.completed_stages
    return not reviewed or context.review_status is ReviewStatus.APPROVED


def _document_registered(context: WorkflowContext, _: float) -> bool:
    return any(doc_id.startswith(REGISTRY_ID_PREFIX) for doc_id in context.document_ids())


def _approvals_required(context: WorkflowContext, _: float) -> bool:
    return context.risk_level in (RiskLevel.MID, RiskLevel.HIGH)


def _execution_unlocked(context: WorkflowContext, _: float) -> bool:
    return context.approval_id is not None


def _outcome_measured(context: WorkflowContext, _: float) -> bool:
    return KPI_RESULTS_KEY in context.metadata


_C = AcceptanceCriterion
_TITLE = _C("issue_title_descriptive", "issue title is descriptive", _issue_title_descriptive)
_PRIORITY = _C("priority_scored", "priority total lies within 0..200", _priority_scored)
_RISK = _C("risk_level_resolved", "risk level has been classified", _risk_level_resolved)
_OUTPUTS = _C("stage_outputs_recorded", "current stage outputs passed", _stage_outputs_recorded)
_CONSENSUS = _C("consensus_reached", "consensus meets the minimum", _consensus_reached)
_DP_DOC = _C("decision_packet_documented", "decision record kept", _decision_packet_documented)
_REVIEW = _C("review_approved", "review approved the packet", _review_approved)
_REGISTERED = _C("document_registered", "a registry document exists", _document_registered)
_APPROVALS = _C("approvals_required", "risk level requires approval", _approvals_required)
_UNLOCKED = _C("execution_unlocked", "execution approval recorded", _execution_unlocked)
_MEASURED = _C("outcome_measured", "outcome KPI results recorded", _outcome_measured)

ACCEPTANCE_CRITERIA: Final[Mapping[WorkflowState, tuple[AcceptanceCriterion, ...]]] = (
    MappingProxyType(
        {
            S.TRIAGE: (_TITLE,),
            S.RESEARCH: (_PRIORITY, _RISK, _OUTPUTS),
            S.DELIBERATION: (_PRIORITY, _RISK, _OUTPUTS),
            S.DECISION_PACKET: (_OUTPUTS, _CONSENSUS),
            S.REVIEW: (_DP_DOC, _OUTPUTS),
            S.PUBLISH: (_OUTPUTS, _REVIEW),
            S.EXEC_LOCKED: (_REGISTERED, _APPROVALS),
            S.OUTCOME_PROOF: (_UNLOCKED,),
            S.EXECUTED: (_UNLOCKED,),
            S.VERIFIED: (_MEASURED,),
            S.CLOSED: (_REGISTERED,),
            S.REJECTED: (),
        }
    )
)


def passed_stage_outputs(context: WorkflowContext, state: WorkflowState) -> tuple[str, ...]:
    outputs = context.metadata.get(STAGE_OUTPUTS_KEY)
    if not isinstance(outputs, dict):
        return ()
    recorded = outputs.get(state.value)
    if not isinstance(recorded, list):
        return ()
    return tuple(item for item in recorded if isinstance(item, str))


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


class WorkflowStateMachine:
    """Pure transition logic; holds no per-workflow state."""

    def __init__(
        self,
        *,
        min_consensus_score: float = DEFAULT_MIN_CONSENSUS_SCORE,
        clock: Clock | None = None,
        logger: Any | None = None,
    ) -> None:
        if not 0 <= min_consensus_score <= 100:
            raise ValueError("min_consensus_score must be within 0..100")
        self._min_consensus = min_consensus_score
        self._clock = clock if clock is not None else _utc_now
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def min_consensus_score(self) -> float:
        return self._min_consensus

    # ------------------------------------------------------------------
    # Table queries
    # ------------------------------------------------------------------

    @staticmethod
    def available_transitions(
        workflow_type: WorkflowType, state: WorkflowState
    ) -> tuple[WorkflowState, ...]:
        return TRANSITION_TABLES[workflow_type].get(state, ())

    @staticmethod
    def is_terminal(state: WorkflowState) -> bool:
        return state in TERMINAL_STATES

    @staticmethod
    def is_blocked(context: WorkflowContext) -> bool:
        """True while the workflow waits on an execution unlock."""
        return context.current_state in APPROVAL_GATED_STATES and context.approval_id is None

    def can_transition(self, context: WorkflowContext, target: WorkflowState) -> bool:
        if target not in self.available_transitions(context.workflow_type, context.current_state):
            return False
        return self.evaluate_criteria(context, target).passed

    def evaluate_criteria(self, context: WorkflowContext, state: WorkflowState) -> CriteriaResult:
        missing = tuple(
            criterion.name
            for criterion in ACCEPTANCE_CRITERIA.get(state, ())
            if not criterion.check(context, self._min_consensus)
        )
        return CriteriaResult(state=state, passed=not missing, missing=missing)

    def validate_workflow_path(
        self, workflow_type: WorkflowType, sequence: Sequence[WorkflowState]
    ) -> None:
        """Raise ``InvalidTransitionError`` unless ``sequence`` walks the table."""

        if not sequence:
            raise ValueError("sequence must not be empty")
        table = TRANSITION_TABLES[workflow_type]
        first = sequence[0]
        if first not in table and first not in TERMINAL_STATES:
            raise InvalidTransitionError(workflow_type, first, first, "state not in table")
        for source, target in zip(sequence, sequence[1:], strict=False):
            if target not in table.get(source, ()):
                raise InvalidTransitionError(workflow_type, source, target)

    def get_possible_paths(
        self,
        workflow_type: WorkflowType,
        from_state: WorkflowState,
        max_depth: int = MAX_PATH_DEPTH,
    ) -> list[tuple[WorkflowState, ...]]:
        """Every cycle-free path from ``from_state`` to a terminal state, depth first."""

        if max_depth <= 0:
            raise ValueError("max_depth must be > 0")
        table = TRANSITION_TABLES[workflow_type]
        paths: list[tuple[WorkflowState, ...]] = []

        def walk(path: tuple[WorkflowState, ...]) -> None:
            current = path[-1]
            if current in TERMINAL_STATES:
                paths.append(path)
                return
            if len(path) > max_depth:
                return
            for target in table.get(current, ()):
                if target not in path:
                    walk((*path, target))

        walk((from_state,))
        return paths

    def recommend_next_state(self, context: WorkflowContext) -> WorkflowState | None:
        available = self.available_transitions(context.workflow_type, context.current_state)
        if not available:
            return None
        state = context.current_state

        if state is S.TRIAGE:
            score = context.priority_score
            if score is not None and score.total > HIGH_PRIORITY_THRESHOLD and (
                S.DELIBERATION in available
            ):
                return S.DELIBERATION
            return S.RESEARCH if S.RESEARCH in available else available[0]

        if state is S.DELIBERATION:
            consensus = context.consensus_score
            if (consensus is None or consensus < self._min_consensus) and S.REJECTED in available:
                return S.REJECTED
            return next((item for item in available if item is not S.REJECTED), available[0])

        if state is S.REVIEW:
            if context.review_status is ReviewStatus.CHANGES_REQUESTED:
                return S.DECISION_PACKET
            if context.review_status is ReviewStatus.REJECTED:
                return S.REJECTED
            return S.PUBLISH

        if state is S.PUBLISH and S.EXEC_LOCKED in available:
            return S.EXEC_LOCKED

        return available[0]

    # ------------------------------------------------------------------
    # Mutations (return new contexts)
    # ------------------------------------------------------------------

    def transition(
        self,
        context: WorkflowContext,
        target: WorkflowState,
        *,
        reason: str = "",
        triggered_by: str = "orchestrator",
    ) -> WorkflowContext:
        if target not in self.available_transitions(context.workflow_type, context.current_state):
            raise InvalidTransitionError(context.workflow_type, context.current_state, target)
        result = self.evaluate_criteria(context, target)
        if not result.passed:
            self._logger.info(
                "state_machine_criteria_unmet",
                workflow_id=context.id,
                from_state=context.current_state.value,
                to_state=target.value,
                missing=list(result.missing),
            )
            raise AcceptanceCriteriaError(target, result.missing)
        return self._apply(context, target, reason=reason, triggered_by=triggered_by)

    def force_transition(
        self,
        context: WorkflowContext,
        target: WorkflowState,
        *,
        reason: str,
        triggered_by: str = "recovery",
    ) -> WorkflowContext:
        """Move to ``target`` without consulting the table or the criteria."""

        return self._apply(
            context,
            target,
            reason=f"{FORCED_REASON_PREFIX} {reason}".rstrip(),
            triggered_by=triggered_by,
        )

    def cancel(
        self, context: WorkflowContext, reason: str, *, triggered_by: str = "orchestrator"
    ) -> WorkflowContext:
        if context.current_state in TERMINAL_STATES:
            raise InvalidTransitionError(
                context.workflow_type, context.current_state, S.CANCELLED, "already terminal"
            )
        cancelled = self._apply(context, S.CANCELLED, reason=reason, triggered_by=triggered_by)
        return cancelled.evolve(status=WorkflowStatus.CANCELLED, completed_at=self._clock())

    def _apply(
        self,
        context: WorkflowContext,
        target: WorkflowState,
        *,
        reason: str,
        triggered_by: str,
    ) -> WorkflowContext:
        record = StateTransitionRecord(
            from_state=context.current_state,
            to_state=target,
            at=self._clock(),
            reason=reason,
            triggered_by=triggered_by,
        )
        changes: dict[str, object] = {
            "current_state": target,
            "completed_stages": (*context.completed_stages, context.current_state),
            "history": (*context.history, record),
        }
        if target in TERMINAL_STATES:
            changes["completed_at"] = record.at
        updated = context.evolve(**changes)
        self._logger.info(
            "state_machine_transition",
            workflow_id=context.id,
            workflow_type=context.workflow_type.value,
            from_state=record.from_state.value,
            to_state=target.value,
            triggered_by=triggered_by,
            reason=reason,
        )
        return updated


__all__ = [
    "ACCEPTANCE_CRITERIA",
    "FORCED_REASON_PREFIX",
    "KPI_RESULTS_KEY",
    "STAGE_OUTPUTS_KEY",
    "AcceptanceCriteriaError",
    "AcceptanceCriterion",
    "CriteriaResult",
    "InvalidTransitionError",
    "TransitionError",
    "WorkflowStateMachine",
    "passed_stage_outputs",
]
