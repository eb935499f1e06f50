"""
governance-orchestrator — unit tests for the workflow state machine

File: tests/unit/control_plane/test_state_machine.py
Last updated: 2026-10-17

Purpose
- Validate table-driven transitions, acceptance criteria and next-state
  recommendations for every workflow type.

What this test file should cover
- Legal vs illegal edges and the typed errors they raise.
- Acceptance criteria per target state.
- Recommendation rules at triage, deliberation, review and publish.
- Cancel/force escape hatches and path enumeration.

Functional requirements
- Offline only; no orchestrator or store is involved.

Non-functional requirements
- Deterministic clock and deterministic hypothesis settings.
"""

from __future__ import annotations

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from governance_orchestrator.control_plane.state_machine import (
    FORCED_REASON_PREFIX,
    STAGE_OUTPUTS_KEY,
    AcceptanceCriteriaError,
    InvalidTransitionError,
    TransitionError,
    WorkflowStateMachine,
)
from governance_orchestrator.domain.models import (
    DocumentRef,
    DocumentType,
    ReviewStatus,
    RiskLevel,
    WorkflowState,
    WorkflowStatus,
    WorkflowType,
)
from governance_orchestrator.domain.tables import TERMINAL_STATES, TRANSITION_TABLES

from ... import FIXED_NOW, make_context

S = WorkflowState
_ULID = "01J9ZQ4T6M8C2X7V5B3N1K0H9G"


def _machine() -> WorkflowStateMachine:
    return WorkflowStateMachine(clock=lambda: FIXED_NOW)


def _outputs(state: WorkflowState, *codes: str) -> dict[str, object]:
    return {STAGE_OUTPUTS_KEY: {state.value: list(codes)}}


def test_transition_returns_new_context_with_history() -> None:
    machine = _machine()
    context = make_context()

    moved = machine.transition(context, S.TRIAGE, reason="intake done")

    assert moved.current_state is S.TRIAGE
    assert moved.completed_stages == (S.INTAKE,)
    (record,) = moved.history
    assert (record.from_state, record.to_state) == (S.INTAKE, S.TRIAGE)
    assert record.at == FIXED_NOW
    assert record.reason == "intake done"
    assert record.triggered_by == "orchestrator"
    assert context.current_state is S.INTAKE
    assert context.history == ()


def test_edge_missing_from_table_raises_and_leaves_context_alone() -> None:
    machine = _machine()
    context = make_context()

    with pytest.raises(InvalidTransitionError) as excinfo:
        machine.transition(context, S.REVIEW)

    assert excinfo.value.from_state is S.INTAKE
    assert excinfo.value.to_state is S.REVIEW
    assert isinstance(excinfo.value, TransitionError)
    assert context.current_state is S.INTAKE
    assert not machine.can_transition(context, S.REVIEW)


def test_short_title_fails_triage_criteria() -> None:
    machine = _machine()
    context = make_context(title="Grants")

    with pytest.raises(AcceptanceCriteriaError) as excinfo:
        machine.transition(context, S.TRIAGE)

    assert excinfo.value.target is S.TRIAGE
    assert excinfo.value.missing == ("issue_title_descriptive",)
    assert context.history == ()


def test_research_needs_risk_and_triage_outputs() -> None:
    machine = _machine()
    context = make_context(current_state=S.TRIAGE)

    result = machine.evaluate_criteria(context, S.RESEARCH)
    assert not result.passed
    assert result.missing == ("risk_level_resolved", "stage_outputs_recorded")

    ready = context.evolve(risk_level=RiskLevel.LOW, metadata=_outputs(S.TRIAGE, "ANA"))
    assert machine.can_transition(ready, S.RESEARCH)
    assert machine.transition(ready, S.RESEARCH).current_state is S.RESEARCH


def test_decision_packet_requires_minimum_consensus() -> None:
    machine = _machine()
    context = make_context(
        current_state=S.DELIBERATION,
        risk_level=RiskLevel.LOW,
        metadata=_outputs(S.DELIBERATION, "ANA", "RED"),
    )

    short = machine.evaluate_criteria(context.evolve(consensus_score=59.9), S.DECISION_PACKET)
    assert short.missing == ("consensus_reached",)
    assert machine.can_transition(context.evolve(consensus_score=60.0), S.DECISION_PACKET)


def test_review_requires_a_decision_record_of_the_workflow_type() -> None:
    machine = _machine()
    context = make_context(
        current_state=S.DECISION_PACKET, metadata=_outputs(S.DECISION_PACKET, "DRA", "ANA", "RED")
    )

    assert machine.evaluate_criteria(context, S.REVIEW).missing == ("decision_packet_documented",)
    documented = context.evolve(
        documents=(DocumentRef(DocumentType.DECISION_PACKET, f"DOC-DP-{_ULID}"),)
    )
    assert machine.can_transition(documented, S.REVIEW)


def test_exec_locked_needs_registered_document_and_elevated_risk() -> None:
    machine = _machine()
    context = make_context(
        WorkflowType.C,
        current_state=S.PUBLISH,
        risk_level=RiskLevel.LOW,
        review_status=ReviewStatus.APPROVED,
        completed_stages=(S.REVIEW,),
        metadata=_outputs(S.PUBLISH, "ARC", "TRN"),
    )

    assert machine.evaluate_criteria(context, S.EXEC_LOCKED).missing == (
        "document_registered",
        "approvals_required",
    )
    ready = context.evolve(
        risk_level=RiskLevel.HIGH,
        documents=(DocumentRef(DocumentType.DEVELOPER_GRANT, f"DOC-DG-{_ULID}"),),
    )
    locked = machine.transition(ready, S.EXEC_LOCKED)
    assert machine.is_blocked(locked)
    assert not machine.is_blocked(locked.evolve(approval_id="approval-1"))


@pytest.mark.parametrize(
    ("workflow_type", "total", "expected"),
    [
        (WorkflowType.B, 125, S.DELIBERATION),
        (WorkflowType.B, 100, S.RESEARCH),
        (WorkflowType.B, 45, S.RESEARCH),
        (WorkflowType.A, 125, S.RESEARCH),
        (WorkflowType.E, 45, S.DELIBERATION),
    ],
)
def test_triage_recommendation_follows_priority(
    workflow_type: WorkflowType, total: int, expected: WorkflowState
) -> None:
    context = make_context(workflow_type, total=total, current_state=S.TRIAGE)
    assert _machine().recommend_next_state(context) is expected


@pytest.mark.parametrize(
    ("consensus", "expected"),
    [(None, S.REJECTED), (30.0, S.REJECTED), (60.0, S.DECISION_PACKET), (95.0, S.DECISION_PACKET)],
)
def test_deliberation_recommendation_follows_consensus(
    consensus: float | None, expected: WorkflowState
) -> None:
    context = make_context(current_state=S.DELIBERATION, consensus_score=consensus)
    assert _machine().recommend_next_state(context) is expected


@pytest.mark.parametrize(
    ("review", "expected"),
    [
        (ReviewStatus.APPROVED, S.PUBLISH),
        (None, S.PUBLISH),
        (ReviewStatus.CHANGES_REQUESTED, S.DECISION_PACKET),
        (ReviewStatus.REJECTED, S.REJECTED),
    ],
)
def test_review_recommendation_follows_review_status(
    review: ReviewStatus | None, expected: WorkflowState
) -> None:
    context = make_context(current_state=S.REVIEW, review_status=review)
    assert _machine().recommend_next_state(context) is expected


def test_publish_recommends_lock_for_gated_types_and_nothing_after_terminal() -> None:
    machine = _machine()
    assert (
        machine.recommend_next_state(make_context(WorkflowType.D, current_state=S.PUBLISH))
        is S.EXEC_LOCKED
    )
    assert machine.recommend_next_state(make_context(current_state=S.PUBLISH)) is S.CLOSED
    assert machine.recommend_next_state(make_context(current_state=S.CLOSED)) is None


def test_cancel_marks_context_cancelled_and_refuses_terminal_states() -> None:
    machine = _machine()
    cancelled = machine.cancel(make_context(current_state=S.RESEARCH), "withdrawn by author")

    assert cancelled.current_state is S.CANCELLED
    assert cancelled.status is WorkflowStatus.CANCELLED
    assert cancelled.completed_at == FIXED_NOW
    assert cancelled.history[-1].reason == "withdrawn by author"

    with pytest.raises(InvalidTransitionError):
        machine.cancel(cancelled, "again")
    with pytest.raises(InvalidTransitionError):
        machine.cancel(make_context(current_state=S.CLOSED), "too late")


def test_force_transition_ignores_table_and_marks_reason() -> None:
    machine = _machine()
    forced = machine.force_transition(make_context(), S.REVIEW, reason="operator repair")

    assert forced.current_state is S.REVIEW
    assert forced.history[-1].reason == f"{FORCED_REASON_PREFIX} operator repair"
    assert forced.history[-1].triggered_by == "recovery"


def test_possible_paths_for_free_debate() -> None:
    paths = _machine().get_possible_paths(WorkflowType.B, S.INTAKE)

    assert len(paths) == 8
    assert all(path[0] is S.INTAKE and path[-1] in TERMINAL_STATES for path in paths)
    assert (S.INTAKE, S.TRIAGE, S.DELIBERATION, S.CLOSED) in paths
    assert all(len(set(path)) == len(path) for path in paths)


def test_possible_paths_from_terminal_state_is_the_state_itself() -> None:
    assert _machine().get_possible_paths(WorkflowType.A, S.CLOSED) == [(S.CLOSED,)]


def test_constructor_and_path_arguments_are_validated() -> None:
    with pytest.raises(ValueError):
        WorkflowStateMachine(min_consensus_score=101)
    with pytest.raises(ValueError):
        _machine().get_possible_paths(WorkflowType.A, S.INTAKE, max_depth=0)
    with pytest.raises(ValueError):
        _machine().validate_workflow_path(WorkflowType.A, [])


@st.composite
def _table_walks(draw: st.DrawFn) -> tuple[WorkflowType, list[WorkflowState]]:
    workflow_type = draw(st.sampled_from(list(WorkflowType)))
    table = TRANSITION_TABLES[workflow_type]
    walk = [S.INTAKE]
    while walk[-1] in table and len(walk) < 15:
        walk.append(draw(st.sampled_from(table[walk[-1]])))
    return workflow_type, walk


@settings(max_examples=75, deadline=None, derandomize=True)
@given(_table_walks())
def test_every_walk_along_the_table_validates(
    walk: tuple[WorkflowType, list[WorkflowState]],
) -> None:
    workflow_type, states = walk
    _machine().validate_workflow_path(workflow_type, states)


@settings(max_examples=75, deadline=None, derandomize=True)
@given(_table_walks(), st.sampled_from(list(WorkflowState)))
def test_appending_an_unlisted_edge_is_rejected(
    walk: tuple[WorkflowType, list[WorkflowState]], extra: WorkflowState
) -> None:
    workflow_type, states = walk
    last = states[-1]
    if extra in TRANSITION_TABLES[workflow_type].get(last, ()):
        return
    with pytest.raises(InvalidTransitionError) as excinfo:
        _machine().validate_workflow_path(workflow_type, [*states, extra])
    assert excinfo.value.from_state is last
