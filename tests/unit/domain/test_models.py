"""
governance-orchestrator — unit tests for domain models

File: tests/unit/domain/test_models.py
Last updated: 2026-10-17

Purpose
- Validate construction rules and canonical JSON serialization of the
  records persisted by the stores and carried between planes.

What this test file should cover
- JSON round trips for Issue, WorkflowContext and OrchestratorTask.
- Rejection of out-of-range scoring levels, unknown fields and naive datetimes.
- Difficulty escalation and quality verdict reasons.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta

import pytest

from governance_orchestrator.domain.models import (
    DifficultyLevel,
    DocumentRef,
    DocumentType,
    ImpactFactors,
    Issue,
    OrchestratorTask,
    PriorityScore,
    QualityVerdict,
    ReviewStatus,
    RiskLevel,
    SpecialistCode,
    StateTransitionRecord,
    TaskSpec,
    TaskStatus,
    TopicCategory,
    UrgencyFactors,
    WorkflowContext,
    WorkflowState,
)

from ... import FIXED_NOW, make_context, make_issue


def test_issue_json_round_trip() -> None:
    issue = make_issue(high_priority=True, risk_penalty=-10)
    issue = Issue.from_dict({**issue.to_dict(), "created_at": "2026-10-17T12:00:00Z"})

    restored = Issue.from_json(issue.to_json())

    assert restored == issue
    assert restored.created_at == FIXED_NOW
    assert restored.impact.score == 60


def test_canonical_json_has_sorted_keys() -> None:
    raw = make_issue().to_json()

    assert list(json.loads(raw)) == sorted(json.loads(raw))
    assert ", " not in raw


def test_workflow_context_round_trip_keeps_history_and_documents() -> None:
    context = make_context(
        current_state=WorkflowState.REVIEW,
        risk_level=RiskLevel.MID,
        documents=(DocumentRef(DocumentType.DECISION_PACKET, "DOC-DP-01"),),
        review_status=ReviewStatus.APPROVED,
        consensus_score=72.5,
        completed_stages=(WorkflowState.INTAKE, WorkflowState.TRIAGE),
        history=(
            StateTransitionRecord(
                WorkflowState.INTAKE, WorkflowState.TRIAGE, FIXED_NOW, "triaged", "system"
            ),
        ),
        metadata={"option_count": 3, "sources": ["a", "b"]},
    )

    restored = WorkflowContext.from_json(context.to_json())

    assert restored == context
    assert restored.document_ids() == ("DOC-DP-01",)
    assert restored.has_document(DocumentType.DECISION_PACKET)
    assert not restored.has_document(DocumentType.DIGEST_REPORT)


def test_task_round_trip_and_terminal_flag() -> None:
    task = OrchestratorTask(
        id="task-01",
        todo_id="todo-01",
        workflow_id="wf-01",
        stage=WorkflowState.TRIAGE,
        specialist_code=SpecialistCode.ANALYST,
        name="triage:ANA",
        sequence=0,
        payload={"stage": "triage"},
        created_at=FIXED_NOW,
        updated_at=FIXED_NOW,
    )
    done = task.evolve(
        status=TaskStatus.COMPLETED,
        result={"success": True},
        completed_at=FIXED_NOW + timedelta(seconds=3),
    )

    assert OrchestratorTask.from_json(done.to_json()) == done
    assert done.is_terminal and not task.is_terminal
    assert task.key == ("wf-01", WorkflowState.TRIAGE, SpecialistCode.ANALYST)


@pytest.mark.parametrize(
    "build",
    [
        lambda: ImpactFactors(revenue_potential=7),
        lambda: ImpactFactors(user_base_affected=True),
        lambda: UrgencyFactors(time_sensitivity=15),
        lambda: PriorityScore(100, 0, 0, 0, 0, 201),
        lambda: PriorityScore(100, 0, 0, 0, 5, 100),
        lambda: make_issue(risk_penalty=5),
        lambda: make_issue(title="   "),
        lambda: make_context(consensus_score=101.0),
        lambda: make_context(metadata={"bad": object()}),
        lambda: TaskSpec(SpecialistCode.ANALYST, "x", priority=101),
        lambda: TaskSpec(SpecialistCode.ANALYST, "x", max_retries=0),
        lambda: QualityVerdict(passed=True, confidence=-1.0),
    ],
)
def test_invalid_construction_is_rejected(build: object) -> None:
    with pytest.raises(ValueError):
        build()  # type: ignore[operator]


def test_from_dict_rejects_unknown_fields_and_naive_datetimes() -> None:
    data = make_issue().to_dict()

    with pytest.raises(ValueError, match="unexpected fields"):
        Issue.from_dict({**data, "colour": "red"})
    with pytest.raises(ValueError, match="timezone-aware"):
        Issue.from_dict({**data, "created_at": datetime(2026, 10, 17).isoformat()})
    with pytest.raises(ValueError, match="expected one of"):
        Issue.from_dict({**data, "category": "GOSSIP"})
    with pytest.raises(ValueError, match="missing required fields"):
        Issue.from_dict({"id": "issue-1"})
    with pytest.raises(ValueError, match="invalid JSON"):
        Issue.from_json("{not json")
    with pytest.raises(ValueError, match="root must be an object"):
        Issue.from_json("[]")


def test_topic_category_is_validated_on_construction() -> None:
    with pytest.raises(ValueError):
        Issue(id="issue-1", title="t", category="mossland_expansion")  # type: ignore[arg-type]
    issue = make_issue(category=TopicCategory.MOSSLAND_EXPANSION)
    assert issue.category is TopicCategory.MOSSLAND_EXPANSION


def test_difficulty_escalation_saturates() -> None:
    assert DifficultyLevel.SIMPLE.escalate() is DifficultyLevel.MODERATE
    assert DifficultyLevel.COMPLEX.escalate() is DifficultyLevel.CRITICAL
    assert DifficultyLevel.CRITICAL.escalate() is DifficultyLevel.CRITICAL


def test_quality_verdict_reason() -> None:
    assert QualityVerdict(passed=True, confidence=90.0).reason == "passed"
    assert QualityVerdict(passed=False, confidence=60.0).reason == (
        "confidence 60 below threshold"
    )
    assert QualityVerdict(passed=False, confidence=50.0, issues=("a", "b")).reason == "a; b"
