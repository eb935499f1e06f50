"""Issue priority scoring, workflow-type selection and risk classification."""

from __future__ import annotations

from governance_orchestrator.constants import (
    HIGH_RISK_PENALTY_THRESHOLD,
    HIGH_RISK_PRIORITY_THRESHOLD,
    PRIORITY_SCORE_MAX,
    PRIORITY_SCORE_MIN,
)
from governance_orchestrator.domain.models import Issue, PriorityScore, RiskLevel, WorkflowType
from governance_orchestrator.domain.tables import (
    CATEGORY_WORKFLOW_TYPE,
    TOPIC_WEIGHTS,
    WORKFLOW_TYPE_BASE_RISK,
)


def score_issue(issue: Issue) -> PriorityScore:
    """Weight + impact + urgency + feasibility + penalty, clamped to the score range."""

    weight = TOPIC_WEIGHTS[issue.category]
    impact = issue.impact.score
    urgency = issue.urgency.score
    feasibility = issue.feasibility.score
    raw = weight + impact + urgency + feasibility + issue.risk_penalty
    return PriorityScore(
        topic_weight=weight,
        impact=impact,
        urgency=urgency,
        feasibility=feasibility,
        risk_penalty=issue.risk_penalty,
        total=max(PRIORITY_SCORE_MIN, min(PRIORITY_SCORE_MAX, raw)),
    )


def select_workflow_type(issue: Issue) -> WorkflowType:
    if issue.workflow_type is not None:
        return issue.workflow_type
    return CATEGORY_WORKFLOW_TYPE[issue.category]


def classify_risk(workflow_type: WorkflowType, score: PriorityScore) -> RiskLevel:
    if score.total >= HIGH_RISK_PRIORITY_THRESHOLD:
        return RiskLevel.HIGH
    if score.risk_penalty <= HIGH_RISK_PENALTY_THRESHOLD:
        return RiskLevel.HIGH
    return WORKFLOW_TYPE_BASE_RISK[workflow_type]


__all__ = ["classify_risk", "score_issue", "select_workflow_type"]
