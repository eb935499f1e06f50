"""
Static governance lookup tables.

Every routing decision in the core (category to workflow type, state to
specialists, document to difficulty, action to risk level, the per-type
transition tables) is data held here rather than branching in the components.
The tables are frozen with ``MappingProxyType`` and cross-checked once at
import time so that a bad edit fails fast instead of surfacing mid-pipeline.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Final

from governance_orchestrator.domain.models import (
    DifficultyLevel,
    DocumentType,
    RiskLevel,
    SpecialistCode,
    TopicCategory,
    WorkflowState,
    WorkflowType,
)

S = WorkflowState


@dataclass(frozen=True, slots=True)
class SpecialistDefinition:
    code: SpecialistCode
    name: str
    description: str
    difficulty: DifficultyLevel
    max_tokens: int
    min_output_length: int

    def __post_init__(self) -> None:
        if self.max_tokens <= 0:
            raise ValueError(f"{self.code}: max_tokens must be > 0")
        if self.min_output_length < 0:
            raise ValueError(f"{self.code}: min_output_length must be >= 0")


WORKFLOW_TYPE_LABELS: Final[Mapping[WorkflowType, str]] = MappingProxyType(
    {
        WorkflowType.A: "Academic Activity",
        WorkflowType.B: "Free Debate",
        WorkflowType.C: "Developer Support",
        WorkflowType.D: "Ecosystem Expansion",
        WorkflowType.E: "Working Groups",
    }
)

TOPIC_WEIGHTS: Final[Mapping[TopicCategory, int]] = MappingProxyType(
    {
        TopicCategory.MOSSLAND_EXPANSION: 100,
        TopicCategory.BLOCKCHAIN_AI_ECOSYSTEM: 60,
        TopicCategory.COMMUNITY_GOVERNANCE: 40,
        TopicCategory.TECHNICAL_INFRASTRUCTURE: 30,
        TopicCategory.OPEN_GENERAL: 20,
    }
)

CATEGORY_WORKFLOW_TYPE: Final[Mapping[TopicCategory, WorkflowType]] = MappingProxyType(
    {
        TopicCategory.MOSSLAND_EXPANSION: WorkflowType.D,
        TopicCategory.BLOCKCHAIN_AI_ECOSYSTEM: WorkflowType.A,
        TopicCategory.COMMUNITY_GOVERNANCE: WorkflowType.B,
        TopicCategory.TECHNICAL_INFRASTRUCTURE: WorkflowType.C,
        TopicCategory.OPEN_GENERAL: WorkflowType.B,
    }
)

WORKFLOW_TYPE_BASE_RISK: Final[Mapping[WorkflowType, RiskLevel]] = MappingProxyType(
    {
        WorkflowType.A: RiskLevel.LOW,
        WorkflowType.B: RiskLevel.LOW,
        WorkflowType.C: RiskLevel.HIGH,
        WorkflowType.D: RiskLevel.HIGH,
        WorkflowType.E: RiskLevel.MID,
    }
)

_TRANSITIONS_A: Final[dict[WorkflowState, tuple[WorkflowState, ...]]] = {
    S.INTAKE: (S.TRIAGE,),
    S.TRIAGE: (S.RESEARCH,),
    S.RESEARCH: (S.DELIBERATION,),
    S.DELIBERATION: (S.PUBLISH, S.REJECTED),
    S.PUBLISH: (S.CLOSED,),
}

_TRANSITIONS_B: Final[dict[WorkflowState, tuple[WorkflowState, ...]]] = {
    S.INTAKE: (S.TRIAGE,),
    S.TRIAGE: (S.RESEARCH, S.DELIBERATION),
    S.RESEARCH: (S.DELIBERATION,),
    S.DELIBERATION: (S.DECISION_PACKET, S.CLOSED, S.REJECTED),
    S.DECISION_PACKET: (S.REVIEW,),
    S.REVIEW: (S.PUBLISH, S.DECISION_PACKET, S.REJECTED),
    S.PUBLISH: (S.CLOSED,),
}

_TRANSITIONS_C: Final[dict[WorkflowState, tuple[WorkflowState, ...]]] = {
    S.INTAKE: (S.TRIAGE,),
    S.TRIAGE: (S.RESEARCH,),
    S.RESEARCH: (S.DELIBERATION,),
    S.DELIBERATION: (S.DECISION_PACKET, S.REJECTED),
    S.DECISION_PACKET: (S.REVIEW,),
    S.REVIEW: (S.PUBLISH, S.DECISION_PACKET, S.REJECTED),
    S.PUBLISH: (S.EXEC_LOCKED,),
    S.EXEC_LOCKED: (S.OUTCOME_PROOF, S.REJECTED),
    S.OUTCOME_PROOF: (S.VERIFIED,),
}

_TRANSITIONS_D: Final[dict[WorkflowState, tuple[WorkflowState, ...]]] = {
    S.INTAKE: (S.TRIAGE,),
    S.TRIAGE: (S.RESEARCH,),
    S.RESEARCH: (S.DELIBERATION,),
    S.DELIBERATION: (S.DECISION_PACKET, S.REJECTED),
    S.DECISION_PACKET: (S.REVIEW,),
    S.REVIEW: (S.PUBLISH, S.DECISION_PACKET, S.REJECTED),
    S.PUBLISH: (S.EXEC_LOCKED,),
    S.EXEC_LOCKED: (S.EXECUTED, S.REJECTED),
}

_TRANSITIONS_E: Final[dict[WorkflowState, tuple[WorkflowState, ...]]] = {
    S.INTAKE: (S.TRIAGE,),
    S.TRIAGE: (S.DELIBERATION,),
    S.DELIBERATION: (S.DECISION_PACKET, S.REJECTED),
    S.DECISION_PACKET: (S.REVIEW,),
    S.REVIEW: (S.PUBLISH, S.DECISION_PACKET, S.REJECTED),
    S.PUBLISH: (S.CLOSED,),
}

TRANSITION_TABLES: Final[
    Mapping[WorkflowType, Mapping[WorkflowState, tuple[WorkflowState, ...]]]
] = MappingProxyType(
    {
        WorkflowType.A: MappingProxyType(_TRANSITIONS_A),
        WorkflowType.B: MappingProxyType(_TRANSITIONS_B),
        WorkflowType.C: MappingProxyType(_TRANSITIONS_C),
        WorkflowType.D: MappingProxyType(_TRANSITIONS_D),
        WorkflowType.E: MappingProxyType(_TRANSITIONS_E),
    }
)

INITIAL_STATE: Final[WorkflowState] = S.INTAKE

TERMINAL_STATES: Final[frozenset[WorkflowState]] = frozenset(
    {S.EXECUTED, S.VERIFIED, S.CLOSED, S.REJECTED, S.CANCELLED}
)

# States where progress waits on an external approval rather than on specialists.
APPROVAL_GATED_STATES: Final[frozenset[WorkflowState]] = frozenset({S.EXEC_LOCKED})

SPECIALISTS: Final[Mapping[SpecialistCode, SpecialistDefinition]] = MappingProxyType(
    {
        definition.code: definition
        for definition in (
            SpecialistDefinition(
                SpecialistCode.RESEARCHER,
                "Researcher",
                "Gathers sources and background evidence for the issue.",
                DifficultyLevel.MODERATE,
                2000,
                500,
            ),
            SpecialistDefinition(
                SpecialistCode.ANALYST,
                "Analyst",
                "Weighs options, impact and feasibility.",
                DifficultyLevel.MODERATE,
                3000,
                800,
            ),
            SpecialistDefinition(
                SpecialistCode.DRAFTER,
                "Drafter",
                "Drafts governance documents such as decision packets.",
                DifficultyLevel.COMPLEX,
                4000,
                1000,
            ),
            SpecialistDefinition(
                SpecialistCode.REVIEWER,
                "Reviewer",
                "Checks drafts for completeness and consistency.",
                DifficultyLevel.MODERATE,
                1500,
                300,
            ),
            SpecialistDefinition(
                SpecialistCode.RED_TEAM,
                "Red Team",
                "Argues against the proposal and surfaces risks.",
                DifficultyLevel.COMPLEX,
                2000,
                400,
            ),
            SpecialistDefinition(
                SpecialistCode.SUMMARIZER,
                "Summarizer",
                "Condenses outputs into short summaries.",
                DifficultyLevel.SIMPLE,
                500,
                100,
            ),
            SpecialistDefinition(
                SpecialistCode.TRANSLATOR,
                "Translator",
                "Produces translated editions of published documents.",
                DifficultyLevel.SIMPLE,
                4000,
                200,
            ),
            SpecialistDefinition(
                SpecialistCode.ARCHIVIST,
                "Archivist",
                "Files documents and provenance in the registry.",
                DifficultyLevel.SIMPLE,
                500,
                100,
            ),
        )
    }
)

DOCUMENT_DIFFICULTY: Final[Mapping[DocumentType, DifficultyLevel]] = MappingProxyType(
    {
        DocumentType.DECISION_PACKET: DifficultyLevel.CRITICAL,
        DocumentType.GOVERNANCE_PROPOSAL: DifficultyLevel.COMPLEX,
        DocumentType.RESOLUTION_MEMO: DifficultyLevel.MODERATE,
        DocumentType.REVIEW_COMMENTARY: DifficultyLevel.COMPLEX,
        DocumentType.WORKING_GROUP_CHARTER: DifficultyLevel.COMPLEX,
        DocumentType.WORKING_GROUP_REPORT: DifficultyLevel.MODERATE,
        DocumentType.ECOSYSTEM_REPORT: DifficultyLevel.MODERATE,
        DocumentType.PARTNERSHIP_PROPOSAL: DifficultyLevel.COMPLEX,
        DocumentType.PARTNERSHIP_AGREEMENT: DifficultyLevel.CRITICAL,
        DocumentType.DEVELOPER_GRANT_PROPOSAL: DifficultyLevel.MODERATE,
        DocumentType.DEVELOPER_GRANT: DifficultyLevel.COMPLEX,
        DocumentType.MILESTONE_REPORT: DifficultyLevel.SIMPLE,
        DocumentType.RETROSPECTIVE_REPORT: DifficultyLevel.MODERATE,
        DocumentType.DIGEST_REPORT: DifficultyLevel.SIMPLE,
        DocumentType.ACADEMIC_REPORT: DifficultyLevel.MODERATE,
    }
)

WORKFLOW_DOCUMENT_OUTPUTS: Final[Mapping[WorkflowType, tuple[DocumentType, ...]]] = (
    MappingProxyType(
        {
            WorkflowType.A: (DocumentType.DIGEST_REPORT, DocumentType.ACADEMIC_REPORT),
            WorkflowType.B: (DocumentType.DECISION_PACKET,),
            WorkflowType.C: (
                DocumentType.DEVELOPER_GRANT_PROPOSAL,
                DocumentType.DEVELOPER_GRANT,
                DocumentType.MILESTONE_REPORT,
                DocumentType.RETROSPECTIVE_REPORT,
            ),
            WorkflowType.D: (
                DocumentType.PARTNERSHIP_PROPOSAL,
                DocumentType.PARTNERSHIP_AGREEMENT,
                DocumentType.ECOSYSTEM_REPORT,
            ),
            WorkflowType.E: (
                DocumentType.WORKING_GROUP_CHARTER,
                DocumentType.WORKING_GROUP_REPORT,
            ),
        }
    )
)

# Documents registered when a stage completes, per workflow type.
STAGE_DOCUMENTS: Final[
    Mapping[WorkflowType, Mapping[WorkflowState, tuple[DocumentType, ...]]]
] = MappingProxyType(
    {
        WorkflowType.A: MappingProxyType(
            {
                S.RESEARCH: (DocumentType.DIGEST_REPORT,),
                S.DELIBERATION: (DocumentType.ACADEMIC_REPORT,),
            }
        ),
        WorkflowType.B: MappingProxyType({S.DECISION_PACKET: (DocumentType.DECISION_PACKET,)}),
        WorkflowType.C: MappingProxyType(
            {
                S.DECISION_PACKET: (DocumentType.DEVELOPER_GRANT_PROPOSAL,),
                S.PUBLISH: (DocumentType.DEVELOPER_GRANT,),
                S.OUTCOME_PROOF: (
                    DocumentType.MILESTONE_REPORT,
                    DocumentType.RETROSPECTIVE_REPORT,
                ),
            }
        ),
        WorkflowType.D: MappingProxyType(
            {
                S.RESEARCH: (DocumentType.ECOSYSTEM_REPORT,),
                S.DECISION_PACKET: (DocumentType.PARTNERSHIP_PROPOSAL,),
                S.PUBLISH: (DocumentType.PARTNERSHIP_AGREEMENT,),
            }
        ),
        WorkflowType.E: MappingProxyType(
            {
                S.DECISION_PACKET: (DocumentType.WORKING_GROUP_CHARTER,),
                S.PUBLISH: (DocumentType.WORKING_GROUP_REPORT,),
            }
        ),
    }
)

ACTION_RISK_LEVELS: Final[Mapping[str, RiskLevel]] = MappingProxyType(
    {
        "publish_research_digest": RiskLevel.LOW,
        "publish_technology_assessment": RiskLevel.LOW,
        "update_working_group_report": RiskLevel.LOW,
        "agent_chatter": RiskLevel.LOW,
        "create_governance_proposal": RiskLevel.MID,
        "create_partnership_proposal": RiskLevel.MID,
        "form_working_group": RiskLevel.MID,
        "grant_under_threshold": RiskLevel.MID,
        "execute_fund_transfer": RiskLevel.HIGH,
        "execute_contract_deployment": RiskLevel.HIGH,
        "execute_partnership_agreement": RiskLevel.HIGH,
        "execute_treasury_allocation": RiskLevel.HIGH,
        "execute_token_operation": RiskLevel.HIGH,
        "execute_protocol_upgrade": RiskLevel.HIGH,
        "grant_over_threshold": RiskLevel.HIGH,
    }
)

# Action locked behind approval when a workflow reaches exec_locked.
WORKFLOW_LOCKED_ACTIONS: Final[Mapping[WorkflowType, str]] = MappingProxyType(
    {
        WorkflowType.C: "grant_over_threshold",
        WorkflowType.D: "execute_partnership_agreement",
    }
)

STAGE_SPECIALISTS: Final[Mapping[WorkflowState, tuple[SpecialistCode, ...]]] = MappingProxyType(
    {
        S.INTAKE: (SpecialistCode.RESEARCHER, SpecialistCode.ANALYST),
        S.TRIAGE: (SpecialistCode.ANALYST,),
        S.RESEARCH: (SpecialistCode.RESEARCHER,),
        S.DELIBERATION: (SpecialistCode.ANALYST, SpecialistCode.RED_TEAM),
        S.DECISION_PACKET: (
            SpecialistCode.DRAFTER,
            SpecialistCode.ANALYST,
            SpecialistCode.RED_TEAM,
        ),
        S.REVIEW: (SpecialistCode.REVIEWER,),
        S.PUBLISH: (SpecialistCode.ARCHIVIST, SpecialistCode.TRANSLATOR),
        S.EXEC_LOCKED: (),
        S.OUTCOME_PROOF: (SpecialistCode.ANALYST,),
    }
)


def stage_document_types(
    workflow_type: WorkflowType, state: WorkflowState
) -> tuple[DocumentType, ...]:
    return STAGE_DOCUMENTS[workflow_type].get(state, ())


def decision_document_types(workflow_type: WorkflowType) -> tuple[DocumentType, ...]:
    """Document types that count as the decision record for ``workflow_type``."""
    return STAGE_DOCUMENTS[workflow_type].get(S.DECISION_PACKET, ())


def _validate_tables() -> None:
    for workflow_type in WorkflowType:
        for mapping_name, mapping in (
            ("TRANSITION_TABLES", TRANSITION_TABLES),
            ("WORKFLOW_TYPE_LABELS", WORKFLOW_TYPE_LABELS),
            ("WORKFLOW_TYPE_BASE_RISK", WORKFLOW_TYPE_BASE_RISK),
            ("WORKFLOW_DOCUMENT_OUTPUTS", WORKFLOW_DOCUMENT_OUTPUTS),
            ("STAGE_DOCUMENTS", STAGE_DOCUMENTS),
        ):
            if workflow_type not in mapping:
                raise ValueError(f"{mapping_name} is missing workflow type {workflow_type}")

        table = TRANSITION_TABLES[workflow_type]
        if INITIAL_STATE not in table:
            raise ValueError(f"type {workflow_type}: no edges out of {INITIAL_STATE}")
        for source, targets in table.items():
            if source in TERMINAL_STATES:
                raise ValueError(f"type {workflow_type}: terminal state {source} has edges")
            if not targets:
                raise ValueError(f"type {workflow_type}: state {source} has an empty edge list")
            for target in targets:
                if target not in table and target not in TERMINAL_STATES:
                    raise ValueError(
                        f"type {workflow_type}: edge {source}->{target} leads to a dead end"
                    )
            if source not in STAGE_SPECIALISTS:
                raise ValueError(f"STAGE_SPECIALISTS is missing state {source}")

        outputs = set(WORKFLOW_DOCUMENT_OUTPUTS[workflow_type])
        for state, doc_types in STAGE_DOCUMENTS[workflow_type].items():
            if state not in table:
                raise ValueError(f"STAGE_DOCUMENTS[{workflow_type}] names unreachable {state}")
            unknown = set(doc_types) - outputs
            if unknown:
                raise ValueError(
                    f"STAGE_DOCUMENTS[{workflow_type}] produces undeclared documents "
                    f"{sorted(unknown)}"
                )

    for category in TopicCategory:
        if category not in TOPIC_WEIGHTS or category not in CATEGORY_WORKFLOW_TYPE:
            raise ValueError(f"topic category {category} is missing a weight or workflow type")
    for code in SpecialistCode:
        if code not in SPECIALISTS:
            raise ValueError(f"SPECIALISTS is missing {code}")
    for doc_type in DocumentType:
        if doc_type not in DOCUMENT_DIFFICULTY:
            raise ValueError(f"DOCUMENT_DIFFICULTY is missing {doc_type}")
    for workflow_type, action in WORKFLOW_LOCKED_ACTIONS.items():
        if action not in ACTION_RISK_LEVELS:
            raise ValueError(f"locked action {action!r} for {workflow_type} has no risk level")


_validate_tables()

__all__ = [
    "ACTION_RISK_LEVELS",
    "APPROVAL_GATED_STATES",
    "CATEGORY_WORKFLOW_TYPE",
    "DOCUMENT_DIFFICULTY",
    "INITIAL_STATE",
    "SPECIALISTS",
    "STAGE_DOCUMENTS",
    "STAGE_SPECIALISTS",
    "SpecialistDefinition",
    "TERMINAL_STATES",
    "TOPIC_WEIGHTS",
    "TRANSITION_TABLES",
    "WORKFLOW_DOCUMENT_OUTPUTS",
    "WORKFLOW_LOCKED_ACTIONS",
    "WORKFLOW_TYPE_BASE_RISK",
    "WORKFLOW_TYPE_LABELS",
    "decision_document_types",
    "stage_document_types",
]
