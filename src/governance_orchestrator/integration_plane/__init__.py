"""
governance-orchestrator — module skeleton

File: src/governance_orchestrator/integration_plane/__init__.py
Last updated: 2026-10-17

Purpose
- Integration plane: document registry, voting gateway and execution lock
  collaborators.

Non-functional requirements
- Must keep the orchestrator independent of any concrete registry, voting or
  approval backend.
"""

from governance_orchestrator.integration_plane.collaborators import (
    CollaboratorError,
    DocumentRegistry,
    ExecutionLock,
    InMemoryDocumentRegistry,
    InMemoryExecutionLock,
    InMemoryVotingGateway,
    LockNotFoundError,
    LockRecord,
    RegisteredDocument,
    VoteRequest,
    VotingGateway,
    registry_document_id,
)

__all__ = [
    "CollaboratorError",
    "DocumentRegistry",
    "ExecutionLock",
    "InMemoryDocumentRegistry",
    "InMemoryExecutionLock",
    "InMemoryVotingGateway",
    "LockNotFoundError",
    "LockRecord",
    "RegisteredDocument",
    "VoteRequest",
    "VotingGateway",
    "registry_document_id",
]
