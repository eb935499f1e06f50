"""
governance-orchestrator — module skeleton

File: src/governance_orchestrator/integration_plane/collaborators.py
Last updated: 2026-10-17

Purpose
- Interfaces to the systems the orchestrator hands work to but does not own:
  the document registry, the voting gateway and the execution lock.

What should be included in this file
- ``DocumentRegistry``, ``VotingGateway`` and ``ExecutionLock`` protocols.
- In-memory implementations used by tests and single-process deployments.

Functional requirements
- Registry document ids carry the ``DOC-`` prefix.
- Unlocking an unknown or already released lock is an error.
- Every call is safe to make concurrently from several workflow drivers.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol, runtime_checkable

from governance_orchestrator.constants import REGISTRY_ID_PREFIX
from governance_orchestrator.domain.errors import GovernanceError
from governance_orchestrator.domain.ids import generate_prefixed_id, generate_ulid
from governance_orchestrator.domain.models import DocumentType, JSONValue, RiskLevel
from governance_orchestrator.utils.hashing import sha256_text


class CollaboratorError(GovernanceError):
    """Raised when an external collaborator refuses a request."""


class LockNotFoundError(CollaboratorError, KeyError):
    """Raised when unlocking a lock id that is unknown or already released."""


@runtime_checkable
class DocumentRegistry(Protocol):
    async def create_document(
        self,
        doc_type: DocumentType,
        content: str,
        provenance: Mapping[str, JSONValue],
    ) -> str: ...


@runtime_checkable
class VotingGateway(Protocol):
    async def submit_for_vote(
        self,
        *,
        workflow_id: str,
        title: str,
        risk_level: RiskLevel,
        document_ids: tuple[str, ...] = (),
    ) -> str: ...


@runtime_checkable
class ExecutionLock(Protocol):
    async def lock_action(
        self,
        *,
        workflow_id: str,
        action: str,
        risk_level: RiskLevel,
        reason: str,
    ) -> str: ...

    async def unlock_action(self, lock_id: str) -> None: ...


@dataclass(frozen=True, slots=True)
class RegisteredDocument:
    id: str
    doc_type: DocumentType
    content: str
    content_hash: str
    provenance: dict[str, JSONValue]
    created_at: datetime


@dataclass(frozen=True, slots=True)
class VoteRequest:
    id: str
    workflow_id: str
    title: str
    risk_level: RiskLevel
    document_ids: tuple[str, ...]
    created_at: datetime


@dataclass(slots=True)
class LockRecord:
    id: str
    workflow_id: str
    action: str
    risk_level: RiskLevel
    reason: str
    locked_at: datetime
    released_at: datetime | None = None

    @property
    def is_locked(self) -> bool:
        return self.released_at is None


def registry_document_id(doc_type: DocumentType) -> str:
    return f"{REGISTRY_ID_PREFIX}{doc_type.value}-{generate_ulid()}"


class InMemoryDocumentRegistry:
    """Keeps registered documents in a dict; content is hashed on registration."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._documents: dict[str, RegisteredDocument] = {}

    async def create_document(
        self,
        doc_type: DocumentType,
        content: str,
        provenance: Mapping[str, JSONValue],
    ) -> str:
        document = RegisteredDocument(
            id=registry_document_id(doc_type),
            doc_type=doc_type,
            content=content,
            content_hash=sha256_text(content),
            provenance=dict(provenance),
            created_at=datetime.now(tz=UTC),
        )
        with self._lock:
            self._documents[document.id] = document
        return document.id

    def get(self, document_id: str) -> RegisteredDocument | None:
        with self._lock:
            return self._documents.get(document_id)

    def list(self, *, workflow_id: str | None = None) -> list[RegisteredDocument]:
        with self._lock:
            documents = list(self._documents.values())
        if workflow_id is not None:
            documents = [
                doc for doc in documents if doc.provenance.get("workflow_id") == workflow_id
            ]
        return sorted(documents, key=lambda item: (item.created_at, item.id))


class InMemoryVotingGateway:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._requests: dict[str, VoteRequest] = {}

    async def submit_for_vote(
        self,
        *,
        workflow_id: str,
        title: str,
        risk_level: RiskLevel,
        document_ids: tuple[str, ...] = (),
    ) -> str:
        request = VoteRequest(
            id=generate_prefixed_id("vote"),
            workflow_id=workflow_id,
            title=title,
            risk_level=risk_level,
            document_ids=tuple(document_ids),
            created_at=datetime.now(tz=UTC),
        )
        with self._lock:
            self._requests[request.id] = request
        return request.id

    def get(self, voting_id: str) -> VoteRequest | None:
        with self._lock:
            return self._requests.get(voting_id)

    def list(self) -> list[VoteRequest]:
        with self._lock:
            return sorted(self._requests.values(), key=lambda item: (item.created_at, item.id))


class InMemoryExecutionLock:
    """Lock ledger; a lock is released at most once."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[str, LockRecord] = {}

    async def lock_action(
        self,
        *,
        workflow_id: str,
        action: str,
        risk_level: RiskLevel,
        reason: str,
    ) -> str:
        record = LockRecord(
            id=generate_prefixed_id("lock"),
            workflow_id=workflow_id,
            action=action,
            risk_level=risk_level,
            reason=reason,
            locked_at=datetime.now(tz=UTC),
        )
        with self._lock:
            self._records[record.id] = record
        return record.id

    async def unlock_action(self, lock_id: str) -> None:
        with self._lock:
            record = self._records.get(lock_id)
            if record is None or not record.is_locked:
                raise LockNotFoundError(f"no active lock {lock_id!r}")
            record.released_at = datetime.now(tz=UTC)

    def get(self, lock_id: str) -> LockRecord | None:
        with self._lock:
            return self._records.get(lock_id)

    def active_locks(self) -> list[LockRecord]:
        with self._lock:
            return [record for record in self._records.values() if record.is_locked]


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
