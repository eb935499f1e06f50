"""In-memory document registry, voting gateway and execution lock."""

from __future__ import annotations

import asyncio

import pytest

from governance_orchestrator.domain.ids import validate_prefixed_id, validate_ulid
from governance_orchestrator.domain.models import DocumentType, RiskLevel
from governance_orchestrator.integration_plane.collaborators import (
    DocumentRegistry,
    ExecutionLock,
    InMemoryDocumentRegistry,
    InMemoryExecutionLock,
    InMemoryVotingGateway,
    LockNotFoundError,
    VotingGateway,
    registry_document_id,
)
from governance_orchestrator.utils.hashing import sha256_text


def test_in_memory_collaborators_satisfy_protocols() -> None:
    assert isinstance(InMemoryDocumentRegistry(), DocumentRegistry)
    assert isinstance(InMemoryVotingGateway(), VotingGateway)
    assert isinstance(InMemoryExecutionLock(), ExecutionLock)


def test_registry_ids_carry_doc_prefix_and_type() -> None:
    document_id = registry_document_id(DocumentType.DECISION_PACKET)

    assert document_id.startswith("DOC-DP-")
    validate_ulid(document_id.removeprefix("DOC-DP-"))


@pytest.mark.asyncio
async def test_registry_hashes_content_and_filters_by_workflow() -> None:
    registry = InMemoryDocumentRegistry()

    first = await registry.create_document(
        DocumentType.DECISION_PACKET, "packet body", {"workflow_id": "wf-a"}
    )
    await registry.create_document(DocumentType.DIGEST_REPORT, "digest", {"workflow_id": "wf-b"})

    document = registry.get(first)
    assert document is not None
    assert document.content_hash == sha256_text("packet body")
    assert document.doc_type is DocumentType.DECISION_PACKET
    assert [doc.id for doc in registry.list(workflow_id="wf-a")] == [first]
    assert len(registry.list()) == 2
    assert registry.get("DOC-missing") is None


@pytest.mark.asyncio
async def test_voting_gateway_records_requests() -> None:
    gateway = InMemoryVotingGateway()

    voting_id = await gateway.submit_for_vote(
        workflow_id="wf-a",
        title="Adopt grants round",
        risk_level=RiskLevel.HIGH,
        document_ids=("DOC-DP-1",),
    )

    validate_prefixed_id(voting_id, "vote")
    request = gateway.get(voting_id)
    assert request is not None
    assert request.document_ids == ("DOC-DP-1",)
    assert gateway.list() == [request]


@pytest.mark.asyncio
async def test_lock_is_released_at_most_once() -> None:
    lock = InMemoryExecutionLock()

    lock_id = await lock.lock_action(
        workflow_id="wf-a",
        action="execute_partnership_agreement",
        risk_level=RiskLevel.HIGH,
        reason="awaiting approval",
    )
    validate_prefixed_id(lock_id, "lock")
    assert [record.id for record in lock.active_locks()] == [lock_id]

    await lock.unlock_action(lock_id)

    record = lock.get(lock_id)
    assert record is not None and not record.is_locked
    assert lock.active_locks() == []
    with pytest.raises(LockNotFoundError):
        await lock.unlock_action(lock_id)
    with pytest.raises(KeyError):
        await lock.unlock_action("lock-unknown")


@pytest.mark.asyncio
async def test_concurrent_locks_get_distinct_ids() -> None:
    lock = InMemoryExecutionLock()

    ids = await asyncio.gather(
        *(
            lock.lock_action(
                workflow_id=f"wf-{index}",
                action="grant_over_threshold",
                risk_level=RiskLevel.HIGH,
                reason="grant",
            )
            for index in range(20)
        )
    )

    assert len(set(ids)) == 20
    assert len(lock.active_locks()) == 20
