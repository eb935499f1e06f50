"""
governance-orchestrator — unit tests for the specialist manager

File: tests/unit/synthesis_plane/test_specialists.py
Last updated: 2026-10-17

Purpose
- Pin the retry loop: attempt budget, difficulty escalation, backoff delays
  and the split between retryable and permanent provider failures.

What this test file should cover
- Pass on first attempt; pass after a rejected attempt; exhaustion.
- Non-retryable provider errors end dispatch after one call.
- Registry lookups and cooperative cancellation.

Functional requirements
- No real sleeping: the sleep function is injected.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field

import pytest
import pytest_asyncio

from governance_orchestrator.domain.models import (
    DifficultyLevel,
    DocumentType,
    RiskLevel,
    SpecialistCode,
    SpecialistTask,
    WorkflowState,
    WorkflowType,
)
from governance_orchestrator.synthesis_plane.providers.base import (
    BackoffConfig,
    ProviderAuthenticationError,
    ProviderRateLimitError,
)
from governance_orchestrator.synthesis_plane.specialists import (
    SpecialistManager,
    UnknownSpecialistError,
)
from governance_orchestrator.synthesis_plane.task_queue import BoundedTaskQueue
from governance_orchestrator.utils.concurrency import CancellationToken, OperationCancelledError

from ... import GOOD_OUTPUT, ScriptedProvider


@dataclass
class SequenceProvider:
    """Returns (or raises) one scripted response per call."""

    responses: list[str | Exception]
    difficulties: list[DifficultyLevel] = field(default_factory=list)

    async def invoke(self, prompt: str, difficulty: DifficultyLevel) -> str:
        del prompt
        self.difficulties.append(difficulty)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@dataclass
class RecordingKPI:
    llm_calls: list[bool] = field(default_factory=list)

    def record_llm_call(self, success: bool) -> None:
        self.llm_calls.append(success)


@dataclass
class RecordingSleep:
    delays: list[float] = field(default_factory=list)

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


ManagerFactory = Callable[..., SpecialistManager]


@pytest_asyncio.fixture
async def make_manager() -> AsyncIterator[ManagerFactory]:
    managers: list[SpecialistManager] = []

    def factory(provider: object, **kwargs: object) -> SpecialistManager:
        kwargs.setdefault("task_queue", BoundedTaskQueue(max_workers=1, capacity=4))
        kwargs.setdefault("sleep", RecordingSleep())
        manager = SpecialistManager(provider, **kwargs)  # type: ignore[arg-type]
        managers.append(manager)
        return manager

    yield factory
    for manager in managers:
        await manager.task_queue.close()


def _task(
    code: SpecialistCode = SpecialistCode.ANALYST,
    difficulty: DifficultyLevel | None = None,
) -> SpecialistTask:
    return SpecialistTask(
        task_id="task-0001",
        workflow_id="wf-0001",
        specialist_code=code,
        stage=WorkflowState.TRIAGE,
        difficulty=difficulty,
        payload={"issue_title": "Grants round", "workflow_type": "B"},
    )


@pytest.mark.asyncio
async def test_passing_output_returns_after_one_attempt(make_manager: ManagerFactory) -> None:
    provider = ScriptedProvider()
    kpi = RecordingKPI()
    manager = make_manager(provider, kpi=kpi)

    output = await manager.dispatch(_task())

    assert output.success is True
    assert output.attempts == 1
    assert output.content == GOOD_OUTPUT
    assert output.difficulty is DifficultyLevel.MODERATE
    assert output.error is None
    assert provider.calls == [(SpecialistCode.ANALYST, DifficultyLevel.MODERATE)]
    assert kpi.llm_calls == [True]
    assert manager.stats() == {
        "dispatched": 1,
        "passed": 1,
        "failed": 0,
        "retries": 0,
        "provider_errors": 0,
    }


@pytest.mark.asyncio
async def test_rejected_output_escalates_until_budget_is_spent(
    make_manager: ManagerFactory,
) -> None:
    provider = ScriptedProvider(overrides={SpecialistCode.ANALYST: "short"})
    sleep = RecordingSleep()
    manager = make_manager(provider, max_retries=3, sleep=sleep)

    output = await manager.dispatch(_task())

    assert output.success is False
    assert output.attempts == 3
    assert output.error == "output too short (5 < 800)"
    assert [difficulty for _, difficulty in provider.calls] == [
        DifficultyLevel.MODERATE,
        DifficultyLevel.COMPLEX,
        DifficultyLevel.CRITICAL,
    ]
    assert sleep.delays == [1.0, 2.0]
    assert manager.stats()["retries"] == 2
    assert manager.stats()["failed"] == 1


@pytest.mark.asyncio
async def test_pass_after_rejection_reports_attempt_count(make_manager: ManagerFactory) -> None:
    provider = SequenceProvider(["[TODO]", GOOD_OUTPUT])
    sleep = RecordingSleep()
    manager = make_manager(
        provider, backoff=BackoffConfig(initial_delay_seconds=0.0), sleep=sleep
    )

    output = await manager.dispatch(_task(difficulty=DifficultyLevel.CRITICAL))

    assert output.success is True
    assert output.attempts == 2
    # Escalation saturates at the top tier.
    assert provider.difficulties == [DifficultyLevel.CRITICAL, DifficultyLevel.CRITICAL]
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_retryable_provider_error_is_retried(make_manager: ManagerFactory) -> None:
    kpi = RecordingKPI()
    provider = SequenceProvider([ProviderRateLimitError("slow down"), GOOD_OUTPUT])
    manager = make_manager(provider, kpi=kpi)

    output = await manager.dispatch(_task())

    assert output.success is True
    assert output.attempts == 2
    assert kpi.llm_calls == [False, True]
    assert manager.stats()["provider_errors"] == 1


@pytest.mark.asyncio
async def test_non_retryable_provider_error_stops_immediately(
    make_manager: ManagerFactory,
) -> None:
    provider = SequenceProvider([ProviderAuthenticationError("bad key"), GOOD_OUTPUT])
    manager = make_manager(provider, max_retries=5)

    output = await manager.dispatch(_task())

    assert output.success is False
    assert output.attempts == 1
    assert output.content == ""
    assert output.verdict is None
    assert output.error is not None and "code=auth" in output.error
    assert len(provider.responses) == 1


@pytest.mark.asyncio
async def test_per_call_budget_overrides_default(make_manager: ManagerFactory) -> None:
    provider = ScriptedProvider(overrides={SpecialistCode.ANALYST: "short"})
    manager = make_manager(provider, max_retries=3)

    output = await manager.dispatch(_task(), max_retries=1)

    assert output.attempts == 1
    with pytest.raises(ValueError):
        await manager.dispatch(_task(), max_retries=0)


@pytest.mark.asyncio
async def test_cancelled_token_aborts_dispatch(make_manager: ManagerFactory) -> None:
    provider = ScriptedProvider()
    manager = make_manager(provider)
    token = CancellationToken()
    token.cancel()

    with pytest.raises(OperationCancelledError):
        await manager.dispatch(_task(), cancel_token=token)
    assert provider.calls == []


def test_registry_lookups() -> None:
    manager = SpecialistManager(ScriptedProvider())

    assert manager.get_specialist("RED").name == "Red Team"
    with pytest.raises(UnknownSpecialistError):
        manager.get_specialist("XYZ")
    with pytest.raises(KeyError):
        manager.get_specialist("")
    assert SpecialistManager.stage_specialists(WorkflowState.DELIBERATION) == (
        SpecialistCode.ANALYST,
        SpecialistCode.RED_TEAM,
    )
    assert SpecialistManager.stage_specialists(WorkflowState.COMPLETED) == ()
    assert (
        SpecialistManager.difficulty_for_document(DocumentType.DECISION_PACKET)
        is DifficultyLevel.CRITICAL
    )
    assert SpecialistManager.risk_level_for_action("grant_under_threshold") is RiskLevel.MID
    assert SpecialistManager.risk_level_for_action("mint_everything") is RiskLevel.HIGH
    assert SpecialistManager.document_outputs(WorkflowType.B) == (DocumentType.DECISION_PACKET,)


def test_invalid_budget_is_rejected() -> None:
    with pytest.raises(ValueError):
        SpecialistManager(ScriptedProvider(), max_retries=0)
