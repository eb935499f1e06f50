"""
Specialist routing, quality gating and retry control.

The manager owns one decision loop per dispatched task:

1. render the specialist's prompt template,
2. invoke the language-model provider at the current difficulty tier,
3. evaluate the output with the quality gate,
4. on rejection or a retryable provider failure, back off, escalate the
   difficulty one tier and try again until the attempt budget is spent.

``max_retries`` is the total attempt budget: a task whose output is rejected
``max_retries`` times comes back with ``success=False`` after exactly that
many provider calls. Non-retryable provider errors end the loop at once.
Execution is funnelled through a :class:`TaskQueue` so concurrent workflows
share a bounded number of in-flight provider calls.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

from governance_orchestrator.domain.errors import GovernanceError
from governance_orchestrator.domain.models import (
    DifficultyLevel,
    DocumentType,
    JSONValue,
    QualityVerdict,
    RiskLevel,
    SpecialistCode,
    SpecialistOutput,
    SpecialistTask,
    WorkflowState,
    WorkflowType,
)
from governance_orchestrator.domain.tables import (
    ACTION_RISK_LEVELS,
    DOCUMENT_DIFFICULTY,
    SPECIALISTS,
    STAGE_SPECIALISTS,
    WORKFLOW_DOCUMENT_OUTPUTS,
    SpecialistDefinition,
)
from governance_orchestrator.synthesis_plane.prompt_templates import PromptTemplateEngine
from governance_orchestrator.synthesis_plane.providers.base import (
    BackoffConfig,
    ProviderError,
    SleepFn,
    compute_backoff_delay,
)
from governance_orchestrator.synthesis_plane.quality_gate import DefaultQualityGate, QualityGate
from governance_orchestrator.synthesis_plane.task_queue import BoundedTaskQueue, TaskQueue
from governance_orchestrator.utils.concurrency import CancellationToken

if TYPE_CHECKING:
    from governance_orchestrator.observability.kpi import KPICollector
    from governance_orchestrator.synthesis_plane.providers.base import LLMProvider

Clock = Callable[[], float]


class SpecialistError(GovernanceError):
    """Base class for specialist dispatch failures."""


class UnknownSpecialistError(SpecialistError, KeyError):
    """Raised for a specialist code outside the fixed registry."""


class SpecialistExhaustedError(SpecialistError):
    """Raised when a task used its whole attempt budget without a passing output."""

    def __init__(self, task_id: str, attempts: int, reason: str) -> None:
        self.task_id = task_id
        self.attempts = attempts
        self.reason = reason
        super().__init__(f"task {task_id} exhausted {attempts} attempt(s): {reason}")


@dataclass(slots=True)
class SpecialistStats:
    dispatched: int = 0
    passed: int = 0
    failed: int = 0
    retries: int = 0
    provider_errors: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "dispatched": self.dispatched,
            "passed": self.passed,
            "failed": self.failed,
            "retries": self.retries,
            "provider_errors": self.provider_errors,
        }


class SpecialistManager:
    """Dispatches specialist tasks to a provider behind a quality gate."""

    def __init__(
        self,
        provider: LLMProvider,
        *,
        quality_gate: QualityGate | None = None,
        task_queue: TaskQueue | None = None,
        templates: PromptTemplateEngine | None = None,
        backoff: BackoffConfig | None = None,
        max_retries: int = 3,
        kpi: KPICollector | None = None,
        sleep: SleepFn = asyncio.sleep,
        clock: Clock = time.monotonic,
        logger: Any | None = None,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        self._provider = provider
        self._quality_gate: QualityGate = quality_gate or DefaultQualityGate()
        self._queue: TaskQueue = task_queue or BoundedTaskQueue()
        self._templates = templates or PromptTemplateEngine()
        self._backoff = backoff or BackoffConfig()
        self._max_retries = max_retries
        self._kpi = kpi
        self._sleep = sleep
        self._clock = clock
        self._stats = SpecialistStats()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def task_queue(self) -> TaskQueue:
        return self._queue

    @property
    def max_retries(self) -> int:
        return self._max_retries

    def get_specialist(self, code: SpecialistCode | str) -> SpecialistDefinition:
        try:
            return SPECIALISTS[SpecialistCode(code)]
        except (KeyError, ValueError) as exc:
            raise UnknownSpecialistError(f"unknown specialist code: {code!r}") from exc

    async def dispatch(
        self,
        task: SpecialistTask,
        *,
        max_retries: int | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> SpecialistOutput:
        """Queue ``task`` and return its final output once the retry loop ends."""

        definition = self.get_specialist(task.specialist_code)
        budget = self._max_retries if max_retries is None else max_retries
        if budget < 1:
            raise ValueError("max_retries must be >= 1")
        self._stats.dispatched += 1
        return await self._queue.run(
            lambda: self._execute(task, definition, budget, cancel_token)
        )

    def stats(self) -> dict[str, int]:
        return self._stats.to_dict()

    @staticmethod
    def stage_specialists(state: WorkflowState) -> tuple[SpecialistCode, ...]:
        return STAGE_SPECIALISTS.get(state, ())

    @staticmethod
    def difficulty_for_document(doc_type: DocumentType) -> DifficultyLevel:
        return DOCUMENT_DIFFICULTY[doc_type]

    @staticmethod
    def risk_level_for_action(action: str) -> RiskLevel:
        # Unlisted actions require the strictest approval path.
        return ACTION_RISK_LEVELS.get(action, RiskLevel.HIGH)

    @staticmethod
    def document_outputs(workflow_type: WorkflowType) -> tuple[DocumentType, ...]:
        return WORKFLOW_DOCUMENT_OUTPUTS[workflow_type]

    async def _execute(
        self,
        task: SpecialistTask,
        definition: SpecialistDefinition,
        budget: int,
        cancel_token: CancellationToken | None,
    ) -> SpecialistOutput:
        started = self._clock()
        difficulty = task.difficulty or definition.difficulty
        verdict: QualityVerdict | None = None
        content = ""
        failure = "no attempts made"
        log = self._logger.bind(
            task_id=task.task_id,
            workflow_id=task.workflow_id,
            specialist_code=task.specialist_code.value,
        )

        for attempt in range(1, budget + 1):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()

            prompt = self._templates.render(
                task.specialist_code, self._template_variables(task, definition, difficulty)
            ).prompt
            try:
                content = await self._provider.invoke(prompt, difficulty)
            except ProviderError as exc:
                self._stats.provider_errors += 1
                self._record_llm_call(success=False)
                failure = str(exc)
                verdict = None
                if not exc.retryable:
                    log.warning(
                        "specialist_dispatch_provider_failed",
                        attempt=attempt,
                        code=exc.code,
                        detail=exc.detail,
                    )
                    return self._finish(
                        task, False, "", None, attempt, difficulty, started, failure
                    )
            else:
                self._record_llm_call(success=True)
                verdict = self._quality_gate.evaluate(content, task.specialist_code, task.payload)
                if verdict.passed:
                    log.info(
                        "specialist_dispatch_passed",
                        attempt=attempt,
                        difficulty=difficulty.value,
                        confidence=verdict.confidence,
                    )
                    return self._finish(
                        task, True, content, verdict, attempt, difficulty, started, None
                    )
                failure = verdict.reason

            if attempt == budget:
                break

            delay = compute_backoff_delay(retry_number=attempt, config=self._backoff)
            next_difficulty = difficulty.escalate()
            self._stats.retries += 1
            log.info(
                "specialist_dispatch_retry",
                attempt=attempt,
                reason=failure,
                delay_seconds=delay,
                difficulty=difficulty.value,
                next_difficulty=next_difficulty.value,
            )
            if delay > 0:
                await self._sleep(delay)
            difficulty = next_difficulty

        log.warning("specialist_dispatch_exhausted", attempts=budget, reason=failure)
        return self._finish(task, False, content, verdict, budget, difficulty, started, failure)

    def _finish(
        self,
        task: SpecialistTask,
        success: bool,
        content: str,
        verdict: QualityVerdict | None,
        attempts: int,
        difficulty: DifficultyLevel,
        started: float,
        error: str | None,
    ) -> SpecialistOutput:
        if success:
            self._stats.passed += 1
        else:
            self._stats.failed += 1
        return SpecialistOutput(
            task_id=task.task_id,
            specialist_code=task.specialist_code,
            success=success,
            content=content,
            verdict=verdict,
            attempts=attempts,
            difficulty=difficulty,
            duration_ms=max(0.0, (self._clock() - started) * 1000.0),
            error=error,
        )

    def _template_variables(
        self,
        task: SpecialistTask,
        definition: SpecialistDefinition,
        difficulty: DifficultyLevel,
    ) -> Mapping[str, object]:
        payload: Mapping[str, JSONValue] = task.payload
        return {
            "specialist_name": definition.name,
            "specialist_description": definition.description,
            "issue_title": payload.get("issue_title", ""),
            "workflow_type": payload.get("workflow_type", ""),
            "stage": task.stage.value if task.stage is not None else "",
            "difficulty": difficulty.value,
            "max_tokens": definition.max_tokens,
            "min_length": definition.min_output_length,
            "context": dict(payload),
        }

    def _record_llm_call(self, *, success: bool) -> None:
        if self._kpi is not None:
            self._kpi.record_llm_call(success)


__all__ = [
    "SpecialistError",
    "SpecialistExhaustedError",
    "SpecialistManager",
    "SpecialistStats",
    "UnknownSpecialistError",
]
