"""
governance-orchestrator — module skeleton

File: src/governance_orchestrator/synthesis_plane/__init__.py
Last updated: 2026-10-17

Purpose
- Synthesis plane: specialist registry, prompt rendering, quality gating,
  bounded task queue and provider retry control.

Functional requirements
- Must be provider-agnostic through the ``LLMProvider`` protocol.
"""

from governance_orchestrator.synthesis_plane.prompt_templates import (
    PromptTemplateEngine,
    PromptTemplateError,
    RenderedPrompt,
)
from governance_orchestrator.synthesis_plane.quality_gate import DefaultQualityGate, QualityGate
from governance_orchestrator.synthesis_plane.specialists import (
    SpecialistError,
    SpecialistExhaustedError,
    SpecialistManager,
    UnknownSpecialistError,
)
from governance_orchestrator.synthesis_plane.task_queue import (
    BoundedTaskQueue,
    TaskQueue,
    TaskQueueClosedError,
)

__all__ = [
    "BoundedTaskQueue",
    "DefaultQualityGate",
    "PromptTemplateEngine",
    "PromptTemplateError",
    "QualityGate",
    "RenderedPrompt",
    "SpecialistError",
    "SpecialistExhaustedError",
    "SpecialistManager",
    "TaskQueue",
    "TaskQueueClosedError",
    "UnknownSpecialistError",
]
