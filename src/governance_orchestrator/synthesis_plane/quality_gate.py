"""Pluggable quality gate evaluated on every specialist attempt."""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Final, Protocol, runtime_checkable

from governance_orchestrator.config.schema import QualityGateConfig
from governance_orchestrator.domain.models import JSONValue, QualityVerdict, SpecialistCode
from governance_orchestrator.domain.tables import SPECIALISTS

PLACEHOLDER_MARKERS: Final[tuple[str, ...]] = ("[TODO]", "[PLACEHOLDER]")

_WHITESPACE_RE = re.compile(r"\s+")


@runtime_checkable
class QualityGate(Protocol):
    def evaluate(
        self,
        content: str,
        specialist_code: SpecialistCode,
        context: Mapping[str, JSONValue],
    ) -> QualityVerdict: ...


class DefaultQualityGate:
    """
    Heuristic gate: output length, approximate token budget, placeholder markers.

    Confidence starts at 100 and loses a fixed penalty per failed check; empty
    output scores 0. A verdict passes only when confidence reaches
    ``min_confidence`` and no check failed.
    """

    def __init__(
        self,
        *,
        min_confidence: float = 70.0,
        length_penalty: float = 30.0,
        token_penalty: float = 10.0,
        placeholder_penalty: float = 20.0,
        token_budget_tolerance: float = 1.2,
        tokens_per_word: float = 1.3,
    ) -> None:
        if not 0 <= min_confidence <= 100:
            raise ValueError("min_confidence must be within 0..100")
        for name, value in (
            ("length_penalty", length_penalty),
            ("token_penalty", token_penalty),
            ("placeholder_penalty", placeholder_penalty),
        ):
            if value < 0:
                raise ValueError(f"{name} must be >= 0")
        if token_budget_tolerance <= 0 or tokens_per_word <= 0:
            raise ValueError("token_budget_tolerance and tokens_per_word must be > 0")

        self._min_confidence = min_confidence
        self._length_penalty = length_penalty
        self._token_penalty = token_penalty
        self._placeholder_penalty = placeholder_penalty
        self._token_budget_tolerance = token_budget_tolerance
        self._tokens_per_word = tokens_per_word

    @classmethod
    def from_config(cls, section: QualityGateConfig) -> DefaultQualityGate:
        return cls(
            min_confidence=section["min_confidence"],
            length_penalty=section["length_penalty"],
            token_penalty=section["token_penalty"],
            placeholder_penalty=section["placeholder_penalty"],
            token_budget_tolerance=section["token_budget_tolerance"],
            tokens_per_word=section["tokens_per_word"],
        )

    @property
    def min_confidence(self) -> float:
        return self._min_confidence

    def estimate_tokens(self, content: str) -> float:
        return len(_WHITESPACE_RE.split(content)) * self._tokens_per_word

    def evaluate(
        self,
        content: str,
        specialist_code: SpecialistCode,
        context: Mapping[str, JSONValue],
    ) -> QualityVerdict:
        del context
        definition = SPECIALISTS[specialist_code]
        issues: list[str] = []
        confidence = 100.0

        if len(content) < definition.min_output_length:
            issues.append(f"output too short ({len(content)} < {definition.min_output_length})")
            confidence -= self._length_penalty

        if self.estimate_tokens(content) > definition.max_tokens * self._token_budget_tolerance:
            issues.append("output may exceed token limit")
            confidence -= self._token_penalty

        if any(marker in content for marker in PLACEHOLDER_MARKERS):
            issues.append("output contains placeholder text")
            confidence -= self._placeholder_penalty

        if not content.strip():
            issues.append("output is empty")
            confidence = 0.0

        confidence = max(0.0, confidence)
        return QualityVerdict(
            passed=confidence >= self._min_confidence and not issues,
            confidence=confidence,
            issues=tuple(issues),
        )


__all__ = ["PLACEHOLDER_MARKERS", "DefaultQualityGate", "QualityGate"]
