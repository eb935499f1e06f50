"""
governance-orchestrator — provider interface and shared retry utilities

File: src/governance_orchestrator/synthesis_plane/providers/base.py
Last updated: 2026-10-17

Purpose
- Abstract language-model provider interface used by the specialist manager.

What should be included in this file
- ``LLMProvider`` protocol: ``invoke(prompt, difficulty) -> str``.
- Error taxonomy and retryability classification.
- Bounded exponential backoff policy.

Functional requirements
- Retryable failures (rate limit, timeout, transient service errors) are
  distinguishable from permanent ones (auth, invalid request) by a single
  ``retryable`` flag.

Non-functional requirements
- Adding a provider must not touch the specialist manager.
"""

from __future__ import annotations

import random as random_module
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import ClassVar, Protocol, TypeAlias, runtime_checkable

from governance_orchestrator.domain.models import DifficultyLevel

SleepFn: TypeAlias = Callable[[float], Awaitable[None]]
RandomFn: TypeAlias = Callable[[], float]

_MAX_DETAIL_LENGTH = 2048


@runtime_checkable
class LLMProvider(Protocol):
    """Protocol implemented by language-model adapters."""

    async def invoke(self, prompt: str, difficulty: DifficultyLevel) -> str:
        """Return the completion text for ``prompt`` at the requested difficulty tier."""


class ProviderError(RuntimeError):
    """Normalized provider failure; ``retryable`` decides whether dispatch tries again."""

    default_code: ClassVar[str] = "provider"
    default_retryable: ClassVar[bool] = False
    default_http_status: ClassVar[int | None] = None

    def __init__(
        self,
        detail: str,
        *,
        provider: str = "provider",
        code: str | None = None,
        retryable: bool | None = None,
        http_status: int | None = None,
    ) -> None:
        resolved_code = (code if code is not None else self.default_code).strip()
        if not provider.strip():
            raise ValueError("provider cannot be empty")
        if not resolved_code:
            raise ValueError("code cannot be empty")
        self.provider = provider.strip()
        self.code = resolved_code
        self.detail = _normalize_detail(detail)
        self.retryable = self.default_retryable if retryable is None else bool(retryable)
        self.http_status = self.default_http_status if http_status is None else http_status

        parts = [
            f"provider={self.provider}",
            f"code={self.code}",
            f"retryable={str(self.retryable).lower()}",
        ]
        if self.http_status is not None:
            parts.append(f"http_status={self.http_status}")
        parts.append(f"detail={self.detail}")
        super().__init__(" ".join(parts))


class ProviderAuthenticationError(ProviderError):
    default_code = "auth"


class ProviderInvalidRequestError(ProviderError):
    default_code = "invalid_request"


class ProviderRateLimitError(ProviderError):
    default_code = "rate_limit"
    default_retryable = True
    default_http_status = 429


class ProviderTimeoutError(ProviderError):
    default_code = "timeout"
    default_retryable = True


class ProviderServiceError(ProviderError):
    """Upstream service failure; transient unless the caller says otherwise."""

    default_code = "service"
    default_retryable = True


ProviderAuthError = ProviderAuthenticationError


def is_retryable_error(error: BaseException) -> bool:
    return isinstance(error, ProviderError) and error.retryable


@dataclass(frozen=True, slots=True)
class BackoffConfig:
    """Bounded exponential backoff policy between specialist attempts."""

    initial_delay_seconds: float = 1.0
    multiplier: float = 2.0
    max_delay_seconds: float = 3600.0
    jitter_ratio: float = 0.0

    def __post_init__(self) -> None:
        if self.initial_delay_seconds < 0:
            raise ValueError("initial_delay_seconds must be >= 0")
        if self.multiplier < 1.0:
            raise ValueError("multiplier must be >= 1.0")
        if self.max_delay_seconds < 0:
            raise ValueError("max_delay_seconds must be >= 0")
        if self.initial_delay_seconds > self.max_delay_seconds:
            raise ValueError("initial_delay_seconds must be <= max_delay_seconds")
        if not (0.0 <= self.jitter_ratio <= 1.0):
            raise ValueError("jitter_ratio must be between 0.0 and 1.0")


def compute_backoff_delay(
    *,
    retry_number: int,
    config: BackoffConfig,
    random_fn: RandomFn = random_module.random,
) -> float:
    """Return bounded exponential backoff delay for retry attempt N (1-based)."""

    if retry_number <= 0:
        raise ValueError("retry_number must be > 0")

    base_delay = config.initial_delay_seconds * (config.multiplier ** (retry_number - 1))
    bounded_delay = min(base_delay, config.max_delay_seconds)

    if config.jitter_ratio == 0.0:
        return bounded_delay

    random_value = random_fn()
    if not (0.0 <= random_value <= 1.0):
        raise ValueError("random_fn must return values in [0.0, 1.0]")

    max_jitter = bounded_delay * config.jitter_ratio
    jitter = ((random_value * 2.0) - 1.0) * max_jitter
    return max(0.0, min(config.max_delay_seconds, bounded_delay + jitter))


def _normalize_detail(value: object) -> str:
    text = " ".join(str(value).split())
    if not text:
        return "no detail"
    if len(text) > _MAX_DETAIL_LENGTH:
        return text[: _MAX_DETAIL_LENGTH - 3] + "..."
    return text


__all__ = [
    "BackoffConfig",
    "LLMProvider",
    "ProviderAuthError",
    "ProviderAuthenticationError",
    "ProviderError",
    "ProviderInvalidRequestError",
    "ProviderRateLimitError",
    "ProviderServiceError",
    "ProviderTimeoutError",
    "RandomFn",
    "SleepFn",
    "compute_backoff_delay",
    "is_retryable_error",
]
