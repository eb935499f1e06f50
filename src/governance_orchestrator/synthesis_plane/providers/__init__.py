"""
governance-orchestrator — provider interface

File: src/governance_orchestrator/synthesis_plane/providers/__init__.py
Last updated: 2026-10-17

Purpose
- Provider-agnostic language-model interface consumed by the specialist manager.

Non-functional requirements
- Concrete adapters live with the deployment; the core only sees ``LLMProvider``.
"""

from governance_orchestrator.synthesis_plane.providers.base import (
    BackoffConfig,
    LLMProvider,
    ProviderAuthenticationError,
    ProviderAuthError,
    ProviderError,
    ProviderInvalidRequestError,
    ProviderRateLimitError,
    ProviderServiceError,
    ProviderTimeoutError,
    compute_backoff_delay,
    is_retryable_error,
)

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
    "compute_backoff_delay",
    "is_retryable_error",
]
