from __future__ import annotations

import pytest
from hypothesis import given
from hypothesis import strategies as st

from governance_orchestrator.synthesis_plane.providers.base import (
    BackoffConfig,
    ProviderAuthenticationError,
    ProviderError,
    ProviderInvalidRequestError,
    ProviderRateLimitError,
    ProviderServiceError,
    ProviderTimeoutError,
    compute_backoff_delay,
    is_retryable_error,
)


@pytest.mark.parametrize(
    ("error", "code", "retryable"),
    [
        (ProviderAuthenticationError("denied"), "auth", False),
        (ProviderInvalidRequestError("bad"), "invalid_request", False),
        (ProviderRateLimitError("slow"), "rate_limit", True),
        (ProviderTimeoutError("late"), "timeout", True),
        (ProviderServiceError("down"), "service", True),
        (ProviderServiceError("gone", retryable=False), "service", False),
    ],
)
def test_error_taxonomy(error: ProviderError, code: str, retryable: bool) -> None:
    assert error.code == code
    assert error.retryable is retryable
    assert is_retryable_error(error) is retryable


def test_error_message_is_normalized() -> None:
    error = ProviderRateLimitError("  too\n many   requests ", provider="mock")

    assert str(error) == (
        "provider=mock code=rate_limit retryable=true http_status=429 detail=too many requests"
    )
    assert ProviderServiceError("x" * 5000).detail.endswith("...")
    assert ProviderTimeoutError("").detail == "no detail"
    assert is_retryable_error(TimeoutError()) is False
    custom = ProviderError("quota", provider="mock", code="quota", retryable=True)
    assert (custom.code, custom.retryable, custom.http_status) == ("quota", True, None)


def test_backoff_is_exponential_and_bounded() -> None:
    config = BackoffConfig(initial_delay_seconds=1.0, multiplier=2.0, max_delay_seconds=5.0)

    delays = [compute_backoff_delay(retry_number=n, config=config) for n in range(1, 6)]

    assert delays == [1.0, 2.0, 4.0, 5.0, 5.0]
    with pytest.raises(ValueError):
        compute_backoff_delay(retry_number=0, config=config)


def test_jitter_uses_injected_random() -> None:
    config = BackoffConfig(initial_delay_seconds=2.0, jitter_ratio=0.5)

    assert compute_backoff_delay(retry_number=1, config=config, random_fn=lambda: 0.0) == 1.0
    assert compute_backoff_delay(retry_number=1, config=config, random_fn=lambda: 1.0) == 3.0
    with pytest.raises(ValueError):
        compute_backoff_delay(retry_number=1, config=config, random_fn=lambda: 2.0)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"initial_delay_seconds": -1.0},
        {"multiplier": 0.5},
        {"initial_delay_seconds": 10.0, "max_delay_seconds": 5.0},
        {"jitter_ratio": 1.5},
    ],
)
def test_invalid_backoff_config(kwargs: dict[str, float]) -> None:
    with pytest.raises(ValueError):
        BackoffConfig(**kwargs)


@given(
    retry=st.integers(min_value=1, max_value=40),
    jitter=st.floats(min_value=0.0, max_value=1.0),
    sample=st.floats(min_value=0.0, max_value=1.0),
)
def test_delay_never_exceeds_cap(retry: int, jitter: float, sample: float) -> None:
    config = BackoffConfig(max_delay_seconds=60.0, jitter_ratio=jitter)

    delay = compute_backoff_delay(retry_number=retry, config=config, random_fn=lambda: sample)

    assert 0.0 <= delay <= 60.0
