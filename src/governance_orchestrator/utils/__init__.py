"""Utility exports for hashing and concurrency helpers."""

from governance_orchestrator.utils.concurrency import (
    AdmissionQueue,
    CancellationToken,
    OperationCancelledError,
    run_with_timeout,
)
from governance_orchestrator.utils.hashing import (
    canonical_json,
    sha256_bytes,
    sha256_json,
    sha256_text,
)

__all__ = [
    "AdmissionQueue",
    "CancellationToken",
    "OperationCancelledError",
    "canonical_json",
    "run_with_timeout",
    "sha256_bytes",
    "sha256_json",
    "sha256_text",
]
