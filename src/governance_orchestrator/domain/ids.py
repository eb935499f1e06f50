"""Sortable identifiers (``<prefix>-<ULID>``) for workflows, todos, tasks, events and alerts."""

from __future__ import annotations

import secrets
import time
from collections.abc import Callable
from typing import Final

CROCKFORD_BASE32_ALPHABET: Final[str] = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
ULID_LENGTH: Final[int] = 26
ULID_MAX_TIMESTAMP_MS: Final[int] = (1 << 48) - 1
_RANDOM_BYTES: Final[int] = 10

WORKFLOW_ID_PREFIX: Final[str] = "wf"
TODO_ID_PREFIX: Final[str] = "todo"
TASK_ID_PREFIX: Final[str] = "task"
EVENT_ID_PREFIX: Final[str] = "evt"
ALERT_ID_PREFIX: Final[str] = "alert"

_DIGITS: Final[dict[str, int]] = {
    char: value for value, char in enumerate(CROCKFORD_BASE32_ALPHABET)
}

RandBytes = Callable[[int], bytes]


def generate_ulid(*, timestamp_ms: int | None = None, randbytes: RandBytes | None = None) -> str:
    """Return a 26-character ULID: 48 bits of milliseconds then 80 random bits."""

    millis = time.time_ns() // 1_000_000 if timestamp_ms is None else timestamp_ms
    if not 0 <= millis <= ULID_MAX_TIMESTAMP_MS:
        raise ValueError(f"timestamp_ms out of range: {millis}")
    entropy = (randbytes or secrets.token_bytes)(_RANDOM_BYTES)
    if len(entropy) != _RANDOM_BYTES:
        raise ValueError(f"randbytes must return exactly {_RANDOM_BYTES} bytes")

    value = (millis << 80) | int.from_bytes(entropy, "big")
    chars = []
    for _ in range(ULID_LENGTH):
        chars.append(CROCKFORD_BASE32_ALPHABET[value & 0b11111])
        value >>= 5
    return "".join(reversed(chars))


def validate_ulid(value: str) -> None:
    if len(value) != ULID_LENGTH:
        raise ValueError(f"ulid length must be {ULID_LENGTH}, got {len(value)}")
    bad = [char for char in value.upper() if char not in _DIGITS]
    if bad:
        raise ValueError(f"invalid ULID character {bad[0]!r}")
    # 26 base32 digits carry 130 bits; a ULID only has 128.
    if _DIGITS[value[0].upper()] > 7:
        raise ValueError("ulid overflow: value exceeds 128 bits")


def generate_prefixed_id(
    prefix: str, *, timestamp_ms: int | None = None, randbytes: RandBytes | None = None
) -> str:
    if not prefix or "-" in prefix:
        raise ValueError(f"invalid id prefix {prefix!r}")
    return f"{prefix}-{generate_ulid(timestamp_ms=timestamp_ms, randbytes=randbytes)}"


def validate_prefixed_id(value: str, expected_prefix: str) -> None:
    lead = f"{expected_prefix}-"
    if not value.startswith(lead):
        raise ValueError(f"expected prefix '{lead}' in {value!r}")
    try:
        validate_ulid(value[len(lead) :])
    except ValueError as exc:
        raise ValueError(f"invalid ULID part for prefix '{expected_prefix}': {exc}") from exc


def generate_workflow_id() -> str:
    return generate_prefixed_id(WORKFLOW_ID_PREFIX)


def generate_todo_id() -> str:
    return generate_prefixed_id(TODO_ID_PREFIX)


def generate_task_id() -> str:
    return generate_prefixed_id(TASK_ID_PREFIX)


def generate_event_id() -> str:
    return generate_prefixed_id(EVENT_ID_PREFIX)


def validate_event_id(value: str) -> None:
    validate_prefixed_id(value, EVENT_ID_PREFIX)


def generate_alert_id() -> str:
    return generate_prefixed_id(ALERT_ID_PREFIX)


__all__ = [
    "ALERT_ID_PREFIX",
    "CROCKFORD_BASE32_ALPHABET",
    "EVENT_ID_PREFIX",
    "TASK_ID_PREFIX",
    "TODO_ID_PREFIX",
    "ULID_LENGTH",
    "ULID_MAX_TIMESTAMP_MS",
    "WORKFLOW_ID_PREFIX",
    "generate_alert_id",
    "generate_event_id",
    "generate_prefixed_id",
    "generate_task_id",
    "generate_todo_id",
    "generate_ulid",
    "generate_workflow_id",
    "validate_event_id",
    "validate_prefixed_id",
    "validate_ulid",
]
