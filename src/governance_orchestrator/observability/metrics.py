"""Thread-safe lifetime counters and running distributions behind the KPI collector."""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

if TYPE_CHECKING:
    from collections.abc import Mapping

_Labels = tuple[tuple[str, str], ...]

_MAX_NAME_LENGTH: Final[int] = 128


@dataclass(frozen=True, order=True, slots=True)
class _SeriesKey:
    name: str
    labels: _Labels


@dataclass(slots=True)
class _Running:
    count: int = 0
    total: float = 0.0
    minimum: float = math.inf
    maximum: float = -math.inf

    def add(self, value: float) -> None:
        self.count += 1
        self.total += value
        self.minimum = min(self.minimum, value)
        self.maximum = max(self.maximum, value)

    @property
    def mean(self) -> float:
        return self.total / self.count if self.count else 0.0


class MetricsRegistry:
    """
    Lifetime totals that survive the KPI collector's bounded windows.

    Counters only grow. Distributions keep count/sum/min/max rather than raw
    samples. ``export_flat`` renders both as ``<namespace>_<name>[_<label>]``.
    """

    def __init__(self, *, namespace: str | None = None) -> None:
        self._lock = threading.Lock()
        self._namespace = _checked_name(namespace) if namespace is not None else None
        self._counters: dict[_SeriesKey, float] = {}
        self._distributions: dict[_SeriesKey, _Running] = {}

    @property
    def namespace(self) -> str | None:
        return self._namespace

    def inc(
        self, name: str, amount: float = 1.0, *, labels: Mapping[str, str] | None = None
    ) -> None:
        delta = _finite(amount)
        if delta < 0:
            raise ValueError("counter increment amount must be >= 0")
        key = _key(name, labels)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0.0) + delta

    def observe(self, name: str, value: float, *, labels: Mapping[str, str] | None = None) -> None:
        key = _key(name, labels)
        sample = _finite(value)
        with self._lock:
            self._distributions.setdefault(key, _Running()).add(sample)

    def counter(self, name: str, *, labels: Mapping[str, str] | None = None) -> float:
        key = _key(name, labels)
        with self._lock:
            return self._counters.get(key, 0.0)

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._distributions.clear()

    def export_flat(self) -> dict[str, float]:
        """Counters export their total and distributions their mean, sorted by series."""

        with self._lock:
            rows = [
                *self._counters.items(),
                *((key, running.mean) for key, running in self._distributions.items()),
            ]
        return {self._flat_name(key): value for key, value in sorted(rows)}

    def _flat_name(self, key: _SeriesKey) -> str:
        parts = [key.name, *(value for _, value in key.labels)]
        if self._namespace is not None:
            parts.insert(0, self._namespace)
        return "_".join(part.replace(" ", "_") for part in parts)


def _key(name: str, labels: Mapping[str, str] | None) -> _SeriesKey:
    pairs: list[tuple[str, str]] = []
    for label, value in (labels or {}).items():
        if not label.strip() or not value.strip():
            raise ValueError(f"label {label!r} must have a non-empty key and value")
        pairs.append((label.strip(), value.strip()))
    return _SeriesKey(name=_checked_name(name), labels=tuple(sorted(pairs)))


def _checked_name(name: str) -> str:
    normalized = name.strip()
    if not normalized:
        raise ValueError("metric name must not be empty")
    if len(normalized) > _MAX_NAME_LENGTH:
        raise ValueError(f"metric name must be <= {_MAX_NAME_LENGTH} characters")
    return normalized


def _finite(value: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"metric value must be numeric, got {type(value).__name__}")
    parsed = float(value)
    if not math.isfinite(parsed):
        raise ValueError("metric value must be finite")
    return parsed


__all__ = ["MetricsRegistry"]
