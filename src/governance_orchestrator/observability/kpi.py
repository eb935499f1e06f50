"""
governance-orchestrator — module skeleton

File: src/governance_orchestrator/observability/kpi.py
Last updated: 2026-10-17

Purpose
- Collect operational KPIs (decision quality, execution speed, system health)
  in bounded rolling windows and raise advisory alerts on target breaches.

What should be included in this file
- KPITargets with the service-level defaults and per-metric breach direction.
- KPICollector: sample/heartbeat/operation recording, dashboard aggregation,
  alert log, flat metric export.

Functional requirements
- Windows never exceed their capacity; the oldest sample is evicted first.
- Breaches are alerts only. Nothing here may raise into the caller's control
  flow because a target was missed.
- The collector is explicitly constructed and passed around; no module-level
  instance exists.
"""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Callable
from dataclasses import asdict, dataclass, fields, replace
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Final

import structlog

from governance_orchestrator.constants import (
    KPI_ALERT_LOG_CAPACITY,
    KPI_CRITICAL_DEVIATION,
    KPI_HEARTBEAT_CAPACITY,
    KPI_WINDOW_CAPACITY,
    METRICS_NAMESPACE,
)
from governance_orchestrator.domain.events import EventType
from governance_orchestrator.domain.ids import generate_alert_id
from governance_orchestrator.domain.models import (
    AlertSeverity,
    CanonicalModel,
    KPIAlert,
    KPICategory,
    MetricSample,
    RiskLevel,
)
from governance_orchestrator.observability.metrics import MetricsRegistry

if TYPE_CHECKING:
    from governance_orchestrator.observability.events import EventBus

Clock = Callable[[], datetime]


class BreachDirection(StrEnum):
    ABOVE = "above"  # higher is better; breach when value < target
    BELOW = "below"  # lower is better; breach when value > target


class ExecutionStage(StrEnum):
    SIGNAL_TO_ISSUE = "signal_to_issue"
    ISSUE_TO_DECISION = "issue_to_decision"
    DP_TO_APPROVAL = "dp_to_approval"
    APPROVAL_TO_EXECUTION = "approval_to_execution"
    END_TO_END = "end_to_end"

    @property
    def metric(self) -> str:
        return f"{self.value}_ms"


@dataclass(frozen=True, slots=True)
class KPITargets:
    """Service-level targets. Every target is strictly positive."""

    dp_completeness: float = 100.0
    option_diversity: float = 3.0
    red_team_coverage: float = 100.0
    evidence_depth: float = 3.0
    confidence_calibration: float = 10.0
    signal_to_issue_ms: float = 3_600_000.0
    issue_to_decision_ms: float = 86_400_000.0
    dp_to_approval_ms: float = 259_200_000.0
    approval_to_execution_ms: float = 3_600_000.0
    end_to_end_ms: float = 432_000_000.0
    uptime: float = 99.9
    heartbeat_gap_ms: float = 30_000.0
    llm_availability: float = 99.0
    queue_depth: float = 100.0
    error_rate: float = 1.0

    def __post_init__(self) -> None:
        for item in fields(self):
            value = getattr(self, item.name)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                raise ValueError(f"KPITargets.{item.name} must be a positive number")

    def as_dict(self) -> dict[str, float]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class _ThresholdRule:
    direction: BreachDirection
    category: KPICategory


_ABOVE = BreachDirection.ABOVE
_BELOW = BreachDirection.BELOW

# Metrics checked on every sample. Anything not listed is recorded but never alerts.
THRESHOLD_RULES: Final[dict[str, _ThresholdRule]] = {
    "dp_completeness": _ThresholdRule(_ABOVE, KPICategory.DECISION_QUALITY),
    "option_diversity": _ThresholdRule(_ABOVE, KPICategory.DECISION_QUALITY),
    "red_team_coverage": _ThresholdRule(_ABOVE, KPICategory.DECISION_QUALITY),
    "evidence_depth": _ThresholdRule(_ABOVE, KPICategory.DECISION_QUALITY),
    "signal_to_issue_ms": _ThresholdRule(_BELOW, KPICategory.EXECUTION_SPEED),
    "issue_to_decision_ms": _ThresholdRule(_BELOW, KPICategory.EXECUTION_SPEED),
    "dp_to_approval_ms": _ThresholdRule(_BELOW, KPICategory.EXECUTION_SPEED),
    "approval_to_execution_ms": _ThresholdRule(_BELOW, KPICategory.EXECUTION_SPEED),
    "end_to_end_ms": _ThresholdRule(_BELOW, KPICategory.EXECUTION_SPEED),
    "llm_availability": _ThresholdRule(_ABOVE, KPICategory.SYSTEM_HEALTH),
    "queue_depth": _ThresholdRule(_BELOW, KPICategory.SYSTEM_HEALTH),
}


@dataclass(frozen=True, slots=True)
class DecisionPacketMetrics:
    has_all_fields: bool
    option_count: int
    has_red_team_analysis: bool
    source_count: int
    risk_level: RiskLevel


@dataclass(frozen=True, slots=True)
class DecisionQualityMetrics:
    dp_completeness: float
    option_diversity: float
    red_team_coverage: float
    evidence_depth: float
    confidence_calibration: float


@dataclass(frozen=True, slots=True)
class ExecutionSpeedMetrics:
    signal_to_issue_ms: float
    issue_to_decision_ms: float
    dp_to_approval_ms: float
    approval_to_execution_ms: float
    end_to_end_ms: float


@dataclass(frozen=True, slots=True)
class SystemHealthMetrics:
    uptime: float
    heartbeat_gap_ms: float
    llm_availability: float
    queue_depth: float
    error_rate: float


@dataclass(frozen=True, slots=True)
class KPIDashboard(CanonicalModel):
    decision_quality: DecisionQualityMetrics
    execution_speed: ExecutionSpeedMetrics
    system_health: SystemHealthMetrics
    timestamp: datetime


def alert_severity(value: float, target: float) -> AlertSeverity:
    """Critical when the relative deviation from ``target`` exceeds 50%."""
    if target <= 0:
        raise ValueError("target must be > 0")
    deviation = abs(value - target) / target
    return AlertSeverity.CRITICAL if deviation > KPI_CRITICAL_DEVIATION else AlertSeverity.WARNING


def is_breach(direction: BreachDirection, value: float, target: float) -> bool:
    if direction is BreachDirection.ABOVE:
        return value < target
    return value > target


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


class KPICollector:
    """Rolling-window KPI aggregation with advisory threshold alerts."""

    def __init__(
        self,
        *,
        targets: KPITargets | None = None,
        event_bus: EventBus | None = None,
        window_capacity: int = KPI_WINDOW_CAPACITY,
        heartbeat_capacity: int = KPI_HEARTBEAT_CAPACITY,
        alert_capacity: int = KPI_ALERT_LOG_CAPACITY,
        clock: Clock | None = None,
        registry: MetricsRegistry | None = None,
        logger: Any | None = None,
    ) -> None:
        for name, value in (
            ("window_capacity", window_capacity),
            ("heartbeat_capacity", heartbeat_capacity),
            ("alert_capacity", alert_capacity),
        ):
            if value <= 0:
                raise ValueError(f"{name} must be > 0")

        self._targets = targets if targets is not None else KPITargets()
        self._event_bus = event_bus
        self._window_capacity = window_capacity
        self._clock = clock if clock is not None else _utc_now
        self._registry = (
            registry if registry is not None else MetricsRegistry(namespace=METRICS_NAMESPACE)
        )
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._lock = threading.RLock()

        self._samples: dict[str, deque[MetricSample]] = {}
        self._heartbeats: deque[datetime] = deque(maxlen=heartbeat_capacity)
        self._alerts: deque[KPIAlert] = deque(maxlen=alert_capacity)
        self._error_count = 0
        self._total_operations = 0
        self._started_at = self._clock()

    @property
    def targets(self) -> KPITargets:
        return self._targets

    @property
    def registry(self) -> MetricsRegistry:
        return self._registry

    @property
    def started_at(self) -> datetime:
        return self._started_at

    def set_targets(self, **overrides: float) -> KPITargets:
        """Replace individual targets; unknown names raise ``TypeError``."""
        with self._lock:
            self._targets = replace(self._targets, **overrides)
            return self._targets

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record_sample(self, metric: str, value: float) -> KPIAlert | None:
        """Append a sample and return the alert it raised, if any."""
        if not isinstance(metric, str) or not metric.strip():
            raise ValueError("metric must be a non-empty string")
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"metric value must be numeric, got {type(value).__name__}")

        sample = MetricSample(value=float(value), timestamp=self._clock())
        with self._lock:
            window = self._samples.get(metric)
            if window is None:
                window = deque(maxlen=self._window_capacity)
                self._samples[metric] = window
            window.append(sample)
        self._registry.observe(metric, sample.value)
        return self._check_threshold(metric, sample)

    def record_heartbeat(self) -> None:
        with self._lock:
            self._heartbeats.append(self._clock())

    def record_operation(self, success: bool) -> None:
        with self._lock:
            self._total_operations += 1
            if not success:
                self._error_count += 1
        self._registry.inc("operations_total")
        if not success:
            self._registry.inc("operations_failed_total")

    def record_llm_call(self, success: bool) -> None:
        self._registry.inc("llm_calls_total", labels={"outcome": "ok" if success else "error"})
        self.record_sample("llm_availability", 100.0 if success else 0.0)

    def record_queue_depth(self, depth: int) -> None:
        if depth < 0:
            raise ValueError("queue depth must be >= 0")
        self.record_sample("queue_depth", float(depth))

    def record_decision_packet(self, data: DecisionPacketMetrics) -> None:
        self.record_sample("dp_completeness", 100.0 if data.has_all_fields else 0.0)
        self.record_sample("option_diversity", float(data.option_count))
        # Red-team coverage is only meaningful for HIGH-risk packets.
        if data.risk_level is RiskLevel.HIGH:
            self.record_sample("red_team_coverage", 100.0 if data.has_red_team_analysis else 0.0)
        self.record_sample("evidence_depth", float(data.source_count))

    def record_execution_timing(
        self, stage: ExecutionStage | str, duration_ms: float
    ) -> KPIAlert | None:
        resolved = ExecutionStage(stage)
        if duration_ms < 0:
            raise ValueError("duration_ms must be >= 0")
        return self.record_sample(resolved.metric, duration_ms)

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------

    def window(self, metric: str) -> tuple[MetricSample, ...]:
        with self._lock:
            return tuple(self._samples.get(metric, ()))

    def average(self, metric: str, default: float) -> float:
        with self._lock:
            window = self._samples.get(metric)
            if not window:
                return default
            return sum(sample.value for sample in window) / len(window)

    def heartbeat_gap_ms(self) -> float:
        """Largest gap between consecutive recorded heartbeats."""
        with self._lock:
            beats = tuple(self._heartbeats)
        if len(beats) < 2:
            return 0.0
        return max(
            (later - earlier).total_seconds() * 1000.0
            for earlier, later in zip(beats, beats[1:], strict=False)
        )

    def error_rate(self) -> float:
        with self._lock:
            if self._total_operations == 0:
                return 0.0
            return self._error_count / self._total_operations * 100.0

    def get_dashboard(self) -> KPIDashboard:
        return KPIDashboard(
            decision_quality=DecisionQualityMetrics(
                dp_completeness=self.average("dp_completeness", 100.0),
                option_diversity=self.average("option_diversity", 3.0),
                red_team_coverage=self.average("red_team_coverage", 100.0),
                evidence_depth=self.average("evidence_depth", 3.0),
                confidence_calibration=self.average("confidence_calibration", 10.0),
            ),
            execution_speed=ExecutionSpeedMetrics(
                signal_to_issue_ms=self.average("signal_to_issue_ms", 0.0),
                issue_to_decision_ms=self.average("issue_to_decision_ms", 0.0),
                dp_to_approval_ms=self.average("dp_to_approval_ms", 0.0),
                approval_to_execution_ms=self.average("approval_to_execution_ms", 0.0),
                end_to_end_ms=self.average("end_to_end_ms", 0.0),
            ),
            system_health=SystemHealthMetrics(
                # A running collector reports full uptime; stops are tracked externally.
                uptime=100.0,
                heartbeat_gap_ms=self.heartbeat_gap_ms(),
                llm_availability=self.average("llm_availability", 99.0),
                queue_depth=self.average("queue_depth", 0.0),
                error_rate=self.error_rate(),
            ),
            timestamp=self._clock(),
        )

    def publish_dashboard(self) -> KPIDashboard:
        dashboard = self.get_dashboard()
        if self._event_bus is not None:
            self._event_bus.emit(EventType.KPI_UPDATED, {"dashboard": dashboard.to_dict()})
        return dashboard

    def get_alerts(self, limit: int = 50) -> tuple[KPIAlert, ...]:
        if limit <= 0:
            return ()
        with self._lock:
            alerts = tuple(self._alerts)
        return alerts[-limit:]

    def export_metrics(self) -> dict[str, float]:
        """Flat ``algora_*`` gauges for external scrapers; speeds in seconds."""
        dashboard = self.get_dashboard()
        quality = dashboard.decision_quality
        speed = dashboard.execution_speed
        health = dashboard.system_health
        prefix = METRICS_NAMESPACE
        return {
            f"{prefix}_dp_completeness": quality.dp_completeness,
            f"{prefix}_option_diversity": quality.option_diversity,
            f"{prefix}_red_team_coverage": quality.red_team_coverage,
            f"{prefix}_evidence_depth": quality.evidence_depth,
            f"{prefix}_confidence_calibration": quality.confidence_calibration,
            f"{prefix}_signal_to_issue_seconds": speed.signal_to_issue_ms / 1000.0,
            f"{prefix}_issue_to_decision_seconds": speed.issue_to_decision_ms / 1000.0,
            f"{prefix}_dp_to_approval_seconds": speed.dp_to_approval_ms / 1000.0,
            f"{prefix}_approval_to_execution_seconds": speed.approval_to_execution_ms / 1000.0,
            f"{prefix}_end_to_end_seconds": speed.end_to_end_ms / 1000.0,
            f"{prefix}_uptime_percent": health.uptime,
            f"{prefix}_heartbeat_gap_seconds": health.heartbeat_gap_ms / 1000.0,
            f"{prefix}_llm_availability_percent": health.llm_availability,
            f"{prefix}_queue_depth": health.queue_depth,
            f"{prefix}_error_rate_percent": health.error_rate,
        }

    def export_counters(self) -> dict[str, float]:
        """Lifetime counters and distribution means from the backing registry."""
        return self._registry.export_flat()

    def reset(self) -> None:
        with self._lock:
            self._samples.clear()
            self._heartbeats.clear()
            self._alerts.clear()
            self._error_count = 0
            self._total_operations = 0
            self._started_at = self._clock()
        self._registry.reset()

    # ------------------------------------------------------------------
    # Thresholds
    # ------------------------------------------------------------------

    def _check_threshold(self, metric: str, sample: MetricSample) -> KPIAlert | None:
        rule = THRESHOLD_RULES.get(metric)
        if rule is None:
            return None
        target = float(getattr(self._targets, metric))
        if not is_breach(rule.direction, sample.value, target):
            return None

        severity = alert_severity(sample.value, target)
        relation = "below" if rule.direction is BreachDirection.ABOVE else "above"
        alert = KPIAlert(
            id=generate_alert_id(),
            metric=metric,
            category=rule.category,
            severity=severity,
            message=f"{metric} {relation} target: {sample.value:g} (target: {target:g})",
            current_value=sample.value,
            target_value=target,
            timestamp=sample.timestamp,
        )
        with self._lock:
            self._alerts.append(alert)
        self._registry.inc("alerts_total", labels={"severity": severity.value})
        self._logger.warning(
            "kpi_threshold_breach",
            metric=metric,
            value=sample.value,
            target=target,
            severity=severity.value,
        )

        if self._event_bus is not None:
            self._event_bus.emit(EventType.KPI_ALERT, {"alert": alert.to_dict()})
            self._event_bus.emit(
                EventType.KPI_THRESHOLD_BREACH,
                {"metric": metric, "value": sample.value, "threshold": target},
            )
        return alert


__all__ = [
    "THRESHOLD_RULES",
    "BreachDirection",
    "DecisionPacketMetrics",
    "DecisionQualityMetrics",
    "ExecutionSpeedMetrics",
    "ExecutionStage",
    "KPICollector",
    "KPIDashboard",
    "KPITargets",
    "SystemHealthMetrics",
    "alert_severity",
    "is_breach",
]
