"""
governance-orchestrator — unit tests for KPI collection

File: tests/unit/observability/test_kpi.py
Last updated: 2026-10-17

Purpose
- Validate rolling windows, threshold alerts and dashboard aggregation.

What this test file should cover
- Window capacity and eviction order.
- Breach direction per metric and alert severity boundaries.
- Decision-packet and execution-timing recording.
- Heartbeat gaps, error rate, flat exports and reset.

Functional requirements
- Breaches never raise into the caller.

Non-functional requirements
- Manual clock only; deterministic hypothesis settings.
"""

from __future__ import annotations

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from governance_orchestrator.domain.events import EventType
from governance_orchestrator.domain.models import AlertSeverity, KPICategory, RiskLevel
from governance_orchestrator.observability.events import EventBus
from governance_orchestrator.observability.kpi import (
    THRESHOLD_RULES,
    BreachDirection,
    DecisionPacketMetrics,
    ExecutionStage,
    KPICollector,
    KPITargets,
    alert_severity,
    is_breach,
)

from ... import ManualClock


def _collector(**kwargs: object) -> KPICollector:
    kwargs.setdefault("clock", ManualClock())
    return KPICollector(**kwargs)  # type: ignore[arg-type]


def test_window_evicts_oldest_sample_at_capacity() -> None:
    collector = _collector(window_capacity=3)
    for value in (1.0, 2.0, 3.0, 4.0):
        collector.record_sample("confidence_calibration", value)

    assert [sample.value for sample in collector.window("confidence_calibration")] == [
        2.0,
        3.0,
        4.0,
    ]
    assert collector.average("confidence_calibration", 0.0) == 3.0
    assert collector.average("never_recorded", 42.0) == 42.0


def test_metric_without_threshold_never_alerts() -> None:
    collector = _collector()

    assert collector.record_sample("custom_latency_ms", 9e9) is None
    assert collector.get_alerts() == ()


def test_higher_is_better_metric_alerts_when_below_target() -> None:
    bus = EventBus()
    clock = ManualClock()
    collector = _collector(event_bus=bus, clock=clock)

    assert collector.record_sample("option_diversity", 3.0) is None
    alert = collector.record_sample("option_diversity", 2.0)

    assert alert is not None
    assert alert.severity is AlertSeverity.WARNING
    assert alert.category is KPICategory.DECISION_QUALITY
    assert alert.message == "option_diversity below target: 2 (target: 3)"
    assert alert.timestamp == clock.now
    assert alert.id.startswith("alert-")
    assert [event.event_type for event in bus.replay()] == [
        EventType.KPI_ALERT,
        EventType.KPI_THRESHOLD_BREACH,
    ]
    breach = bus.replay(event_type=EventType.KPI_THRESHOLD_BREACH)[0]
    assert breach.payload == {"metric": "option_diversity", "value": 2.0, "threshold": 3.0}


def test_lower_is_better_metric_alerts_when_above_target() -> None:
    collector = _collector()

    alert = collector.record_sample("queue_depth", 250.0)

    assert alert is not None
    assert alert.severity is AlertSeverity.CRITICAL
    assert alert.category is KPICategory.SYSTEM_HEALTH
    assert "above target" in alert.message
    assert collector.record_sample("queue_depth", 100.0) is None


def test_alert_log_is_bounded_and_limited() -> None:
    collector = _collector(alert_capacity=2)
    for _ in range(3):
        collector.record_queue_depth(500)

    assert len(collector.get_alerts()) == 2
    assert len(collector.get_alerts(limit=1)) == 1
    assert collector.get_alerts(limit=0) == ()


def test_decision_packet_records_red_team_only_for_high_risk() -> None:
    collector = _collector()
    low = DecisionPacketMetrics(
        has_all_fields=True,
        option_count=3,
        has_red_team_analysis=False,
        source_count=4,
        risk_level=RiskLevel.LOW,
    )

    collector.record_decision_packet(low)
    assert collector.window("red_team_coverage") == ()
    assert collector.get_alerts() == ()

    collector.record_decision_packet(
        DecisionPacketMetrics(
            has_all_fields=False,
            option_count=3,
            has_red_team_analysis=False,
            source_count=4,
            risk_level=RiskLevel.HIGH,
        )
    )
    assert [alert.metric for alert in collector.get_alerts()] == [
        "dp_completeness",
        "red_team_coverage",
    ]
    assert {alert.severity for alert in collector.get_alerts()} == {AlertSeverity.CRITICAL}
    assert collector.get_dashboard().decision_quality.dp_completeness == 50.0


def test_execution_timing_uses_stage_metric_names() -> None:
    collector = _collector()

    assert collector.record_execution_timing(ExecutionStage.SIGNAL_TO_ISSUE, 1_000.0) is None
    alert = collector.record_execution_timing("end_to_end", 900_000_000.0)

    assert alert is not None
    assert alert.metric == "end_to_end_ms"
    assert collector.get_dashboard().execution_speed.signal_to_issue_ms == 1_000.0
    with pytest.raises(ValueError):
        collector.record_execution_timing("warp_speed", 1.0)
    with pytest.raises(ValueError):
        collector.record_execution_timing(ExecutionStage.END_TO_END, -1.0)


def test_health_metrics_from_heartbeats_operations_and_llm_calls() -> None:
    clock = ManualClock()
    collector = _collector(clock=clock)

    collector.record_heartbeat()
    clock.advance(seconds=10)
    collector.record_heartbeat()
    clock.advance(seconds=45)
    collector.record_heartbeat()
    for success in (True, True, True, False):
        collector.record_operation(success)
    collector.record_llm_call(True)
    collector.record_llm_call(False)

    health = collector.get_dashboard().system_health
    assert health.heartbeat_gap_ms == 45_000.0
    assert health.error_rate == 25.0
    assert health.llm_availability == 50.0
    assert health.uptime == 100.0


def test_dashboard_defaults_without_samples() -> None:
    dashboard = _collector().get_dashboard()

    assert dashboard.decision_quality.option_diversity == 3.0
    assert dashboard.execution_speed.end_to_end_ms == 0.0
    assert dashboard.system_health.llm_availability == 99.0
    assert dashboard.system_health.heartbeat_gap_ms == 0.0
    assert dashboard.system_health.error_rate == 0.0


def test_publish_dashboard_emits_serialized_snapshot() -> None:
    bus = EventBus()
    collector = _collector(event_bus=bus)

    dashboard = collector.publish_dashboard()

    (event,) = bus.replay(event_type=EventType.KPI_UPDATED)
    assert event.payload["dashboard"] == dashboard.to_dict()


def test_exports_use_the_metrics_namespace() -> None:
    collector = _collector()
    collector.record_execution_timing(ExecutionStage.DP_TO_APPROVAL, 2_500.0)
    collector.record_operation(False)
    collector.record_queue_depth(500)

    gauges = collector.export_metrics()
    assert gauges["algora_dp_to_approval_seconds"] == 2.5
    assert gauges["algora_error_rate_percent"] == 100.0
    assert len(gauges) == 15

    counters = collector.export_counters()
    assert counters["algora_operations_total"] == 1.0
    assert counters["algora_operations_failed_total"] == 1.0
    assert counters["algora_alerts_total_critical"] == 1.0
    assert counters["algora_queue_depth"] == 500.0


def test_reset_clears_windows_alerts_and_counters() -> None:
    clock = ManualClock()
    collector = _collector(clock=clock)
    collector.record_queue_depth(500)
    collector.record_operation(False)
    clock.advance(minutes=1)

    collector.reset()

    assert collector.window("queue_depth") == ()
    assert collector.get_alerts() == ()
    assert collector.error_rate() == 0.0
    assert collector.export_counters() == {}
    assert collector.started_at == clock.now


def test_targets_are_validated_and_replaceable() -> None:
    with pytest.raises(ValueError):
        KPITargets(queue_depth=0)
    with pytest.raises(ValueError):
        KPICollector(window_capacity=0)

    collector = _collector()
    collector.set_targets(queue_depth=1000.0)
    assert collector.record_queue_depth(500) is None
    assert collector.targets.queue_depth == 1000.0
    with pytest.raises(TypeError):
        collector.set_targets(latency_budget=5.0)


def test_every_thresholded_metric_has_a_target() -> None:
    targets = KPITargets().as_dict()
    assert set(THRESHOLD_RULES) <= set(targets)


def test_severity_boundary_is_exclusive_at_fifty_percent() -> None:
    assert alert_severity(50.0, 100.0) is AlertSeverity.WARNING
    assert alert_severity(49.9, 100.0) is AlertSeverity.CRITICAL
    assert alert_severity(150.0, 100.0) is AlertSeverity.WARNING
    with pytest.raises(ValueError):
        alert_severity(1.0, 0.0)


@settings(max_examples=100, deadline=None, derandomize=True)
@given(
    value=st.floats(min_value=0.0, max_value=1e9, allow_nan=False),
    target=st.floats(min_value=1e-3, max_value=1e9, allow_nan=False),
)
def test_severity_matches_relative_deviation(value: float, target: float) -> None:
    deviation = abs(value - target) / target
    expected = AlertSeverity.CRITICAL if deviation > 0.5 else AlertSeverity.WARNING

    assert alert_severity(value, target) is expected


@settings(max_examples=100, deadline=None, derandomize=True)
@given(value=st.floats(min_value=-1e6, max_value=1e6, allow_nan=False))
def test_breach_directions_are_mirror_images(value: float) -> None:
    target = 10.0
    above = is_breach(BreachDirection.ABOVE, value, target)
    below = is_breach(BreachDirection.BELOW, value, target)

    assert above == (value < target)
    assert below == (value > target)
    assert not (above and below)
