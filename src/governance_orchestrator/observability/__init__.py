"""Public observability primitives: structured logging, metrics, events and KPIs."""

from governance_orchestrator.observability.events import (
    DispatchError,
    EventBus,
    PersistenceCallback,
    Subscriber,
)
from governance_orchestrator.observability.kpi import (
    DecisionPacketMetrics,
    ExecutionStage,
    KPICollector,
    KPIDashboard,
    KPITargets,
)
from governance_orchestrator.observability.logging import (
    LoggingConfig,
    LoggingHandle,
    configure_structlog,
    correlation_scope,
    get_correlation_context,
    redact,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
)
from governance_orchestrator.observability.metrics import MetricsRegistry

__all__ = [
    "DecisionPacketMetrics",
    "DispatchError",
    "EventBus",
    "ExecutionStage",
    "KPICollector",
    "KPIDashboard",
    "KPITargets",
    "LoggingConfig",
    "LoggingHandle",
    "MetricsRegistry",
    "PersistenceCallback",
    "Subscriber",
    "configure_structlog",
    "correlation_scope",
    "get_correlation_context",
    "redact",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
