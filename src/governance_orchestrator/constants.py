"""Stable constants shared across orchestrator planes."""

from __future__ import annotations

from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
STATE_DB_SCHEMA_VERSION: Final[int] = 1
DOMAIN_SCHEMA_VERSION: Final[int] = 1

# Priority score bounds and routing thresholds.
PRIORITY_SCORE_MIN: Final[int] = 0
PRIORITY_SCORE_MAX: Final[int] = 200
HIGH_PRIORITY_THRESHOLD: Final[int] = 100
HIGH_RISK_PRIORITY_THRESHOLD: Final[int] = 150
HIGH_RISK_PENALTY_THRESHOLD: Final[int] = -50

# Acceptance-criteria defaults.
MIN_ISSUE_TITLE_LENGTH: Final[int] = 10
DEFAULT_MIN_CONSENSUS_SCORE: Final[float] = 60.0
REGISTRY_ID_PREFIX: Final[str] = "DOC-"

# Path exploration limit for transition-table walks.
MAX_PATH_DEPTH: Final[int] = 20

# KPI bookkeeping.
KPI_WINDOW_CAPACITY: Final[int] = 1000
KPI_HEARTBEAT_CAPACITY: Final[int] = 100
KPI_ALERT_LOG_CAPACITY: Final[int] = 1000
KPI_CRITICAL_DEVIATION: Final[float] = 0.5
METRICS_NAMESPACE: Final[str] = "algora"

__all__ = [
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_MIN_CONSENSUS_SCORE",
    "DOMAIN_SCHEMA_VERSION",
    "HIGH_PRIORITY_THRESHOLD",
    "HIGH_RISK_PENALTY_THRESHOLD",
    "HIGH_RISK_PRIORITY_THRESHOLD",
    "KPI_ALERT_LOG_CAPACITY",
    "KPI_CRITICAL_DEVIATION",
    "KPI_HEARTBEAT_CAPACITY",
    "KPI_WINDOW_CAPACITY",
    "MAX_PATH_DEPTH",
    "METRICS_NAMESPACE",
    "MIN_ISSUE_TITLE_LENGTH",
    "PRIORITY_SCORE_MAX",
    "PRIORITY_SCORE_MIN",
    "REGISTRY_ID_PREFIX",
    "STATE_DB_SCHEMA_VERSION",
]
