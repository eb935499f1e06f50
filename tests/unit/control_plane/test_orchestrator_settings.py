from __future__ import annotations

import pytest

from governance_orchestrator.config.schema import apply_profile_overlay, default_config
from governance_orchestrator.control_plane.orchestrator import OrchestratorSettings


def test_settings_from_default_config_match_dataclass_defaults() -> None:
    assert OrchestratorSettings.from_config(default_config()) == OrchestratorSettings()


def test_settings_follow_profile_and_retry_section() -> None:
    config = apply_profile_overlay(default_config(), "strict")
    config["retry"]["max_retries"] = 5

    settings = OrchestratorSettings.from_config(config)

    assert settings.min_consensus_score == 70.0
    assert settings.max_retries == 5


@pytest.mark.parametrize(
    "changes",
    [
        {"max_concurrent_workflows": 0},
        {"admission_queue_size": -1},
        {"stage_timeout_seconds": 0.0},
        {"workflow_timeout_seconds": -5.0},
        {"heartbeat_interval_seconds": 0},
        {"min_consensus_score": 100.5},
        {"max_retries": 0},
    ],
)
def test_invalid_settings_are_rejected(changes: dict[str, float]) -> None:
    with pytest.raises(ValueError):
        OrchestratorSettings(**changes)
