"""
governance-orchestrator — CLI router tests

File: tests/unit/test_cli.py
Last updated: 2026-10-17

Purpose
- Exercise every subcommand in-process: output shape, JSON mode and exit codes.

Functional requirements
- Config lookups are pinned to tmp_path and a GOVERNANCE_-free environment.
"""

from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from governance_orchestrator.cli import build_parser, main, run_cli


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    for name in list(os.environ):
        if name.startswith("GOVERNANCE_"):
            monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)
    return tmp_path


def test_paths_lists_every_route_to_a_terminal(capsys: pytest.CaptureFixture[str]) -> None:
    assert run_cli(["paths", "A"]) == 0

    lines = capsys.readouterr().out.splitlines()
    assert lines[0].startswith("A (")
    assert lines[1:] == [
        "  intake -> triage -> research -> deliberation -> publish -> closed",
        "  intake -> triage -> research -> deliberation -> rejected",
    ]


def test_paths_json_from_custom_state(capsys: pytest.CaptureFixture[str]) -> None:
    assert run_cli(["paths", "D", "--from", "exec_locked", "--json"]) == 0

    payload = json.loads(capsys.readouterr().out)
    assert payload == {
        "command": "paths",
        "workflow_type": "D",
        "from": "exec_locked",
        "paths": [["exec_locked", "executed"], ["exec_locked", "rejected"]],
    }


def test_unreachable_start_state_exits_2(capsys: pytest.CaptureFixture[str]) -> None:
    assert run_cli(["paths", "A", "--from", "review"]) == 2

    assert "not reachable" in capsys.readouterr().err


def test_tables_json_exposes_transitions_and_specialists(
    capsys: pytest.CaptureFixture[str],
) -> None:
    assert main(["tables", "--json"]) == 0

    payload = json.loads(capsys.readouterr().out)
    assert sorted(payload["transitions"]) == ["A", "B", "C", "D", "E"]
    assert payload["transitions"]["C"]["publish"] == ["exec_locked"]
    assert payload["stage_specialists"]["deliberation"] == ["ANA", "RED"]


def test_tables_text(capsys: pytest.CaptureFixture[str]) -> None:
    assert run_cli(["tables"]) == 0

    out = capsys.readouterr().out
    assert "[B] " in out
    assert "[stage specialists]" in out


def test_config_show_uses_file_in_working_directory(
    _isolated_config: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    (_isolated_config / "governance.toml").write_text(
        "[retry]\nmax_retries = 5\n", encoding="utf-8"
    )

    assert run_cli(["config", "show", "--json"]) == 0

    config = json.loads(capsys.readouterr().out)
    assert config["retry"]["max_retries"] == 5


def test_config_show_text_names_profile(capsys: pytest.CaptureFixture[str]) -> None:
    assert run_cli(["config", "show", "--profile", "strict"]) == 0

    out = capsys.readouterr().out
    assert out.startswith("profile: strict\n")
    assert '"min_confidence": 80.0' in out


def test_config_validate_reports_fingerprint(capsys: pytest.CaptureFixture[str]) -> None:
    assert run_cli(["config", "validate", "--json"]) == 0

    payload = json.loads(capsys.readouterr().out)
    assert payload["valid"] is True
    assert len(payload["fingerprint"]) == 64

    assert run_cli(["config", "validate"]) == 0
    assert capsys.readouterr().out.startswith(f"config ok ({payload['fingerprint'][:12]})")


def test_invalid_config_exits_2(
    _isolated_config: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    bad = _isolated_config / "bad.toml"
    bad.write_text("[orchestrator]\nmin_consensus_score = 140.0\n", encoding="utf-8")

    assert run_cli(["config", "validate", "--config", str(bad)]) == 2
    assert "orchestrator.min_consensus_score" in capsys.readouterr().err

    assert run_cli(["config", "show", "--profile", "nope"]) == 2


def test_parser_rejects_unknown_workflow_type() -> None:
    with pytest.raises(SystemExit) as excinfo:
        build_parser().parse_args(["paths", "Z"])
    assert excinfo.value.code == 2
