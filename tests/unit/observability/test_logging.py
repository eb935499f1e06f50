"""
governance-orchestrator — unit tests for structured logging

File: tests/unit/observability/test_logging.py
Last updated: 2026-10-17

Purpose
- Validate JSON-lines sinks, correlation binding, and redaction.

What this test file should cover
- One JSON object per line with run/workflow correlation fields.
- Credential and transcript redaction, and opting out of it.
- structlog events routed through the stdlib sinks as fields.
- Queue overflow accounting and clean re-initialization.

Functional requirements
- Writes only under pytest's tmp_path; no stdout sink.

Non-functional requirements
- Sinks are flushed by shutdown, never by sleeping.
"""

from __future__ import annotations

import json
import logging
import queue
from collections.abc import Iterator
from pathlib import Path

import pytest
import structlog

from governance_orchestrator.observability.logging import (
    LOG_FILENAME,
    REDACTED,
    ROOT_LOGGER_NAME,
    LoggingConfig,
    _DroppingQueueHandler,
    correlation_scope,
    get_correlation_context,
    redact,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
)


@pytest.fixture(autouse=True)
def _restore_logging() -> Iterator[None]:
    yield
    shutdown_logging()
    structlog.reset_defaults()
    logging.getLogger(ROOT_LOGGER_NAME).propagate = True


def _read_lines(path: Path) -> list[dict[str, object]]:
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


def _config(tmp_path: Path, **changes: object) -> LoggingConfig:
    values: dict[str, object] = {"run_id": "run-1", "log_dir": tmp_path, "log_to_stdout": False}
    values.update(changes)
    return LoggingConfig(**values)  # type: ignore[arg-type]


def test_records_are_json_lines_with_correlation_and_fields(tmp_path: Path) -> None:
    handle = setup_structured_logging(_config(tmp_path))

    with correlation_scope(workflow_id="wf-0001"):
        handle.logger.info("stage finished", extra={"stage": "triage", "attempt": 2})
        with correlation_scope(task_id="task-0001"):
            handle.logger.warning("specialist retry")
    shutdown_logging()

    assert handle.log_path == tmp_path / "run-1" / LOG_FILENAME
    first, second = _read_lines(handle.log_path)
    assert first["message"] == "stage finished"
    assert first["level"] == "INFO"
    assert first["logger"] == ROOT_LOGGER_NAME
    assert first["run_id"] == "run-1"
    assert first["workflow_id"] == "wf-0001"
    assert first["fields"] == {"stage": "triage", "attempt": 2}
    assert "task_id" not in first
    assert second["task_id"] == "task-0001"
    assert str(first["timestamp"]).endswith("Z")


def test_exceptions_are_rendered_into_the_line(tmp_path: Path) -> None:
    handle = setup_structured_logging(_config(tmp_path))

    try:
        raise RuntimeError("provider unreachable")
    except RuntimeError:
        handle.logger.exception("invoke failed")
    shutdown_logging()

    (line,) = _read_lines(handle.log_path)
    assert line["level"] == "ERROR"
    assert "RuntimeError: provider unreachable" in str(line["exception"])


def test_secrets_are_redacted_from_messages_and_fields(tmp_path: Path) -> None:
    handle = setup_structured_logging(_config(tmp_path))

    handle.logger.info(
        "calling provider with token=abc123",
        extra={"api_key": "sk-abcdefghijklmnop", "prompt_text": "full issue body"},
    )
    shutdown_logging()

    (line,) = _read_lines(handle.log_path)
    assert line["message"] == f"calling provider with token={REDACTED}"
    assert line["fields"] == {"api_key": REDACTED, "prompt_text": REDACTED}


def test_redaction_can_be_disabled(tmp_path: Path) -> None:
    handle = setup_structured_logging(_config(tmp_path, redact=False))

    handle.logger.info("password=hunter2")
    shutdown_logging()

    (line,) = _read_lines(handle.log_path)
    assert line["message"] == "password=hunter2"


def test_redact_walks_nested_values() -> None:
    redacted = redact(
        {
            "headers": {"Authorization": "Bearer abc.def.ghi"},
            "notes": ["Bearer xyz123", "key sk-0123456789abcdef in text"],
            "count": 3,
        }
    )

    assert redacted == {
        "headers": {"Authorization": REDACTED},
        "notes": [f"Bearer {REDACTED}", f"key {REDACTED} in text"],
        "count": 3,
    }


def test_correlation_scope_nests_and_unbinds() -> None:
    assert get_correlation_context() == {}
    with correlation_scope(workflow_id="wf-1", task_id="task-1"):
        with correlation_scope(task_id=None, todo_id="  "):
            assert get_correlation_context() == {"workflow_id": "wf-1"}
        assert get_correlation_context() == {"workflow_id": "wf-1", "task_id": "task-1"}
    assert get_correlation_context() == {}


def test_setup_logging_reads_observability_section_and_routes_structlog(
    tmp_path: Path,
) -> None:
    handle = setup_logging(
        {"log_level": "WARNING", "log_dir": "ignored", "log_to_stdout": False},
        run_id="run-2",
        log_dir=tmp_path,
    )
    log = structlog.get_logger(f"{ROOT_LOGGER_NAME}.observability.kpi")

    log.info("kpi_sample_recorded", metric="queue_depth")
    with correlation_scope(workflow_id="wf-0002"):
        log.warning("kpi_threshold_breach", metric="queue_depth", value=500.0)
    shutdown_logging()

    (line,) = _read_lines(handle.log_path)
    assert line["message"] == "kpi_threshold_breach"
    assert line["logger"] == f"{ROOT_LOGGER_NAME}.observability.kpi"
    assert line["workflow_id"] == "wf-0002"
    assert line["fields"] == {"metric": "queue_depth", "value": 500.0}


def test_setup_twice_replaces_previous_sinks(tmp_path: Path) -> None:
    first = setup_structured_logging(_config(tmp_path, run_id="run-a"))
    first.logger.info("to first")
    second = setup_structured_logging(_config(tmp_path, run_id="run-b"))
    second.logger.info("to second")
    shutdown_logging()

    assert [line["message"] for line in _read_lines(first.log_path)] == ["to first"]
    assert [line["message"] for line in _read_lines(second.log_path)] == ["to second"]
    assert len(logging.getLogger(ROOT_LOGGER_NAME).handlers) == 0


def test_full_queue_drops_and_counts_records() -> None:
    handler = _DroppingQueueHandler(queue.Queue(maxsize=1))
    record = logging.LogRecord("governance", logging.INFO, __file__, 1, "msg", None, None)

    handler.handle(record)
    handler.handle(record)

    assert handler.dropped == 1


@pytest.mark.parametrize(
    "changes",
    [{"run_id": "  "}, {"logger_name": ""}, {"queue_size": 0}],
)
def test_logging_config_validation(tmp_path: Path, changes: dict[str, object]) -> None:
    with pytest.raises(ValueError):
        _config(tmp_path, **changes)


def test_unknown_level_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="unsupported logging level"):
        setup_structured_logging(_config(tmp_path, level="VERBOSE"))
