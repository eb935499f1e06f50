"""
governance-orchestrator — process-level structured logging

File: src/governance_orchestrator/observability/logging.py
Last updated: 2026-10-17

Purpose
- Route component decision logs (``structlog``) and stdlib records into one
  JSON-lines sink per run, tagged with the workflow/task they belong to.

What should be included in this file
- ``LoggingConfig`` and ``setup_logging`` driven by the ``observability`` config section.
- Queue-backed sinks so logging never blocks the event loop on file I/O.
- ``correlation_scope`` binding ``workflow_id``/``task_id`` through ``contextvars``.
- Redaction of credentials and raw specialist transcripts.

Functional requirements
- Every emitted line is a standalone JSON object.
- A full queue drops records and counts them instead of blocking the caller.

Non-functional requirements
- Setting up logging twice replaces the previous sinks cleanly.
"""

from __future__ import annotations

import atexit
import contextvars
import copy
import json
import logging
import logging.handlers
import queue
import re
import threading
import time
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Final

import structlog

LogRedactor = Callable[[Any], Any]

REDACTED: Final[str] = "***REDACTED***"
LOG_FILENAME: Final[str] = "governance.jsonl"
ROOT_LOGGER_NAME: Final[str] = "governance_orchestrator"

_CORRELATION_KEYS: Final[tuple[str, ...]] = ("run_id", "workflow_id", "todo_id", "task_id")

# Key fragments whose values never reach a sink. Specialist prompts and raw
# completions are covered so issue contents stay out of operational logs.
_SECRET_KEY_FRAGMENTS: Final[tuple[str, ...]] = (
    "secret",
    "token",
    "password",
    "api_key",
    "authorization",
    "credential",
    "prompt_text",
    "completion_text",
)

_SECRET_ASSIGNMENT: Final[re.Pattern[str]] = re.compile(
    r"(?i)\b(api[_-]?key|token|password|secret)\b(\s*[:=]\s*)([^\s,;]+)"
)
_BEARER: Final[re.Pattern[str]] = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/-]+=*")
_PROVIDER_KEY: Final[re.Pattern[str]] = re.compile(r"\bsk-[A-Za-z0-9_-]{12,}\b")

# Attributes every LogRecord carries; anything else arrived through ``extra``.
_RECORD_ATTRIBUTES: Final[frozenset[str]] = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__
) | {"message", "asctime", "correlation"}

_correlation: contextvars.ContextVar[tuple[tuple[str, str], ...]] = contextvars.ContextVar(
    "governance_correlation", default=()
)

_active_lock = threading.Lock()
_active: LoggingHandle | None = None
_atexit_registered = False


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    run_id: str
    log_dir: Path | str = Path("logs")
    logger_name: str = ROOT_LOGGER_NAME
    level: int | str = "INFO"
    log_to_stdout: bool = True
    queue_size: int = 4096
    redact: bool = True

    def __post_init__(self) -> None:
        if not self.run_id.strip():
            raise ValueError("run_id must not be empty")
        if not self.logger_name.strip():
            raise ValueError("logger_name must not be empty")
        if self.queue_size <= 0:
            raise ValueError("queue_size must be > 0")


# ---------------------------------------------------------------------------
# Correlation
# ---------------------------------------------------------------------------


def get_correlation_context() -> dict[str, str]:
    return dict(_correlation.get())


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Bind correlation fields for the current task; ``None`` unbinds a field."""

    merged = get_correlation_context()
    for key, value in fields.items():
        if value is None:
            merged.pop(key, None)
        elif value.strip():
            merged[key] = value.strip()
    token = _correlation.set(tuple(merged.items()))
    try:
        yield
    finally:
        _correlation.reset(token)


# ---------------------------------------------------------------------------
# Redaction
# ---------------------------------------------------------------------------


def redact(value: Any, *, key: str | None = None) -> Any:
    """Deep-redact credentials from a JSON-compatible value."""

    if key is not None and any(fragment in key.lower() for fragment in _SECRET_KEY_FRAGMENTS):
        return REDACTED
    if isinstance(value, str):
        text = _SECRET_ASSIGNMENT.sub(lambda m: f"{m.group(1)}{m.group(2)}{REDACTED}", value)
        text = _BEARER.sub(f"Bearer {REDACTED}", text)
        return _PROVIDER_KEY.sub(REDACTED, text)
    if isinstance(value, list):
        return [redact(item) for item in value]
    if isinstance(value, dict):
        return {name: redact(item, key=name) for name, item in value.items()}
    return value


def _passthrough(value: Any) -> Any:
    return value


def _to_json(value: object) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, datetime):
        return value.astimezone(UTC).isoformat().replace("+00:00", "Z")
    if isinstance(value, Mapping):
        return {str(name): _to_json(item) for name, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_to_json(item) for item in value]
    # StrEnum members are already str; everything else falls back to repr.
    return str(value) if isinstance(value, Path) else repr(value)


# ---------------------------------------------------------------------------
# Sinks
# ---------------------------------------------------------------------------


class _JsonLineFormatter(logging.Formatter):
    def __init__(self, *, run_id: str, redactor: LogRedactor) -> None:
        super().__init__()
        self._run_id = run_id
        self._redactor = redactor

    def format(self, record: logging.LogRecord) -> str:
        line: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": self._redactor(record.getMessage()),
            "run_id": self._run_id,
        }
        line.update(getattr(record, "correlation", {}))
        fields = {
            name: _to_json(value)
            for name, value in record.__dict__.items()
            if name not in _RECORD_ATTRIBUTES
            and name not in _CORRELATION_KEYS
            and not name.startswith("_")
        }
        if fields:
            line["fields"] = self._redactor(fields)
        if record.exc_info is not None:
            line["exception"] = self._redactor(self.formatException(record.exc_info))
        return json.dumps(line, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class _DroppingQueueHandler(logging.handlers.QueueHandler):
    """Capture correlation at emit time and drop records when the queue is full."""

    def __init__(self, log_queue: queue.Queue[Any]) -> None:
        super().__init__(log_queue)
        self.dropped = 0
        self._dropped_lock = threading.Lock()

    def prepare(self, record: logging.LogRecord) -> Any:
        # The listener thread does not see this task's contextvars.
        context = get_correlation_context()
        for key in _CORRELATION_KEYS:
            value = getattr(record, key, None)
            if isinstance(value, str) and value:
                context[key] = value
        # The queue never leaves the process, so exc_info stays on the record
        # for the JSON formatter instead of being folded into the message.
        prepared = copy.copy(record)
        prepared.msg = record.getMessage()
        prepared.args = None
        prepared.correlation = context
        return prepared

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            with self._dropped_lock:
                self.dropped += 1


class LoggingHandle:
    """Live logging setup for one run; shut it down to flush and close sinks."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        log_path: Path,
        log_queue: queue.Queue[Any],
        queue_handler: _DroppingQueueHandler,
        sinks: tuple[logging.Handler, ...],
        listener: logging.handlers.QueueListener,
    ) -> None:
        self.logger = logger
        self.log_path = log_path
        self._queue = log_queue
        self._queue_handler = queue_handler
        self._sinks = sinks
        self._listener = listener
        self._closed = False
        self._close_lock = threading.Lock()

    @property
    def dropped_records(self) -> int:
        return self._queue_handler.dropped

    def flush(self, *, timeout_seconds: float = 2.0) -> None:
        deadline = time.monotonic() + timeout_seconds
        while self._queue.unfinished_tasks and time.monotonic() < deadline:
            time.sleep(0.01)
        for sink in self._sinks:
            sink.flush()

    def shutdown(self) -> None:
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
            self._listener.stop()
            self.logger.removeHandler(self._queue_handler)
            self._queue_handler.close()
            for sink in self._sinks:
                sink.flush()
                sink.close()


def setup_structured_logging(config: LoggingConfig) -> LoggingHandle:
    """Install queue-backed JSON-lines sinks on ``config.logger_name``."""

    level = _parse_level(config.level)
    run_dir = Path(config.log_dir) / config.run_id.strip()
    run_dir.mkdir(parents=True, exist_ok=True)
    log_path = run_dir / LOG_FILENAME

    formatter = _JsonLineFormatter(
        run_id=config.run_id.strip(), redactor=redact if config.redact else _passthrough
    )
    sinks: list[logging.Handler] = [logging.FileHandler(log_path, encoding="utf-8")]
    if config.log_to_stdout:
        sinks.append(logging.StreamHandler())
    for sink in sinks:
        sink.setLevel(level)
        sink.setFormatter(formatter)

    shutdown_logging()
    logger = logging.getLogger(config.logger_name)
    logger.setLevel(level)
    logger.propagate = False
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()

    log_queue: queue.Queue[Any] = queue.Queue(maxsize=config.queue_size)
    queue_handler = _DroppingQueueHandler(log_queue)
    listener = logging.handlers.QueueListener(log_queue, *sinks, respect_handler_level=True)
    listener.start()
    logger.addHandler(queue_handler)

    handle = LoggingHandle(
        logger=logger,
        log_path=log_path,
        log_queue=log_queue,
        queue_handler=queue_handler,
        sinks=tuple(sinks),
        listener=listener,
    )
    global _active, _atexit_registered
    with _active_lock:
        _active = handle
        if not _atexit_registered:
            atexit.register(shutdown_logging)
            _atexit_registered = True
    return handle


def setup_logging(
    observability_config: Mapping[str, object] | None = None,
    *,
    run_id: str,
    log_dir: Path | str | None = None,
) -> LoggingHandle:
    """Configure logging from the ``observability`` config section.

    ``log_dir`` overrides the configured directory; logs for the run land in
    ``<log_dir>/<run_id>/governance.jsonl``.
    """

    section = dict(observability_config or {})
    configured_dir = section.get("log_dir", "logs")
    handle = setup_structured_logging(
        LoggingConfig(
            run_id=run_id,
            log_dir=log_dir if log_dir is not None else str(configured_dir),
            level=str(section.get("log_level", "INFO")),
            log_to_stdout=bool(section.get("log_to_stdout", True)),
            redact=bool(section.get("redact_secrets", True)),
        )
    )
    configure_structlog()
    return handle


def configure_structlog() -> None:
    """Send ``structlog`` events through the stdlib sinks as ``extra`` fields."""

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.format_exc_info,
            _to_stdlib_call,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def _to_stdlib_call(
    _logger: object, _method: str, event_dict: structlog.typing.EventDict
) -> tuple[tuple[object, ...], dict[str, object]]:
    event = str(event_dict.pop("event", ""))
    trace = event_dict.pop("exception", None)
    extra = {key: value for key, value in event_dict.items() if key not in _RECORD_ATTRIBUTES}
    if trace is not None:
        extra["error_trace"] = trace
    return (event,), {"extra": extra}


def shutdown_logging() -> None:
    """Flush and close the active logging setup, if any."""

    global _active
    with _active_lock:
        handle, _active = _active, None
    if handle is not None:
        handle.flush()
        handle.shutdown()


def _parse_level(value: int | str) -> int:
    if isinstance(value, int):
        return value
    parsed = logging.getLevelName(value.strip().upper())
    if not isinstance(parsed, int):
        raise ValueError(f"unsupported logging level {value!r}")
    return parsed


__all__ = [
    "LOG_FILENAME",
    "LogRedactor",
    "LoggingConfig",
    "LoggingHandle",
    "REDACTED",
    "configure_structlog",
    "correlation_scope",
    "get_correlation_context",
    "redact",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
