"""
governance-orchestrator — module skeleton

File: src/governance_orchestrator/persistence/state_db.py
Last updated: 2026-10-17

Purpose
- SQLite schema management, migrations, and connection lifecycle for the
  workflow, todo, task and critical-event tables.

What should be included in this file
- Schema version table and checksummed migration runner.
- Safe locking strategy (WAL, BEGIN IMMEDIATE) and busy timeout handling.
- Integrity-check helper for operators diagnosing a damaged file.

Functional requirements
- Must support idempotent migration application.
- A committed transaction is durable before the caller continues; this is
  what lets the todo manager emit events only after a status change is stored.

Non-functional requirements
- Connections are short-lived; no lock is held between calls.
"""

from __future__ import annotations

import hashlib
import sqlite3
import time
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Final

from governance_orchestrator.constants import STATE_DB_SCHEMA_VERSION
from governance_orchestrator.domain.models import (
    TaskStatus,
    TodoStatus,
    WorkflowState,
    WorkflowStatus,
    WorkflowType,
)

SQLValue = str | int | float | bytes | None
SQLParams = Sequence[SQLValue]
RowValue = str | int | float | bytes | None

DEFAULT_BUSY_TIMEOUT_MS: Final[int] = 5_000
DEFAULT_BUSY_RETRY_LIMIT: Final[int] = 4
DEFAULT_BUSY_RETRY_BACKOFF_MS: Final[int] = 25


def _sql_enum(values: Iterable[str]) -> str:
    return ",".join(f"'{value}'" for value in sorted(values))


_WORKFLOW_TYPES: Final[str] = _sql_enum(item.value for item in WorkflowType)
_WORKFLOW_STATES: Final[str] = _sql_enum(item.value for item in WorkflowState)
_WORKFLOW_STATUSES: Final[str] = _sql_enum(item.value for item in WorkflowStatus)
_TODO_STATUSES: Final[str] = _sql_enum(item.value for item in TodoStatus)
_TASK_STATUSES: Final[str] = _sql_enum(item.value for item in TaskStatus)

_SCHEMA_VERSIONS_TABLE_SQL: Final[str] = """
CREATE TABLE IF NOT EXISTS schema_versions (
    version INTEGER PRIMARY KEY CHECK (version > 0),
    name TEXT NOT NULL,
    checksum TEXT NOT NULL CHECK (length(checksum) = 64),
    applied_at TEXT NOT NULL
)
"""

_MIGRATION_0001_STATEMENTS: Final[tuple[str, ...]] = (
    _SCHEMA_VERSIONS_TABLE_SQL,
    f"""
    CREATE TABLE IF NOT EXISTS workflows (
        id TEXT PRIMARY KEY,
        workflow_type TEXT NOT NULL CHECK (workflow_type IN ({_WORKFLOW_TYPES})),
        issue_id TEXT NOT NULL,
        current_state TEXT NOT NULL CHECK (current_state IN ({_WORKFLOW_STATES})),
        status TEXT NOT NULL CHECK (status IN ({_WORKFLOW_STATUSES})),
        payload_json TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_workflows_status
    ON workflows(status, created_at)
    """,
    f"""
    CREATE TABLE IF NOT EXISTS todos (
        id TEXT PRIMARY KEY,
        workflow_id TEXT NOT NULL UNIQUE,
        issue_id TEXT NOT NULL,
        workflow_type TEXT NOT NULL CHECK (workflow_type IN ({_WORKFLOW_TYPES})),
        current_state TEXT NOT NULL CHECK (current_state IN ({_WORKFLOW_STATES})),
        status TEXT NOT NULL CHECK (status IN ({_TODO_STATUSES})),
        payload_json TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS tasks (
        id TEXT PRIMARY KEY,
        todo_id TEXT NOT NULL REFERENCES todos(id) ON DELETE CASCADE,
        workflow_id TEXT NOT NULL,
        stage TEXT NOT NULL CHECK (stage IN ({_WORKFLOW_STATES})),
        specialist_code TEXT NOT NULL,
        sequence INTEGER NOT NULL CHECK (sequence >= 0),
        status TEXT NOT NULL CHECK (status IN ({_TASK_STATUSES})),
        priority INTEGER NOT NULL CHECK (priority BETWEEN 0 AND 100),
        payload_json TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE (workflow_id, stage, specialist_code)
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_tasks_workflow_sequence
    ON tasks(workflow_id, sequence)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_tasks_status_priority
    ON tasks(status, priority DESC, sequence)
    """,
    """
    CREATE TABLE IF NOT EXISTS governance_events (
        event_id TEXT PRIMARY KEY,
        event_type TEXT NOT NULL,
        correlation_id TEXT,
        timestamp TEXT NOT NULL,
        payload_json TEXT NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_governance_events_correlation
    ON governance_events(correlation_id, timestamp)
    """,
)


@dataclass(frozen=True, slots=True)
class MigrationRecord:
    version: int
    name: str
    checksum: str
    applied_at: str


def _checksum(version: int, name: str, statements: Sequence[str]) -> str:
    # Whitespace-insensitive at line ends so reformatting a statement is not a schema change.
    digest = hashlib.sha256(f"{version}:{name}\n".encode())
    for statement in statements:
        lines = (line.rstrip() for line in statement.strip().splitlines())
        digest.update("\n".join(lines).encode("utf-8") + b"\n--\n")
    return digest.hexdigest()


_MIGRATIONS: Final[tuple[tuple[int, str, tuple[str, ...]], ...]] = (
    (1, "initial_governance_schema", _MIGRATION_0001_STATEMENTS),
)

_BUSY_MARKERS: Final[tuple[str, ...]] = ("database is locked", "database table is locked")
_CORRUPTION_MARKERS: Final[tuple[str, ...]] = (
    "database disk image is malformed",
    "file is not a database",
)


class StateDBError(RuntimeError):
    """Base class for persistence DB errors."""


class StateDBBusyError(StateDBError):
    """Raised when bounded busy retries are exhausted."""


class StateDBMigrationError(StateDBError):
    """Raised when migrations cannot be applied safely."""


class StateDBCorruptionError(StateDBError):
    """Raised when SQLite reports possible corruption."""


class StateDB:
    """
    Owner of the SQLite file behind the sqlite-backed stores.

    Every call opens its own connection in autocommit mode; ``transaction``
    wraps a block in ``BEGIN IMMEDIATE`` so writers serialize up front
    instead of failing at commit time.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
        busy_retry_limit: int = DEFAULT_BUSY_RETRY_LIMIT,
        busy_retry_backoff_ms: int = DEFAULT_BUSY_RETRY_BACKOFF_MS,
    ) -> None:
        if min(busy_timeout_ms, busy_retry_limit, busy_retry_backoff_ms) < 0:
            raise ValueError("busy timeout, retry limit and backoff must be >= 0")
        self._path = Path(path).expanduser()
        self._busy_timeout_ms = busy_timeout_ms
        self._busy_retry_limit = busy_retry_limit
        self._busy_retry_backoff_ms = busy_retry_backoff_ms

    @property
    def path(self) -> Path:
        return self._path

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            self._path,
            timeout=self._busy_timeout_ms / 1000.0,
            isolation_level=None,
            check_same_thread=False,
        )
        try:
            conn.row_factory = sqlite3.Row
            self._run(conn, "PRAGMA foreign_keys=ON", (), operation="enable foreign keys")
            mode = self._run(
                conn, "PRAGMA journal_mode=WAL", (), operation="enable WAL"
            ).fetchone()
            if mode is None or str(mode[0]).lower() != "wal":
                raise StateDBError(f"could not switch {self._path} to WAL journaling")
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(
        self, *, conn: sqlite3.Connection | None = None
    ) -> Iterator[sqlite3.Connection]:
        if conn is None:
            with self.connection() as owned, self.transaction(conn=owned) as tx:
                yield tx
            return

        self._run(conn, "BEGIN IMMEDIATE", (), operation="begin transaction")
        try:
            yield conn
        except BaseException:
            self._run(conn, "ROLLBACK", (), operation="rollback transaction")
            raise
        self._run(conn, "COMMIT", (), operation="commit transaction")

    def migrate(self) -> int:
        """Apply pending migrations and return the resulting schema version."""

        known = [version for version, _, _ in _MIGRATIONS]
        if known != list(range(1, STATE_DB_SCHEMA_VERSION + 1)):
            raise StateDBMigrationError(
                f"migrations {known} do not cover schema version {STATE_DB_SCHEMA_VERSION}"
            )
        with self.connection() as conn:
            self._run(conn, _SCHEMA_VERSIONS_TABLE_SQL, (), operation="create schema_versions")
            applied = {record.version: record for record in self._applied(conn)}
            newest = max(applied, default=0)
            if newest > STATE_DB_SCHEMA_VERSION:
                raise StateDBMigrationError(
                    f"database schema version {newest} is newer than supported "
                    f"version {STATE_DB_SCHEMA_VERSION}"
                )
            for version, name, statements in _MIGRATIONS:
                checksum = _checksum(version, name, statements)
                record = applied.get(version)
                if record is not None:
                    if record.checksum != checksum:
                        raise StateDBMigrationError(
                            f"migration {version} checksum mismatch: "
                            f"db={record.checksum} code={checksum}"
                        )
                    continue
                with self.transaction(conn=conn) as tx:
                    for statement in statements:
                        self._run(tx, statement, (), operation=f"apply migration {version}")
                    self._run(
                        tx,
                        "INSERT INTO schema_versions (version, name, checksum, applied_at) "
                        "VALUES (?, ?, ?, ?)",
                        (version, name, checksum, _utc_now_iso()),
                        operation=f"record migration {version}",
                    )
            return self.schema_version(conn=conn)

    def schema_version(self, *, conn: sqlite3.Connection | None = None) -> int:
        row = self.query_one(
            "SELECT COALESCE(MAX(version), 0) AS version FROM schema_versions", conn=conn
        )
        return 0 if row is None else int(row["version"] or 0)

    def schema_history(self) -> list[MigrationRecord]:
        with self.connection() as conn:
            return self._applied(conn)

    def execute(
        self, sql: str, params: SQLParams = (), *, conn: sqlite3.Connection | None = None
    ) -> int:
        """Execute a parameterized statement and return the affected row count."""

        if conn is not None:
            return self._run(conn, sql, params, operation="execute").rowcount
        with self.transaction() as tx:
            return self._run(tx, sql, params, operation="execute").rowcount

    def query_all(
        self, sql: str, params: SQLParams = (), *, conn: sqlite3.Connection | None = None
    ) -> list[dict[str, RowValue]]:
        if conn is not None:
            return [dict(row) for row in self._run(conn, sql, params, operation="query").fetchall()]
        with self.connection() as owned:
            return self.query_all(sql, params, conn=owned)

    def query_one(
        self, sql: str, params: SQLParams = (), *, conn: sqlite3.Connection | None = None
    ) -> dict[str, RowValue] | None:
        rows = self.query_all(sql, params, conn=conn)
        return rows[0] if rows else None

    def integrity_check(self) -> tuple[str, ...]:
        """Return SQLite's integrity problems; an empty tuple means the file is sound."""

        rows = self.query_all("PRAGMA integrity_check")
        messages = tuple(str(row["integrity_check"]) for row in rows)
        return () if messages == ("ok",) else messages

    def _applied(self, conn: sqlite3.Connection) -> list[MigrationRecord]:
        rows = self._run(
            conn,
            "SELECT version, name, checksum, applied_at FROM schema_versions ORDER BY version",
            (),
            operation="load schema_versions",
        ).fetchall()
        return [MigrationRecord(**dict(row)) for row in rows]

    def _run(
        self, conn: sqlite3.Connection, sql: str, params: SQLParams, *, operation: str
    ) -> sqlite3.Cursor:
        attempt = 0
        while True:
            try:
                return conn.execute(sql, tuple(params))
            except sqlite3.IntegrityError:
                raise
            except sqlite3.OperationalError as exc:
                message = str(exc).lower()
                busy = any(marker in message for marker in _BUSY_MARKERS)
                if busy and attempt < self._busy_retry_limit:
                    time.sleep(self._busy_retry_backoff_ms / 1000.0 * 2**attempt)
                    attempt += 1
                    continue
                if busy:
                    raise StateDBBusyError(
                        f"{operation} still busy on {self._path} after {attempt + 1} attempt(s)"
                    ) from exc
                raise StateDBError(f"{operation} failed for {self._path}: {exc}") from exc
            except sqlite3.DatabaseError as exc:
                if any(marker in str(exc).lower() for marker in _CORRUPTION_MARKERS):
                    raise StateDBCorruptionError(
                        f"{operation} failed for {self._path}: {exc}; "
                        "run StateDB.integrity_check() and restore from a copy"
                    ) from exc
                raise StateDBError(f"{operation} failed for {self._path}: {exc}") from exc


def _utc_now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


__all__ = [
    "DEFAULT_BUSY_RETRY_BACKOFF_MS",
    "DEFAULT_BUSY_RETRY_LIMIT",
    "DEFAULT_BUSY_TIMEOUT_MS",
    "MigrationRecord",
    "RowValue",
    "SQLParams",
    "SQLValue",
    "StateDB",
    "StateDBBusyError",
    "StateDBCorruptionError",
    "StateDBError",
    "StateDBMigrationError",
]
