"""State DB migrations, checksums, transactions and error mapping."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from governance_orchestrator.constants import STATE_DB_SCHEMA_VERSION
from governance_orchestrator.persistence.state_db import (
    StateDB,
    StateDBBusyError,
    StateDBCorruptionError,
    StateDBMigrationError,
)

if TYPE_CHECKING:
    from pathlib import Path


def test_migration_is_idempotent_and_creates_tables(tmp_path: Path) -> None:
    db = StateDB(tmp_path / "state" / "governance.sqlite")

    assert db.migrate() == STATE_DB_SCHEMA_VERSION
    assert db.migrate() == STATE_DB_SCHEMA_VERSION

    tables = {
        str(row["name"])
        for row in db.query_all("SELECT name FROM sqlite_master WHERE type = 'table'")
    }
    assert {"schema_versions", "workflows", "todos", "tasks", "governance_events"} <= tables
    assert db.query_one("PRAGMA journal_mode") == {"journal_mode": "wal"}
    assert db.query_one("PRAGMA foreign_keys") == {"foreign_keys": 1}


def test_schema_history_records_each_migration_once(tmp_path: Path) -> None:
    db = StateDB(tmp_path / "governance.sqlite")
    db.migrate()
    db.migrate()

    (record,) = db.schema_history()

    assert record.version == 1
    assert record.name == "initial_governance_schema"
    assert len(record.checksum) == 64
    assert record.applied_at.endswith("Z")


def test_checksum_drift_is_refused(tmp_path: Path) -> None:
    db = StateDB(tmp_path / "governance.sqlite")
    db.migrate()
    db.execute("UPDATE schema_versions SET checksum = ? WHERE version = 1", ("0" * 64,))

    with pytest.raises(StateDBMigrationError, match="checksum mismatch"):
        db.migrate()


def test_newer_database_is_refused(tmp_path: Path) -> None:
    db = StateDB(tmp_path / "governance.sqlite")
    db.migrate()
    db.execute(
        "INSERT INTO schema_versions (version, name, checksum, applied_at) VALUES (?, ?, ?, ?)",
        (STATE_DB_SCHEMA_VERSION + 1, "from_the_future", "f" * 64, "2030-01-01T00:00:00Z"),
    )

    with pytest.raises(StateDBMigrationError, match="newer than supported"):
        db.migrate()


def test_transaction_rolls_back_on_error(tmp_path: Path) -> None:
    db = StateDB(tmp_path / "governance.sqlite")
    db.execute("CREATE TABLE notes (body TEXT NOT NULL)")

    with pytest.raises(RuntimeError, match="abort"), db.transaction() as tx:
        db.execute("INSERT INTO notes (body) VALUES (?)", ("draft",), conn=tx)
        raise RuntimeError("abort")

    with db.transaction() as tx:
        assert db.execute("INSERT INTO notes (body) VALUES (?)", ("kept",), conn=tx) == 1

    assert db.query_all("SELECT body FROM notes") == [{"body": "kept"}]


def test_fresh_database_passes_integrity_check(tmp_path: Path) -> None:
    db = StateDB(tmp_path / "governance.sqlite")
    db.migrate()

    assert db.integrity_check() == ()


def test_garbage_file_maps_to_corruption_error(tmp_path: Path) -> None:
    path = tmp_path / "governance.sqlite"
    path.write_bytes(b"this is certainly not an sqlite database" * 100)

    with pytest.raises(StateDBCorruptionError, match="integrity_check"):
        StateDB(path).migrate()


def test_busy_writer_surfaces_after_bounded_retries(tmp_path: Path) -> None:
    db = StateDB(
        tmp_path / "governance.sqlite",
        busy_timeout_ms=0,
        busy_retry_limit=1,
        busy_retry_backoff_ms=1,
    )
    db.execute("CREATE TABLE notes (body TEXT NOT NULL)")

    with db.connection() as holder:
        holder.execute("BEGIN IMMEDIATE")
        try:
            with pytest.raises(StateDBBusyError, match="2 attempt"):
                db.execute("INSERT INTO notes (body) VALUES (?)", ("blocked",))
        finally:
            holder.execute("ROLLBACK")


def test_negative_busy_settings_are_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        StateDB(tmp_path / "governance.sqlite", busy_retry_limit=-1)
