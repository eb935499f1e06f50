"""Persistence plane: SQLite state DB and the workflow/task stores."""

from governance_orchestrator.persistence.repositories import (
    InMemoryTaskStore,
    InMemoryWorkflowStore,
    SqliteEventLog,
    SqliteTaskStore,
    SqliteWorkflowStore,
    TaskStore,
    WorkflowStore,
)
from governance_orchestrator.persistence.state_db import (
    MigrationRecord,
    StateDB,
    StateDBBusyError,
    StateDBCorruptionError,
    StateDBError,
    StateDBMigrationError,
)

__all__ = [
    "InMemoryTaskStore",
    "InMemoryWorkflowStore",
    "MigrationRecord",
    "SqliteEventLog",
    "SqliteTaskStore",
    "SqliteWorkflowStore",
    "StateDB",
    "StateDBBusyError",
    "StateDBCorruptionError",
    "StateDBError",
    "StateDBMigrationError",
    "TaskStore",
    "WorkflowStore",
]
