"""
SQLite connection and schema for the entity store.

Connection rules:

- ``journal_mode=WAL`` so readers are not blocked by the single writer.
- ``busy_timeout`` so concurrent writers (other threads or other processes)
  wait for the write lock instead of failing immediately.
- Autocommit mode (``isolation_level=None``); every write goes through
  ``Database.transaction()``, which issues ``BEGIN IMMEDIATE`` so the write
  lock is taken up front.

Schema version is stored in ``PRAGMA user_version``. ``migrate()`` is
idempotent and seeds the default queue settings on first initialization.
"""

import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import structlog

log = structlog.get_logger(__name__)

SCHEMA_VERSION = 1

_SCHEMA = """
CREATE TABLE IF NOT EXISTS repos (
    repo_name   TEXT PRIMARY KEY,
    repo_path   TEXT NOT NULL DEFAULT '',
    created_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS features (
    repo_name     TEXT NOT NULL REFERENCES repos(repo_name) ON DELETE CASCADE,
    feature_slug  TEXT NOT NULL,
    feature_name  TEXT NOT NULL,
    created_at    TEXT NOT NULL,
    last_modified TEXT NOT NULL,
    PRIMARY KEY (repo_name, feature_slug)
);

CREATE TABLE IF NOT EXISTS tasks (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    repo_name           TEXT NOT NULL,
    feature_slug        TEXT NOT NULL,
    task_id             TEXT NOT NULL,
    title               TEXT NOT NULL,
    description         TEXT NOT NULL DEFAULT '',
    status              TEXT NOT NULL CHECK (status IN (
                            'PendingProductDirector', 'PendingArchitect', 'PendingUiUxExpert',
                            'PendingSecurityOfficer', 'ReadyForDevelopment', 'NeedsRefinement',
                            'ToDo', 'InProgress', 'InReview', 'InQA', 'NeedsChanges', 'Done')),
    order_of_execution  INTEGER NOT NULL DEFAULT 0,
    estimated_hours     REAL,
    assigned_to         TEXT,
    dependencies        TEXT NOT NULL DEFAULT '[]',
    tags                TEXT NOT NULL DEFAULT '[]',
    acceptance_criteria TEXT NOT NULL DEFAULT '[]',
    test_scenarios      TEXT NOT NULL DEFAULT '[]',
    reviews             TEXT NOT NULL,
    UNIQUE (repo_name, feature_slug, task_id),
    FOREIGN KEY (repo_name, feature_slug) REFERENCES features(repo_name, feature_slug) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS transitions (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    repo_name     TEXT NOT NULL,
    feature_slug  TEXT NOT NULL,
    task_id       TEXT NOT NULL,
    from_status   TEXT NOT NULL,
    to_status     TEXT NOT NULL,
    actor         TEXT NOT NULL,
    timestamp     TEXT NOT NULL,
    notes         TEXT,
    metadata      TEXT NOT NULL DEFAULT '{}',
    FOREIGN KEY (repo_name, feature_slug, task_id)
        REFERENCES tasks(repo_name, feature_slug, task_id) ON DELETE CASCADE
);

CREATE TRIGGER IF NOT EXISTS transitions_append_only
BEFORE UPDATE ON transitions
BEGIN
    SELECT RAISE(ABORT, 'transitions are append-only');
END;

CREATE TABLE IF NOT EXISTS dev_queue (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    repo_name     TEXT NOT NULL,
    feature_slug  TEXT NOT NULL,
    status        TEXT NOT NULL DEFAULT 'pending'
                  CHECK (status IN ('pending', 'running', 'completed', 'failed')),
    cli_tool      TEXT NOT NULL,
    created_at    TEXT NOT NULL,
    started_at    TEXT,
    completed_at  TEXT,
    error_message TEXT,
    retry_count   INTEGER NOT NULL DEFAULT 0,
    worker_pid    TEXT
);

CREATE TABLE IF NOT EXISTS settings (
    key        TEXT PRIMARY KEY,
    value      TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_tasks_feature ON tasks(repo_name, feature_slug);
CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);
CREATE INDEX IF NOT EXISTS idx_transitions_task ON transitions(repo_name, feature_slug, task_id);
CREATE INDEX IF NOT EXISTS idx_dev_queue_status ON dev_queue(status, created_at, id);
CREATE INDEX IF NOT EXISTS idx_dev_queue_repo_feature ON dev_queue(repo_name, feature_slug);
CREATE UNIQUE INDEX IF NOT EXISTS idx_dev_queue_active
    ON dev_queue(repo_name, feature_slug) WHERE status IN ('pending', 'running');
"""

DEFAULT_SETTINGS: dict[str, str] = {
    "cronIntervalSeconds": "60",
    "baseReposFolder": "",
    "cliTool": "claude",
    "workerEnabled": "false",
}


class Database:
    """A single SQLite connection shared by the store repositories.

    The connection may be used from worker threads (``asyncio.to_thread``);
    an ``RLock`` serializes access to it within the process. Cross-process
    exclusion is left to SQLite's own locking.
    """

    def __init__(self, path: str | Path, busy_timeout_ms: int = 5000) -> None:
        self.path = Path(path)
        if str(self.path) != ":memory:":
            self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self.conn = sqlite3.connect(str(self.path), check_same_thread=False, isolation_level=None)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)}")
        self.conn.execute("PRAGMA journal_mode = WAL")
        self.conn.execute("PRAGMA foreign_keys = ON")

    def migrate(self, now: str) -> None:
        """Create tables and seed default settings. Safe to call repeatedly."""
        with self._lock:
            version = self.conn.execute("PRAGMA user_version").fetchone()[0]
            self.conn.executescript(_SCHEMA)
            with self.transaction() as conn:
                conn.executemany(
                    "INSERT OR IGNORE INTO settings (key, value, updated_at) VALUES (?, ?, ?)",
                    [(key, value, now) for key, value in DEFAULT_SETTINGS.items()],
                )
            if version < SCHEMA_VERSION:
                self.conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
                log.info("store_schema_migrated", path=str(self.path), version=SCHEMA_VERSION)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the enclosed statements in one ``BEGIN IMMEDIATE`` transaction.

        Commits on normal exit and rolls back if the block raises.
        """
        with self._lock:
            self.conn.execute("BEGIN IMMEDIATE")
            try:
                yield self.conn
            except BaseException:
                self.conn.execute("ROLLBACK")
                raise
            self.conn.execute("COMMIT")

    @contextmanager
    def read(self) -> Iterator[sqlite3.Connection]:
        """Borrow the connection for autocommit reads."""
        with self._lock:
            yield self.conn

    def close(self) -> None:
        with self._lock:
            self.conn.close()
