"""
Entity store: SQLite-backed persistence for tasks, transitions, queue items
and settings.

The store is the only shared mutable resource. Its methods are synchronous;
async callers run them through ``asyncio.to_thread``.
"""

from pathlib import Path
from types import TracebackType

from task_conductor.config.settings import ConductorSettings
from task_conductor.models.task import utc_now
from task_conductor.store.database import DEFAULT_SETTINGS, SCHEMA_VERSION, Database
from task_conductor.store.queue import QueueRepository
from task_conductor.store.settings import SettingsRepository
from task_conductor.store.tasks import TaskRepository


class EntityStore:
    """One database connection plus the repositories that use it.

    Example:
        >>> with EntityStore(":memory:") as store:
        ...     result = store.queue.enqueue("api", "login-page", "claude")
    """

    def __init__(
        self,
        database_path: str | Path,
        busy_timeout_ms: int = 5000,
        error_message_limit: int = 4096,
    ) -> None:
        self.db = Database(database_path, busy_timeout_ms=busy_timeout_ms)
        self.db.migrate(utc_now())
        self.tasks = TaskRepository(self.db)
        self.queue = QueueRepository(self.db, error_message_limit=error_message_limit)
        self.settings = SettingsRepository(self.db)

    @classmethod
    def from_settings(cls, settings: ConductorSettings) -> "EntityStore":
        return cls(
            settings.database_path,
            busy_timeout_ms=settings.store.busy_timeout_ms,
            error_message_limit=settings.worker.error_message_limit,
        )

    def close(self) -> None:
        self.db.close()

    def __enter__(self) -> "EntityStore":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


__all__ = [
    "DEFAULT_SETTINGS",
    "SCHEMA_VERSION",
    "Database",
    "EntityStore",
    "QueueRepository",
    "SettingsRepository",
    "TaskRepository",
]
