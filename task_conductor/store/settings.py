"""Persisted key/value settings and the typed queue settings record."""

from typing import Any

import structlog
from pydantic import ValidationError

from task_conductor.config.settings import QueueSettings
from task_conductor.exceptions import ConfigurationError, NotFoundError
from task_conductor.models.task import utc_now
from task_conductor.store.database import Database

log = structlog.get_logger(__name__)

# Store key for each QueueSettings field
_QUEUE_KEYS: dict[str, str] = {
    "cron_interval_seconds": "cronIntervalSeconds",
    "base_repos_folder": "baseReposFolder",
    "cli_tool": "cliTool",
    "worker_enabled": "workerEnabled",
}


def _to_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(getattr(value, "value", value))


class SettingsRepository:
    """Read and write the ``settings`` table."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def get(self, key: str) -> str:
        with self.db.read() as conn:
            row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
        if row is None:
            raise NotFoundError("setting", key)
        return row["value"]

    def set(self, key: str, value: Any) -> None:
        with self.db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO settings (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                """,
                (key, _to_text(value), utc_now()),
            )

    def get_all(self) -> dict[str, str]:
        with self.db.read() as conn:
            rows = conn.execute("SELECT key, value FROM settings ORDER BY key").fetchall()
        return {r["key"]: r["value"] for r in rows}

    def get_queue_settings(self) -> QueueSettings:
        """Current queue settings record.

        Raises:
            ConfigurationError: If the stored values do not validate.
        """
        stored = self.get_all()
        raw = {field: stored[key] for field, key in _QUEUE_KEYS.items() if key in stored}
        try:
            return QueueSettings.model_validate(raw)
        except ValidationError as e:
            raise ConfigurationError(f"Stored queue settings are invalid: {e}") from e

    def update_queue_settings(self, **changes: Any) -> QueueSettings:
        """Validate and persist a partial update of the queue settings.

        Keys may be given in snake_case (``cron_interval_seconds``) or in the
        record's camelCase (``cronIntervalSeconds``). Nothing is written
        unless the merged record validates.

        Raises:
            ConfigurationError: On unknown keys or invalid values.
        """
        by_key = {v: k for k, v in _QUEUE_KEYS.items()}
        normalized: dict[str, Any] = {}
        for name, value in changes.items():
            field = name if name in _QUEUE_KEYS else by_key.get(name)
            if field is None:
                raise ConfigurationError(f"Unknown queue setting: {name}")
            normalized[field] = value

        current = self.get_queue_settings()
        try:
            updated = QueueSettings.model_validate({**current.model_dump(), **normalized})
        except ValidationError as e:
            raise ConfigurationError(f"Invalid queue settings: {e}") from e

        with self.db.transaction() as conn:
            now = utc_now()
            for field in normalized:
                conn.execute(
                    """
                    INSERT INTO settings (key, value, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                    """,
                    (_QUEUE_KEYS[field], _to_text(getattr(updated, field)), now),
                )
        log.info("queue_settings_updated", fields=sorted(_QUEUE_KEYS[f] for f in normalized))
        return updated
