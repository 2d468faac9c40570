"""
Queue models.

A queue item is one scheduled run of the external code-generation tool for a
whole feature. Items are plain dataclasses built from store rows; ``to_dict``
renders the API-visible record with camelCase keys.
"""

from dataclasses import dataclass, field
from typing import Any

from task_conductor.enums import QueueStatus


@dataclass
class QueueItem:
    """One unit of external-tool execution, scoped to a single feature."""

    id: int
    repo_name: str
    feature_slug: str
    status: QueueStatus
    cli_tool: str
    created_at: str
    started_at: str | None = None
    completed_at: str | None = None
    error_message: str | None = None
    retry_count: int = 0
    worker_pid: str | None = None

    @classmethod
    def from_row(cls, row: Any) -> "QueueItem":
        """Build an item from a ``sqlite3.Row`` of the dev_queue table."""
        return cls(
            id=row["id"],
            repo_name=row["repo_name"],
            feature_slug=row["feature_slug"],
            status=QueueStatus(row["status"]),
            cli_tool=row["cli_tool"],
            created_at=row["created_at"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
            error_message=row["error_message"],
            retry_count=row["retry_count"],
            worker_pid=row["worker_pid"],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "repoName": self.repo_name,
            "featureSlug": self.feature_slug,
            "status": self.status.value,
            "cliTool": self.cli_tool,
            "createdAt": self.created_at,
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
            "errorMessage": self.error_message,
            "retryCount": self.retry_count,
            "workerPid": self.worker_pid,
        }


@dataclass
class EnqueueResult:
    """Result of an enqueue request.

    ``already_queued`` is True when a pending or running item for the same
    (repository, feature) existed; ``id`` is then that item's id.
    """

    id: int
    already_queued: bool


@dataclass
class QueueStats:
    """Item counts per status."""

    pending: int = 0
    running: int = 0
    completed: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.pending + self.running + self.completed + self.failed


@dataclass
class QueueEvent:
    """Notification published by the scheduler or worker to an observer channel."""

    kind: str
    item_id: int
    repo_name: str
    feature_slug: str
    detail: dict[str, Any] = field(default_factory=dict)
