"""
Development queue persistence.

Every state change here is a single conditional statement whose WHERE clause
re-checks the status it expects to replace, so two workers (threads or
processes) racing on the same row cannot both win:

- ``enqueue`` inserts only if no pending or running item exists for the
  (repository, feature) pair; a partial unique index backs this up.
- ``claim_next`` moves the oldest pending item to running with one
  ``UPDATE ... RETURNING``.
- ``complete`` and ``fail`` only touch running items.
"""

import sqlite3
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog

from task_conductor.enums import QueueStatus
from task_conductor.exceptions import NotFoundError, QueueError
from task_conductor.models.queue import EnqueueResult, QueueItem, QueueStats
from task_conductor.models.task import utc_now
from task_conductor.store.database import Database
from task_conductor.utils.sanitize import sanitize_error_message

log = structlog.get_logger(__name__)

_ACTIVE = ("pending", "running")


class QueueRepository:
    """Queue operations over the ``dev_queue`` table."""

    def __init__(self, db: Database, error_message_limit: int = 4096) -> None:
        self.db = db
        self.error_message_limit = error_message_limit

    def enqueue(self, repo_name: str, feature_slug: str, cli_tool: str) -> EnqueueResult:
        """Queue a feature for execution unless it is already queued.

        Returns:
            EnqueueResult with the new item's id, or with the id of the
            existing pending/running item and ``already_queued=True``.

        Raises:
            QueueError: If the repository name or feature slug is empty.
        """
        if not repo_name or not feature_slug:
            raise QueueError("Repository name and feature slug are required")

        with self.db.transaction() as conn:
            cur = conn.execute(
                """
                INSERT INTO dev_queue (repo_name, feature_slug, status, cli_tool, created_at)
                SELECT ?, ?, 'pending', ?, ?
                WHERE NOT EXISTS (
                    SELECT 1 FROM dev_queue
                    WHERE repo_name = ? AND feature_slug = ? AND status IN ('pending', 'running')
                )
                """,
                (repo_name, feature_slug, str(cli_tool), utc_now(), repo_name, feature_slug),
            )
            if cur.rowcount == 1:
                item_id = int(cur.lastrowid)
                log.info("queue_item_enqueued", item_id=item_id, repo_name=repo_name, feature_slug=feature_slug)
                return EnqueueResult(id=item_id, already_queued=False)

            existing = self._active_item_id(conn, repo_name, feature_slug)
        log.debug("queue_item_already_queued", item_id=existing, repo_name=repo_name, feature_slug=feature_slug)
        return EnqueueResult(id=existing, already_queued=True)

    def claim_next(self, worker_id: str) -> QueueItem | None:
        """Atomically take the oldest pending item.

        Returns:
            The claimed item, now running and owned by ``worker_id``, or None
            when nothing is pending.
        """
        with self.db.transaction() as conn:
            rows = conn.execute(
                """
                UPDATE dev_queue
                SET status = 'running', started_at = ?, worker_pid = ?
                WHERE id = (
                    SELECT id FROM dev_queue
                    WHERE status = 'pending'
                    ORDER BY created_at, id
                    LIMIT 1
                )
                AND status = 'pending'
                RETURNING *
                """,
                (utc_now(), str(worker_id)),
            ).fetchall()
        if not rows:
            return None
        item = QueueItem.from_row(rows[0])
        log.info("queue_item_claimed", item_id=item.id, worker_id=str(worker_id))
        return item

    def complete(self, item_id: int) -> bool:
        """Mark a running item completed. Returns False if it was not running."""
        with self.db.transaction() as conn:
            cur = conn.execute(
                """
                UPDATE dev_queue SET status = 'completed', completed_at = ?, error_message = NULL
                WHERE id = ? AND status = 'running'
                """,
                (utc_now(), item_id),
            )
        if cur.rowcount:
            log.info("queue_item_completed", item_id=item_id)
        return cur.rowcount > 0

    def fail(self, item_id: int, message: str) -> bool:
        """Mark a running item failed with a sanitized message.

        Increments the retry counter and stamps the completion time so that
        ``prune`` can age the item out. Returns False if it was not running.
        """
        safe = sanitize_error_message(message, self.error_message_limit)
        with self.db.transaction() as conn:
            cur = conn.execute(
                """
                UPDATE dev_queue
                SET status = 'failed', completed_at = ?, error_message = ?, retry_count = retry_count + 1
                WHERE id = ? AND status = 'running'
                """,
                (utc_now(), safe, item_id),
            )
        if cur.rowcount:
            log.info("queue_item_failed", item_id=item_id, error=safe)
        return cur.rowcount > 0

    def prune(self, older_than_days: int) -> int:
        """Delete completed and failed items finished more than ``older_than_days`` ago.

        Pending and running items are never removed.

        Raises:
            QueueError: If ``older_than_days`` is not a positive integer.
        """
        if isinstance(older_than_days, bool) or not isinstance(older_than_days, int) or older_than_days < 1:
            raise QueueError(f"olderThanDays must be a positive integer, got {older_than_days!r}")

        cutoff = (datetime.now(UTC) - timedelta(days=older_than_days)).isoformat()
        with self.db.transaction() as conn:
            cur = conn.execute(
                """
                DELETE FROM dev_queue
                WHERE status IN ('completed', 'failed')
                AND completed_at IS NOT NULL AND completed_at < ?
                """,
                (cutoff,),
            )
        log.info("queue_pruned", removed=cur.rowcount, older_than_days=older_than_days)
        return cur.rowcount

    def reenqueue(self, item_id: int) -> EnqueueResult:
        """Put a failed item back to pending, keeping its retry counter.

        If another item for the same feature is already pending or running,
        nothing changes and that item is reported as already queued.

        Raises:
            NotFoundError: If the item does not exist.
            QueueError: If the item is not failed.
        """
        with self.db.transaction() as conn:
            row = conn.execute("SELECT * FROM dev_queue WHERE id = ?", (item_id,)).fetchone()
            if row is None:
                raise NotFoundError("queue item", str(item_id))
            if row["status"] != QueueStatus.FAILED.value:
                raise QueueError(f"Only failed items can be re-enqueued; item {item_id} is {row['status']}")

            existing = self._active_item_id(conn, row["repo_name"], row["feature_slug"])
            if existing is not None:
                return EnqueueResult(id=existing, already_queued=True)

            try:
                conn.execute(
                    """
                    UPDATE dev_queue
                    SET status = 'pending', created_at = ?, started_at = NULL, completed_at = NULL,
                        error_message = NULL, worker_pid = NULL
                    WHERE id = ? AND status = 'failed'
                    """,
                    (utc_now(), item_id),
                )
            except sqlite3.IntegrityError as e:
                raise QueueError(f"Feature {row['repo_name']}/{row['feature_slug']} is already queued") from e
        log.info("queue_item_reenqueued", item_id=item_id, retry_count=row["retry_count"])
        return EnqueueResult(id=item_id, already_queued=False)

    def cancel(self, item_id: int) -> None:
        """Remove a pending item.

        Raises:
            NotFoundError: If the item does not exist.
            QueueError: If the item is no longer pending.
        """
        with self.db.transaction() as conn:
            cur = conn.execute("DELETE FROM dev_queue WHERE id = ? AND status = 'pending'", (item_id,))
            if cur.rowcount == 0:
                row = conn.execute("SELECT status FROM dev_queue WHERE id = ?", (item_id,)).fetchone()
                if row is None:
                    raise NotFoundError("queue item", str(item_id))
                raise QueueError(f"Only pending items can be cancelled; item {item_id} is {row['status']}")
        log.info("queue_item_cancelled", item_id=item_id)

    def get(self, item_id: int) -> QueueItem:
        with self.db.read() as conn:
            row = conn.execute("SELECT * FROM dev_queue WHERE id = ?", (item_id,)).fetchone()
        if row is None:
            raise NotFoundError("queue item", str(item_id))
        return QueueItem.from_row(row)

    def list_items(
        self,
        repo_name: str | None = None,
        feature_slug: str | None = None,
        status: QueueStatus | str | None = None,
        limit: int | None = None,
    ) -> list[QueueItem]:
        """Items in claim order, optionally filtered.

        Raises:
            QueueError: If ``limit`` is given and is not a positive integer.
        """
        if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit < 1):
            raise QueueError(f"limit must be a positive integer, got {limit!r}")

        clauses: list[str] = []
        params: list[Any] = []
        if repo_name:
            clauses.append("repo_name = ?")
            params.append(repo_name)
        if feature_slug:
            clauses.append("feature_slug = ?")
            params.append(feature_slug)
        if status:
            clauses.append("status = ?")
            params.append(QueueStatus(status).value)

        query = "SELECT * FROM dev_queue"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at, id"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        with self.db.read() as conn:
            rows = conn.execute(query, params).fetchall()
        return [QueueItem.from_row(r) for r in rows]

    def stats(self) -> QueueStats:
        with self.db.read() as conn:
            rows = conn.execute("SELECT status, COUNT(*) AS n FROM dev_queue GROUP BY status").fetchall()
        counts = {r["status"]: r["n"] for r in rows}
        return QueueStats(
            pending=counts.get("pending", 0),
            running=counts.get("running", 0),
            completed=counts.get("completed", 0),
            failed=counts.get("failed", 0),
        )

    @staticmethod
    def _active_item_id(conn: sqlite3.Connection, repo_name: str, feature_slug: str) -> int | None:
        row = conn.execute(
            f"""
            SELECT id FROM dev_queue
            WHERE repo_name = ? AND feature_slug = ? AND status IN ({", ".join("?" for _ in _ACTIVE)})
            ORDER BY id LIMIT 1
            """,
            (repo_name, feature_slug, *_ACTIVE),
        ).fetchone()
        return None if row is None else int(row["id"])
