"""
Repository, feature and task persistence.

Tasks keep their scalar fields in columns and their nested structures
(acceptance criteria, test scenarios, review slots) as JSON documents.
Transitions live in their own append-only table.

Status changes go through ``record_transition``, a compare-and-set on the
task's expected previous status that inserts the Transition row in the same
transaction. A writer that lost a race gets ``ConcurrentModificationError``
instead of silently overwriting the other writer's status.
"""

import json
import sqlite3
from typing import Any

import structlog

from task_conductor.enums import TaskStatus
from task_conductor.exceptions import ConcurrentModificationError, NotFoundError, StoreError
from task_conductor.models.task import (
    AcceptanceCriterion,
    Feature,
    Repository,
    StakeholderReviews,
    Task,
    TestScenario,
    Transition,
    utc_now,
)
from task_conductor.store.database import Database

log = structlog.get_logger(__name__)


def _task_columns(task: Task) -> dict[str, Any]:
    return {
        "title": task.title,
        "description": task.description,
        "status": task.status.value,
        "order_of_execution": task.order_of_execution,
        "estimated_hours": task.estimated_hours,
        "assigned_to": task.assigned_to,
        "dependencies": json.dumps(task.dependencies),
        "tags": json.dumps(task.tags),
        "acceptance_criteria": json.dumps([c.model_dump() for c in task.acceptance_criteria]),
        "test_scenarios": json.dumps([s.model_dump() for s in task.test_scenarios]),
        "reviews": task.reviews.model_dump_json(),
    }


def _insert_transition(conn: sqlite3.Connection, repo_name: str, feature_slug: str, task_id: str, t: Transition) -> None:
    conn.execute(
        """
        INSERT INTO transitions
            (repo_name, feature_slug, task_id, from_status, to_status, actor, timestamp, notes, metadata)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            repo_name,
            feature_slug,
            task_id,
            t.from_status.value,
            t.to_status.value,
            t.actor.value,
            t.timestamp,
            t.notes,
            json.dumps(t.metadata),
        ),
    )


def _touch_feature(conn: sqlite3.Connection, repo_name: str, feature_slug: str) -> None:
    conn.execute(
        "UPDATE features SET last_modified = ? WHERE repo_name = ? AND feature_slug = ?",
        (utc_now(), repo_name, feature_slug),
    )


class TaskRepository:
    """Persistence for repositories, features, tasks and transitions."""

    def __init__(self, db: Database) -> None:
        self.db = db

    # ------------------------------------------------------------------
    # Repositories and features
    # ------------------------------------------------------------------

    def register_repo(self, repo_name: str, repo_path: str = "") -> Repository:
        repo = Repository(repo_name=repo_name, repo_path=repo_path)
        with self.db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO repos (repo_name, repo_path, created_at) VALUES (?, ?, ?)
                ON CONFLICT(repo_name) DO UPDATE SET repo_path = excluded.repo_path
                """,
                (repo.repo_name, repo.repo_path, repo.created_at),
            )
        log.info("repo_registered", repo_name=repo_name)
        return repo

    def list_repos(self) -> list[Repository]:
        with self.db.read() as conn:
            rows = conn.execute("SELECT * FROM repos ORDER BY repo_name").fetchall()
        return [Repository(repo_name=r["repo_name"], repo_path=r["repo_path"], created_at=r["created_at"]) for r in rows]

    def create_feature(self, repo_name: str, feature_slug: str, feature_name: str) -> Feature:
        feature = Feature(repo_name=repo_name, feature_slug=feature_slug, feature_name=feature_name)
        with self.db.transaction() as conn:
            if conn.execute("SELECT 1 FROM repos WHERE repo_name = ?", (repo_name,)).fetchone() is None:
                raise NotFoundError("repository", repo_name)
            try:
                conn.execute(
                    """
                    INSERT INTO features (repo_name, feature_slug, feature_name, created_at, last_modified)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (repo_name, feature_slug, feature_name, feature.created_at, feature.last_modified),
                )
            except sqlite3.IntegrityError as e:
                raise StoreError(f"Feature already exists: {repo_name}/{feature_slug}") from e
        log.info("feature_created", repo_name=repo_name, feature_slug=feature_slug)
        return feature

    def list_features(self, repo_name: str) -> list[Feature]:
        with self.db.read() as conn:
            rows = conn.execute(
                """
                SELECT f.*, COUNT(t.id) AS total_tasks
                FROM features f
                LEFT JOIN tasks t ON t.repo_name = f.repo_name AND t.feature_slug = f.feature_slug
                WHERE f.repo_name = ?
                GROUP BY f.repo_name, f.feature_slug
                ORDER BY f.feature_slug
                """,
                (repo_name,),
            ).fetchall()
        return [self._feature_from_row(r) for r in rows]

    def get_feature(self, repo_name: str, feature_slug: str) -> Feature:
        with self.db.read() as conn:
            row = conn.execute(
                """
                SELECT f.*, (SELECT COUNT(*) FROM tasks t
                             WHERE t.repo_name = f.repo_name AND t.feature_slug = f.feature_slug) AS total_tasks
                FROM features f WHERE f.repo_name = ? AND f.feature_slug = ?
                """,
                (repo_name, feature_slug),
            ).fetchone()
        if row is None:
            raise NotFoundError("feature", f"{repo_name}/{feature_slug}")
        return self._feature_from_row(row)

    def delete_feature(self, repo_name: str, feature_slug: str) -> bool:
        with self.db.transaction() as conn:
            cur = conn.execute(
                "DELETE FROM features WHERE repo_name = ? AND feature_slug = ?", (repo_name, feature_slug)
            )
        return cur.rowcount > 0

    @staticmethod
    def _feature_from_row(row: sqlite3.Row) -> Feature:
        return Feature(
            repo_name=row["repo_name"],
            feature_slug=row["feature_slug"],
            feature_name=row["feature_name"],
            created_at=row["created_at"],
            last_modified=row["last_modified"],
            total_tasks=row["total_tasks"],
        )

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def add_task(self, repo_name: str, feature_slug: str, task: Task) -> Task:
        cols = _task_columns(task)
        with self.db.transaction() as conn:
            exists = conn.execute(
                "SELECT 1 FROM features WHERE repo_name = ? AND feature_slug = ?", (repo_name, feature_slug)
            ).fetchone()
            if exists is None:
                raise NotFoundError("feature", f"{repo_name}/{feature_slug}")
            try:
                conn.execute(
                    f"""
                    INSERT INTO tasks (repo_name, feature_slug, task_id, {", ".join(cols)})
                    VALUES (?, ?, ?, {", ".join("?" for _ in cols)})
                    """,
                    (repo_name, feature_slug, task.task_id, *cols.values()),
                )
            except sqlite3.IntegrityError as e:
                raise StoreError(f"Task already exists: {task.task_id}") from e
            for transition in task.transitions:
                _insert_transition(conn, repo_name, feature_slug, task.task_id, transition)
            _touch_feature(conn, repo_name, feature_slug)
        log.info("task_added", repo_name=repo_name, feature_slug=feature_slug, task_id=task.task_id)
        return task

    def get_task(self, repo_name: str, feature_slug: str, task_id: str) -> Task:
        with self.db.read() as conn:
            row = conn.execute(
                "SELECT * FROM tasks WHERE repo_name = ? AND feature_slug = ? AND task_id = ?",
                (repo_name, feature_slug, task_id),
            ).fetchone()
            if row is None:
                raise NotFoundError("task", task_id)
            return self._task_from_row(conn, row)

    def list_tasks(self, repo_name: str, feature_slug: str, status: TaskStatus | None = None) -> list[Task]:
        """Tasks of a feature in execution order, optionally filtered by status."""
        query = "SELECT * FROM tasks WHERE repo_name = ? AND feature_slug = ?"
        params: list[Any] = [repo_name, feature_slug]
        if status is not None:
            query += " AND status = ?"
            params.append(TaskStatus(status).value)
        query += " ORDER BY order_of_execution, id"
        with self.db.read() as conn:
            rows = conn.execute(query, params).fetchall()
            return [self._task_from_row(conn, r) for r in rows]

    def count_tasks(self, repo_name: str, feature_slug: str, status: TaskStatus | None = None) -> int:
        """Number of tasks in a feature, or in one status when ``status`` is given."""
        query = "SELECT COUNT(*) FROM tasks WHERE repo_name = ? AND feature_slug = ?"
        params: list[Any] = [repo_name, feature_slug]
        if status is not None:
            query += " AND status = ?"
            params.append(TaskStatus(status).value)
        with self.db.read() as conn:
            return int(conn.execute(query, params).fetchone()[0])

    def delete_task(self, repo_name: str, feature_slug: str, task_id: str) -> bool:
        with self.db.transaction() as conn:
            cur = conn.execute(
                "DELETE FROM tasks WHERE repo_name = ? AND feature_slug = ? AND task_id = ?",
                (repo_name, feature_slug, task_id),
            )
            if cur.rowcount:
                _touch_feature(conn, repo_name, feature_slug)
        return cur.rowcount > 0

    def record_transition(
        self,
        repo_name: str,
        feature_slug: str,
        task: Task,
        expected_status: TaskStatus,
        transition: Transition,
    ) -> None:
        """Persist a status change made by the workflow engine.

        Args:
            task: The task after the engine mutated it.
            expected_status: Status the task had when it was loaded.
            transition: The Transition the engine appended.

        Raises:
            NotFoundError: If the task no longer exists.
            ConcurrentModificationError: If the stored status is no longer
                ``expected_status``.
        """
        with self.db.transaction() as conn:
            cur = conn.execute(
                """
                UPDATE tasks SET status = ?, reviews = ?
                WHERE repo_name = ? AND feature_slug = ? AND task_id = ? AND status = ?
                """,
                (
                    task.status.value,
                    task.reviews.model_dump_json(),
                    repo_name,
                    feature_slug,
                    task.task_id,
                    TaskStatus(expected_status).value,
                ),
            )
            if cur.rowcount == 0:
                exists = conn.execute(
                    "SELECT 1 FROM tasks WHERE repo_name = ? AND feature_slug = ? AND task_id = ?",
                    (repo_name, feature_slug, task.task_id),
                ).fetchone()
                if exists is None:
                    raise NotFoundError("task", task.task_id)
                raise ConcurrentModificationError(task.task_id, TaskStatus(expected_status).value)
            _insert_transition(conn, repo_name, feature_slug, task.task_id, transition)
            _touch_feature(conn, repo_name, feature_slug)

    def save_acceptance_criteria(self, repo_name: str, feature_slug: str, task: Task) -> None:
        with self.db.transaction() as conn:
            cur = conn.execute(
                """
                UPDATE tasks SET acceptance_criteria = ?
                WHERE repo_name = ? AND feature_slug = ? AND task_id = ?
                """,
                (
                    json.dumps([c.model_dump() for c in task.acceptance_criteria]),
                    repo_name,
                    feature_slug,
                    task.task_id,
                ),
            )
            if cur.rowcount == 0:
                raise NotFoundError("task", task.task_id)
            _touch_feature(conn, repo_name, feature_slug)

    @staticmethod
    def _task_from_row(conn: sqlite3.Connection, row: sqlite3.Row) -> Task:
        transition_rows = conn.execute(
            """
            SELECT * FROM transitions
            WHERE repo_name = ? AND feature_slug = ? AND task_id = ?
            ORDER BY id
            """,
            (row["repo_name"], row["feature_slug"], row["task_id"]),
        ).fetchall()
        return Task(
            task_id=row["task_id"],
            title=row["title"],
            description=row["description"],
            status=TaskStatus(row["status"]),
            order_of_execution=row["order_of_execution"],
            estimated_hours=row["estimated_hours"],
            assigned_to=row["assigned_to"],
            dependencies=json.loads(row["dependencies"]),
            tags=json.loads(row["tags"]),
            acceptance_criteria=[AcceptanceCriterion.model_validate(c) for c in json.loads(row["acceptance_criteria"])],
            test_scenarios=[TestScenario.model_validate(s) for s in json.loads(row["test_scenarios"])],
            reviews=StakeholderReviews.model_validate_json(row["reviews"]),
            transitions=[
                Transition(
                    from_status=TaskStatus(t["from_status"]),
                    to_status=TaskStatus(t["to_status"]),
                    actor=t["actor"],
                    timestamp=t["timestamp"],
                    notes=t["notes"],
                    metadata=json.loads(t["metadata"]),
                )
                for t in transition_rows
            ],
        )
