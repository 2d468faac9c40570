"""Pytest configuration and shared fixtures."""

from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from task_conductor.engine import WorkflowEngine
from task_conductor.enums import TaskStatus
from task_conductor.service import Conductor
from task_conductor.store import EntityStore

REPO = "shop-api"
FEATURE = "checkout-flow"


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    """Database file inside the test's temp directory."""
    return tmp_path / "state" / "tasks.db"


@pytest.fixture
def store(db_path: Path) -> Iterator[EntityStore]:
    """Migrated entity store backed by a temp file."""
    entity_store = EntityStore(db_path)
    yield entity_store
    entity_store.close()


@pytest.fixture
def engine() -> WorkflowEngine:
    return WorkflowEngine()


@pytest.fixture
def conductor(store: EntityStore) -> Conductor:
    """Conductor with one registered repository and one empty feature."""
    service = Conductor(store)
    service.register_repo(REPO, f"/repos/{REPO}")
    service.create_feature(REPO, FEATURE, "Checkout flow")
    return service


@pytest.fixture
def add_tasks(conductor: Conductor) -> Callable[..., list[str]]:
    """Factory adding ``count`` tasks (T01, T02, ...) to a feature."""

    def _add(count: int, repo: str = REPO, feature: str = FEATURE) -> list[str]:
        ids = []
        for n in range(1, count + 1):
            task_id = f"T{n:02d}"
            outcome = conductor.add_task(repo, feature, task_id, f"Task {n}", order_of_execution=n)
            assert outcome.success, outcome.error
            ids.append(task_id)
        return ids

    return _add


@pytest.fixture
def force_status(store: EntityStore) -> Callable[..., None]:
    """Set a task's stored status directly, bypassing the workflow."""

    def _force(task_id: str, status: TaskStatus, repo: str = REPO, feature: str = FEATURE) -> None:
        with store.db.transaction() as conn:
            conn.execute(
                "UPDATE tasks SET status = ? WHERE repo_name = ? AND feature_slug = ? AND task_id = ?",
                (TaskStatus(status).value, repo, feature, task_id),
            )

    return _force


@pytest.fixture
def repos_root(tmp_path: Path) -> Path:
    """Base folder with one checked-out repository directory."""
    root = tmp_path / "repos"
    (root / REPO).mkdir(parents=True)
    return root
