"""Tests for task_conductor.store task and settings persistence."""

import sqlite3

import pytest

from task_conductor.config.settings import QueueSettings
from task_conductor.engine import WorkflowEngine
from task_conductor.enums import ActorType, CliTool, ReviewDecision, StakeholderRole, TaskStatus
from task_conductor.exceptions import (
    ConcurrentModificationError,
    ConfigurationError,
    NotFoundError,
    StoreError,
)
from task_conductor.models.task import AcceptanceCriterion, Task
from task_conductor.store import DEFAULT_SETTINGS, SCHEMA_VERSION, EntityStore

REPO = "shop-api"
FEATURE = "checkout-flow"


@pytest.fixture
def seeded(store: EntityStore) -> EntityStore:
    store.tasks.register_repo(REPO, "/repos/shop-api")
    store.tasks.create_feature(REPO, FEATURE, "Checkout flow")
    return store


class TestDatabase:
    """Test schema creation and connection settings."""

    def test_migrate_is_idempotent(self, db_path):
        """Test opening the same file twice keeps data and schema version."""
        with EntityStore(db_path) as first:
            first.tasks.register_repo(REPO)
        with EntityStore(db_path) as second:
            assert [r.repo_name for r in second.tasks.list_repos()] == [REPO]
            version = second.db.conn.execute("PRAGMA user_version").fetchone()[0]
            assert version == SCHEMA_VERSION

    def test_wal_mode_enabled(self, store):
        mode = store.db.conn.execute("PRAGMA journal_mode").fetchone()[0]
        assert mode.lower() == "wal"

    def test_default_settings_seeded(self, store):
        assert store.settings.get_all() == DEFAULT_SETTINGS

    def test_transaction_rolls_back_on_error(self, seeded):
        """Test a failing block leaves no partial writes."""
        with pytest.raises(RuntimeError):
            with seeded.db.transaction() as conn:
                conn.execute("INSERT INTO repos (repo_name, repo_path, created_at) VALUES ('x', '', 'now')")
                raise RuntimeError("boom")

        assert [r.repo_name for r in seeded.tasks.list_repos()] == [REPO]


class TestTaskRepository:
    """Test repository, feature and task persistence."""

    def test_create_feature_requires_repo(self, store):
        with pytest.raises(NotFoundError) as exc_info:
            store.tasks.create_feature("ghost", FEATURE, "Checkout")

        assert exc_info.value.message == "Repository not found: ghost"

    def test_duplicate_feature_rejected(self, seeded):
        with pytest.raises(StoreError):
            seeded.tasks.create_feature(REPO, FEATURE, "Again")

    def test_round_trip_keeps_nested_fields(self, seeded):
        """Test criteria, reviews and tags survive storage."""
        task = Task(
            task_id="T01",
            title="Card form",
            acceptance_criteria=[AcceptanceCriterion(id="AC-1", criterion="Rejects expired cards")],
            tags=["frontend"],
            estimated_hours=3.5,
        )
        seeded.tasks.add_task(REPO, FEATURE, task)

        loaded = seeded.tasks.get_task(REPO, FEATURE, "T01")

        assert loaded == task

    def test_list_tasks_ordered_by_execution(self, seeded):
        for task_id, order in [("T03", 3), ("T01", 1), ("T02", 2)]:
            seeded.tasks.add_task(REPO, FEATURE, Task(task_id=task_id, title=task_id, order_of_execution=order))

        assert [t.task_id for t in seeded.tasks.list_tasks(REPO, FEATURE)] == ["T01", "T02", "T03"]

    def test_count_tasks_by_status(self, seeded):
        seeded.tasks.add_task(REPO, FEATURE, Task(task_id="T01", title="a"))
        seeded.tasks.add_task(REPO, FEATURE, Task(task_id="T02", title="b", status=TaskStatus.READY_FOR_DEVELOPMENT))

        assert seeded.tasks.count_tasks(REPO, FEATURE) == 2
        assert seeded.tasks.count_tasks(REPO, FEATURE, TaskStatus.READY_FOR_DEVELOPMENT) == 1

    def test_list_features_reports_totals(self, seeded):
        seeded.tasks.add_task(REPO, FEATURE, Task(task_id="T01", title="a"))

        (feature,) = seeded.tasks.list_features(REPO)

        assert feature.total_tasks == 1
        assert feature.feature_name == "Checkout flow"

    def test_delete_feature_cascades(self, seeded):
        seeded.tasks.add_task(REPO, FEATURE, Task(task_id="T01", title="a"))

        assert seeded.tasks.delete_feature(REPO, FEATURE)
        assert seeded.db.conn.execute("SELECT COUNT(*) FROM tasks").fetchone()[0] == 0

    def test_record_transition_persists_status_and_audit(self, seeded):
        seeded.tasks.add_task(REPO, FEATURE, Task(task_id="T01", title="a"))
        task = seeded.tasks.get_task(REPO, FEATURE, "T01")
        transition = WorkflowEngine().apply_review(task, StakeholderRole.PRODUCT_DIRECTOR, ReviewDecision.APPROVE)

        seeded.tasks.record_transition(REPO, FEATURE, task, TaskStatus.PENDING_PRODUCT_DIRECTOR, transition)

        loaded = seeded.tasks.get_task(REPO, FEATURE, "T01")
        assert loaded.status == TaskStatus.PENDING_ARCHITECT
        assert loaded.reviews.product_director.approved
        assert loaded.transitions == [transition]

    def test_record_transition_detects_concurrent_change(self, seeded):
        """Test a stale writer cannot overwrite a newer status."""
        seeded.tasks.add_task(REPO, FEATURE, Task(task_id="T01", title="a"))
        engine = WorkflowEngine()
        first = seeded.tasks.get_task(REPO, FEATURE, "T01")
        second = seeded.tasks.get_task(REPO, FEATURE, "T01")

        t1 = engine.apply_review(first, StakeholderRole.PRODUCT_DIRECTOR, ReviewDecision.APPROVE)
        seeded.tasks.record_transition(REPO, FEATURE, first, TaskStatus.PENDING_PRODUCT_DIRECTOR, t1)
        t2 = engine.apply_review(second, StakeholderRole.PRODUCT_DIRECTOR, ReviewDecision.REJECT)

        with pytest.raises(ConcurrentModificationError):
            seeded.tasks.record_transition(REPO, FEATURE, second, TaskStatus.PENDING_PRODUCT_DIRECTOR, t2)

        loaded = seeded.tasks.get_task(REPO, FEATURE, "T01")
        assert loaded.status == TaskStatus.PENDING_ARCHITECT
        assert len(loaded.transitions) == 1

    def test_transitions_are_append_only(self, seeded):
        seeded.tasks.add_task(REPO, FEATURE, Task(task_id="T01", title="a", status=TaskStatus.TODO))
        task = seeded.tasks.get_task(REPO, FEATURE, "T01")
        transition = WorkflowEngine().apply_transition(task, TaskStatus.IN_PROGRESS, ActorType.DEVELOPER)
        seeded.tasks.record_transition(REPO, FEATURE, task, TaskStatus.TODO, transition)

        with pytest.raises(sqlite3.IntegrityError):
            with seeded.db.transaction() as conn:
                conn.execute("UPDATE transitions SET to_status = 'Done'")


class TestSettingsRepository:
    """Test the persisted queue settings record."""

    def test_defaults(self, store):
        assert store.settings.get_queue_settings() == QueueSettings()

    def test_update_accepts_camel_and_snake_case(self, store):
        updated = store.settings.update_queue_settings(cronIntervalSeconds=120, worker_enabled=True)

        assert updated.cron_interval_seconds == 120
        assert updated.worker_enabled is True
        assert store.settings.get("workerEnabled") == "true"
        assert store.settings.get_queue_settings() == updated

    @pytest.mark.parametrize("interval", [29, 3601])
    def test_interval_out_of_bounds_rejected(self, store, interval):
        with pytest.raises(ConfigurationError):
            store.settings.update_queue_settings(cron_interval_seconds=interval)

        assert store.settings.get_queue_settings().cron_interval_seconds == 60

    def test_unknown_tool_rejected(self, store):
        with pytest.raises(ConfigurationError):
            store.settings.update_queue_settings(cli_tool="bash")

    def test_unknown_key_rejected(self, store):
        with pytest.raises(ConfigurationError, match="Unknown queue setting"):
            store.settings.update_queue_settings(shell="/bin/sh")

    def test_tool_stored_as_value(self, store):
        store.settings.update_queue_settings(cli_tool=CliTool.COPILOT)

        assert store.settings.get("cliTool") == "copilot"

    def test_missing_key_raises_not_found(self, store):
        with pytest.raises(NotFoundError):
            store.settings.get("nope")
