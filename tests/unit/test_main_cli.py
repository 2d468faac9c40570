"""Unit tests for the task_conductor.main CLI module.

Covers configuration loading, the queue and settings command groups, task
review and transition commands, and the one-shot scan/work commands.
"""

import json
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from task_conductor.enums import TaskStatus
from task_conductor.exceptions import ConfigurationError
from task_conductor.main import cli
from task_conductor.service import Conductor
from task_conductor.store import EntityStore

REPO = "shop-api"
FEATURE = "checkout-flow"


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def no_logging_setup():
    """Keep the CLI from reconfiguring structlog for the whole test session."""
    with patch("task_conductor.main.configure_logging") as mock_configure:
        yield mock_configure


@pytest.fixture
def cli_runner():
    """Create a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def cli_db(tmp_path):
    return tmp_path / "cli" / "tasks.db"


@pytest.fixture
def config_file(tmp_path, cli_db):
    """Configuration file pointing the store at a temp database."""
    config_path = tmp_path / "conductor.yaml"
    config_path.write_text(f"log_level: WARNING\nstore:\n  database_path: {cli_db}\n")
    return config_path


@pytest.fixture
def seeded(cli_db):
    """One repository, one feature and one task at PendingProductDirector."""
    with EntityStore(cli_db) as store:
        conductor = Conductor(store)
        conductor.register_repo(REPO)
        conductor.create_feature(REPO, FEATURE, "Checkout flow")
        conductor.add_task(REPO, FEATURE, "T01", "Card form", order_of_execution=1)
    return cli_db


def invoke(cli_runner, config_file, *args):
    return cli_runner.invoke(cli, ["--config", str(config_file), *args])


# =============================================================================
# Configuration
# =============================================================================


class TestConfiguration:
    """Test global options."""

    def test_help(self, cli_runner):
        result = cli_runner.invoke(cli, ["--help"])

        assert result.exit_code == 0
        for command in ("serve", "scan", "work-once", "queue", "settings", "task"):
            assert command in result.output

    def test_missing_config_file(self, cli_runner):
        result = cli_runner.invoke(cli, ["--config", "/nonexistent.yaml", "settings", "show"])

        assert result.exit_code == 1
        assert "Configuration file not found" in result.output

    @patch("task_conductor.main.ConductorSettings.from_yaml")
    def test_configuration_error_handling(self, mock_from_yaml, cli_runner, config_file):
        mock_from_yaml.side_effect = ConfigurationError("Invalid YAML syntax")

        result = invoke(cli_runner, config_file, "settings", "show")

        assert result.exit_code == 1
        assert "Error: Invalid YAML syntax" in result.output

    def test_log_level_option_overrides_config(self, cli_runner, config_file, no_logging_setup):
        invoke(cli_runner, config_file, "--log-level", "DEBUG", "settings", "show")

        no_logging_setup.assert_called_once_with("DEBUG")

    def test_log_level_from_config(self, cli_runner, config_file, no_logging_setup):
        invoke(cli_runner, config_file, "settings", "show")

        no_logging_setup.assert_called_once_with("WARNING")

    def test_database_path_from_environment(self, cli_runner, tmp_path, monkeypatch):
        db = tmp_path / "env" / "tasks.db"
        monkeypatch.setenv("CONDUCTOR_STORE__DATABASE_PATH", str(db))

        result = cli_runner.invoke(cli, ["settings", "show"])

        assert result.exit_code == 0, result.output
        assert db.exists()


# =============================================================================
# Settings
# =============================================================================


class TestSettingsCommands:
    """Test the settings command group."""

    def test_show_defaults(self, cli_runner, config_file):
        result = invoke(cli_runner, config_file, "settings", "show")

        assert result.exit_code == 0
        assert json.loads(result.output) == {
            "cronIntervalSeconds": 60,
            "baseReposFolder": "",
            "cliTool": "claude",
            "workerEnabled": False,
        }

    def test_set_values(self, cli_runner, config_file, tmp_path):
        result = invoke(
            cli_runner,
            config_file,
            "settings",
            "set",
            "--interval",
            "120",
            "--base-folder",
            str(tmp_path),
            "--worker-enabled",
            "true",
        )

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["cronIntervalSeconds"] == 120
        assert data["workerEnabled"] is True

    def test_set_out_of_range(self, cli_runner, config_file):
        result = invoke(cli_runner, config_file, "settings", "set", "--interval", "5")

        assert result.exit_code == 1
        assert "Error:" in result.output

    def test_set_nothing(self, cli_runner, config_file):
        result = invoke(cli_runner, config_file, "settings", "set")

        assert result.exit_code == 2


# =============================================================================
# Queue
# =============================================================================


class TestQueueCommands:
    """Test the queue command group."""

    def test_enqueue_twice_reports_already_queued(self, cli_runner, config_file):
        first = invoke(cli_runner, config_file, "queue", "enqueue", REPO, FEATURE)
        second = invoke(cli_runner, config_file, "queue", "enqueue", REPO, FEATURE, "--tool", "copilot")

        assert json.loads(first.output) == {"id": 1, "alreadyQueued": False}
        assert json.loads(second.output) == {"id": 1, "alreadyQueued": True}

    def test_enqueue_rejects_unknown_tool(self, cli_runner, config_file):
        result = invoke(cli_runner, config_file, "queue", "enqueue", REPO, FEATURE, "--tool", "bash")

        assert result.exit_code == 2

    def test_list_and_stats(self, cli_runner, config_file):
        invoke(cli_runner, config_file, "queue", "enqueue", REPO, FEATURE)

        listed = invoke(cli_runner, config_file, "queue", "list", "--status", "pending")
        stats = invoke(cli_runner, config_file, "queue", "stats")

        (item,) = json.loads(listed.output)
        assert item["repoName"] == REPO
        assert item["status"] == "pending"
        assert json.loads(stats.output)["pending"] == 1

    def test_cancel_pending(self, cli_runner, config_file):
        invoke(cli_runner, config_file, "queue", "enqueue", REPO, FEATURE)

        result = invoke(cli_runner, config_file, "queue", "cancel", "1")

        assert result.exit_code == 0
        assert "Cancelled item 1" in result.output

    def test_retry_requires_failed_item(self, cli_runner, config_file):
        invoke(cli_runner, config_file, "queue", "enqueue", REPO, FEATURE)

        result = invoke(cli_runner, config_file, "queue", "retry", "1")

        assert result.exit_code == 1
        assert "Only failed items" in result.output

    def test_prune(self, cli_runner, config_file):
        result = invoke(cli_runner, config_file, "queue", "prune", "--older-than-days", "7")

        assert result.exit_code == 0
        assert "Removed 0 item(s)" in result.output

    def test_prune_rejects_zero(self, cli_runner, config_file):
        result = invoke(cli_runner, config_file, "queue", "prune", "--older-than-days", "0")

        assert result.exit_code == 1


# =============================================================================
# Loops
# =============================================================================


class TestOneShotCommands:
    """Test scan and work-once."""

    def test_scan_with_worker_disabled(self, cli_runner, config_file, seeded):
        result = invoke(cli_runner, config_file, "scan")

        assert result.exit_code == 0
        assert "Enqueued 0 feature(s)" in result.output

    def test_scan_enqueues_ready_feature(self, cli_runner, config_file, seeded):
        with EntityStore(seeded) as store:
            store.settings.update_queue_settings(worker_enabled=True)
            with store.db.transaction() as conn:
                conn.execute("UPDATE tasks SET status = ?", (TaskStatus.READY_FOR_DEVELOPMENT.value,))

        result = invoke(cli_runner, config_file, "scan")

        assert "Enqueued 1 feature(s)" in result.output

    def test_work_once_with_empty_queue(self, cli_runner, config_file):
        result = invoke(cli_runner, config_file, "work-once")

        assert result.exit_code == 0
        assert "Nothing to process" in result.output


# =============================================================================
# Tasks
# =============================================================================


class TestTaskCommands:
    """Test task review and transition commands."""

    def test_status(self, cli_runner, config_file, seeded):
        result = invoke(cli_runner, config_file, "task", "status", REPO, FEATURE, "T01")

        assert result.exit_code == 0
        assert json.loads(result.output)["currentRole"] == "productDirector"

    def test_review_with_fields(self, cli_runner, config_file, seeded):
        result = invoke(
            cli_runner,
            config_file,
            "task",
            "review",
            REPO,
            FEATURE,
            "T01",
            "productDirector",
            "approve",
            "--notes",
            "Worth it",
            "--field",
            "market_analysis=Strong demand",
        )

        assert result.exit_code == 0, result.output
        assert "T01: PendingProductDirector -> PendingArchitect" in result.output

    def test_review_by_wrong_stakeholder(self, cli_runner, config_file, seeded):
        result = invoke(cli_runner, config_file, "task", "review", REPO, FEATURE, "T01", "architect", "approve")

        assert result.exit_code == 1
        assert "Wrong stakeholder" in result.output

    def test_review_field_needs_key_value(self, cli_runner, config_file, seeded):
        args = ["task", "review", REPO, FEATURE, "T01", "productDirector", "approve", "--field", "no-equals-sign"]

        result = invoke(cli_runner, config_file, *args)

        assert result.exit_code == 2

    def test_transition_rejected_for_wrong_actor(self, cli_runner, config_file, seeded):
        result = invoke(
            cli_runner,
            config_file,
            "task",
            "transition",
            REPO,
            FEATURE,
            "T01",
            "PendingArchitect",
            "--from",
            "PendingProductDirector",
            "--actor",
            "developer",
        )

        assert result.exit_code == 1
        assert "not allowed" in result.output
