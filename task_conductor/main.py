"""CLI entry point for task-conductor."""

import asyncio
import json
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import click
import structlog

from task_conductor.config.settings import ConductorSettings
from task_conductor.enums import ActorType, CliTool, QueueStatus, ReviewDecision, StakeholderRole, TaskStatus
from task_conductor.exceptions import ConfigurationError, TaskConductorError
from task_conductor.queue import QueueScheduler, QueueWorker
from task_conductor.service import Conductor, Outcome
from task_conductor.store import EntityStore
from task_conductor.utils.logging_config import configure_logging

log = structlog.get_logger(__name__)


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _emit(outcome: Outcome[Any], render: Callable[[Any], None] | None = None) -> None:
    """Print an outcome's value, or its errors on stderr with exit code 1."""
    for warning in outcome.warnings:
        click.echo(f"Warning: {warning}", err=True)
    if not outcome.success:
        for error in outcome.errors or [outcome.error]:
            click.echo(f"Error: {error}", err=True)
        sys.exit(1)
    if render is not None:
        render(outcome.value)


def _open_store(ctx: click.Context) -> EntityStore:
    settings: ConductorSettings = ctx.obj["settings"]
    try:
        store = EntityStore.from_settings(settings)
    except Exception as e:
        click.echo(f"Error: cannot open store at {settings.database_path}: {e}", err=True)
        log.debug("store_open_error", exc_info=True)
        sys.exit(1)
    ctx.call_on_close(store.close)
    return store


def _conductor(ctx: click.Context) -> Conductor:
    return Conductor(_open_store(ctx))


@click.group()
@click.option("--config", default=None, help="Path to YAML configuration file")
@click.option("--log-level", default=None, help="Logging level (overrides configuration)")
@click.pass_context
def cli(ctx: click.Context, config: str | None, log_level: str | None) -> None:
    """task-conductor: stakeholder review workflow and development queue."""
    try:
        if config is not None:
            if not Path(config).exists():
                click.echo(f"Error: Configuration file not found: {config}", err=True)
                sys.exit(1)
            settings = ConductorSettings.from_yaml(config)
        else:
            settings = ConductorSettings()
    except ConfigurationError as e:
        click.echo(f"Error: {e.message}", err=True)
        log.debug("config_error", exc_info=True)
        sys.exit(1)
    except Exception as e:
        click.echo(f"Unexpected error loading configuration: {e}", err=True)
        sys.exit(1)

    configure_logging(log_level or settings.log_level)
    ctx.obj = {"settings": settings}


# ----------------------------------------------------------------------
# Loops
# ----------------------------------------------------------------------


@cli.command()
@click.pass_context
def serve(ctx: click.Context) -> None:
    """Run the queue scheduler and worker until interrupted."""
    settings: ConductorSettings = ctx.obj["settings"]
    store = _open_store(ctx)
    try:
        asyncio.run(_serve(store, settings))
    except KeyboardInterrupt:
        click.echo("\nShutting down...", err=True)
        sys.exit(130)
    except TaskConductorError as e:
        click.echo(f"Error: {e.message}", err=True)
        log.debug("serve_error", exc_info=True)
        sys.exit(1)


async def _serve(store: EntityStore, settings: ConductorSettings) -> None:
    scheduler = QueueScheduler(store, settings.scheduler)
    worker = QueueWorker(store, settings.worker)
    scheduler.start()
    worker.start()
    log.info("conductor_serving", database=str(settings.database_path), worker_id=worker.worker_id)
    try:
        await asyncio.Event().wait()
    finally:
        await scheduler.stop()
        await worker.stop()


@cli.command()
@click.pass_context
def scan(ctx: click.Context) -> None:
    """Run one scheduler scan and report how many features were enqueued."""
    settings: ConductorSettings = ctx.obj["settings"]
    scheduler = QueueScheduler(_open_store(ctx), settings.scheduler)
    count = asyncio.run(scheduler.scan())
    click.echo(f"Enqueued {count} feature(s)")


@cli.command("work-once")
@click.pass_context
def work_once(ctx: click.Context) -> None:
    """Claim and process a single queue item."""
    settings: ConductorSettings = ctx.obj["settings"]
    worker = QueueWorker(_open_store(ctx), settings.worker)
    try:
        processed = asyncio.run(worker.process_next())
    except KeyboardInterrupt:
        click.echo("\nInterrupted by user", err=True)
        sys.exit(130)
    click.echo("Processed 1 item" if processed else "Nothing to process")


# ----------------------------------------------------------------------
# Queue
# ----------------------------------------------------------------------


@cli.group()
def queue() -> None:
    """Inspect and manage the development queue."""


@queue.command("list")
@click.option("--repo", default=None, help="Filter by repository")
@click.option("--feature", default=None, help="Filter by feature slug")
@click.option("--status", type=click.Choice([s.value for s in QueueStatus]), default=None)
@click.option("--limit", type=int, default=None)
@click.pass_context
def queue_list(ctx: click.Context, repo: str | None, feature: str | None, status: str | None, limit: int | None) -> None:
    """List queue items in claim order."""
    outcome = _conductor(ctx).list_queue(repo, feature, status, limit)
    _emit(outcome, lambda items: _echo_json([item.to_dict() for item in items]))


@queue.command("stats")
@click.pass_context
def queue_stats(ctx: click.Context) -> None:
    """Show item counts per status."""

    def render(stats: Any) -> None:
        _echo_json(
            {
                "pending": stats.pending,
                "running": stats.running,
                "completed": stats.completed,
                "failed": stats.failed,
                "total": stats.total,
            }
        )

    _emit(_conductor(ctx).queue_stats(), render)


@queue.command("enqueue")
@click.argument("repo_name")
@click.argument("feature_slug")
@click.option("--tool", type=click.Choice([t.value for t in CliTool]), default=None, help="Defaults to settings")
@click.pass_context
def queue_enqueue(ctx: click.Context, repo_name: str, feature_slug: str, tool: str | None) -> None:
    """Queue a feature for execution."""
    outcome = _conductor(ctx).enqueue(repo_name, feature_slug, tool)
    _emit(outcome, lambda r: _echo_json({"id": r.id, "alreadyQueued": r.already_queued}))


@queue.command("retry")
@click.argument("item_id", type=int)
@click.pass_context
def queue_retry(ctx: click.Context, item_id: int) -> None:
    """Re-enqueue a failed item."""
    outcome = _conductor(ctx).reenqueue(item_id)
    _emit(outcome, lambda r: _echo_json({"id": r.id, "alreadyQueued": r.already_queued}))


@queue.command("cancel")
@click.argument("item_id", type=int)
@click.pass_context
def queue_cancel(ctx: click.Context, item_id: int) -> None:
    """Remove a pending item."""
    _emit(_conductor(ctx).cancel(item_id), lambda _: click.echo(f"Cancelled item {item_id}"))


@queue.command("prune")
@click.option("--older-than-days", type=int, required=True)
@click.pass_context
def queue_prune(ctx: click.Context, older_than_days: int) -> None:
    """Delete completed and failed items older than the given age."""
    _emit(_conductor(ctx).prune(older_than_days), lambda n: click.echo(f"Removed {n} item(s)"))


# ----------------------------------------------------------------------
# Settings
# ----------------------------------------------------------------------


@cli.group("settings")
def settings_group() -> None:
    """Read and update the persisted queue settings."""


@settings_group.command("show")
@click.pass_context
def settings_show(ctx: click.Context) -> None:
    _emit(_conductor(ctx).get_settings(), lambda s: _echo_json(s.to_dict()))


@settings_group.command("set")
@click.option("--interval", "cron_interval_seconds", type=int, default=None, help="Scan interval in seconds")
@click.option("--base-folder", "base_repos_folder", default=None, help="Folder holding the repositories")
@click.option("--tool", "cli_tool", type=click.Choice([t.value for t in CliTool]), default=None)
@click.option("--worker-enabled", "worker_enabled", type=click.BOOL, default=None, help="true or false")
@click.pass_context
def settings_set(ctx: click.Context, **options: Any) -> None:
    """Update one or more queue settings."""
    changes = {k: v for k, v in options.items() if v is not None}
    if not changes:
        click.echo("Error: nothing to update", err=True)
        sys.exit(2)
    _emit(_conductor(ctx).update_settings(**changes), lambda s: _echo_json(s.to_dict()))


# ----------------------------------------------------------------------
# Tasks
# ----------------------------------------------------------------------


@cli.group()
def task() -> None:
    """Review and transition tasks."""


@task.command("status")
@click.argument("repo_name")
@click.argument("feature_slug")
@click.argument("task_id")
@click.pass_context
def task_status(ctx: click.Context, repo_name: str, feature_slug: str, task_id: str) -> None:
    _emit(_conductor(ctx).get_task_status(repo_name, feature_slug, task_id), _echo_json)


def _parse_fields(pairs: tuple[str, ...]) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    for pair in pairs:
        key, sep, raw = pair.partition("=")
        if not sep:
            raise click.BadParameter(f"expected key=value, got {pair!r}", param_hint="--field")
        try:
            fields[key] = json.loads(raw)
        except json.JSONDecodeError:
            fields[key] = raw
    return fields


@task.command("review")
@click.argument("repo_name")
@click.argument("feature_slug")
@click.argument("task_id")
@click.argument("role", type=click.Choice([r.value for r in StakeholderRole]))
@click.argument("decision", type=click.Choice([d.value for d in ReviewDecision]))
@click.option("--notes", default="", help="Review notes")
@click.option("--field", "field_pairs", multiple=True, help="Role-specific field as key=value (value may be JSON)")
@click.pass_context
def task_review(
    ctx: click.Context,
    repo_name: str,
    feature_slug: str,
    task_id: str,
    role: str,
    decision: str,
    notes: str,
    field_pairs: tuple[str, ...],
) -> None:
    """Submit a stakeholder review decision."""
    fields = _parse_fields(field_pairs)
    outcome = _conductor(ctx).submit_review(repo_name, feature_slug, task_id, role, decision, notes, fields)
    _emit(outcome, lambda t: click.echo(f"{task_id}: {t.from_status} -> {t.to_status}"))


@task.command("transition")
@click.argument("repo_name")
@click.argument("feature_slug")
@click.argument("task_id")
@click.argument("to_status", type=click.Choice([s.value for s in TaskStatus]))
@click.option("--from", "from_status", type=click.Choice([s.value for s in TaskStatus]), required=True)
@click.option("--actor", type=click.Choice([a.value for a in ActorType]), required=True)
@click.option("--notes", default=None)
@click.pass_context
def task_transition(
    ctx: click.Context,
    repo_name: str,
    feature_slug: str,
    task_id: str,
    to_status: str,
    from_status: str,
    actor: str,
    notes: str | None,
) -> None:
    """Move a task through the development pipeline."""
    outcome = _conductor(ctx).transition_task(
        repo_name, feature_slug, task_id, from_status, to_status, actor, notes=notes
    )
    _emit(outcome, lambda t: click.echo(f"{task_id}: {t.from_status} -> {t.to_status}"))


if __name__ == "__main__":
    cli()
