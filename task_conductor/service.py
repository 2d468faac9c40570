"""
Public operations of task-conductor.

``Conductor`` ties the entity store to the workflow engine and is the
boundary callers (the CLI, an HTTP layer, an agent tool adapter) talk to.
Every public method returns an ``Outcome``; store, workflow and queue errors
are turned into failed outcomes here and never propagate to the caller.

Example:
    >>> conductor = Conductor(EntityStore(":memory:"))
    >>> conductor.register_repo("api")
    >>> conductor.create_feature("api", "login-page", "Login page")
    >>> conductor.add_task("api", "login-page", "T01", "Login form")
    >>> outcome = conductor.submit_review(
    ...     "api", "login-page", "T01", "productDirector", "approve", notes="Worth doing"
    ... )
    >>> outcome.success
    True
"""

import functools
import sqlite3
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

import structlog
from pydantic import ValidationError

from task_conductor.config.settings import QueueSettings
from task_conductor.engine import REVIEW_ORDER, ReviewProgress, ValidationResult, WorkflowEngine
from task_conductor.enums import ActorType, CliTool, QueueStatus, ReviewDecision, StakeholderRole, TaskStatus
from task_conductor.exceptions import NotFoundError, QueueError, TaskConductorError, WorkflowError
from task_conductor.models.queue import EnqueueResult, QueueItem, QueueStats
from task_conductor.models.task import (
    AcceptanceCriterion,
    Feature,
    Repository,
    Task,
    TestScenario,
    Transition,
)
from task_conductor.store import EntityStore

log = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass
class Outcome(Generic[T]):
    """Structured result of a public operation.

    Attributes:
        success: Whether the operation took effect.
        value: Operation result on success.
        error: Summary message on failure.
        errors: Every violated constraint, for validation failures.
        warnings: Non-fatal notes.
    """

    success: bool
    value: T | None = None
    error: str | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @classmethod
    def ok(cls, value: T | None = None, warnings: list[str] | None = None) -> "Outcome[T]":
        return cls(success=True, value=value, warnings=list(warnings or []))

    @classmethod
    def fail(cls, error: str, errors: list[str] | None = None, warnings: list[str] | None = None) -> "Outcome[T]":
        return cls(success=False, error=error, errors=list(errors or [error]), warnings=list(warnings or []))


def boundary(func: Callable[..., "Outcome[Any]"]) -> Callable[..., "Outcome[Any]"]:
    """Convert errors raised inside a public operation into a failed Outcome."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Outcome[Any]:
        try:
            return func(*args, **kwargs)
        except TaskConductorError as e:
            log.info("operation_rejected", operation=func.__name__, error=e.message)
            return Outcome.fail(
                e.message,
                errors=getattr(e, "errors", None),
                warnings=getattr(e, "warnings", None),
            )
        except ValidationError as e:
            log.info("operation_rejected", operation=func.__name__, error=str(e))
            return Outcome.fail(f"Invalid input: {e}")
        except sqlite3.Error as e:
            log.error("operation_store_error", operation=func.__name__, error=str(e), exc_info=True)
            return Outcome.fail(f"Store error: {e}")

    return wrapper


def _parse_status_list(statuses: Iterable[TaskStatus | str]) -> list[TaskStatus]:
    try:
        return [TaskStatus(s) for s in statuses]
    except ValueError as e:
        raise WorkflowError(f"Unknown status in filter: {e}") from e


class Conductor:
    """Facade over the entity store and the workflow engine."""

    def __init__(self, store: EntityStore, engine: WorkflowEngine | None = None) -> None:
        self.store = store
        self.engine = engine or WorkflowEngine()

    # ------------------------------------------------------------------
    # Repositories and features
    # ------------------------------------------------------------------

    @boundary
    def register_repo(self, repo_name: str, repo_path: str = "") -> Outcome[Repository]:
        if not repo_name.strip():
            return Outcome.fail("Repository name is required")
        return Outcome.ok(self.store.tasks.register_repo(repo_name, repo_path))

    @boundary
    def list_repos(self) -> Outcome[list[Repository]]:
        return Outcome.ok(self.store.tasks.list_repos())

    @boundary
    def create_feature(self, repo_name: str, feature_slug: str, feature_name: str) -> Outcome[Feature]:
        if not feature_slug.strip():
            return Outcome.fail("Feature slug is required")
        return Outcome.ok(self.store.tasks.create_feature(repo_name, feature_slug, feature_name or feature_slug))

    @boundary
    def list_features(self, repo_name: str) -> Outcome[list[Feature]]:
        return Outcome.ok(self.store.tasks.list_features(repo_name))

    @boundary
    def get_feature(self, repo_name: str, feature_slug: str) -> Outcome[Feature]:
        return Outcome.ok(self.store.tasks.get_feature(repo_name, feature_slug))

    @boundary
    def delete_feature(self, repo_name: str, feature_slug: str) -> Outcome[None]:
        if not self.store.tasks.delete_feature(repo_name, feature_slug):
            raise NotFoundError("feature", f"{repo_name}/{feature_slug}")
        return Outcome.ok()

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    @boundary
    def add_task(
        self,
        repo_name: str,
        feature_slug: str,
        task_id: str,
        title: str,
        description: str = "",
        order_of_execution: int = 0,
        acceptance_criteria: list[dict[str, Any]] | None = None,
        test_scenarios: list[dict[str, Any]] | None = None,
        estimated_hours: float | None = None,
        assigned_to: str | None = None,
        dependencies: list[str] | None = None,
        tags: list[str] | None = None,
    ) -> Outcome[Task]:
        """Add a task at PendingProductDirector with empty review slots."""
        task = Task(
            task_id=task_id,
            title=title,
            description=description,
            order_of_execution=order_of_execution,
            acceptance_criteria=[AcceptanceCriterion.model_validate(c) for c in acceptance_criteria or []],
            test_scenarios=[TestScenario.model_validate(s) for s in test_scenarios or []],
            estimated_hours=estimated_hours,
            assigned_to=assigned_to,
            dependencies=list(dependencies or []),
            tags=list(tags or []),
        )
        problems = self.engine.validate_task_structure(task)
        if problems:
            return Outcome.fail(f"Invalid task: {'; '.join(problems)}", errors=problems)
        return Outcome.ok(self.store.tasks.add_task(repo_name, feature_slug, task))

    @boundary
    def get_task(self, repo_name: str, feature_slug: str, task_id: str) -> Outcome[Task]:
        return Outcome.ok(self.store.tasks.get_task(repo_name, feature_slug, task_id))

    @boundary
    def list_tasks(self, repo_name: str, feature_slug: str) -> Outcome[list[Task]]:
        self.store.tasks.get_feature(repo_name, feature_slug)
        return Outcome.ok(self.store.tasks.list_tasks(repo_name, feature_slug))

    @boundary
    def delete_task(self, repo_name: str, feature_slug: str, task_id: str) -> Outcome[None]:
        if not self.store.tasks.delete_task(repo_name, feature_slug, task_id):
            raise NotFoundError("task", task_id)
        return Outcome.ok()

    # ------------------------------------------------------------------
    # Review pipeline
    # ------------------------------------------------------------------

    @boundary
    def validate_review(
        self,
        repo_name: str,
        feature_slug: str,
        task_id: str,
        role: StakeholderRole | str,
        decision: ReviewDecision | str,
    ) -> Outcome[ValidationResult]:
        """Check a review decision against the task's current status without applying it."""
        task = self.store.tasks.get_task(repo_name, feature_slug, task_id)
        result = self.engine.validate_review(task.status, role, decision)
        if not result.valid:
            return Outcome(
                success=False,
                value=result,
                error="; ".join(result.errors),
                errors=result.errors,
                warnings=result.warnings,
            )
        return Outcome.ok(result, warnings=result.warnings)

    @boundary
    def submit_review(
        self,
        repo_name: str,
        feature_slug: str,
        task_id: str,
        role: StakeholderRole | str,
        decision: ReviewDecision | str,
        notes: str = "",
        fields: dict[str, Any] | None = None,
    ) -> Outcome[Transition]:
        """Apply a stakeholder decision and persist it.

        The status write is conditional on the status the task had when it
        was loaded, so two reviewers racing on the same task cannot both win.
        """
        task = self.store.tasks.get_task(repo_name, feature_slug, task_id)
        expected = task.status
        warnings = self.engine.validate_review(expected, role, decision).warnings
        transition = self.engine.apply_review(task, role, decision, notes=notes, fields=fields)
        self.store.tasks.record_transition(repo_name, feature_slug, task, expected, transition)
        return Outcome.ok(transition, warnings=warnings)

    @boundary
    def review_progress(self, repo_name: str, feature_slug: str, task_id: str) -> Outcome[ReviewProgress]:
        task = self.store.tasks.get_task(repo_name, feature_slug, task_id)
        return Outcome.ok(self.engine.review_progress(task))

    # ------------------------------------------------------------------
    # Development pipeline
    # ------------------------------------------------------------------

    def validate_transition(
        self,
        status: TaskStatus | str,
        target: TaskStatus | str,
        actor: ActorType | str,
    ) -> ValidationResult:
        """Pure check of a development transition; never raises."""
        return self.engine.validate_dev_transition(status, target, actor)

    @boundary
    def transition_task(
        self,
        repo_name: str,
        feature_slug: str,
        task_id: str,
        from_status: TaskStatus | str,
        to_status: TaskStatus | str,
        actor: ActorType | str,
        notes: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Outcome[Transition]:
        """Move a task between statuses on behalf of an actor.

        Fails without changing anything if the task is not at
        ``from_status`` or if the engine rejects the move.
        """
        task = self.store.tasks.get_task(repo_name, feature_slug, task_id)
        try:
            expected_from = TaskStatus(from_status)
        except ValueError:
            return Outcome.fail(f"Unknown status '{from_status}'")
        if task.status != expected_from:
            return Outcome.fail(f"Task {task_id} is in status {task.status}, not {expected_from}")

        warnings = self.engine.validate_dev_transition(task.status, to_status, actor).warnings
        transition = self.engine.apply_transition(task, to_status, actor, notes=notes, metadata=metadata)
        self.store.tasks.record_transition(repo_name, feature_slug, task, expected_from, transition)
        return Outcome.ok(transition, warnings=warnings)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    @boundary
    def get_task_status(self, repo_name: str, feature_slug: str, task_id: str) -> Outcome[dict[str, Any]]:
        task = self.store.tasks.get_task(repo_name, feature_slug, task_id)
        progress = self.engine.review_progress(task)
        return Outcome.ok(
            {
                "taskId": task.task_id,
                "status": task.status.value,
                "currentRole": progress.current_role.value if progress.current_role else None,
                "completedReviews": [r.value for r in progress.completed],
                "pendingReviews": [r.value for r in progress.pending],
                "allowedNextStatuses": [s.value for s in self.engine.allowed_transitions(task.status)],
                "orderOfExecution": task.order_of_execution,
            }
        )

    @boundary
    def get_next_task(
        self,
        repo_name: str,
        feature_slug: str,
        statuses: Iterable[TaskStatus | str] = (TaskStatus.TODO, TaskStatus.NEEDS_CHANGES),
    ) -> Outcome[Task | None]:
        """Task with the lowest order of execution among those in ``statuses``."""
        wanted = set(_parse_status_list(statuses))
        tasks = self.store.tasks.list_tasks(repo_name, feature_slug)
        candidates = [t for t in tasks if t.status in wanted]
        return Outcome.ok(candidates[0] if candidates else None)

    @boundary
    def get_tasks_by_status(
        self, repo_name: str, feature_slug: str, status: TaskStatus | str
    ) -> Outcome[list[Task]]:
        (parsed,) = _parse_status_list([status])
        return Outcome.ok(self.store.tasks.list_tasks(repo_name, feature_slug, status=parsed))

    @boundary
    def update_acceptance_criterion(
        self,
        repo_name: str,
        feature_slug: str,
        task_id: str,
        criterion_id: str,
        verified: bool,
    ) -> Outcome[AcceptanceCriterion]:
        task = self.store.tasks.get_task(repo_name, feature_slug, task_id)
        for criterion in task.acceptance_criteria:
            if criterion.id == criterion_id:
                criterion.verified = verified
                self.store.tasks.save_acceptance_criteria(repo_name, feature_slug, task)
                return Outcome.ok(criterion)
        raise NotFoundError("acceptance criterion", criterion_id)

    @boundary
    def verify_all_tasks_complete(self, repo_name: str, feature_slug: str) -> Outcome[dict[str, Any]]:
        tasks = self.store.tasks.list_tasks(repo_name, feature_slug)
        incomplete = [{"taskId": t.task_id, "status": t.status.value} for t in tasks if t.status != TaskStatus.DONE]
        return Outcome.ok(
            {
                "allComplete": bool(tasks) and not incomplete,
                "totalTasks": len(tasks),
                "completedTasks": len(tasks) - len(incomplete),
                "incompleteTasks": incomplete,
            }
        )

    @boundary
    def review_summary(self, repo_name: str, feature_slug: str) -> Outcome[dict[str, Any]]:
        """Totals per status, completion percentage and per-role review counts."""
        feature = self.store.tasks.get_feature(repo_name, feature_slug)
        tasks = self.store.tasks.list_tasks(repo_name, feature_slug)

        by_status = {status.value: 0 for status in TaskStatus}
        for task in tasks:
            by_status[task.status.value] += 1

        stakeholders: dict[str, dict[str, int]] = {}
        for role in REVIEW_ORDER:
            approved = sum(1 for t in tasks if t.reviews.get(role).approved)
            stakeholders[role.value] = {"completed": approved, "pending": len(tasks) - approved}

        done = by_status[TaskStatus.DONE.value]
        return Outcome.ok(
            {
                "repoName": repo_name,
                "featureSlug": feature_slug,
                "featureName": feature.feature_name,
                "totalTasks": len(tasks),
                "byStatus": by_status,
                "completionPercentage": round(100 * done / len(tasks)) if tasks else 0,
                "stakeholderProgress": stakeholders,
            }
        )

    @boundary
    def validate_task_structure(self, repo_name: str, feature_slug: str, task_id: str) -> Outcome[list[str]]:
        task = self.store.tasks.get_task(repo_name, feature_slug, task_id)
        problems = self.engine.validate_task_structure(task)
        if problems:
            return Outcome(success=False, value=problems, error="; ".join(problems), errors=problems)
        return Outcome.ok([])

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    @boundary
    def enqueue(self, repo_name: str, feature_slug: str, cli_tool: CliTool | str | None = None) -> Outcome[EnqueueResult]:
        """Queue a feature for execution; a duplicate request reports ``already_queued``."""
        if cli_tool is None:
            tool = self.store.settings.get_queue_settings().cli_tool
        else:
            try:
                tool = CliTool(cli_tool)
            except ValueError:
                allowed = ", ".join(t.value for t in CliTool)
                raise QueueError(f"Unknown CLI tool '{cli_tool}'. Allowed: {allowed}") from None
        return Outcome.ok(self.store.queue.enqueue(repo_name, feature_slug, tool.value))

    @boundary
    def claim(self, worker_id: str) -> Outcome[QueueItem | None]:
        """Claim the oldest pending item. An empty queue is a successful None."""
        return Outcome.ok(self.store.queue.claim_next(worker_id))

    @boundary
    def complete(self, item_id: int) -> Outcome[None]:
        if not self.store.queue.complete(item_id):
            return Outcome.fail(f"Queue item {item_id} is not running")
        return Outcome.ok()

    @boundary
    def fail(self, item_id: int, message: str) -> Outcome[None]:
        if not self.store.queue.fail(item_id, message):
            return Outcome.fail(f"Queue item {item_id} is not running")
        return Outcome.ok()

    @boundary
    def prune(self, older_than_days: int) -> Outcome[int]:
        return Outcome.ok(self.store.queue.prune(older_than_days))

    @boundary
    def list_queue(
        self,
        repo_name: str | None = None,
        feature_slug: str | None = None,
        status: QueueStatus | str | None = None,
        limit: int | None = None,
    ) -> Outcome[list[QueueItem]]:
        if status is not None:
            try:
                status = QueueStatus(status)
            except ValueError:
                raise QueueError(f"Unknown queue status '{status}'") from None
        return Outcome.ok(self.store.queue.list_items(repo_name, feature_slug, status, limit))

    @boundary
    def get_queue_item(self, item_id: int) -> Outcome[QueueItem]:
        return Outcome.ok(self.store.queue.get(item_id))

    @boundary
    def queue_stats(self) -> Outcome[QueueStats]:
        return Outcome.ok(self.store.queue.stats())

    @boundary
    def reenqueue(self, item_id: int) -> Outcome[EnqueueResult]:
        return Outcome.ok(self.store.queue.reenqueue(item_id))

    @boundary
    def cancel(self, item_id: int) -> Outcome[None]:
        self.store.queue.cancel(item_id)
        return Outcome.ok()

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    @boundary
    def get_settings(self) -> Outcome[QueueSettings]:
        return Outcome.ok(self.store.settings.get_queue_settings())

    @boundary
    def update_settings(self, **changes: Any) -> Outcome[QueueSettings]:
        return Outcome.ok(self.store.settings.update_queue_settings(**changes))
