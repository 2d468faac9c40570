"""
Workflow engine for the task state machines.

The engine owns the decision logic for both pipelines:

- The stakeholder review pipeline, where each pending status is bound to one
  reviewing role and a decision is either approve (advance) or reject (move
  to NeedsRefinement, which needs a manual reset).
- The development pipeline, where each status has a fixed set of permitted
  actors and target statuses.

All decisions are table lookups against ``STATE_TABLE``. Validation never
mutates anything; ``apply_review`` and ``apply_transition`` re-validate and
are the only places a task's status, review slots and transition list change.
Persisting the mutated task is the caller's job.

Example:
    >>> engine = WorkflowEngine()
    >>> result = engine.validate_review(
    ...     TaskStatus.PENDING_ARCHITECT, StakeholderRole.PRODUCT_DIRECTOR, ReviewDecision.APPROVE
    ... )
    >>> result.valid
    False
"""

from enum import Enum
from typing import Any, TypeVar

import structlog
from pydantic import ValidationError

from task_conductor.engine.rules import REVIEW_ORDER, REVIEW_TERMINAL, STATE_TABLE, StateRule
from task_conductor.engine.types import ReviewProgress, ValidationResult
from task_conductor.enums import ActorType, ReviewDecision, StakeholderRole, TaskStatus
from task_conductor.exceptions import WorkflowValidationError
from task_conductor.models.task import StakeholderReviews, Task, Transition, build_review, review_fields

log = structlog.get_logger(__name__)

E = TypeVar("E", bound=Enum)


def _coerce(enum_cls: type[E], value: E | str, label: str, errors: list[str]) -> E | None:
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(str(m.value) for m in enum_cls)
        errors.append(f"Unknown {label} '{value}'. Expected one of: {allowed}")
        return None


class WorkflowEngine:
    """Validate and apply review decisions and development transitions."""

    def __init__(self, table: Any = STATE_TABLE) -> None:
        self.table = table

    def rule_for(self, status: TaskStatus) -> StateRule:
        return self.table[status]

    def expected_role(self, status: TaskStatus) -> StakeholderRole | None:
        """Reviewer bound to ``status``, or None outside the review pipeline."""
        return self.table[status].expected_role

    def allowed_transitions(self, status: TaskStatus) -> list[TaskStatus]:
        return list(self.table[status].allowed_targets)

    def can_actor_transition(self, status: TaskStatus, actor: ActorType) -> bool:
        return actor in self.table[status].allowed_actors

    def is_terminal(self, status: TaskStatus) -> bool:
        """Review-terminal statuses plus Done."""
        return status in REVIEW_TERMINAL or status == TaskStatus.DONE

    # ------------------------------------------------------------------
    # Review pipeline
    # ------------------------------------------------------------------

    def validate_review(
        self,
        status: TaskStatus | str,
        role: StakeholderRole | str,
        decision: ReviewDecision | str,
    ) -> ValidationResult:
        """Check a stakeholder decision against the current status.

        Args:
            status: Current task status.
            role: Role submitting the decision.
            decision: approve or reject.

        Returns:
            ValidationResult whose ``resulting_status`` is the status the task
            would move to. Rejecting is always allowed by the table but adds a
            warning that a manual reset will be required.
        """
        errors: list[str] = []
        warnings: list[str] = []

        current = _coerce(TaskStatus, status, "status", errors)
        role_value = _coerce(StakeholderRole, role, "stakeholder role", errors)
        decision_value = _coerce(ReviewDecision, decision, "decision", errors)
        if current is None:
            return ValidationResult(valid=False, current_status=TaskStatus.PENDING_PRODUCT_DIRECTOR, errors=errors)

        if current == TaskStatus.READY_FOR_DEVELOPMENT:
            errors.append("Task is already in ReadyForDevelopment state (terminal state for reviews)")
            return ValidationResult(valid=False, current_status=current, errors=errors)
        if current == TaskStatus.NEEDS_REFINEMENT:
            errors.append(
                "Task is in NeedsRefinement state (terminal state for reviews). "
                "Manual intervention required to reset workflow."
            )
            return ValidationResult(valid=False, current_status=current, errors=errors)

        rule = self.table[current]
        if not rule.is_review_state:
            errors.append(f"Task at status {current} is not in the stakeholder review pipeline")
            return ValidationResult(valid=False, current_status=current, errors=errors)

        if role_value is not None and role_value != rule.expected_role:
            errors.append(
                f"Wrong stakeholder. Expected {rule.expected_role}, got {role_value}. "
                f"Task at status {current} requires review from {rule.expected_role}."
            )

        resulting: TaskStatus | None = None
        if decision_value == ReviewDecision.APPROVE:
            resulting = rule.on_approve
        elif decision_value == ReviewDecision.REJECT:
            resulting = rule.on_reject
            warnings.append(f"Task will be moved to {resulting}. This requires manual workflow reset.")

        return ValidationResult(
            valid=not errors,
            current_status=current,
            errors=errors,
            warnings=warnings,
            allowed_next_states=[s for s in (rule.on_approve, rule.on_reject) if s is not None],
            expected_role=rule.expected_role,
            resulting_status=resulting,
        )

    def apply_review(
        self,
        task: Task,
        role: StakeholderRole | str,
        decision: ReviewDecision | str,
        notes: str = "",
        fields: dict[str, Any] | None = None,
    ) -> Transition:
        """Record a stakeholder decision on ``task``.

        Writes the role's review slot, appends a Transition and sets the new
        status. The task is left untouched when validation fails.

        Raises:
            WorkflowValidationError: If the decision is not allowed, or if
                ``fields`` holds keys that do not belong to the role.
        """
        result = self.validate_review(task.status, role, decision)
        if not result.valid:
            log.debug("review_rejected", task_id=task.task_id, errors=result.errors)
            result.raise_for_errors()

        role_value = StakeholderRole(role)
        decision_value = ReviewDecision(decision)
        approved = decision_value == ReviewDecision.APPROVE
        try:
            review = build_review(role_value, approved=approved, notes=notes, fields=fields)
        except ValidationError as e:
            bad = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
            raise WorkflowValidationError([f"Invalid review fields for {role_value}: {', '.join(bad)}"]) from e

        new_status = result.resulting_status
        assert new_status is not None
        transition = Transition(
            from_status=task.status,
            to_status=new_status,
            actor=ActorType.from_role(role_value),
            notes=notes or None,
            metadata={"decision": decision_value.value, **review_fields(review)},
        )

        task.reviews.put(review)
        task.transitions.append(transition)
        task.status = new_status

        log.info(
            "review_applied",
            task_id=task.task_id,
            role=role_value.value,
            decision=decision_value.value,
            from_status=transition.from_status.value,
            to_status=new_status.value,
        )
        return transition

    # ------------------------------------------------------------------
    # Development pipeline
    # ------------------------------------------------------------------

    def validate_dev_transition(
        self,
        status: TaskStatus | str,
        target: TaskStatus | str,
        actor: ActorType | str,
    ) -> ValidationResult:
        """Check an actor-driven move from ``status`` to ``target``.

        The actor check and the target check are reported independently.
        """
        errors: list[str] = []
        warnings: list[str] = []

        current = _coerce(TaskStatus, status, "status", errors)
        target_value = _coerce(TaskStatus, target, "target status", errors)
        actor_value = _coerce(ActorType, actor, "actor", errors)
        if current is None:
            return ValidationResult(valid=False, current_status=TaskStatus.PENDING_PRODUCT_DIRECTOR, errors=errors)

        rule = self.table[current]
        if actor_value is not None and actor_value not in rule.allowed_actors:
            allowed_actors = ", ".join(sorted(a.value for a in rule.allowed_actors)) or "none"
            errors.append(
                f"Actor '{actor_value}' is not allowed to perform actions on status '{current}'. "
                f"Allowed actors: {allowed_actors}"
            )
        if target_value is not None and target_value not in rule.allowed_targets:
            allowed_targets = ", ".join(s.value for s in rule.allowed_targets) or "none"
            errors.append(
                f"Invalid transition from '{current}' to '{target_value}'. Allowed transitions: {allowed_targets}"
            )

        if target_value == TaskStatus.NEEDS_CHANGES:
            warnings.append("Task requires changes. Will need to be re-reviewed.")
        elif target_value == TaskStatus.NEEDS_REFINEMENT:
            warnings.append("Task requires refinement. Will restart stakeholder review cycle.")

        return ValidationResult(
            valid=not errors,
            current_status=current,
            errors=errors,
            warnings=warnings,
            allowed_next_states=list(rule.allowed_targets),
            expected_role=rule.expected_role,
            resulting_status=target_value if not errors else None,
        )

    def apply_transition(
        self,
        task: Task,
        target: TaskStatus | str,
        actor: ActorType | str,
        notes: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Transition:
        """Move ``task`` to ``target`` on behalf of ``actor``.

        A reset from NeedsRefinement back to PendingProductDirector clears the
        review slots so the review cycle starts from scratch.

        Raises:
            WorkflowValidationError: If the actor or the target is not allowed.
        """
        result = self.validate_dev_transition(task.status, target, actor)
        if not result.valid:
            log.debug("transition_rejected", task_id=task.task_id, errors=result.errors)
            result.raise_for_errors()

        target_value = TaskStatus(target)
        transition = Transition(
            from_status=task.status,
            to_status=target_value,
            actor=ActorType(actor),
            notes=notes,
            metadata=dict(metadata or {}),
        )
        if task.status == TaskStatus.NEEDS_REFINEMENT and target_value == TaskStatus.PENDING_PRODUCT_DIRECTOR:
            task.reviews = StakeholderReviews()

        task.transitions.append(transition)
        task.status = target_value
        log.info(
            "transition_applied",
            task_id=task.task_id,
            actor=transition.actor.value,
            from_status=transition.from_status.value,
            to_status=target_value.value,
        )
        return transition

    def decision_target(self, status: TaskStatus, decision: ReviewDecision) -> TaskStatus | None:
        """Approve/reject target of ``status``, for review and InReview/InQA states."""
        rule = self.table[status]
        return rule.on_approve if decision == ReviewDecision.APPROVE else rule.on_reject

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def review_progress(self, task: Task) -> ReviewProgress:
        """Derive approved and outstanding reviewers from the review slots.

        Used for reporting only; gating is driven by status alone.
        """
        completed = [role for role in REVIEW_ORDER if task.reviews.get(role).approved]
        pending = [role for role in REVIEW_ORDER if role not in completed]
        return ReviewProgress(completed=completed, pending=pending, current_role=self.expected_role(task.status))

    def validate_task_structure(self, task: Task) -> list[str]:
        """Structural problems that make a task unsafe to review."""
        errors = []
        if not task.task_id.strip():
            errors.append("Task ID is required")
        if not task.title.strip():
            errors.append("Task title is required")
        if task.estimated_hours is not None and task.estimated_hours < 0:
            errors.append("Estimated hours cannot be negative")
        if task.transitions is None:
            errors.append("Transitions must be a list")
        if task.reviews is None:
            errors.append("Stakeholder review slots are required")
        return errors
