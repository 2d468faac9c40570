"""Result types returned by the workflow engine."""

from dataclasses import dataclass, field

from task_conductor.enums import StakeholderRole, TaskStatus
from task_conductor.exceptions import WorkflowValidationError


@dataclass
class ValidationResult:
    """Outcome of validating a review decision or a development transition.

    Nothing is mutated while producing one of these. ``errors`` lists every
    violated constraint independently, so an actor error and a target error
    can both be present.
    """

    valid: bool
    current_status: TaskStatus
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    allowed_next_states: list[TaskStatus] = field(default_factory=list)
    expected_role: StakeholderRole | None = None
    resulting_status: TaskStatus | None = None

    def raise_for_errors(self) -> None:
        """Raise ``WorkflowValidationError`` when the result is not valid."""
        if not self.valid:
            raise WorkflowValidationError(self.errors, self.warnings)


@dataclass
class ReviewProgress:
    """Which stakeholders have approved a task and which are outstanding."""

    completed: list[StakeholderRole]
    pending: list[StakeholderRole]
    current_role: StakeholderRole | None
