"""Enumerations for task statuses, roles, actors and queue states."""

from enum import Enum


class TaskStatus(str, Enum):
    """Every status a task can hold.

    The first five members form the stakeholder review pipeline. From
    READY_FOR_DEVELOPMENT the development pipeline takes over.
    """

    PENDING_PRODUCT_DIRECTOR = "PendingProductDirector"
    PENDING_ARCHITECT = "PendingArchitect"
    PENDING_UI_UX_EXPERT = "PendingUiUxExpert"
    PENDING_SECURITY_OFFICER = "PendingSecurityOfficer"
    READY_FOR_DEVELOPMENT = "ReadyForDevelopment"
    NEEDS_REFINEMENT = "NeedsRefinement"
    TODO = "ToDo"
    IN_PROGRESS = "InProgress"
    IN_REVIEW = "InReview"
    IN_QA = "InQA"
    NEEDS_CHANGES = "NeedsChanges"
    DONE = "Done"

    def __str__(self) -> str:
        return self.value


class StakeholderRole(str, Enum):
    """Reviewer identities, in review pipeline order."""

    PRODUCT_DIRECTOR = "productDirector"
    ARCHITECT = "architect"
    UI_UX_EXPERT = "uiUxExpert"
    SECURITY_OFFICER = "securityOfficer"

    def __str__(self) -> str:
        return self.value


class ActorType(str, Enum):
    """Identities allowed to act on a task.

    The stakeholder roles are repeated here so that a single actor value can
    be checked against the permitted-actor sets of the state table.
    """

    PRODUCT_DIRECTOR = "productDirector"
    ARCHITECT = "architect"
    UI_UX_EXPERT = "uiUxExpert"
    SECURITY_OFFICER = "securityOfficer"
    SYSTEM = "system"
    DEVELOPER = "developer"
    REVIEWER = "reviewer"
    QA = "qa"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def from_role(cls, role: StakeholderRole) -> "ActorType":
        """Map a stakeholder role onto its actor value."""
        return cls(role.value)


class ReviewDecision(str, Enum):
    """Outcome of a stakeholder review."""

    APPROVE = "approve"
    REJECT = "reject"

    def __str__(self) -> str:
        return self.value


class QueueStatus(str, Enum):
    """Lifecycle of a queue item."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value

    @property
    def is_active(self) -> bool:
        """Pending and running items block a second enqueue for the same feature."""
        return self in (QueueStatus.PENDING, QueueStatus.RUNNING)


class CliTool(str, Enum):
    """External code-generation CLIs the worker is allowed to launch."""

    CLAUDE = "claude"
    COPILOT = "copilot"

    def __str__(self) -> str:
        return self.value
