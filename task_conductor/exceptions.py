"""Custom exception hierarchy for task-conductor.

Exception Hierarchy:
    TaskConductorError (base)
    ├── ConfigurationError
    ├── StoreError
    │   └── NotFoundError
    ├── WorkflowError
    │   ├── WorkflowValidationError
    │   └── ConcurrentModificationError
    ├── QueueError
    └── ExecutionError
        └── ExecutionTimeoutError

The store and the workflow engine raise these. The ``Conductor`` service
catches them at its boundary and turns them into structured ``Outcome``
results, so callers of the public operations never see a raised error.

Example Usage:
    >>> from task_conductor.exceptions import ConfigurationError
    >>> try:
    ...     load_config(path)
    ... except FileNotFoundError as e:
    ...     raise ConfigurationError(f"Config file not found: {path}") from e
"""


class TaskConductorError(Exception):
    """Base exception for all task-conductor errors.

    Attributes:
        message: Human-readable error description
    """

    def __init__(self, message: str) -> None:
        """Initialize exception.

        Args:
            message: Error message
        """
        self.message = message
        super().__init__(message)


class ConfigurationError(TaskConductorError):
    """Configuration-related errors.

    Examples:
        - Configuration file not found
        - Invalid YAML syntax
        - Out-of-range queue settings
    """

    pass


class StoreError(TaskConductorError):
    """Persistence errors raised by the entity store."""

    pass


class NotFoundError(StoreError):
    """A repository, feature, task, criterion or queue item does not exist.

    Attributes:
        kind: What was looked up (e.g. "task", "queue item")
        key: The identifier that was not found
    """

    def __init__(self, kind: str, key: str) -> None:
        """Initialize exception.

        Args:
            kind: Entity kind
            key: Identifier that failed to resolve
        """
        self.kind = kind
        self.key = key
        super().__init__(f"{kind.capitalize()} not found: {key}")


class WorkflowError(TaskConductorError):
    """Task workflow errors (review pipeline or development pipeline)."""

    pass


class WorkflowValidationError(WorkflowError):
    """A proposed review decision or transition violates the workflow rules.

    The message enumerates every violated constraint.

    Attributes:
        errors: One entry per violated constraint
        warnings: Non-fatal notes produced during validation
    """

    def __init__(self, errors: list[str], warnings: list[str] | None = None) -> None:
        """Initialize exception.

        Args:
            errors: Violated constraints
            warnings: Optional warnings gathered alongside the errors
        """
        self.errors = list(errors)
        self.warnings = list(warnings or [])
        super().__init__(f"Workflow validation failed: {'; '.join(self.errors)}")


class ConcurrentModificationError(WorkflowError):
    """The task changed status between read and write."""

    def __init__(self, task_id: str, expected_status: str) -> None:
        """Initialize exception.

        Args:
            task_id: Task whose conditional update did not apply
            expected_status: Status the writer expected to replace
        """
        self.task_id = task_id
        self.expected_status = expected_status
        super().__init__(f"Task {task_id} is no longer in status {expected_status}; it was modified concurrently")


class QueueError(TaskConductorError):
    """Queue operation rejected (bad arguments or item in the wrong state)."""

    pass


class ExecutionError(TaskConductorError):
    """The external tool could not be run to a clean exit.

    Attributes:
        item_id: Queue item being executed
    """

    def __init__(self, message: str, item_id: int | None = None) -> None:
        """Initialize exception.

        Args:
            message: Error message
            item_id: Queue item being executed when the error occurred
        """
        self.item_id = item_id
        super().__init__(message)


class ExecutionTimeoutError(ExecutionError):
    """The external tool exceeded its wall-clock limit.

    Attributes:
        timeout_seconds: The limit that was exceeded
    """

    def __init__(self, timeout_seconds: float, item_id: int | None = None) -> None:
        """Initialize exception.

        Args:
            timeout_seconds: The limit that was exceeded
            item_id: Queue item being executed
        """
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Process timed out after {timeout_seconds:g}s", item_id=item_id)
