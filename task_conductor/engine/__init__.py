"""Workflow engine: state table and decision logic for task statuses."""

from task_conductor.engine.rules import REVIEW_ORDER, REVIEW_STATES, STATE_TABLE, StateRule
from task_conductor.engine.types import ReviewProgress, ValidationResult
from task_conductor.engine.workflow import WorkflowEngine

__all__ = [
    "REVIEW_ORDER",
    "REVIEW_STATES",
    "STATE_TABLE",
    "ReviewProgress",
    "StateRule",
    "ValidationResult",
    "WorkflowEngine",
]
