"""Domain models for tasks, reviews, transitions and queue items."""

from task_conductor.models.queue import EnqueueResult, QueueEvent, QueueItem, QueueStats
from task_conductor.models.task import (
    AcceptanceCriterion,
    ArchitectReview,
    Feature,
    ProductDirectorReview,
    Repository,
    SecurityOfficerReview,
    StakeholderReview,
    StakeholderReviews,
    Task,
    TestScenario,
    Transition,
    UiUxExpertReview,
    build_review,
    review_fields,
    utc_now,
)

__all__ = [
    "AcceptanceCriterion",
    "ArchitectReview",
    "EnqueueResult",
    "Feature",
    "ProductDirectorReview",
    "QueueEvent",
    "QueueItem",
    "QueueStats",
    "Repository",
    "SecurityOfficerReview",
    "StakeholderReview",
    "StakeholderReviews",
    "Task",
    "TestScenario",
    "Transition",
    "UiUxExpertReview",
    "build_review",
    "review_fields",
    "utc_now",
]
