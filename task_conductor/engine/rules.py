"""
Finite-state table for task statuses.

Each status maps to a ``StateRule`` describing who may act on a task in that
status, which statuses it may move to, and where approve/reject decisions
lead. The table is built once at import time and exposed read-only; the
workflow engine is the only consumer.

Review pipeline::

    PendingProductDirector -> PendingArchitect -> PendingUiUxExpert
        -> PendingSecurityOfficer -> ReadyForDevelopment
    (any pending state) --reject--> NeedsRefinement

Development pipeline::

    ReadyForDevelopment -> ToDo -> InProgress -> InReview
    InReview --approve--> InQA, --reject--> NeedsChanges
    InQA --approve--> Done, --reject--> NeedsChanges
    NeedsChanges -> InProgress
    NeedsRefinement -> PendingProductDirector  (manual reset by system)
"""

from dataclasses import dataclass
from types import MappingProxyType

from task_conductor.enums import ActorType, StakeholderRole, TaskStatus


@dataclass(frozen=True)
class StateRule:
    """Rules attached to one status.

    Attributes:
        allowed_actors: Actors permitted to move a task out of this status.
        allowed_targets: Statuses reachable from this status.
        expected_role: Reviewer bound to this status (review states only).
        on_approve: Target of an approve decision, if decisions apply.
        on_reject: Target of a reject decision, if decisions apply.
    """

    allowed_actors: frozenset[ActorType]
    allowed_targets: tuple[TaskStatus, ...]
    expected_role: StakeholderRole | None = None
    on_approve: TaskStatus | None = None
    on_reject: TaskStatus | None = None

    @property
    def is_review_state(self) -> bool:
        return self.expected_role is not None


REVIEW_ORDER: tuple[StakeholderRole, ...] = (
    StakeholderRole.PRODUCT_DIRECTOR,
    StakeholderRole.ARCHITECT,
    StakeholderRole.UI_UX_EXPERT,
    StakeholderRole.SECURITY_OFFICER,
)

REVIEW_STATES: tuple[TaskStatus, ...] = (
    TaskStatus.PENDING_PRODUCT_DIRECTOR,
    TaskStatus.PENDING_ARCHITECT,
    TaskStatus.PENDING_UI_UX_EXPERT,
    TaskStatus.PENDING_SECURITY_OFFICER,
)

# Statuses with no further review step.
REVIEW_TERMINAL: frozenset[TaskStatus] = frozenset(
    {TaskStatus.READY_FOR_DEVELOPMENT, TaskStatus.NEEDS_REFINEMENT}
)


def _build_table() -> dict[TaskStatus, StateRule]:
    table: dict[TaskStatus, StateRule] = {}

    next_states = REVIEW_STATES[1:] + (TaskStatus.READY_FOR_DEVELOPMENT,)
    for status, role, approve_to in zip(REVIEW_STATES, REVIEW_ORDER, next_states, strict=True):
        table[status] = StateRule(
            allowed_actors=frozenset({ActorType.from_role(role), ActorType.SYSTEM}),
            allowed_targets=(approve_to, TaskStatus.NEEDS_REFINEMENT),
            expected_role=role,
            on_approve=approve_to,
            on_reject=TaskStatus.NEEDS_REFINEMENT,
        )

    table[TaskStatus.READY_FOR_DEVELOPMENT] = StateRule(
        allowed_actors=frozenset({ActorType.SYSTEM}),
        allowed_targets=(TaskStatus.TODO,),
    )
    table[TaskStatus.NEEDS_REFINEMENT] = StateRule(
        allowed_actors=frozenset({ActorType.SYSTEM}),
        allowed_targets=(TaskStatus.PENDING_PRODUCT_DIRECTOR,),
    )
    table[TaskStatus.TODO] = StateRule(
        allowed_actors=frozenset({ActorType.DEVELOPER}),
        allowed_targets=(TaskStatus.IN_PROGRESS,),
    )
    table[TaskStatus.IN_PROGRESS] = StateRule(
        allowed_actors=frozenset({ActorType.DEVELOPER}),
        allowed_targets=(TaskStatus.IN_REVIEW,),
    )
    table[TaskStatus.IN_REVIEW] = StateRule(
        allowed_actors=frozenset({ActorType.REVIEWER}),
        allowed_targets=(TaskStatus.IN_QA, TaskStatus.NEEDS_CHANGES),
        on_approve=TaskStatus.IN_QA,
        on_reject=TaskStatus.NEEDS_CHANGES,
    )
    table[TaskStatus.IN_QA] = StateRule(
        allowed_actors=frozenset({ActorType.QA}),
        allowed_targets=(TaskStatus.DONE, TaskStatus.NEEDS_CHANGES),
        on_approve=TaskStatus.DONE,
        on_reject=TaskStatus.NEEDS_CHANGES,
    )
    table[TaskStatus.NEEDS_CHANGES] = StateRule(
        allowed_actors=frozenset({ActorType.DEVELOPER}),
        allowed_targets=(TaskStatus.IN_PROGRESS,),
    )
    table[TaskStatus.DONE] = StateRule(allowed_actors=frozenset(), allowed_targets=())

    missing = set(TaskStatus) - set(table)
    if missing:
        raise RuntimeError(f"State table missing rules for: {sorted(s.value for s in missing)}")
    return table


STATE_TABLE: MappingProxyType[TaskStatus, StateRule] = MappingProxyType(_build_table())
