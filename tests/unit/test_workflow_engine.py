"""Tests for task_conductor.engine module."""

import pytest

from task_conductor.engine import REVIEW_ORDER, REVIEW_STATES, STATE_TABLE, WorkflowEngine
from task_conductor.enums import ActorType, ReviewDecision, StakeholderRole, TaskStatus
from task_conductor.exceptions import WorkflowValidationError
from task_conductor.models.task import ArchitectReview, Task


def make_task(status: TaskStatus = TaskStatus.PENDING_PRODUCT_DIRECTOR) -> Task:
    return Task(task_id="T01", title="Add payment form", status=status)


class TestStateTable:
    """Test the static rule table."""

    def test_every_status_has_a_rule(self):
        """Test the table covers every TaskStatus."""
        assert set(STATE_TABLE) == set(TaskStatus)

    def test_table_is_read_only(self):
        """Test the table cannot be modified."""
        with pytest.raises(TypeError):
            STATE_TABLE[TaskStatus.DONE] = STATE_TABLE[TaskStatus.TODO]  # type: ignore[index]

    def test_review_states_bound_to_roles_in_order(self):
        """Test each pending state expects exactly one role, in pipeline order."""
        assert [STATE_TABLE[s].expected_role for s in REVIEW_STATES] == list(REVIEW_ORDER)

    def test_done_is_a_dead_end(self):
        """Test Done has no actors and no targets."""
        rule = STATE_TABLE[TaskStatus.DONE]
        assert rule.allowed_actors == frozenset()
        assert rule.allowed_targets == ()


class TestValidateReview:
    """Test WorkflowEngine.validate_review."""

    @pytest.mark.parametrize("status", REVIEW_STATES)
    def test_reject_always_yields_needs_refinement(self, engine, status):
        """Test rejecting from any pending state targets NeedsRefinement."""
        role = STATE_TABLE[status].expected_role

        result = engine.validate_review(status, role, ReviewDecision.REJECT)

        assert result.valid
        assert result.resulting_status == TaskStatus.NEEDS_REFINEMENT
        assert any("manual workflow reset" in w for w in result.warnings)

    def test_approve_advances_to_next_pending_state(self, engine):
        """Test approving moves one step down the pipeline."""
        result = engine.validate_review(
            TaskStatus.PENDING_ARCHITECT, StakeholderRole.ARCHITECT, ReviewDecision.APPROVE
        )

        assert result.valid
        assert result.resulting_status == TaskStatus.PENDING_UI_UX_EXPERT
        assert result.allowed_next_states == [TaskStatus.PENDING_UI_UX_EXPERT, TaskStatus.NEEDS_REFINEMENT]

    def test_last_approval_reaches_ready_for_development(self, engine):
        """Test security officer approval ends the review pipeline."""
        result = engine.validate_review(
            TaskStatus.PENDING_SECURITY_OFFICER, "securityOfficer", "approve"
        )

        assert result.resulting_status == TaskStatus.READY_FOR_DEVELOPMENT

    @pytest.mark.parametrize("status", [TaskStatus.READY_FOR_DEVELOPMENT, TaskStatus.NEEDS_REFINEMENT])
    @pytest.mark.parametrize("decision", list(ReviewDecision))
    def test_terminal_states_reject_further_reviews(self, engine, status, decision):
        """Test review-terminal states refuse any review, naming the reason."""
        result = engine.validate_review(status, StakeholderRole.PRODUCT_DIRECTOR, decision)

        assert not result.valid
        assert "terminal state for reviews" in result.errors[0]

    def test_wrong_stakeholder(self, engine):
        """Test a product director cannot review a task waiting on the architect."""
        result = engine.validate_review(
            TaskStatus.PENDING_ARCHITECT, StakeholderRole.PRODUCT_DIRECTOR, ReviewDecision.APPROVE
        )

        assert not result.valid
        assert result.errors[0].startswith("Wrong stakeholder. Expected architect, got productDirector")

    def test_dev_status_is_not_reviewable(self, engine):
        """Test statuses outside the review pipeline are rejected."""
        result = engine.validate_review(TaskStatus.IN_PROGRESS, "architect", "approve")

        assert not result.valid
        assert "not in the stakeholder review pipeline" in result.errors[0]

    def test_unknown_values_are_reported(self, engine):
        """Test unknown role and decision strings produce errors instead of raising."""
        result = engine.validate_review(TaskStatus.PENDING_ARCHITECT, "intern", "maybe")

        assert not result.valid
        assert any("stakeholder role 'intern'" in e for e in result.errors)
        assert any("decision 'maybe'" in e for e in result.errors)


class TestApplyReview:
    """Test WorkflowEngine.apply_review."""

    def test_approve_writes_slot_transition_and_status(self, engine):
        """Test a valid approval mutates the task in one place."""
        task = make_task(TaskStatus.PENDING_ARCHITECT)

        transition = engine.apply_review(
            task,
            StakeholderRole.ARCHITECT,
            ReviewDecision.APPROVE,
            notes="Layering is fine",
            fields={"design_patterns": ["repository"]},
        )

        assert task.status == TaskStatus.PENDING_UI_UX_EXPERT
        assert task.transitions == [transition]
        assert transition.actor == ActorType.ARCHITECT
        assert transition.metadata == {"decision": "approve", "technology_recommendations": [], "design_patterns": ["repository"]}
        review = task.reviews.architect
        assert isinstance(review, ArchitectReview)
        assert review.approved
        assert review.notes == "Layering is fine"
        assert review.reviewed_at is not None

    def test_wrong_stakeholder_leaves_task_unchanged(self, engine):
        """Test a product director approval on PendingArchitect fails and mutates nothing."""
        task = make_task(TaskStatus.PENDING_ARCHITECT)

        with pytest.raises(WorkflowValidationError) as exc_info:
            engine.apply_review(task, StakeholderRole.PRODUCT_DIRECTOR, ReviewDecision.APPROVE)

        assert "Wrong stakeholder" in exc_info.value.message
        assert task.status == TaskStatus.PENDING_ARCHITECT
        assert task.transitions == []
        assert not task.reviews.product_director.is_decided

    def test_reject_moves_to_needs_refinement(self, engine):
        """Test a rejection records an unapproved review."""
        task = make_task()

        engine.apply_review(task, "productDirector", "reject", notes="No market")

        assert task.status == TaskStatus.NEEDS_REFINEMENT
        assert task.reviews.product_director.approved is False
        assert task.reviews.product_director.is_decided

    def test_fields_of_another_role_are_rejected(self, engine):
        """Test role-specific fields must belong to the reviewing role."""
        task = make_task()

        with pytest.raises(WorkflowValidationError) as exc_info:
            engine.apply_review(
                task, StakeholderRole.PRODUCT_DIRECTOR, ReviewDecision.APPROVE, fields={"design_patterns": ["mvc"]}
            )

        assert "Invalid review fields for productDirector" in exc_info.value.errors[0]
        assert task.status == TaskStatus.PENDING_PRODUCT_DIRECTOR
        assert task.transitions == []

    def test_full_pipeline(self, engine):
        """Test four approvals take a task to ReadyForDevelopment."""
        task = make_task()

        for role in REVIEW_ORDER:
            engine.apply_review(task, role, ReviewDecision.APPROVE)

        assert task.status == TaskStatus.READY_FOR_DEVELOPMENT
        assert [t.to_status for t in task.transitions] == [
            TaskStatus.PENDING_ARCHITECT,
            TaskStatus.PENDING_UI_UX_EXPERT,
            TaskStatus.PENDING_SECURITY_OFFICER,
            TaskStatus.READY_FOR_DEVELOPMENT,
        ]


class TestValidateDevTransition:
    """Test WorkflowEngine.validate_dev_transition."""

    def test_developer_starts_work(self, engine):
        result = engine.validate_dev_transition(TaskStatus.TODO, TaskStatus.IN_PROGRESS, ActorType.DEVELOPER)

        assert result.valid
        assert result.resulting_status == TaskStatus.IN_PROGRESS

    def test_disallowed_actor_lists_allowed_set(self, engine):
        """Test an actor error names the allowed actors."""
        result = engine.validate_dev_transition(TaskStatus.TODO, TaskStatus.IN_PROGRESS, ActorType.QA)

        assert not result.valid
        assert result.errors == [
            "Actor 'qa' is not allowed to perform actions on status 'ToDo'. Allowed actors: developer"
        ]

    def test_actor_and_target_errors_reported_independently(self, engine):
        """Test both violated constraints are listed."""
        result = engine.validate_dev_transition(TaskStatus.TODO, TaskStatus.DONE, ActorType.QA)

        assert not result.valid
        assert len(result.errors) == 2
        assert "Allowed actors: developer" in result.errors[0]
        assert "Invalid transition from 'ToDo' to 'Done'. Allowed transitions: InProgress" == result.errors[1]

    @pytest.mark.parametrize(
        "status",
        [s for s in TaskStatus if s not in (TaskStatus.IN_REVIEW, TaskStatus.IN_QA)],
    )
    def test_needs_changes_only_from_review_or_qa(self, engine, status):
        """Test NeedsChanges is unreachable outside InReview and InQA."""
        assert TaskStatus.NEEDS_CHANGES not in engine.allowed_transitions(status)

    def test_needs_changes_only_returns_to_in_progress(self, engine):
        assert engine.allowed_transitions(TaskStatus.NEEDS_CHANGES) == [TaskStatus.IN_PROGRESS]

    @pytest.mark.parametrize(
        ("status", "actor"),
        [(TaskStatus.IN_REVIEW, ActorType.REVIEWER), (TaskStatus.IN_QA, ActorType.QA)],
    )
    def test_reject_targets_needs_changes_with_warning(self, engine, status, actor):
        result = engine.validate_dev_transition(status, TaskStatus.NEEDS_CHANGES, actor)

        assert result.valid
        assert engine.decision_target(status, ReviewDecision.REJECT) == TaskStatus.NEEDS_CHANGES
        assert "re-reviewed" in result.warnings[0]

    def test_done_accepts_nothing(self, engine):
        result = engine.validate_dev_transition(TaskStatus.DONE, TaskStatus.IN_PROGRESS, ActorType.DEVELOPER)

        assert not result.valid
        assert "Allowed actors: none" in result.errors[0]
        assert "Allowed transitions: none" in result.errors[1]


class TestApplyTransition:
    """Test WorkflowEngine.apply_transition."""

    def test_walks_development_pipeline(self, engine):
        """Test the happy path from ReadyForDevelopment to Done."""
        task = make_task(TaskStatus.READY_FOR_DEVELOPMENT)
        steps = [
            (TaskStatus.TODO, ActorType.SYSTEM),
            (TaskStatus.IN_PROGRESS, ActorType.DEVELOPER),
            (TaskStatus.IN_REVIEW, ActorType.DEVELOPER),
            (TaskStatus.IN_QA, ActorType.REVIEWER),
            (TaskStatus.DONE, ActorType.QA),
        ]

        for target, actor in steps:
            engine.apply_transition(task, target, actor)

        assert task.status == TaskStatus.DONE
        assert len(task.transitions) == 5
        assert engine.is_terminal(task.status)

    def test_invalid_transition_raises_and_leaves_task(self, engine):
        task = make_task(TaskStatus.IN_PROGRESS)

        with pytest.raises(WorkflowValidationError):
            engine.apply_transition(task, TaskStatus.DONE, ActorType.DEVELOPER)

        assert task.status == TaskStatus.IN_PROGRESS
        assert task.transitions == []

    def test_reset_from_needs_refinement_clears_reviews(self, engine):
        """Test the manual reset restarts the review cycle from scratch."""
        task = make_task()
        engine.apply_review(task, StakeholderRole.PRODUCT_DIRECTOR, ReviewDecision.APPROVE)
        engine.apply_review(task, StakeholderRole.ARCHITECT, ReviewDecision.REJECT)

        engine.apply_transition(task, TaskStatus.PENDING_PRODUCT_DIRECTOR, ActorType.SYSTEM, notes="Reworked scope")

        assert task.status == TaskStatus.PENDING_PRODUCT_DIRECTOR
        assert not task.reviews.product_director.is_decided
        assert not task.reviews.architect.is_decided
        assert len(task.transitions) == 3


class TestReviewProgress:
    """Test WorkflowEngine.review_progress."""

    def test_progress_after_two_approvals(self, engine):
        task = make_task()
        engine.apply_review(task, StakeholderRole.PRODUCT_DIRECTOR, ReviewDecision.APPROVE)
        engine.apply_review(task, StakeholderRole.ARCHITECT, ReviewDecision.APPROVE)

        progress = engine.review_progress(task)

        assert progress.completed == [StakeholderRole.PRODUCT_DIRECTOR, StakeholderRole.ARCHITECT]
        assert progress.pending == [StakeholderRole.UI_UX_EXPERT, StakeholderRole.SECURITY_OFFICER]
        assert progress.current_role == StakeholderRole.UI_UX_EXPERT

    def test_no_current_role_outside_review_pipeline(self, engine):
        progress = engine.review_progress(make_task(TaskStatus.IN_QA))

        assert progress.current_role is None
        assert progress.pending == list(REVIEW_ORDER)


class TestValidateTaskStructure:
    """Test WorkflowEngine.validate_task_structure."""

    def test_valid_task(self, engine):
        assert engine.validate_task_structure(make_task()) == []

    def test_reports_every_problem(self):
        task = Task(task_id=" ", title="", estimated_hours=-1)

        problems = WorkflowEngine().validate_task_structure(task)

        assert problems == [
            "Task ID is required",
            "Task title is required",
            "Estimated hours cannot be negative",
        ]
