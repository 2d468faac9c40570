"""
Task, review and transition models.

Tasks are pydantic models so that the role-specific review fields can be a
discriminated union: each stakeholder role has its own fixed field set, and a
field that does not belong to the role is rejected at construction time.

Example:
    Building the review record for an architect approval::

        review = build_review(
            StakeholderRole.ARCHITECT,
            approved=True,
            notes="Layering looks right",
            fields={"design_patterns": ["repository"]},
        )
"""

from datetime import UTC, datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from task_conductor.enums import ActorType, StakeholderRole, TaskStatus


def utc_now() -> str:
    """Current time as an ISO 8601 UTC string."""
    return datetime.now(UTC).isoformat()


class AcceptanceCriterion(BaseModel):
    """One acceptance criterion of a task."""

    id: str
    criterion: str
    priority: Literal["Must Have", "Should Have", "Could Have"] = "Must Have"
    verified: bool = False


class TestScenario(BaseModel):
    """One test scenario of a task."""

    __test__ = False

    id: str
    title: str
    description: str = ""
    manual_only: bool = False
    priority: Literal["P0", "P1", "P2", "P3"] = "P1"


class _ReviewBase(BaseModel):
    model_config = ConfigDict(extra="forbid")

    approved: bool = False
    notes: str = ""
    reviewed_at: str | None = None

    @property
    def is_decided(self) -> bool:
        return self.reviewed_at is not None


class ProductDirectorReview(_ReviewBase):
    role: Literal["productDirector"] = "productDirector"
    market_analysis: str | None = None
    competitor_analysis: str | None = None


class ArchitectReview(_ReviewBase):
    role: Literal["architect"] = "architect"
    technology_recommendations: list[str] = Field(default_factory=list)
    design_patterns: list[str] = Field(default_factory=list)


class UiUxExpertReview(_ReviewBase):
    role: Literal["uiUxExpert"] = "uiUxExpert"
    usability_findings: str | None = None
    accessibility_requirements: str | None = None
    user_behavior_insights: str | None = None


class SecurityOfficerReview(_ReviewBase):
    role: Literal["securityOfficer"] = "securityOfficer"
    security_requirements: list[str] = Field(default_factory=list)
    compliance_notes: str | None = None


StakeholderReview = Annotated[
    ProductDirectorReview | ArchitectReview | UiUxExpertReview | SecurityOfficerReview,
    Field(discriminator="role"),
]

_review_adapter: TypeAdapter[StakeholderReview] = TypeAdapter(StakeholderReview)

# Review slot attribute on StakeholderReviews for each role
_SLOTS: dict[StakeholderRole, str] = {
    StakeholderRole.PRODUCT_DIRECTOR: "product_director",
    StakeholderRole.ARCHITECT: "architect",
    StakeholderRole.UI_UX_EXPERT: "ui_ux_expert",
    StakeholderRole.SECURITY_OFFICER: "security_officer",
}


def build_review(
    role: StakeholderRole,
    approved: bool,
    notes: str,
    fields: dict[str, Any] | None = None,
) -> StakeholderReview:
    """Build the review variant for ``role``.

    Raises:
        pydantic.ValidationError: If ``fields`` contains keys that do not
            belong to the role's variant.
    """
    payload = dict(fields or {})
    payload.update(role=role.value, approved=approved, notes=notes, reviewed_at=utc_now())
    return _review_adapter.validate_python(payload)


def review_fields(review: StakeholderReview) -> dict[str, Any]:
    """Role-specific fields of a review, without the shared ones."""
    return review.model_dump(exclude={"role", "approved", "notes", "reviewed_at"}, exclude_none=True)


class StakeholderReviews(BaseModel):
    """One review slot per stakeholder role. Slots always exist."""

    product_director: ProductDirectorReview = Field(default_factory=ProductDirectorReview)
    architect: ArchitectReview = Field(default_factory=ArchitectReview)
    ui_ux_expert: UiUxExpertReview = Field(default_factory=UiUxExpertReview)
    security_officer: SecurityOfficerReview = Field(default_factory=SecurityOfficerReview)

    def get(self, role: StakeholderRole) -> StakeholderReview:
        return getattr(self, _SLOTS[role])

    def put(self, review: StakeholderReview) -> None:
        setattr(self, _SLOTS[StakeholderRole(review.role)], review)


class Transition(BaseModel):
    """Audit record of one status change. Never mutated once appended."""

    model_config = ConfigDict(frozen=True)

    from_status: TaskStatus
    to_status: TaskStatus
    actor: ActorType
    timestamp: str = Field(default_factory=utc_now)
    notes: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class Task(BaseModel):
    """A unit of work inside a feature."""

    task_id: str
    title: str
    description: str = ""
    status: TaskStatus = TaskStatus.PENDING_PRODUCT_DIRECTOR
    order_of_execution: int = 0
    acceptance_criteria: list[AcceptanceCriterion] = Field(default_factory=list)
    test_scenarios: list[TestScenario] = Field(default_factory=list)
    reviews: StakeholderReviews = Field(default_factory=StakeholderReviews)
    transitions: list[Transition] = Field(default_factory=list)
    estimated_hours: float | None = None
    assigned_to: str | None = None
    dependencies: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)


class Repository(BaseModel):
    """A registered repository, resolved under the base repositories folder."""

    repo_name: str
    repo_path: str = ""
    created_at: str = Field(default_factory=utc_now)


class Feature(BaseModel):
    """A feature of a repository, decomposed into tasks."""

    repo_name: str
    feature_slug: str
    feature_name: str
    created_at: str = Field(default_factory=utc_now)
    last_modified: str = Field(default_factory=utc_now)
    total_tasks: int = 0
