"""
Core Data Models for Goal Pact

These models define the strict schemas for everything the lifecycle
engine reads from and writes to the entity store.
They are designed to:
1. Enforce the goal invariants at runtime
2. Provide clear validation error messages
3. Be serializable for storage and logging

CRITICAL: A goal is never both completed and penalized.
Any row that claims otherwise is rejected when loaded.
"""

from datetime import date, datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class GoalState(str, Enum):
    """
    Lifecycle state of a goal.

    PENDING is the only non-terminal state.
    There is no transition out of COMPLETED or MISSED.
    """
    PENDING = "pending"
    COMPLETED = "completed"
    MISSED = "missed"


class DueStatus(str, Enum):
    """Due-date classification of a goal relative to a calendar day."""
    ON_TIME = "on_time"
    DUE_TODAY = "due_today"  # Still on time, last day
    OVERDUE = "overdue"


class PenaltyOutcome(str, Enum):
    """
    Result of a penalty application attempt.

    ALREADY_SETTLED is the expected outcome of a benign race,
    not an error.
    """
    APPLIED = "applied"
    ALREADY_SETTLED = "already_settled"


class CompletionOutcome(str, Enum):
    """Result of a "mark completed" attempt."""
    COMPLETED = "completed"
    REJECTED = "rejected"  # Goal was already completed or missed


# =============================================================================
# ENTITIES
# =============================================================================

class User(BaseModel):
    """
    A signed-in user, as issued by the auth collaborator.

    The lifecycle engine only ever needs the id.
    """

    id: UUID
    email: Optional[str] = None
    username: Optional[str] = None


class Group(BaseModel):
    """
    A shared group whose fund collects every penalty its members incur.

    DESIGN DECISION: fund_points is an append-only running total.
    It is credited by penalty application and never recomputed
    from goal history.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique group ID (shared with friends to join)"
    )
    name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Group display name"
    )
    fund_points: int = Field(
        default=0,
        ge=0,
        description="Running total of penalty credits"
    )
    created_at: datetime = Field(
        default_factory=datetime.utcnow
    )


class Membership(BaseModel):
    """Links a user to the group whose fund their penalties credit."""

    user_id: UUID
    group_id: UUID
    joined_at: datetime = Field(
        default_factory=datetime.utcnow
    )


class GoalDraft(BaseModel):
    """
    User-supplied fields for a new goal.

    Only structural checks happen here. Business rules (positive
    penalty, group membership) are checked by GoalValidator so the
    user gets every issue at once.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = ""
    frequency: str = ""
    due_date: Optional[date] = None
    penalty_points: int = 0


class Goal(BaseModel):
    """
    A user-owned commitment with a due date and a penalty weight.

    Lifecycle:
    - Created with completed=False, penalized=False
    - Either the user marks it completed (while still pending)
    - Or the penalty applicator marks it penalized (while pending and overdue)
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique goal ID"
    )
    user_id: UUID = Field(
        ...,
        description="Owner of the goal"
    )
    group_id: UUID = Field(
        ...,
        description="Group whose fund is credited if the goal is missed"
    )
    title: str = Field(
        ...,
        min_length=1,
        max_length=200
    )
    frequency: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Free-form recurrence label (not scheduled)"
    )
    due_date: date = Field(
        ...,
        description="Calendar due date, no time component"
    )
    penalty_points: int = Field(
        ...,
        gt=0,
        description="Points credited to the group fund when missed"
    )
    completed: bool = False
    penalized: bool = False
    created_at: datetime = Field(
        default_factory=datetime.utcnow
    )

    @model_validator(mode='after')
    def validate_terminal_flags(self) -> 'Goal':
        """A goal cannot be both completed and missed."""
        if self.completed and self.penalized:
            raise ValueError("Goal cannot be both completed and penalized")
        return self

    @property
    def state(self) -> GoalState:
        if self.completed:
            return GoalState.COMPLETED
        if self.penalized:
            return GoalState.MISSED
        return GoalState.PENDING

    @property
    def is_pending(self) -> bool:
        return self.state == GoalState.PENDING


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'no_group')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = Field(
        default=None,
        description="Suggested fix if available"
    )


class ValidationResult(BaseModel):
    """Result of validating a goal draft or group form."""

    validated_at: datetime = Field(
        default_factory=datetime.utcnow
    )
    is_valid: bool
    issues: list[ValidationIssue] = Field(
        default_factory=list,
        description="All validation issues found"
    )

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")


# =============================================================================
# RECONCILIATION MODELS
# =============================================================================

class GoalFailure(BaseModel):
    """A goal whose penalty could not be applied during reconciliation."""

    goal_id: UUID
    error_type: str = Field(
        ...,
        description="Exception class name (e.g., 'NotFoundError')"
    )
    message: str


class ReconciliationReport(BaseModel):
    """
    Outcome of one reconciliation pass for a user.

    The pass is not all-or-nothing: goals that failed are listed in
    `failures` while every other goal was still processed.
    """

    user_id: UUID
    as_of: date = Field(
        ...,
        description="The single 'today' used for the whole pass"
    )
    goals: list[Goal] = Field(
        default_factory=list,
        description="Refreshed goals, due date ascending"
    )
    applied: list[UUID] = Field(default_factory=list)
    already_settled: list[UUID] = Field(default_factory=list)
    failures: list[GoalFailure] = Field(default_factory=list)
    total_owed: int = Field(default=0, ge=0)
    group: Optional[Group] = None

    @property
    def fund_points(self) -> Optional[int]:
        return self.group.fund_points if self.group else None

    @property
    def has_failures(self) -> bool:
        return len(self.failures) > 0

    def raise_for_failures(self) -> None:
        """Raise ReconciliationError if any goal failed."""
        if self.failures:
            raise ReconciliationError(self.failures)


class ReconciliationError(Exception):
    """One or more goals could not be settled during reconciliation."""

    def __init__(self, failures: list[GoalFailure]):
        self.failures = failures
        summary = ", ".join(f"{f.goal_id}: {f.error_type}" for f in failures)
        super().__init__(f"{len(failures)} goal(s) failed to settle ({summary})")


# =============================================================================
# DISPLAY MODELS
# =============================================================================

class GoalView(BaseModel):
    """A goal with its derived status, ready for display."""

    goal: Goal
    state: GoalState
    due_status: DueStatus
    days_until_due: int

    @property
    def can_complete(self) -> bool:
        return self.state == GoalState.PENDING


class Dashboard(BaseModel):
    """Everything the dashboard shows after an observation point."""

    user_id: UUID
    as_of: date
    group: Optional[Group] = None
    goals: list[GoalView] = Field(default_factory=list)
    total_owed: int = 0
    failures: list[GoalFailure] = Field(default_factory=list)

    @property
    def has_group(self) -> bool:
        return self.group is not None
