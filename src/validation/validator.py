"""
Goal and Group Validation

DESIGN DECISION: Validation runs BEFORE anything touches the store.
A goal that fails validation is never inserted, so the user can fix
the form and retry without leaving partial state behind.

All issues are collected and reported together rather than stopping
at the first one.

IMPORTANT: Validation NEVER silently fixes issues (beyond stripping
whitespace). It reports them for the user to correct.
"""

from datetime import date
from typing import Optional

from src.config import AppSettings, get_settings
from src.models.goal import (
    GoalDraft,
    Membership,
    ValidationIssue,
    ValidationResult,
)


class ValidationFailedError(Exception):
    """Input rejected before any state was mutated."""

    def __init__(self, result: ValidationResult):
        self.result = result
        messages = "; ".join(
            issue.message for issue in result.issues if issue.severity == "error"
        )
        super().__init__(messages or "Validation failed")


class GoalValidator:
    """Validates goal drafts and group forms."""

    def __init__(self, settings: Optional[AppSettings] = None):
        self._settings = settings or get_settings().app

    def validate_goal(
        self,
        draft: GoalDraft,
        membership: Optional[Membership],
        today: date,
    ) -> ValidationResult:
        """
        Check a goal draft against the business rules.

        Checks:
        - Title and frequency present, title within length limit
        - Penalty points positive and within the configured maximum
        - User belongs to a group (the fund that gets credited)
        - Due date present and not already past (unless allowed)
        """
        issues = []

        if not draft.title:
            issues.append(ValidationIssue(
                field="title",
                issue_type="missing",
                message="Goal title is required",
                severity="error",
            ))
        elif len(draft.title) > self._settings.max_title_length:
            issues.append(ValidationIssue(
                field="title",
                issue_type="too_long",
                message=(
                    f"Goal title must be at most "
                    f"{self._settings.max_title_length} characters"
                ),
                severity="error",
            ))

        if not draft.frequency:
            issues.append(ValidationIssue(
                field="frequency",
                issue_type="missing",
                message="Frequency is required (e.g. 'daily', 'weekly')",
                severity="error",
            ))

        if draft.penalty_points <= 0:
            issues.append(ValidationIssue(
                field="penalty_points",
                issue_type="invalid_value",
                message="Penalty points must be greater than zero",
                severity="error",
            ))
        elif draft.penalty_points > self._settings.max_penalty_points:
            issues.append(ValidationIssue(
                field="penalty_points",
                issue_type="invalid_value",
                message=(
                    f"Penalty points cannot exceed "
                    f"{self._settings.max_penalty_points}"
                ),
                severity="error",
            ))

        if membership is None:
            issues.append(ValidationIssue(
                field="group",
                issue_type="no_group",
                message="Join or create a group first.",
                severity="error",
                suggested_fix="Create a group or paste a group ID to join one",
            ))

        if draft.due_date is None:
            issues.append(ValidationIssue(
                field="due_date",
                issue_type="missing",
                message="Due date is required",
                severity="error",
            ))
        elif draft.due_date < today:
            issues.append(ValidationIssue(
                field="due_date",
                issue_type="past_date",
                message="Due date is in the past; this goal will be penalized immediately",
                severity="warning" if self._settings.allow_past_due_dates else "error",
            ))

        has_errors = any(issue.severity == "error" for issue in issues)
        return ValidationResult(is_valid=not has_errors, issues=issues)

    def validate_group_name(self, name: str) -> ValidationResult:
        """Check a new group's name."""
        issues = []
        name = (name or "").strip()

        if not name:
            issues.append(ValidationIssue(
                field="group_name",
                issue_type="missing",
                message="Group name is required",
                severity="error",
            ))
        elif len(name) > 200:
            issues.append(ValidationIssue(
                field="group_name",
                issue_type="too_long",
                message="Group name must be at most 200 characters",
                severity="error",
            ))

        return ValidationResult(is_valid=not issues, issues=issues)

    @staticmethod
    def get_user_friendly_summary(result: ValidationResult) -> str:
        """One line per issue, ready to show next to the form."""
        if result.is_valid and not result.issues:
            return "Looks good."
        lines = []
        for issue in result.issues:
            prefix = "Error" if issue.severity == "error" else "Note"
            lines.append(f"{prefix}: {issue.message}")
        return "\n".join(lines)
