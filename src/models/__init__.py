"""
Data Models Package

This package contains all Pydantic models used by Goal Pact.
All data flowing through the lifecycle engine must conform to these schemas.
"""

from src.models.goal import (
    CompletionOutcome,
    Dashboard,
    DueStatus,
    Goal,
    GoalDraft,
    GoalFailure,
    GoalState,
    GoalView,
    Group,
    Membership,
    PenaltyOutcome,
    ReconciliationError,
    ReconciliationReport,
    User,
    ValidationIssue,
    ValidationResult,
)
from src.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Goal models
    "CompletionOutcome",
    "Dashboard",
    "DueStatus",
    "Goal",
    "GoalDraft",
    "GoalFailure",
    "GoalState",
    "GoalView",
    "Group",
    "Membership",
    "PenaltyOutcome",
    "ReconciliationError",
    "ReconciliationReport",
    "User",
    "ValidationIssue",
    "ValidationResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
