"""
Audit Models for Goal Pact

Every state change in the goal lifecycle is logged for audit purposes.
This provides:
1. Traceability of every penalty credited to a group fund
2. Debugging information when reconciliation fails
3. A history group members can inspect

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Groups
    GROUP_CREATED = "group_created"
    GROUP_JOINED = "group_joined"

    # Goals
    GOAL_CREATED = "goal_created"
    GOAL_COMPLETED = "goal_completed"
    COMPLETION_REJECTED = "completion_rejected"
    VALIDATION_FAILED = "validation_failed"

    # Penalties
    PENALTY_APPLIED = "penalty_applied"
    PENALTY_ALREADY_SETTLED = "penalty_already_settled"
    PENALTY_FAILED = "penalty_failed"

    # Reconciliation
    RECONCILIATION_COMPLETED = "reconciliation_completed"

    # System events
    STORE_UNAVAILABLE = "store_unavailable"
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'goal', 'group')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Who triggered it
    user_id: Optional[UUID] = None

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one reconciliation pass)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "user_id": str(self.user_id) if self.user_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         user_id, correlation_id, description, details_json, error_message,
         is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            str(self.entity_id) if self.entity_id else "",
            str(self.user_id) if self.user_id else "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.goal_created(goal, correlation_id)
        event = AuditEventBuilder.penalty_applied(goal_id, correlation_id)
    """

    @staticmethod
    def group_created(
        group_id: UUID,
        name: str,
        user_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GROUP_CREATED,
            entity_type="group",
            entity_id=group_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Group created: {name}",
            details={"name": name},
            is_user_action=True,
        )

    @staticmethod
    def group_joined(
        group_id: UUID,
        user_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GROUP_JOINED,
            entity_type="group",
            entity_id=group_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description="User joined group",
            is_user_action=True,
        )

    @staticmethod
    def goal_created(
        goal_id: UUID,
        user_id: UUID,
        title: str,
        penalty_points: int,
        due_date: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GOAL_CREATED,
            entity_type="goal",
            entity_id=goal_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Goal created: {title}",
            details={
                "penalty_points": penalty_points,
                "due_date": due_date,
            },
            is_user_action=True,
        )

    @staticmethod
    def goal_completed(
        goal_id: UUID,
        user_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GOAL_COMPLETED,
            entity_type="goal",
            entity_id=goal_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description="Goal marked completed",
            is_user_action=True,
        )

    @staticmethod
    def completion_rejected(
        goal_id: UUID,
        user_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.COMPLETION_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="goal",
            entity_id=goal_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description="Completion rejected: goal already settled",
            is_user_action=True,
        )

    @staticmethod
    def validation_failed(
        user_id: UUID,
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Validation failed with {len(issues)} issues",
            details={"issues": issues},
            is_user_action=True,
        )

    @staticmethod
    def penalty_applied(
        goal_id: UUID,
        as_of: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PENALTY_APPLIED,
            entity_type="goal",
            entity_id=goal_id,
            correlation_id=correlation_id,
            description="Penalty applied and group fund credited",
            details={"as_of": as_of},
        )

    @staticmethod
    def penalty_already_settled(
        goal_id: UUID,
        as_of: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PENALTY_ALREADY_SETTLED,
            severity=AuditSeverity.DEBUG,
            entity_type="goal",
            entity_id=goal_id,
            correlation_id=correlation_id,
            description="Penalty skipped: goal already settled",
            details={"as_of": as_of},
        )

    @staticmethod
    def penalty_failed(
        goal_id: UUID,
        error_type: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PENALTY_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="goal",
            entity_id=goal_id,
            correlation_id=correlation_id,
            description=f"Penalty application failed: {error_type}",
            error_message=error_message,
            details={"error_type": error_type},
        )

    @staticmethod
    def reconciliation_completed(
        user_id: UUID,
        as_of: str,
        applied: int,
        failed: int,
        total_owed: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECONCILIATION_COMPLETED,
            severity=AuditSeverity.WARNING if failed else AuditSeverity.INFO,
            entity_type="user",
            entity_id=user_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=(
                f"Reconciliation as of {as_of}: {applied} penalized, {failed} failed"
            ),
            details={
                "as_of": as_of,
                "applied": applied,
                "failed": failed,
                "total_owed": total_owed,
            },
        )

    @staticmethod
    def store_unavailable(
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORE_UNAVAILABLE,
            severity=AuditSeverity.ERROR,
            description=f"Entity store unavailable during {operation}",
            error_message=error_message,
            details={"operation": operation},
            correlation_id=correlation_id,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
