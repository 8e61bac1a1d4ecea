"""
Audit Logger

DESIGN DECISION: Every goal state change and fund credit is logged.
This provides:
1. Complete traceability of where fund points came from
2. Debugging capability when reconciliation fails
3. Group members can see the history of their fund

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from src.models.audit import AuditEvent, AuditEventBuilder
from src.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence and group visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger(__name__)

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        elif event.severity.value == "debug":
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_group_created(
        self,
        group_id: UUID,
        name: str,
        user_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log group creation."""
        await self.log(AuditEventBuilder.group_created(
            group_id=group_id,
            name=name,
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    async def log_group_joined(
        self,
        group_id: UUID,
        user_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a user joining a group."""
        await self.log(AuditEventBuilder.group_joined(
            group_id=group_id,
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    async def log_goal_created(
        self,
        goal_id: UUID,
        user_id: UUID,
        title: str,
        penalty_points: int,
        due_date: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log goal creation."""
        await self.log(AuditEventBuilder.goal_created(
            goal_id=goal_id,
            user_id=user_id,
            title=title,
            penalty_points=penalty_points,
            due_date=due_date,
            correlation_id=correlation_id,
        ))

    async def log_goal_completed(
        self,
        goal_id: UUID,
        user_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a goal marked completed."""
        await self.log(AuditEventBuilder.goal_completed(
            goal_id=goal_id,
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    async def log_completion_rejected(
        self,
        goal_id: UUID,
        user_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a completion attempt on a settled goal."""
        await self.log(AuditEventBuilder.completion_rejected(
            goal_id=goal_id,
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    async def log_validation_failed(
        self,
        user_id: UUID,
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log validation failure."""
        await self.log(AuditEventBuilder.validation_failed(
            user_id=user_id,
            issues=issues,
            correlation_id=correlation_id,
        ))

    async def log_penalty_failed(
        self,
        goal_id: UUID,
        error_type: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a penalty that could not be applied."""
        await self.log(AuditEventBuilder.penalty_failed(
            goal_id=goal_id,
            error_type=error_type,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_reconciliation_completed(
        self,
        user_id: UUID,
        as_of: str,
        applied: int,
        failed: int,
        total_owed: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log the end of a reconciliation pass."""
        await self.log(AuditEventBuilder.reconciliation_completed(
            user_id=user_id,
            as_of=as_of,
            applied=applied,
            failed=failed,
            total_owed=total_owed,
            correlation_id=correlation_id,
        ))

    async def log_store_unavailable(
        self,
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log entity store outage."""
        await self.log(AuditEventBuilder.store_unavailable(
            operation=operation,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new observation point or user action.
    Pass it through all subsequent operations.
    """
    return uuid4()
