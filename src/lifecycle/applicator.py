"""
Penalty Applicator

Turns a missed goal into a fund credit, at most once per goal, ever.

CRITICAL: The applicator does not trust the classification that made
the caller invoke it. That classification may be stale by the time we
run. The store re-checks the full predicate (still pending, still
overdue) inside the same atomic update that marks the goal and credits
the fund, so repeated or concurrent calls are always safe.
"""

from datetime import date
from typing import Optional
from uuid import UUID

from src.audit import AuditLogger
from src.lifecycle.evaluator import DayLike, as_calendar_day
from src.models.audit import AuditEventBuilder
from src.models.goal import PenaltyOutcome
from src.services.storage import EntityStoreInterface


class PenaltyApplicator:
    """
    Applies penalties through the store's atomic conditional update.

    NotFoundError and StoreUnavailableError propagate to the caller.
    Losing a race is reported as ALREADY_SETTLED, never raised.
    """

    def __init__(
        self,
        store: EntityStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._audit_logger = audit_logger

    async def apply(
        self,
        goal_id: UUID,
        today: DayLike,
        correlation_id: Optional[UUID] = None,
    ) -> PenaltyOutcome:
        """
        Penalize a goal if it is still pending and overdue as of `today`.

        Returns:
            APPLIED if this call marked the goal and credited the fund,
            ALREADY_SETTLED if the goal was completed, penalized, or
            not yet overdue when the update ran
        """
        as_of: date = as_calendar_day(today)
        applied = await self._store.apply_goal_penalty(goal_id, as_of)
        outcome = PenaltyOutcome.APPLIED if applied else PenaltyOutcome.ALREADY_SETTLED

        if self._audit_logger:
            if applied:
                event = AuditEventBuilder.penalty_applied(
                    goal_id=goal_id,
                    as_of=as_of.isoformat(),
                    correlation_id=correlation_id,
                )
            else:
                event = AuditEventBuilder.penalty_already_settled(
                    goal_id=goal_id,
                    as_of=as_of.isoformat(),
                    correlation_id=correlation_id,
                )
            await self._audit_logger.log(event)

        return outcome
