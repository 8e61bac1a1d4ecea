"""
Accrual Aggregator

Derives the totals shown to the user.

- Total owed is recomputed from the user's goals on every observation.
  Goal counts are small, so there is no cache to keep consistent.
- The group fund is read straight from Group.fund_points. It is NEVER
  recomputed from goal history: fund credits are append-only and must
  survive goals being removed or members switching groups.
"""

from typing import Iterable
from uuid import UUID

from src.models.goal import Goal
from src.services.storage import EntityStoreInterface, NotFoundError


def total_owed(goals: Iterable[Goal]) -> int:
    """Sum of penalty points over penalized goals (0 for none)."""
    return sum(goal.penalty_points for goal in goals if goal.penalized)


class AccrualAggregator:
    """Reads per-user and per-group totals from the entity store."""

    def __init__(self, store: EntityStoreInterface):
        self._store = store

    async def total_owed(self, user_id: UUID) -> int:
        goals = await self._store.list_goals_for_user(user_id)
        return total_owed(goals)

    async def fund_balance(self, group_id: UUID) -> int:
        group = await self._store.get_group(group_id)
        if group is None:
            raise NotFoundError(f"Group not found: {group_id}")
        return group.fund_points
