"""
In-Memory Storage Implementation

Used by the test suite and for running the engine without a database.

The store itself owns the lock that serializes conditional updates,
the same way a database serializes them with row locks. Callers never
lock anything themselves.
"""

import asyncio
from datetime import date
from typing import Optional
from uuid import UUID

from src.models.goal import Goal, Group, Membership
from src.models.audit import AuditEvent
from src.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    EntityStoreInterface,
    NotFoundError,
)


class InMemoryEntityStore(EntityStoreInterface):
    """
    Process-local entity store.

    Rows are copied on the way in and out so callers can't mutate
    stored state behind the store's back.
    """

    def __init__(self):
        self._groups: dict[UUID, Group] = {}
        self._memberships: list[Membership] = []
        self._goals: dict[UUID, Goal] = {}
        self._lock = asyncio.Lock()

    async def create_group(self, group: Group) -> Group:
        async with self._lock:
            if group.id in self._groups:
                raise DuplicateError(f"Group already exists: {group.id}")
            self._groups[group.id] = group.model_copy()
        return group.model_copy()

    async def get_group(self, group_id: UUID) -> Optional[Group]:
        group = self._groups.get(group_id)
        return group.model_copy() if group else None

    async def add_membership(self, membership: Membership) -> Membership:
        async with self._lock:
            if membership.group_id not in self._groups:
                raise NotFoundError(f"Group not found: {membership.group_id}")
            if any(m.user_id == membership.user_id for m in self._memberships):
                raise DuplicateError(
                    f"User {membership.user_id} already belongs to a group"
                )
            self._memberships.append(membership.model_copy())
        return membership.model_copy()

    async def create_group_with_member(
        self,
        group: Group,
        membership: Membership,
    ) -> Group:
        async with self._lock:
            if group.id in self._groups:
                raise DuplicateError(f"Group already exists: {group.id}")
            if any(m.user_id == membership.user_id for m in self._memberships):
                raise DuplicateError(
                    f"User {membership.user_id} already belongs to a group"
                )
            self._groups[group.id] = group.model_copy()
            self._memberships.append(
                membership.model_copy(update={"group_id": group.id})
            )
        return group.model_copy()

    async def list_memberships(self, user_id: UUID) -> list[Membership]:
        memberships = [m.model_copy() for m in self._memberships if m.user_id == user_id]
        memberships.sort(key=lambda m: m.joined_at)
        return memberships

    async def create_goal(self, goal: Goal) -> Goal:
        async with self._lock:
            if goal.id in self._goals:
                raise DuplicateError(f"Goal already exists: {goal.id}")
            self._goals[goal.id] = goal.model_copy()
        return goal.model_copy()

    async def get_goal(self, goal_id: UUID) -> Optional[Goal]:
        goal = self._goals.get(goal_id)
        return goal.model_copy() if goal else None

    async def list_goals_for_user(self, user_id: UUID) -> list[Goal]:
        goals = [g.model_copy() for g in self._goals.values() if g.user_id == user_id]
        goals.sort(key=lambda g: g.due_date)
        return goals

    async def mark_goal_completed(self, goal_id: UUID) -> bool:
        async with self._lock:
            goal = self._goals.get(goal_id)
            if goal is None:
                raise NotFoundError(f"Goal not found: {goal_id}")
            if goal.completed or goal.penalized:
                return False
            # Yield while holding the lock, like a database round-trip would
            await asyncio.sleep(0)
            self._goals[goal_id] = goal.model_copy(update={"completed": True})
            return True

    async def apply_goal_penalty(self, goal_id: UUID, as_of: date) -> bool:
        async with self._lock:
            goal = self._goals.get(goal_id)
            if goal is None:
                raise NotFoundError(f"Goal not found: {goal_id}")
            if goal.completed or goal.penalized or not goal.due_date < as_of:
                return False
            group = self._groups.get(goal.group_id)
            if group is None:
                raise NotFoundError(f"Group not found: {goal.group_id}")

            await asyncio.sleep(0)

            # Both rows are replaced together; nothing above can fail after this
            self._goals[goal_id] = goal.model_copy(update={"penalized": True})
            self._groups[group.id] = group.model_copy(
                update={"fund_points": group.fund_points + goal.penalty_points}
            )
            return True


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only audit log kept in a list."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    @property
    def events(self) -> list[AuditEvent]:
        return list(self._events)

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self._events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
