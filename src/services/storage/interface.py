"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Run the lifecycle engine against PostgreSQL in production
2. Use in-memory storage for testing
3. Keep business logic decoupled from storage implementation

The interface is intentionally simple - we're not building a full ORM.
Just the operations the goal lifecycle needs, plus ONE atomic
conditional update used for penalty application.
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import Optional
from uuid import UUID

from src.models.goal import Goal, Group, Membership
from src.models.audit import AuditEvent


class EntityStoreInterface(ABC):
    """
    Abstract interface for the entity store (groups, memberships, goals).

    Any storage implementation must implement these methods.
    Every method is a potential suspension point.
    """

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    @abstractmethod
    async def create_group(self, group: Group) -> Group:
        """
        Insert a new group.

        Returns:
            The stored group

        Raises:
            StorageError: If insert fails
        """
        pass

    @abstractmethod
    async def get_group(self, group_id: UUID) -> Optional[Group]:
        """
        Retrieve a group by ID, with its current fund balance.

        Returns:
            The group if found, None otherwise
        """
        pass

    # ------------------------------------------------------------------
    # Memberships
    # ------------------------------------------------------------------

    @abstractmethod
    async def add_membership(self, membership: Membership) -> Membership:
        """
        Link a user to a group.

        Raises:
            NotFoundError: If the group doesn't exist
            DuplicateError: If the user already belongs to a group
        """
        pass

    @abstractmethod
    async def create_group_with_member(
        self,
        group: Group,
        membership: Membership,
    ) -> Group:
        """
        Insert a group and its founding membership together.

        Either both rows are stored or neither is.

        Raises:
            DuplicateError: If the user already belongs to a group
        """
        pass

    @abstractmethod
    async def list_memberships(self, user_id: UUID) -> list[Membership]:
        """
        List a user's memberships, oldest first.

        The first entry is authoritative.
        """
        pass

    # ------------------------------------------------------------------
    # Goals
    # ------------------------------------------------------------------

    @abstractmethod
    async def create_goal(self, goal: Goal) -> Goal:
        """
        Insert a new goal.

        Raises:
            StorageError: If insert fails
        """
        pass

    @abstractmethod
    async def get_goal(self, goal_id: UUID) -> Optional[Goal]:
        """
        Retrieve a goal by ID.

        Returns:
            The goal if found, None otherwise
        """
        pass

    @abstractmethod
    async def list_goals_for_user(self, user_id: UUID) -> list[Goal]:
        """
        List all goals owned by a user.

        Returns:
            Goals sorted by due date ascending
        """
        pass

    @abstractmethod
    async def mark_goal_completed(self, goal_id: UUID) -> bool:
        """
        Set completed=true only if the goal is still pending.

        The check and the write happen as one conditional update.

        Returns:
            True if the update took effect, False if the goal was
            already completed or penalized

        Raises:
            NotFoundError: If the goal doesn't exist
        """
        pass

    @abstractmethod
    async def apply_goal_penalty(self, goal_id: UUID, as_of: date) -> bool:
        """
        Atomically mark a missed goal penalized and credit its group fund.

        The update takes effect only if, at the instant it runs,
        completed=false AND penalized=false AND due_date < as_of.
        Setting penalized=true and incrementing the group's fund_points
        by the goal's penalty_points commit together or not at all.

        Returns:
            True if the penalty was applied, False if the predicate
            no longer held

        Raises:
            NotFoundError: If the goal (or its group) doesn't exist
            StoreUnavailableError: If the backend can't be reached
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one reconciliation pass).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity.

        Args:
            entity_type: Type of entity (e.g., 'goal', 'group')
            entity_id: The entity's ID

        Returns:
            List of events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class StoreUnavailableError(StorageError):
    """Could not reach the storage backend. Safe to retry."""
    pass
