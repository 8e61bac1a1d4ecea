"""
PostgreSQL Storage Implementation

DESIGN DECISION: PostgreSQL is the production entity store because
penalty application needs a real conditional update:
1. UPDATE ... WHERE <predicate> RETURNING takes a row lock, so two
   sessions racing on the same goal are serialized by the database
2. The goal mark and the fund increment run in one transaction
3. fund_points = fund_points + n is evaluated against the locked row,
   never against a value read earlier by the caller

Correctness never rests on an in-process lock. The thread lock in
PostgresClient only guards the shared connection; callers on other
devices or in other processes get the same guarantee.
"""

import asyncio
import threading
from contextlib import contextmanager
from datetime import date
from typing import Callable, Iterator, Optional, TypeVar
from uuid import UUID

import psycopg2
import structlog
from psycopg2 import errors as pg_errors
from psycopg2.extras import RealDictCursor, register_uuid
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.config import DatabaseSettings, get_settings
from src.models.goal import Goal, Group, Membership
from src.services.storage.interface import (
    DuplicateError,
    EntityStoreInterface,
    NotFoundError,
    StorageError,
    StoreUnavailableError,
)


register_uuid()

logger = structlog.get_logger(__name__)

T = TypeVar("T")


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS groups (
    id UUID PRIMARY KEY,
    name TEXT NOT NULL,
    fund_points INTEGER NOT NULL DEFAULT 0 CHECK (fund_points >= 0),
    created_at TIMESTAMP NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS group_members (
    user_id UUID PRIMARY KEY,
    group_id UUID NOT NULL REFERENCES groups (id),
    joined_at TIMESTAMP NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS goals (
    id UUID PRIMARY KEY,
    user_id UUID NOT NULL,
    group_id UUID NOT NULL REFERENCES groups (id),
    title TEXT NOT NULL,
    frequency TEXT NOT NULL,
    due_date DATE NOT NULL,
    penalty_points INTEGER NOT NULL CHECK (penalty_points > 0),
    completed BOOLEAN NOT NULL DEFAULT FALSE,
    penalized BOOLEAN NOT NULL DEFAULT FALSE,
    created_at TIMESTAMP NOT NULL DEFAULT now(),
    CHECK (NOT (completed AND penalized))
);

CREATE INDEX IF NOT EXISTS goals_user_due_date_idx ON goals (user_id, due_date);
"""

GOAL_COLUMNS = (
    "id, user_id, group_id, title, frequency, due_date, "
    "penalty_points, completed, penalized, created_at"
)

# Shared by every store method that is safe to repeat
_store_retry = retry(
    retry=retry_if_exception_type(StoreUnavailableError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
    reraise=True,
)


class PostgresClient:
    """
    Low-level PostgreSQL connection wrapper.

    Owns a single connection, reopens it after a backend failure and
    translates driver errors into storage errors. Transactions on the
    shared connection are serialized by a thread lock, since the store
    runs them on worker threads.
    """

    def __init__(self, settings: Optional[DatabaseSettings] = None):
        self._settings = settings or get_settings().database
        self._conn = None
        self._lock = threading.Lock()

    @_store_retry
    def connect(self):
        """Open the connection if needed and return it."""
        if self._conn is None or self._conn.closed:
            try:
                self._conn = psycopg2.connect(
                    host=self._settings.host,
                    port=self._settings.port,
                    dbname=self._settings.name,
                    user=self._settings.user,
                    password=self._settings.password,
                    connect_timeout=self._settings.connect_timeout,
                )
            except psycopg2.OperationalError as e:
                raise StoreUnavailableError(f"Failed to connect to PostgreSQL: {e}") from e
        return self._conn

    def reset(self) -> None:
        """Drop the current connection so the next call reconnects."""
        if self._conn is not None:
            try:
                self._conn.close()
            except psycopg2.Error as e:
                logger.debug("postgres_close_failed", error=str(e))
        self._conn = None

    @contextmanager
    def transaction(self) -> Iterator[RealDictCursor]:
        """
        Run a block in one transaction.

        Commits when the block exits normally, rolls back on any exception.
        """
        with self._lock:
            conn = self.connect()
            try:
                with conn:
                    with conn.cursor(cursor_factory=RealDictCursor) as cur:
                        yield cur
            except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
                logger.warning("postgres_connection_lost", error=str(e))
                self.reset()
                raise StoreUnavailableError(f"PostgreSQL unavailable: {e}") from e
            except pg_errors.UniqueViolation as e:
                raise DuplicateError(str(e)) from e
            except pg_errors.ForeignKeyViolation as e:
                raise NotFoundError(str(e)) from e
            except psycopg2.Error as e:
                raise StorageError(f"PostgreSQL error: {e}") from e

    def run(self, work: Callable[..., T], *args) -> T:
        """Call `work(cursor, *args)` inside one transaction (blocking)."""
        with self.transaction() as cur:
            return work(cur, *args)

    async def run_async(self, work: Callable[..., T], *args) -> T:
        """Like run(), on a worker thread so the event loop keeps going."""
        return await asyncio.to_thread(self.run, work, *args)

    def ensure_schema(self) -> None:
        """Create tables and indexes if they don't exist."""
        with self.transaction() as cur:
            cur.execute(SCHEMA_SQL)


class PostgresEntityStore(EntityStoreInterface):
    """
    PostgreSQL implementation of the entity store.

    Every method runs its SQL through PostgresClient.run_async; the
    blocking driver never runs on the event loop.
    """

    def __init__(self, client: Optional[PostgresClient] = None):
        self._client = client or PostgresClient()

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    async def create_group(self, group: Group) -> Group:
        await self._client.run_async(_insert_group, group)
        return group

    async def create_group_with_member(
        self,
        group: Group,
        membership: Membership,
    ) -> Group:
        def insert_both(cur):
            _insert_group(cur, group)
            _insert_membership(cur, membership.model_copy(update={"group_id": group.id}))

        # UniqueViolation on the membership rolls back the group insert too
        await self._client.run_async(insert_both)
        return group

    @_store_retry
    async def get_group(self, group_id: UUID) -> Optional[Group]:
        def select(cur):
            cur.execute(
                "SELECT id, name, fund_points, created_at FROM groups WHERE id = %s",
                (group_id,),
            )
            return cur.fetchone()

        row = await self._client.run_async(select)
        return Group(**row) if row else None

    async def add_membership(self, membership: Membership) -> Membership:
        # PK on user_id and FK on group_id surface as DuplicateError / NotFoundError
        await self._client.run_async(_insert_membership, membership)
        return membership

    @_store_retry
    async def list_memberships(self, user_id: UUID) -> list[Membership]:
        def select(cur):
            cur.execute(
                "SELECT user_id, group_id, joined_at FROM group_members "
                "WHERE user_id = %s ORDER BY joined_at ASC",
                (user_id,),
            )
            return cur.fetchall()

        rows = await self._client.run_async(select)
        return [Membership(**row) for row in rows]

    # ------------------------------------------------------------------
    # Goals
    # ------------------------------------------------------------------

    async def create_goal(self, goal: Goal) -> Goal:
        def insert(cur):
            cur.execute(
                f"INSERT INTO goals ({GOAL_COLUMNS}) "
                "VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)",
                (
                    goal.id,
                    goal.user_id,
                    goal.group_id,
                    goal.title,
                    goal.frequency,
                    goal.due_date,
                    goal.penalty_points,
                    goal.completed,
                    goal.penalized,
                    goal.created_at,
                ),
            )

        await self._client.run_async(insert)
        return goal

    @_store_retry
    async def get_goal(self, goal_id: UUID) -> Optional[Goal]:
        def select(cur):
            cur.execute(f"SELECT {GOAL_COLUMNS} FROM goals WHERE id = %s", (goal_id,))
            return cur.fetchone()

        row = await self._client.run_async(select)
        return Goal(**row) if row else None

    @_store_retry
    async def list_goals_for_user(self, user_id: UUID) -> list[Goal]:
        def select(cur):
            cur.execute(
                f"SELECT {GOAL_COLUMNS} FROM goals "
                "WHERE user_id = %s ORDER BY due_date ASC, created_at ASC",
                (user_id,),
            )
            return cur.fetchall()

        rows = await self._client.run_async(select)
        return [Goal(**row) for row in rows]

    @_store_retry
    async def mark_goal_completed(self, goal_id: UUID) -> bool:
        return await self._client.run_async(_mark_completed, goal_id)

    @_store_retry
    async def apply_goal_penalty(self, goal_id: UUID, as_of: date) -> bool:
        return await self._client.run_async(_apply_penalty, goal_id, as_of)


# ----------------------------------------------------------------------
# Transaction bodies (run on a worker thread with an open cursor)
# ----------------------------------------------------------------------

def _insert_group(cur, group: Group) -> None:
    cur.execute(
        "INSERT INTO groups (id, name, fund_points, created_at) "
        "VALUES (%s, %s, %s, %s)",
        (group.id, group.name, group.fund_points, group.created_at),
    )


def _insert_membership(cur, membership: Membership) -> None:
    cur.execute(
        "INSERT INTO group_members (user_id, group_id, joined_at) "
        "VALUES (%s, %s, %s)",
        (membership.user_id, membership.group_id, membership.joined_at),
    )


def _mark_completed(cur, goal_id: UUID) -> bool:
    cur.execute(
        "UPDATE goals SET completed = TRUE "
        "WHERE id = %s AND completed = FALSE AND penalized = FALSE "
        "RETURNING id",
        (goal_id,),
    )
    if cur.fetchone() is not None:
        return True
    _require_goal(cur, goal_id)
    return False


def _apply_penalty(cur, goal_id: UUID, as_of: date) -> bool:
    cur.execute(
        "UPDATE goals SET penalized = TRUE "
        "WHERE id = %s AND completed = FALSE AND penalized = FALSE "
        "AND due_date < %s "
        "RETURNING group_id, penalty_points",
        (goal_id, as_of),
    )
    marked = cur.fetchone()
    if marked is None:
        _require_goal(cur, goal_id)
        return False

    cur.execute(
        "UPDATE groups SET fund_points = fund_points + %s "
        "WHERE id = %s RETURNING fund_points",
        (marked["penalty_points"], marked["group_id"]),
    )
    if cur.fetchone() is None:
        # Raising inside the transaction rolls back the goal mark
        raise NotFoundError(f"Group not found: {marked['group_id']}")
    return True


def _require_goal(cur, goal_id: UUID) -> None:
    cur.execute("SELECT 1 FROM goals WHERE id = %s", (goal_id,))
    if cur.fetchone() is None:
        raise NotFoundError(f"Goal not found: {goal_id}")
