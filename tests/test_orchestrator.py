"""
Flow tests for GoalLifecycleController and DashboardSession.

All flows run against the in-memory store with a fixed "today".
"""

import asyncio
from datetime import date, timedelta
from typing import Optional
from unittest.mock import patch
from uuid import UUID, uuid4

import pytest

from src.audit import AuditLogger
from src.config import AppSettings
from src.lifecycle import PenaltyApplicator
from src.models.audit import AuditEventType
from src.models.goal import (
    CompletionOutcome,
    DueStatus,
    Goal,
    GoalDraft,
    GoalState,
    Group,
    Membership,
    PenaltyOutcome,
    ReconciliationError,
    User,
)
from src.orchestrator import (
    DashboardSession,
    GoalLifecycleController,
    create_app_components,
)
from src.services.auth import AuthInterface
from src.services.storage import (
    DuplicateError,
    InMemoryAuditStorage,
    InMemoryEntityStore,
    NotFoundError,
    PostgresClient,
    PostgresEntityStore,
    StoreUnavailableError,
)
from src.validation import GoalValidator, ValidationFailedError


TODAY = date(2024, 6, 15)
YESTERDAY = TODAY - timedelta(days=1)
TOMORROW = TODAY + timedelta(days=1)


def make_controller(store, audit_storage=None, **settings) -> GoalLifecycleController:
    return GoalLifecycleController(
        store=store,
        audit_logger=AuditLogger(audit_storage) if audit_storage else None,
        validator=GoalValidator(AppSettings(**settings)),
        clock=lambda: TODAY,
    )


async def seed_member(store, fund_points: int = 10):
    """A user who belongs to a group with the given fund."""
    user_id = uuid4()
    group = await store.create_group(Group(name="Crew", fund_points=fund_points))
    await store.add_membership(Membership(user_id=user_id, group_id=group.id))
    return user_id, group


async def seed_goal(store, user_id: UUID, group_id: UUID, **overrides) -> Goal:
    fields = dict(
        user_id=user_id,
        group_id=group_id,
        title="Stretch",
        frequency="daily",
        due_date=YESTERDAY,
        penalty_points=5,
    )
    fields.update(overrides)
    return await store.create_goal(Goal(**fields))


def assert_never_both(goals):
    for goal in goals:
        assert not (goal.completed and goal.penalized)


class TestReconciliation:
    """Reconciliation scenarios."""

    def test_overdue_goal_is_penalized(self):
        """Due yesterday, 5 points, fund 10 → penalized, fund 15, owed 5."""
        async def scenario():
            store = InMemoryEntityStore()
            user_id, group = await seed_member(store, fund_points=10)
            goal = await seed_goal(store, user_id, group.id, penalty_points=5)
            report = await make_controller(store).reconcile(user_id)
            return goal, report, await store.get_goal(goal.id)

        goal, report, stored = asyncio.run(scenario())
        assert stored.penalized is True
        assert report.group.fund_points == 15
        assert report.fund_points == 15
        assert report.total_owed == 5
        assert report.applied == [goal.id]
        assert report.as_of == TODAY

    def test_future_goal_is_untouched(self):
        async def scenario():
            store = InMemoryEntityStore()
            user_id, group = await seed_member(store)
            goal = await seed_goal(store, user_id, group.id, due_date=TOMORROW)
            report = await make_controller(store).reconcile(user_id)
            return report, await store.get_goal(goal.id)

        report, stored = asyncio.run(scenario())
        assert stored.penalized is False
        assert report.total_owed == 0
        assert report.fund_points == 10
        assert report.applied == []

    def test_goal_due_today_is_untouched(self):
        async def scenario():
            store = InMemoryEntityStore()
            user_id, group = await seed_member(store)
            await seed_goal(store, user_id, group.id, due_date=TODAY)
            return await make_controller(store).reconcile(user_id)

        report = asyncio.run(scenario())
        assert report.applied == []
        assert report.total_owed == 0

    def test_completed_late_goal_is_not_penalized(self):
        """Completed today, due yesterday → no penalty."""
        async def scenario():
            store = InMemoryEntityStore()
            user_id, group = await seed_member(store)
            goal = await seed_goal(store, user_id, group.id)
            controller = make_controller(store)
            completion = await controller.complete_goal(user_id, goal.id)
            report = await controller.reconcile(user_id)
            return completion, report, await store.get_goal(goal.id)

        completion, report, stored = asyncio.run(scenario())
        assert completion == CompletionOutcome.COMPLETED
        assert stored.completed is True
        assert stored.penalized is False
        assert report.total_owed == 0
        assert report.fund_points == 10

    def test_reconcile_is_idempotent(self):
        async def scenario():
            store = InMemoryEntityStore()
            user_id, group = await seed_member(store, fund_points=0)
            await seed_goal(store, user_id, group.id, penalty_points=4)
            await seed_goal(store, user_id, group.id, penalty_points=6)
            controller = make_controller(store)
            first = await controller.reconcile(user_id)
            second = await controller.reconcile(user_id)
            return first, second

        first, second = asyncio.run(scenario())
        assert len(first.applied) == 2
        assert second.applied == []
        assert first.total_owed == second.total_owed == 10
        assert first.fund_points == second.fund_points == 10

    def test_user_without_goals_owes_nothing(self):
        async def scenario():
            store = InMemoryEntityStore()
            user_id, _ = await seed_member(store)
            return await make_controller(store).reconcile(user_id)

        report = asyncio.run(scenario())
        assert report.goals == []
        assert report.total_owed == 0

    def test_goals_are_sorted_by_due_date(self):
        async def scenario():
            store = InMemoryEntityStore()
            user_id, group = await seed_member(store)
            for offset in (3, -2, 1):
                await seed_goal(
                    store, user_id, group.id, due_date=TODAY + timedelta(days=offset)
                )
            return await make_controller(store).reconcile(user_id)

        report = asyncio.run(scenario())
        due_dates = [g.due_date for g in report.goals]
        assert due_dates == sorted(due_dates)

    def test_today_is_fixed_once_per_pass(self):
        """The clock is read once, even with many goals."""
        calls = []

        def clock():
            calls.append(1)
            return TODAY

        async def scenario():
            store = InMemoryEntityStore()
            user_id, group = await seed_member(store)
            for _ in range(3):
                await seed_goal(store, user_id, group.id)
            controller = GoalLifecycleController(store=store, clock=clock)
            return await controller.reconcile(user_id)

        report = asyncio.run(scenario())
        assert len(report.applied) == 3
        assert len(calls) == 1

    def test_explicit_today_overrides_clock(self):
        async def scenario():
            store = InMemoryEntityStore()
            user_id, group = await seed_member(store)
            await seed_goal(store, user_id, group.id, due_date=TOMORROW)
            controller = make_controller(store)
            return await controller.reconcile(user_id, today=TOMORROW + timedelta(days=1))

        report = asyncio.run(scenario())
        assert report.total_owed == 5

    def test_fund_is_shared_across_members(self):
        async def scenario():
            store = InMemoryEntityStore()
            alice, group = await seed_member(store, fund_points=0)
            bob = uuid4()
            await store.add_membership(Membership(user_id=bob, group_id=group.id))
            await seed_goal(store, alice, group.id, penalty_points=3)
            await seed_goal(store, bob, group.id, penalty_points=4)
            controller = make_controller(store)
            alice_report = await controller.reconcile(alice)
            bob_report = await controller.reconcile(bob)
            return alice_report, bob_report

        alice_report, bob_report = asyncio.run(scenario())
        assert alice_report.total_owed == 3
        assert bob_report.total_owed == 4
        assert bob_report.fund_points == 7

    def test_reconcile_is_audited(self):
        async def scenario():
            store = InMemoryEntityStore()
            audit_storage = InMemoryAuditStorage()
            user_id, group = await seed_member(store)
            await seed_goal(store, user_id, group.id)
            await make_controller(store, audit_storage).reconcile(user_id)
            return audit_storage

        audit_storage = asyncio.run(scenario())
        types = [e.event_type for e in audit_storage.events]
        assert AuditEventType.PENALTY_APPLIED in types
        assert types[-1] == AuditEventType.RECONCILIATION_COMPLETED
        # One pass shares one correlation id
        assert len({e.correlation_id for e in audit_storage.events}) == 1


class FlakyStore(InMemoryEntityStore):
    """Fails penalty application for selected goals."""

    def __init__(self):
        super().__init__()
        self.unavailable_for: set[UUID] = set()
        self.fail_listing = False

    async def apply_goal_penalty(self, goal_id, as_of):
        if goal_id in self.unavailable_for:
            raise StoreUnavailableError("connection reset by peer")
        return await super().apply_goal_penalty(goal_id, as_of)

    async def list_goals_for_user(self, user_id):
        if self.fail_listing:
            raise StoreUnavailableError("database is down")
        return await super().list_goals_for_user(user_id)


class TestReconciliationFailures:
    """Per-goal failures are collected without aborting the batch."""

    def test_unavailable_goal_does_not_block_others(self):
        async def scenario():
            store = FlakyStore()
            audit_storage = InMemoryAuditStorage()
            user_id, group = await seed_member(store, fund_points=0)
            broken = await seed_goal(store, user_id, group.id, penalty_points=2)
            healthy = await seed_goal(store, user_id, group.id, penalty_points=3)
            store.unavailable_for.add(broken.id)
            report = await make_controller(store, audit_storage).reconcile(user_id)
            return broken, healthy, report, audit_storage

        broken, healthy, report, audit_storage = asyncio.run(scenario())
        assert report.applied == [healthy.id]
        assert [f.goal_id for f in report.failures] == [broken.id]
        assert report.failures[0].error_type == "StoreUnavailableError"
        assert report.total_owed == 3
        assert report.fund_points == 3
        assert any(
            e.event_type == AuditEventType.PENALTY_FAILED for e in audit_storage.events
        )
        with pytest.raises(ReconciliationError):
            report.raise_for_failures()

    def test_retry_after_outage_settles_remaining_goal(self):
        async def scenario():
            store = FlakyStore()
            user_id, group = await seed_member(store, fund_points=0)
            goal = await seed_goal(store, user_id, group.id, penalty_points=2)
            store.unavailable_for.add(goal.id)
            controller = make_controller(store)
            first = await controller.reconcile(user_id)
            store.unavailable_for.clear()
            second = await controller.reconcile(user_id)
            return first, second

        first, second = asyncio.run(scenario())
        assert first.has_failures and first.total_owed == 0
        assert not second.has_failures and second.total_owed == 2
        assert second.fund_points == 2

    def test_missing_group_is_reported_as_not_found(self):
        async def scenario():
            store = InMemoryEntityStore()
            user_id, group = await seed_member(store)
            orphan = await seed_goal(store, user_id, uuid4())
            report = await make_controller(store).reconcile(user_id)
            return orphan, report, await store.get_goal(orphan.id)

        orphan, report, stored = asyncio.run(scenario())
        assert report.failures[0].goal_id == orphan.id
        assert report.failures[0].error_type == "NotFoundError"
        # Nothing half-applied
        assert stored.penalized is False

    def test_store_outage_on_fetch_propagates(self):
        audit_storage = InMemoryAuditStorage()

        async def scenario():
            store = FlakyStore()
            user_id, _ = await seed_member(store)
            store.fail_listing = True
            await make_controller(store, audit_storage).reconcile(user_id)

        with pytest.raises(StoreUnavailableError):
            asyncio.run(scenario())
        assert audit_storage.events[-1].event_type == AuditEventType.STORE_UNAVAILABLE


class TestCompletion:
    """Completion vs. penalty ordering."""

    def test_completion_after_penalty_is_rejected(self):
        async def scenario():
            store = InMemoryEntityStore()
            user_id, group = await seed_member(store)
            goal = await seed_goal(store, user_id, group.id)
            controller = make_controller(store)
            await controller.reconcile(user_id)
            outcome = await controller.complete_goal(user_id, goal.id)
            return outcome, await store.get_goal(goal.id)

        outcome, stored = asyncio.run(scenario())
        assert outcome == CompletionOutcome.REJECTED
        assert stored.state == GoalState.MISSED

    def test_completing_twice_is_rejected(self):
        async def scenario():
            store = InMemoryEntityStore()
            user_id, group = await seed_member(store)
            goal = await seed_goal(store, user_id, group.id, due_date=TOMORROW)
            controller = make_controller(store)
            first = await controller.complete_goal(user_id, goal.id)
            second = await controller.complete_goal(user_id, goal.id)
            return first, second

        first, second = asyncio.run(scenario())
        assert first == CompletionOutcome.COMPLETED
        assert second == CompletionOutcome.REJECTED

    def test_concurrent_complete_and_penalty_never_both(self):
        async def scenario():
            store = InMemoryEntityStore()
            user_id, group = await seed_member(store, fund_points=0)
            goal = await seed_goal(store, user_id, group.id, penalty_points=5)
            controller = make_controller(store)
            completion, penalty = await asyncio.gather(
                controller.complete_goal(user_id, goal.id),
                PenaltyApplicator(store).apply(goal.id, TODAY),
            )
            return completion, penalty, await store.get_goal(goal.id), await store.get_group(group.id)

        completion, penalty, stored, group = asyncio.run(scenario())
        completed_won = completion == CompletionOutcome.COMPLETED
        penalty_won = penalty == PenaltyOutcome.APPLIED
        assert completed_won != penalty_won
        assert_never_both([stored])
        assert group.fund_points == (5 if penalty_won else 0)

    def test_cannot_complete_someone_elses_goal(self):
        async def scenario():
            store = InMemoryEntityStore()
            user_id, group = await seed_member(store)
            goal = await seed_goal(store, user_id, group.id)
            await make_controller(store).complete_goal(uuid4(), goal.id)

        with pytest.raises(NotFoundError):
            asyncio.run(scenario())

    def test_complete_unknown_goal(self):
        store = InMemoryEntityStore()
        with pytest.raises(NotFoundError):
            asyncio.run(make_controller(store).complete_goal(uuid4(), uuid4()))


class TestGoalCreation:
    """create_goal validation and effects."""

    def test_create_goal_uses_membership_group(self):
        async def scenario():
            store = InMemoryEntityStore()
            user_id, group = await seed_member(store)
            goal = await make_controller(store).create_goal(user_id, GoalDraft(
                title="Journal",
                frequency="daily",
                due_date=TOMORROW,
                penalty_points=2,
            ))
            return group, goal, await store.list_goals_for_user(user_id)

        group, goal, stored = asyncio.run(scenario())
        assert goal.group_id == group.id
        assert goal.state == GoalState.PENDING
        assert [g.id for g in stored] == [goal.id]

    def test_create_goal_without_group_fails(self):
        async def scenario():
            store = InMemoryEntityStore()
            user_id = uuid4()
            try:
                await make_controller(store).create_goal(user_id, GoalDraft(
                    title="Journal",
                    frequency="daily",
                    due_date=TOMORROW,
                    penalty_points=2,
                ))
            except ValidationFailedError as e:
                return e, await store.list_goals_for_user(user_id)

        error, stored = asyncio.run(scenario())
        assert stored == []
        assert any(i.issue_type == "no_group" for i in error.result.issues)
        assert "Join or create a group first." in str(error)

    def test_create_goal_rejects_bad_penalty(self):
        async def scenario():
            store = InMemoryEntityStore()
            audit_storage = InMemoryAuditStorage()
            user_id, _ = await seed_member(store)
            try:
                await make_controller(store, audit_storage).create_goal(
                    user_id,
                    GoalDraft(title="Journal", frequency="daily",
                              due_date=TOMORROW, penalty_points=0),
                )
            except ValidationFailedError as e:
                return e, await store.list_goals_for_user(user_id), audit_storage

        error, stored, audit_storage = asyncio.run(scenario())
        assert stored == []
        assert [i.field for i in error.result.issues] == ["penalty_points"]
        assert audit_storage.events[-1].event_type == AuditEventType.VALIDATION_FAILED


class TestGroups:
    """Group creation and joining."""

    def test_create_group_joins_creator(self):
        async def scenario():
            store = InMemoryEntityStore()
            controller = make_controller(store)
            user_id = uuid4()
            group = await controller.create_group(user_id, "  Book club  ")
            return group, await controller.get_group_for_user(user_id)

        group, found = asyncio.run(scenario())
        assert group.name == "Book club"
        assert group.fund_points == 0
        assert found.id == group.id

    def test_join_group(self):
        async def scenario():
            store = InMemoryEntityStore()
            controller = make_controller(store)
            owner, joiner = uuid4(), uuid4()
            group = await controller.create_group(owner, "Runners")
            membership = await controller.join_group(joiner, group.id)
            return group, membership

        group, membership = asyncio.run(scenario())
        assert membership.group_id == group.id

    def test_join_unknown_group(self):
        store = InMemoryEntityStore()
        with pytest.raises(NotFoundError):
            asyncio.run(make_controller(store).join_group(uuid4(), uuid4()))

    def test_second_group_is_rejected(self):
        async def scenario():
            store = InMemoryEntityStore()
            controller = make_controller(store)
            user_id = uuid4()
            await controller.create_group(user_id, "First")
            other = await controller.create_group(uuid4(), "Second")
            await controller.join_group(user_id, other.id)

        with pytest.raises(ValidationFailedError, match="already in a group"):
            asyncio.run(scenario())

    def test_empty_group_name_is_rejected(self):
        store = InMemoryEntityStore()
        with pytest.raises(ValidationFailedError):
            asyncio.run(make_controller(store).create_group(uuid4(), "   "))


class StaleMembershipStore(InMemoryEntityStore):
    """Hides memberships from reads, as if another request hadn't committed yet."""

    async def list_memberships(self, user_id):
        return []

    async def memberships_of(self, user_id):
        return await super().list_memberships(user_id)


class TestGroupMembershipRaces:
    """The store, not the pre-check, decides who is already in a group."""

    def test_racing_create_group_is_rejected_without_orphan(self):
        async def scenario():
            store = StaleMembershipStore()
            controller = make_controller(store)
            user_id = uuid4()
            first = await controller.create_group(user_id, "First")
            with pytest.raises(ValidationFailedError, match="already in a group"):
                await controller.create_group(user_id, "Second")
            return first, await store.memberships_of(user_id)

        first, memberships = asyncio.run(scenario())
        assert [m.group_id for m in memberships] == [first.id]

    def test_racing_join_group_is_rejected(self):
        async def scenario():
            store = StaleMembershipStore()
            audit_storage = InMemoryAuditStorage()
            controller = make_controller(store, audit_storage)
            user_id = uuid4()
            first = await controller.create_group(user_id, "First")
            other = await controller.create_group(uuid4(), "Other")
            with pytest.raises(ValidationFailedError):
                await controller.join_group(user_id, other.id)
            return first, await store.memberships_of(user_id), audit_storage

        first, memberships, audit_storage = asyncio.run(scenario())
        assert [m.group_id for m in memberships] == [first.id]
        assert audit_storage.events[-1].event_type == AuditEventType.VALIDATION_FAILED

    def test_store_rejects_duplicate_directly(self):
        """Without the controller, the store raises DuplicateError itself."""
        async def scenario():
            store = InMemoryEntityStore()
            user_id, _ = await seed_member(store)
            other = await store.create_group(Group(name="Other"))
            await store.add_membership(Membership(user_id=user_id, group_id=other.id))

        with pytest.raises(DuplicateError):
            asyncio.run(scenario())


class FakeAuth(AuthInterface):
    def __init__(self, user: Optional[User]):
        self.user = user

    async def get_current_user(self) -> Optional[User]:
        return self.user

    async def sign_out(self) -> None:
        self.user = None


class TestDashboardSession:
    """The page-load entry point."""

    def test_signed_out_user_gets_no_dashboard(self):
        session = DashboardSession(FakeAuth(None), make_controller(InMemoryEntityStore()))
        assert asyncio.run(session.current_dashboard()) is None

    def test_dashboard_reflects_reconciled_state(self):
        async def scenario():
            store = InMemoryEntityStore()
            user_id, group = await seed_member(store, fund_points=10)
            await seed_goal(store, user_id, group.id, title="Missed", due_date=YESTERDAY)
            await seed_goal(store, user_id, group.id, title="Upcoming", due_date=TOMORROW)
            auth = FakeAuth(User(id=user_id, email="sam@example.com"))
            session = DashboardSession(auth, make_controller(store))
            dashboard = await session.current_dashboard()
            await session.sign_out()
            after = await session.current_dashboard()
            return dashboard, after

        dashboard, after = asyncio.run(scenario())
        assert dashboard.has_group
        assert dashboard.total_owed == 5
        assert dashboard.group.fund_points == 15
        missed, upcoming = dashboard.goals
        assert missed.state == GoalState.MISSED
        assert missed.can_complete is False
        assert upcoming.due_status == DueStatus.ON_TIME
        assert upcoming.days_until_due == 1
        assert upcoming.can_complete is True
        assert after is None

    def test_dashboard_without_group(self):
        async def scenario():
            store = InMemoryEntityStore()
            user_id = uuid4()
            return await make_controller(store).load_dashboard(user_id)

        dashboard = asyncio.run(scenario())
        assert dashboard.has_group is False
        assert dashboard.goals == []


class TestAppComponents:
    """The component factory."""

    def test_falls_back_to_memory_store(self):
        controller, store = create_app_components(
            use_database=False, use_sheets_audit=False
        )
        assert isinstance(store, InMemoryEntityStore)
        assert isinstance(controller, GoalLifecycleController)

    def test_unconfigured_database_falls_back_to_memory_store(self, monkeypatch):
        for name in ("DATABASE_HOST", "DATABASE_NAME", "DATABASE_USER"):
            monkeypatch.delenv(name, raising=False)

        _, store = create_app_components(use_database=True, use_sheets_audit=False)

        assert isinstance(store, InMemoryEntityStore)

    def test_unreachable_database_is_not_replaced(self, monkeypatch):
        """A configured database that can't be reached must fail loudly."""
        monkeypatch.setenv("DATABASE_HOST", "db.internal")
        monkeypatch.setenv("DATABASE_NAME", "goals")
        monkeypatch.setenv("DATABASE_USER", "pact")

        with patch.object(
            PostgresClient,
            "ensure_schema",
            side_effect=StoreUnavailableError("db down"),
        ):
            with pytest.raises(StoreUnavailableError, match="db down"):
                create_app_components(use_database=True, use_sheets_audit=False)

    def test_reachable_database_is_used(self, monkeypatch):
        monkeypatch.setenv("DATABASE_HOST", "db.internal")
        monkeypatch.setenv("DATABASE_NAME", "goals")
        monkeypatch.setenv("DATABASE_USER", "pact")

        with patch.object(PostgresClient, "ensure_schema") as ensure_schema:
            _, store = create_app_components(use_database=True, use_sheets_audit=False)

        ensure_schema.assert_called_once()
        assert isinstance(store, PostgresEntityStore)
