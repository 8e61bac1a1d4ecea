"""
Main Orchestrator for Goal Pact

This module ties together all the components and defines the
flows the presentation layer calls:
1. Reconciliation (observe goals → penalize missed ones → report totals)
2. Goal creation and completion
3. Group creation and joining

DESIGN DECISION: The orchestrator enforces the boundaries:
- A goal is penalized only through PenaltyApplicator
- Nothing is inserted until validation passes
- One failing goal never blocks penalties on the others
- Every step is audited

The presentation layer calls reconcile() (via load_dashboard) on page
load and after every mutation, then renders what comes back.
"""

from datetime import date
from typing import Callable, Optional
from uuid import UUID

import structlog

from src.audit import AuditLogger, create_correlation_id
from src.config import get_settings, validate_all_settings
from src.lifecycle import (
    AccrualAggregator,
    PenaltyApplicator,
    as_calendar_day,
    classify,
    days_until_due,
    total_owed,
)
from src.lifecycle.evaluator import DayLike
from src.models.goal import (
    CompletionOutcome,
    Dashboard,
    DueStatus,
    Goal,
    GoalDraft,
    GoalFailure,
    GoalView,
    Group,
    Membership,
    PenaltyOutcome,
    ReconciliationReport,
    ValidationIssue,
    ValidationResult,
)
from src.services.auth import AuthInterface
from src.services.storage import (
    DuplicateError,
    EntityStoreInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    InMemoryEntityStore,
    NotFoundError,
    PostgresClient,
    PostgresEntityStore,
    StorageError,
    StoreUnavailableError,
)
from src.validation import GoalValidator, ValidationFailedError


logger = structlog.get_logger(__name__)


class GoalLifecycleController:
    """
    Orchestrates the goal lifecycle for one entity store.

    Per-goal state machine:
        PENDING → COMPLETED   (user marks it done)
        PENDING → MISSED      (penalty applied after the due date)
    Both end states are terminal.
    """

    def __init__(
        self,
        store: EntityStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[GoalValidator] = None,
        clock: Optional[Callable[[], date]] = None,
    ):
        self._store = store
        self._audit_logger = audit_logger
        self._validator = validator or GoalValidator()
        self._clock = clock or (lambda: get_settings().app.today())
        self._applicator = PenaltyApplicator(store, audit_logger)
        self._aggregator = AccrualAggregator(store)

    def _today(self, today: Optional[DayLike]) -> date:
        return as_calendar_day(today) if today is not None else self._clock()

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def reconcile(
        self,
        user_id: UUID,
        today: Optional[DayLike] = None,
        correlation_id: Optional[UUID] = None,
    ) -> ReconciliationReport:
        """
        Settle every missed goal for a user and report fresh totals.

        FLOW:
        1. Fix "today" once for the whole pass
        2. Fetch the user's goals
        3. Apply the penalty to each pending goal classified OVERDUE
        4. Re-fetch goals and compute totals

        Per-goal NotFoundError / StoreUnavailableError are collected in
        the report; the remaining goals are still processed. Running it
        again with no state change credits nothing new.
        """
        as_of = self._today(today)
        correlation_id = correlation_id or create_correlation_id()
        report = ReconciliationReport(user_id=user_id, as_of=as_of)

        try:
            goals = await self._store.list_goals_for_user(user_id)
        except StoreUnavailableError as e:
            await self._report_outage("reconcile.fetch_goals", e, correlation_id)
            raise

        for goal in goals:
            if not goal.is_pending or classify(goal, as_of) != DueStatus.OVERDUE:
                continue
            try:
                outcome = await self._applicator.apply(
                    goal.id, as_of, correlation_id=correlation_id
                )
            except StorageError as e:
                report.failures.append(GoalFailure(
                    goal_id=goal.id,
                    error_type=type(e).__name__,
                    message=str(e),
                ))
                if self._audit_logger:
                    await self._audit_logger.log_penalty_failed(
                        goal_id=goal.id,
                        error_type=type(e).__name__,
                        error_message=str(e),
                        correlation_id=correlation_id,
                    )
                continue
            except Exception as e:
                if self._audit_logger:
                    await self._audit_logger.log_error(
                        error_type=type(e).__name__,
                        error_message=str(e),
                        details={"goal_id": str(goal.id), "stage": "apply_penalty"},
                        correlation_id=correlation_id,
                    )
                raise

            if outcome == PenaltyOutcome.APPLIED:
                report.applied.append(goal.id)
            else:
                report.already_settled.append(goal.id)

        try:
            report.goals = await self._store.list_goals_for_user(user_id)
            report.group = await self.get_group_for_user(user_id)
        except StoreUnavailableError as e:
            await self._report_outage("reconcile.refresh", e, correlation_id)
            raise
        report.total_owed = total_owed(report.goals)

        if self._audit_logger:
            await self._audit_logger.log_reconciliation_completed(
                user_id=user_id,
                as_of=as_of.isoformat(),
                applied=len(report.applied),
                failed=len(report.failures),
                total_owed=report.total_owed,
                correlation_id=correlation_id,
            )

        return report

    async def load_dashboard(
        self,
        user_id: UUID,
        today: Optional[DayLike] = None,
    ) -> Dashboard:
        """Reconcile, then shape the result for display."""
        report = await self.reconcile(user_id, today=today)
        views = [
            GoalView(
                goal=goal,
                state=goal.state,
                due_status=classify(goal, report.as_of),
                days_until_due=days_until_due(goal, report.as_of),
            )
            for goal in report.goals
        ]
        return Dashboard(
            user_id=user_id,
            as_of=report.as_of,
            group=report.group,
            goals=views,
            total_owed=report.total_owed,
            failures=report.failures,
        )

    async def total_owed(self, user_id: UUID) -> int:
        return await self._aggregator.total_owed(user_id)

    async def fund_balance(self, group_id: UUID) -> int:
        return await self._aggregator.fund_balance(group_id)

    # ------------------------------------------------------------------
    # Goals
    # ------------------------------------------------------------------

    async def create_goal(
        self,
        user_id: UUID,
        draft: GoalDraft,
        today: Optional[DayLike] = None,
    ) -> Goal:
        """
        Create a pending goal credited to the user's group.

        Raises:
            ValidationFailedError: Nothing was written
        """
        membership = await self.get_membership(user_id)
        result = self._validator.validate_goal(draft, membership, self._today(today))
        if not result.is_valid:
            await self._reject(user_id, result)

        goal = await self._store.create_goal(Goal(
            user_id=user_id,
            group_id=membership.group_id,
            title=draft.title,
            frequency=draft.frequency,
            due_date=draft.due_date,
            penalty_points=draft.penalty_points,
        ))

        if self._audit_logger:
            await self._audit_logger.log_goal_created(
                goal_id=goal.id,
                user_id=user_id,
                title=goal.title,
                penalty_points=goal.penalty_points,
                due_date=goal.due_date.isoformat(),
            )
        return goal

    async def complete_goal(self, user_id: UUID, goal_id: UUID) -> CompletionOutcome:
        """
        Mark a goal completed if it is still pending.

        Never touches `penalized`. If the penalty landed first the
        completion is REJECTED and the goal stays missed.

        Raises:
            NotFoundError: Goal doesn't exist or belongs to someone else
        """
        goal = await self._store.get_goal(goal_id)
        if goal is None or goal.user_id != user_id:
            raise NotFoundError(f"Goal not found: {goal_id}")

        completed = await self._store.mark_goal_completed(goal_id)

        if self._audit_logger:
            if completed:
                await self._audit_logger.log_goal_completed(goal_id, user_id)
            else:
                await self._audit_logger.log_completion_rejected(goal_id, user_id)

        return CompletionOutcome.COMPLETED if completed else CompletionOutcome.REJECTED

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    async def get_membership(self, user_id: UUID) -> Optional[Membership]:
        """The user's authoritative (first) membership, if any."""
        memberships = await self._store.list_memberships(user_id)
        return memberships[0] if memberships else None

    async def get_group_for_user(self, user_id: UUID) -> Optional[Group]:
        membership = await self.get_membership(user_id)
        if membership is None:
            return None
        return await self._store.get_group(membership.group_id)

    async def create_group(self, user_id: UUID, name: str) -> Group:
        """
        Create a group with an empty fund and join it.

        Raises:
            ValidationFailedError: Bad name, or user already in a group
        """
        result = self._validator.validate_group_name(name)
        if result.is_valid and await self.get_membership(user_id) is not None:
            result = _already_in_group()
        if not result.is_valid:
            await self._reject(user_id, result)

        group = Group(name=name, fund_points=0)
        try:
            # The membership check above can race; the store has the final say
            group = await self._store.create_group_with_member(
                group, Membership(user_id=user_id, group_id=group.id)
            )
        except DuplicateError:
            await self._reject(user_id, _already_in_group())

        if self._audit_logger:
            await self._audit_logger.log_group_created(group.id, group.name, user_id)
        return group

    async def join_group(self, user_id: UUID, group_id: UUID) -> Membership:
        """
        Join an existing group by ID. No owner approval is required.

        Raises:
            NotFoundError: No such group
            ValidationFailedError: User already in a group
        """
        if await self._store.get_group(group_id) is None:
            raise NotFoundError(f"Group not found: {group_id}")
        if await self.get_membership(user_id) is not None:
            await self._reject(user_id, _already_in_group())

        try:
            membership = await self._store.add_membership(
                Membership(user_id=user_id, group_id=group_id)
            )
        except DuplicateError:
            await self._reject(user_id, _already_in_group())

        if self._audit_logger:
            await self._audit_logger.log_group_joined(group_id, user_id)
        return membership

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _reject(self, user_id: UUID, result: ValidationResult) -> None:
        if self._audit_logger:
            await self._audit_logger.log_validation_failed(
                user_id=user_id,
                issues=[
                    {"field": i.field, "type": i.issue_type, "message": i.message}
                    for i in result.issues
                ],
            )
        raise ValidationFailedError(result)

    async def _report_outage(
        self,
        operation: str,
        error: Exception,
        correlation_id: UUID,
    ) -> None:
        if self._audit_logger:
            await self._audit_logger.log_store_unavailable(
                operation=operation,
                error_message=str(error),
                correlation_id=correlation_id,
            )


def _already_in_group() -> ValidationResult:
    return ValidationResult(
        is_valid=False,
        issues=[ValidationIssue(
            field="group",
            issue_type="already_member",
            message="You are already in a group.",
            severity="error",
        )],
    )


class DashboardSession:
    """
    Binds the auth collaborator to the controller.

    This is the entry point a UI shell calls on page load.
    """

    def __init__(self, auth: AuthInterface, controller: GoalLifecycleController):
        self._auth = auth
        self._controller = controller

    async def current_dashboard(
        self,
        today: Optional[DayLike] = None,
    ) -> Optional[Dashboard]:
        """
        Dashboard for the signed-in user.

        Returns None when nobody is signed in; the caller should send
        the user to the login page.
        """
        user = await self._auth.get_current_user()
        if user is None:
            return None
        return await self._controller.load_dashboard(user.id, today=today)

    async def sign_out(self) -> None:
        await self._auth.sign_out()


def create_app_components(
    use_database: bool = True,
    use_sheets_audit: bool = True,
) -> tuple[GoalLifecycleController, EntityStoreInterface]:
    """
    Factory function to create all application components.

    Args:
        use_database: Use PostgreSQL. Falls back to the in-memory store
                      when False or when the database isn't configured.
                      A configured but unreachable database raises
                      StoreUnavailableError.
        use_sheets_audit: Mirror audit events to Google Sheets when configured.

    Returns:
        (controller, entity_store)
    """
    settings = get_settings()
    store: Optional[EntityStoreInterface] = None
    audit_logger = AuditLogger()  # Local-only logging

    checks = validate_all_settings()
    logger.info(
        "startup_settings_checked",
        database=checks["database"],
        google_sheets=checks["google_sheets"],
        app=checks["app"],
    )

    if use_database and checks["database"]:
        # Configured but unreachable is fatal; a process-local store
        # would lose fund credits and can't serialize across processes
        client = PostgresClient(settings.database)
        client.ensure_schema()
        store = PostgresEntityStore(client)
    elif use_database:
        logger.warning(
            "database_not_configured",
            error=checks.get("database_error"),
            fallback="in_memory",
        )

    if store is None:
        store = InMemoryEntityStore()

    if use_sheets_audit and checks["google_sheets"]:
        try:
            audit_logger = AuditLogger(GoogleSheetsAuditStorage(GoogleSheetsClient()))
        except ValueError as e:
            logger.warning("audit_sheet_not_configured", error=str(e))

    controller = GoalLifecycleController(store=store, audit_logger=audit_logger)
    return controller, store
