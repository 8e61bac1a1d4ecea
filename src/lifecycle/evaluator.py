"""
Due-Date Evaluator

Pure functions that classify a goal against a calendar day.

DESIGN DECISION: "today" is always passed in. Nothing here reads
a clock, so a reconciliation pass that fixes today once gets the
same answer for every goal, and tests can pick any day they like.
"""

from datetime import date, datetime
from typing import Union

from src.models.goal import DueStatus, Goal


DayLike = Union[date, datetime]


def as_calendar_day(value: DayLike) -> date:
    """Truncate a datetime to its calendar date. Dates pass through."""
    if isinstance(value, datetime):
        return value.date()
    return value


def classify(goal: Goal, today: DayLike) -> DueStatus:
    """
    Classify a goal's due date relative to `today`.

    A goal is OVERDUE iff its due date is strictly before today.
    Completion and penalty flags are ignored; callers decide whether
    a classification matters for a settled goal.
    """
    day = as_calendar_day(today)
    if goal.due_date < day:
        return DueStatus.OVERDUE
    if goal.due_date == day:
        return DueStatus.DUE_TODAY
    return DueStatus.ON_TIME


def is_overdue(goal: Goal, today: DayLike) -> bool:
    return classify(goal, today) == DueStatus.OVERDUE


def days_until_due(goal: Goal, today: DayLike) -> int:
    """Days left until the due date (negative once overdue)."""
    return (goal.due_date - as_calendar_day(today)).days
