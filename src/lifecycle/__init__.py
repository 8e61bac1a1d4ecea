"""Goal lifecycle package: due-date evaluation, penalties and totals."""

from src.lifecycle.aggregator import AccrualAggregator, total_owed
from src.lifecycle.applicator import PenaltyApplicator
from src.lifecycle.evaluator import (
    as_calendar_day,
    classify,
    days_until_due,
    is_overdue,
)

__all__ = [
    "AccrualAggregator",
    "PenaltyApplicator",
    "as_calendar_day",
    "classify",
    "days_until_due",
    "is_overdue",
    "total_owed",
]
