"""Validation package."""

from src.validation.validator import GoalValidator, ValidationFailedError

__all__ = ["GoalValidator", "ValidationFailedError"]
