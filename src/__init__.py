"""
Goal Pact - Source Package

A goal-accountability engine: users in a shared group set goals with a
penalty weight, and every missed goal credits the group's fund exactly
once.

DESIGN PRINCIPLES:
1. A goal ends either completed or penalized, never both
2. Penalties are applied by conditional updates, never read-modify-write
3. Reconciliation is idempotent and safe to run on every page load
4. Every step must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Goal Pact Team"
