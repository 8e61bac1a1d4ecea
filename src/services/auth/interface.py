"""
Abstract Auth Interface

Sign-up, sign-in and session storage belong to an external auth
service. The lifecycle engine only needs a stable user id from it.
"""

from abc import ABC, abstractmethod
from typing import Optional

from src.models.goal import User


class AuthInterface(ABC):
    """Contract for the external auth collaborator."""

    @abstractmethod
    async def get_current_user(self) -> Optional[User]:
        """
        Get the signed-in user.

        Returns:
            The user if a session exists, None otherwise
        """
        pass

    @abstractmethod
    async def sign_out(self) -> None:
        """End the current session."""
        pass
