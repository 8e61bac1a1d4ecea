"""Auth collaborator package."""

from src.services.auth.interface import AuthInterface

__all__ = ["AuthInterface"]
