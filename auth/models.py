"""This module re-exports the auth-related models from the database package.
"""

from database.models import AuthSession, User  # noqa: F401

__all__ = ["AuthSession", "User"]
