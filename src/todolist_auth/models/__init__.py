"""Domain models for TodoList authentication."""

from todolist_auth.models.session import IdentityClaim, Session, UserInfo

__all__ = [
    "IdentityClaim",
    "Session",
    "UserInfo",
]
