"""TodoList authentication: OAuth sign-in and session tokens."""

from todolist_auth.errors import AuthError, AuthErrorKind

__version__ = "0.1.0"

__all__ = ["AuthError", "AuthErrorKind", "__version__"]
