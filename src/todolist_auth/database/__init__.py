"""Database module for TodoList authentication.

This module provides:
- SQLAlchemy async database connection
- User and refresh-token models
- Repositories implementing the storage contracts used by the auth core
"""

from todolist_auth.database.connection import (
    get_db,
    get_db_session,
    init_db,
    close_db,
    create_tables,
)
from todolist_auth.database.models import (
    Base,
    Provider,
    RefreshToken,
    User,
)
from todolist_auth.database.repositories import (
    RefreshTokenRepository,
    UserRepository,
    hash_token,
)

__all__ = [
    # Connection
    "get_db",
    "get_db_session",
    "init_db",
    "close_db",
    "create_tables",
    # Models
    "Base",
    "Provider",
    "RefreshToken",
    "User",
    # Repositories
    "RefreshTokenRepository",
    "UserRepository",
    "hash_token",
]
