"""Database connection management.

Provides async database connection using SQLAlchemy (asyncpg for PostgreSQL,
aiosqlite for local development and tests).

## Configuration

Database connection is configured via environment variables:
- DATABASE_URL: Full connection string
- DATABASE_POOL_SIZE: Connection pool size (default: 5, PostgreSQL only)
- DATABASE_MAX_OVERFLOW: Max overflow connections (default: 10, PostgreSQL only)

## Usage

```python
from todolist_auth.database import get_db, init_db

# Initialize on startup
await init_db()

# Use in request handlers
async with get_db() as session:
    user = await session.get(User, user_id)
```
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from todolist_auth.config import get_settings
from todolist_auth.database.models import Base

logger = logging.getLogger(__name__)

# Global engine and session factory
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


async def init_db(database_url: str | None = None) -> None:
    """Initialize the database connection.

    Creates the async engine and session factory. Should be called
    once on application startup.

    Args:
        database_url: Override for DATABASE_URL (used by tests and the CLI)
    """
    global _engine, _session_factory

    settings = get_settings()
    url = database_url or settings.database_url

    logger.info("Initializing database connection")

    engine_kwargs: dict[str, Any] = {
        "pool_pre_ping": True,  # Verify connections before use
        "echo": settings.database_echo,  # Log SQL in debug mode
    }
    if not url.startswith("sqlite"):
        engine_kwargs["pool_size"] = settings.database_pool_size
        engine_kwargs["max_overflow"] = settings.database_max_overflow

    _engine = create_async_engine(url, **engine_kwargs)

    _session_factory = async_sessionmaker(
        _engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    logger.info("Database connection initialized")


async def close_db() -> None:
    """Close the database connection.

    Should be called on application shutdown.
    """
    global _engine, _session_factory

    if _engine:
        logger.info("Closing database connection")
        await _engine.dispose()
        _engine = None
        _session_factory = None


async def create_tables() -> None:
    """Create all database tables.

    For development/testing only. Production schemas are managed outside
    this package.
    """
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")

    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Database tables created")


@asynccontextmanager
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Get a database session.

    Use as an async context manager:
    ```python
    async with get_db() as session:
        # Use session
        await session.commit()
    ```

    The session is automatically closed when the context exits.
    Transactions are not automatically committed - call commit() explicitly.
    """
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")

    session = _session_factory()
    try:
        yield session
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for database sessions.

    Usage:
    ```python
    @app.post("/api/auth/refresh")
    async def refresh(
        body: RefreshRequest,
        db: AsyncSession = Depends(get_db_session),
    ):
        ...
    ```
    """
    async with get_db() as session:
        yield session
