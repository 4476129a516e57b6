"""Database connection management.

Provides an async SQLAlchemy engine and session factory. SQLite (through
aiosqlite) is the default backend; any async SQLAlchemy URL works.

## Configuration

- DATABASE_URL: Async SQLAlchemy URL
- DATABASE_POOL_SIZE / DATABASE_MAX_OVERFLOW: Pool sizing (ignored for SQLite)

## Usage

```python
from summits_auth.database import Database

db = Database("sqlite+aiosqlite:///summits.db")
await db.create_tables()

async with db.session() as session:
    user = await session.get(User, user_id)
```
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from summits_auth.config import Settings
from summits_auth.database.models import Base

logger = logging.getLogger(__name__)


class Database:
    """Async engine plus session factory.

    One instance is created at application startup and shared by the
    storage layer and the database session store.
    """

    def __init__(
        self,
        url: str,
        echo: bool = False,
        pool_size: int = 5,
        max_overflow: int = 10,
    ):
        engine_kwargs: dict[str, Any] = {"echo": echo}
        if url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in url or url.rstrip("/").endswith(":"):
                # A single shared connection, otherwise every checkout sees an empty database
                engine_kwargs["poolclass"] = StaticPool
        else:
            engine_kwargs.update(
                pool_size=pool_size,
                max_overflow=max_overflow,
                pool_pre_ping=True,
            )

        self.engine = create_async_engine(url, **engine_kwargs)
        self._session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> Database:
        """Create the database configured by the application settings."""
        logger.info("Initializing database connection")
        return cls(
            settings.database_url,
            echo=settings.database_echo,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
        )

    async def create_tables(self) -> None:
        """Create all database tables that do not exist yet."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        logger.info("Database tables created")

    async def dispose(self) -> None:
        """Close all pooled connections. Called on application shutdown."""
        logger.info("Closing database connection")
        await self.engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get a database session.

        Transactions are not automatically committed - call commit() explicitly.
        The transaction is rolled back if the block raises.
        """
        session = self._session_factory()
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
