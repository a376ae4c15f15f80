# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Local store connection management using SQLAlchemy async.

The local store is an embedded SQLite database (aiosqlite driver) that
holds suppression records, queued notifications with their transition
history, and offline sync items. It is the device's source of truth
while offline.

Uses SQLAlchemy 2.0 async API.

Example:
    from guardian_notify.infrastructure.database.connection import LocalDatabase

    database = LocalDatabase(settings.local_db.url)
    await database.create_all()

    async with database.session() as session:
        result = await session.execute(select(QueuedNotificationModel))
        rows = result.scalars().all()
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from guardian_notify.core.errors import GuardianNotifyError
from guardian_notify.infrastructure.database.models import Base

logger = logging.getLogger(__name__)


class DatabaseError(GuardianNotifyError):
    """Raised when a local store operation fails.

    Attributes:
        message: Human-readable error description.
        original_error: The underlying SQLAlchemy or database error.
    """

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        super().__init__(message=message, code="database_error", original_error=original_error)


def _configure_sqlite(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


class LocalDatabase:
    """Owns the async engine and sessionmaker for the local store."""

    def __init__(self, url: str, echo: bool = False) -> None:
        """Create the engine.

        Args:
            url: SQLAlchemy async URL, e.g. ``sqlite+aiosqlite:///./notify.db``.
            echo: Log every SQL statement.

        Raises:
            DatabaseError: If the engine cannot be created.
        """
        self._url = url
        try:
            self._engine: AsyncEngine | None = create_async_engine(url, echo=echo)
        except SQLAlchemyError as e:
            raise DatabaseError("Failed to initialize local database", e) from e

        if self._engine.dialect.name == "sqlite":
            event.listen(self._engine.sync_engine, "connect", _configure_sqlite)

        self._sessionmaker: async_sessionmaker[AsyncSession] = async_sessionmaker(
            bind=self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @property
    def engine(self) -> AsyncEngine:
        """Get the async engine.

        Raises:
            DatabaseError: If the database has been closed.
        """
        if self._engine is None:
            raise DatabaseError("Local database is closed")
        return self._engine

    async def create_all(self) -> None:
        """Create all tables that do not exist yet."""
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            raise DatabaseError("Failed to create local tables", e) from e
        logger.info("Local store ready at %s", self._url)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Get an async session for the local store.

        The session is automatically committed on success and rolled back
        on exception.

        Yields:
            AsyncSession for database operations.

        Raises:
            DatabaseError: If a database operation fails.

        Example:
            async with database.session() as session:
                await session.execute(update(...))
        """
        if self._engine is None:
            raise DatabaseError("Local database is closed")

        async with self._sessionmaker() as session:
            try:
                yield session
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise DatabaseError("Database operation failed", e) from e
            except Exception:
                await session.rollback()
                raise

    async def check_connection(self) -> bool:
        """Check if the local store is reachable.

        Returns:
            True if a trivial query succeeds, False otherwise.
        """
        if self._engine is None:
            return False

        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError:
            return False

    async def close(self) -> None:
        """Dispose of the engine and its connections."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
