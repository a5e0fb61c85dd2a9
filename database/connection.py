"""Database connection and session management."""
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from config import Settings
from core.exceptions import StoreError
from database.models import Base

logger = structlog.get_logger(__name__)


class Database:
    """
    Lifetime-scoped handle on the engine and its connection pool.

    Created once at process start, handed to every service constructor and
    disposed on shutdown. The engine is built lazily so that constructing the
    handle never opens a connection.
    """

    def __init__(
        self,
        url: str,
        echo: bool = False,
        pool_size: Optional[int] = None,
        max_overflow: Optional[int] = None,
    ):
        """
        Initialize the database handle.

        Args:
            url: Async SQLAlchemy URL (postgresql+asyncpg://, sqlite+aiosqlite://)
            echo: Echo SQL statements
            pool_size: Connection pool size (ignored for SQLite)
            max_overflow: Pool overflow (ignored for SQLite)
        """
        self.url = url
        self.echo = echo
        self.pool_size = pool_size
        self.max_overflow = max_overflow
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        if settings.is_sqlite:
            return cls(settings.database_url, echo=settings.database_echo)
        return cls(
            settings.database_url,
            echo=settings.database_echo,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
        )

    @property
    def engine(self) -> AsyncEngine:
        """
        Get or create the database engine.

        Returns:
            AsyncEngine: SQLAlchemy async engine instance
        """
        if self._engine is None:
            options = {"echo": self.echo}
            if self.pool_size is not None:
                options.update(
                    pool_size=self.pool_size,
                    max_overflow=self.max_overflow or 0,
                    pool_pre_ping=True,  # Verify connections before using
                    pool_recycle=3600,  # Recycle connections after 1 hour
                )
            self._engine = create_async_engine(self.url, **options)
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        """
        Get or create the session factory.

        Returns:
            async_sessionmaker: SQLAlchemy async session factory
        """
        if self._session_factory is None:
            self._session_factory = async_sessionmaker(
                self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
                autoflush=False,
            )
        return self._session_factory

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """
        Open a session inside a single transaction.

        Commits when the block exits normally and rolls back on any exception,
        so every write made in the block lands together or not at all.

        Raises:
            StoreError: If the store fails (the original error is chained)

        Example:
            async with database.transaction() as db:
                db.add(order)
        """
        async with self.session_factory() as session:
            try:
                async with session.begin():
                    yield session
            except SQLAlchemyError as e:
                logger.error(
                    "database_transaction_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise StoreError(f"Database operation failed: {e}", original_error=e) from e

    async def create_all(self) -> None:
        """
        Initialize database tables.

        Creates all tables defined in models if they don't exist.
        """
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        """Close database connections and dispose of the engine."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
