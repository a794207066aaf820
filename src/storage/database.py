"""
Storage - Database Connection and Session Management

This module handles database connectivity, session management, and health checks.
"""
import json
from typing import Any, AsyncGenerator, Optional
from contextlib import asynccontextmanager
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    AsyncEngine,
    create_async_engine,
    async_sessionmaker
)
from sqlalchemy import text
import structlog

from ..shared.config import DatabaseSettings, get_settings

logger = structlog.get_logger(__name__)


def json_serializer(value: Any) -> str:
    """Encode JSON columns; values JSON has no type for (Decimal, datetime) are stored as strings."""
    return json.dumps(value, default=str)


class DatabaseManager:
    """
    Manages database connections and sessions.
    Implements connection pooling and health checks.
    """

    def __init__(self, settings: Optional[DatabaseSettings] = None):
        self.settings = settings or get_settings().database
        self.engine: Optional[AsyncEngine] = None
        self.session_factory: Optional[async_sessionmaker] = None

    async def initialize(self) -> None:
        """Initialize database connection and session factory."""
        try:
            self.engine = create_async_engine(
                self.settings.get_database_url(),
                echo=self.settings.db_echo,
                pool_size=self.settings.db_pool_size,
                max_overflow=self.settings.db_max_overflow,
                pool_pre_ping=True,  # Validate connections before use
                pool_recycle=3600,   # Recycle connections every hour
                json_serializer=json_serializer,
            )

            self.session_factory = async_sessionmaker(
                bind=self.engine,
                class_=AsyncSession,
                expire_on_commit=False
            )

            await self.health_check()

            logger.info("Database connection initialized successfully")

        except Exception as e:
            logger.error("Failed to initialize database connection", error=str(e))
            raise

    async def health_check(self) -> bool:
        """
        Perform database health check.
        Returns True if database is accessible, False otherwise.
        """
        if not self.engine:
            return False

        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(text("SELECT 1"))
                return result.scalar() == 1
        except Exception as e:
            logger.error("Database health check failed", error=str(e))
            return False

    async def close(self) -> None:
        """Close database connections."""
        if self.engine:
            await self.engine.dispose()
            logger.info("Database connections closed")

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Get database session with automatic cleanup.

        Usage:
            async with db_manager.get_session() as session:
                # Use session here
                pass
        """
        if not self.session_factory:
            raise RuntimeError("Database not initialized. Call initialize() first.")

        async with self.session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()


# Global database manager instance
db_manager = DatabaseManager()


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency function for FastAPI to get database sessions.

    Usage in FastAPI endpoints:
        @router.get("/endpoint")
        async def endpoint(db: AsyncSession = Depends(get_db_session)):
            pass
    """
    async with db_manager.get_session() as session:
        yield session


async def init_database() -> None:
    """Initialize database connection. Call this on application startup."""
    await db_manager.initialize()


async def close_database() -> None:
    """Close database connections. Call this on application shutdown."""
    await db_manager.close()
