"""
Database connection and session management for Identity Reconciliation API
This module sets up the async SQLAlchemy engine and the transaction scope
every reconciliation request runs inside. Supports local SQLite/PostgreSQL
and AWS RDS deployments with connection pooling and error handling.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from config import settings
from errors import ReconciliationError, StorageUnavailableError, is_transient_storage_error
from models import Base

# Configure logging
logger = logging.getLogger(__name__)


def _mask_url(database_url: str) -> str:
    if "@" not in database_url:
        return database_url
    return f"{database_url.split('@')[0].split('://')[0]}://[HIDDEN]@{database_url.split('@', 1)[1]}"


def _configure_sqlite(engine: AsyncEngine) -> None:
    """
    Take the write lock when the transaction starts so concurrent
    reconciliations on one SQLite file serialize instead of deadlocking
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # stop the driver from emitting its own deferred BEGIN
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_database_engine(database_url: str) -> AsyncEngine:
    """Create database engine with appropriate settings for environment"""
    if settings.is_sqlite(database_url):
        engine = create_async_engine(
            database_url,
            echo=settings.DEBUG,
            connect_args={"timeout": settings.DB_LOCK_TIMEOUT_SECONDS},
        )
        _configure_sqlite(engine)
        return engine

    if settings.is_lambda_environment():
        # Lambda-optimized settings for RDS Proxy
        return create_async_engine(
            database_url,
            echo=settings.DEBUG,
            isolation_level=settings.DB_ISOLATION_LEVEL,
            pool_pre_ping=True,
            pool_size=1,  # one concurrent execution per Lambda container
            max_overflow=0,
            pool_recycle=3600,
            pool_timeout=10,
            connect_args={
                "command_timeout": 10,
                "server_settings": {
                    "application_name": "identity-reconciliation-lambda",
                }
            }
        )

    return create_async_engine(
        database_url,
        echo=settings.DEBUG,
        isolation_level=settings.DB_ISOLATION_LEVEL,
        pool_pre_ping=True,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        connect_args={
            "server_settings": {
                "application_name": "identity-reconciliation",
            }
        }
    )


class DatabaseManager:
    """
    Database connection manager that handles the async SQLAlchemy engine,
    session creation, and connection lifecycle management
    """

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url or settings.get_active_database_url()
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker] = None

    @property
    def engine(self) -> AsyncEngine:
        """Engine is created on first use so importing this module never connects"""
        if self._engine is None:
            logger.info(f"Initializing database connection to: {_mask_url(self.database_url)}")
            self._engine = create_database_engine(self.database_url)
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker:
        if self._session_factory is None:
            self._session_factory = async_sessionmaker(
                self.engine,
                class_=AsyncSession,
                expire_on_commit=False,  # responses are built from loaded objects
                autoflush=False
            )
        return self._session_factory

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """
        One all-or-nothing unit of work
        Usage:
            async with db_manager.transaction() as session:
                # database operations
        Commits when the block exits normally, rolls back on any exception.
        """
        session = self.session_factory()
        try:
            async with session.begin():
                yield session
        except ReconciliationError:
            raise
        except Exception as e:
            if is_transient_storage_error(e):
                logger.warning(f"Storage unavailable, transaction rolled back: {e}")
                raise StorageUnavailableError(
                    "Database is currently unavailable",
                    details={"reason": type(e).__name__}
                ) from e
            logger.error(f"Database session error: {e}")
            raise
        finally:
            await session.close()

    async def create_tables(self):
        """Create all database tables defined in models"""
        logger.info("Creating database tables...")
        async with self.engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)
        logger.info("Database tables created successfully")

    async def test_connection(self) -> bool:
        """Test database connection"""
        try:
            async with self.engine.connect() as connection:
                await connection.execute(text("SELECT 1"))
            logger.info("Database connection test successful")
            return True
        except Exception as e:
            logger.error(f"Database connection test failed: {e}")
            return False

    async def dispose(self):
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None

# Global database manager instance
db_manager = DatabaseManager()
