"""
Async engine and session facade for progression storage.

Every state change in the engine runs inside `get_transaction()`: the block
commits when it exits cleanly and rolls back on any exception. Services lock
the participant row (`with_for_update=True`) before touching records or the
ledger, so on PostgreSQL two commands for one participant serialize on that
row. SQLite has no row locks; its single writer lock plays the same role and
`SQLITE_BUSY_TIMEOUT_SECONDS` bounds how long a writer waits for it.

A lost connection or lock timeout leaves the transaction as `TransientError`,
which `DatabaseRetryPolicy` retries by re-running the whole command.

>>> async with DatabaseService.get_transaction() as session:
...     participant = await session.get(Participant, pid, with_for_update=True)
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from sqlalchemy import event, text
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from missionflow.core.config.config import Config
from missionflow.core.logging.logger import get_logger
from missionflow.modules.shared.exceptions import TransientError

logger = get_logger(__name__)

SQLITE_BUSY_TIMEOUT_SECONDS = 15


class DatabaseInitializationError(RuntimeError):
    """The engine could not be created from DATABASE_URL."""


class DatabaseNotInitializedError(RuntimeError):
    """A session was requested before `DatabaseService.initialize()`."""


def _sqlite_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    # mission and edge deletes rely on ON DELETE CASCADE
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class DatabaseService:
    """
    Process-wide engine holder.

    - initialize() / shutdown()
    - create_all() / drop_all() for tests and first deployments
    - get_session() for reads, get_transaction() for writes
    - health_check()
    """

    _engine: Optional[AsyncEngine] = None
    _sessions: Optional[async_sessionmaker[AsyncSession]] = None
    _is_postgres: bool = False
    _lock: asyncio.Lock = asyncio.Lock()

    @classmethod
    async def initialize(cls) -> None:
        async with cls._lock:
            if cls._engine is not None:
                return

            url = Config.DATABASE_URL
            if not url:
                raise DatabaseInitializationError("DATABASE_URL is empty")

            is_sqlite = url.startswith("sqlite")
            options: dict[str, Any] = {"echo": Config.DATABASE_ECHO}
            if is_sqlite or Config.is_testing():
                options["poolclass"] = NullPool
            else:
                options.update(
                    pool_size=Config.DATABASE_POOL_SIZE,
                    max_overflow=Config.DATABASE_MAX_OVERFLOW,
                    pool_pre_ping=True,
                )
            if is_sqlite:
                options["connect_args"] = {"timeout": SQLITE_BUSY_TIMEOUT_SECONDS}

            try:
                engine = create_async_engine(url, **options)
            except Exception as exc:
                logger.error("Could not create database engine", exc_info=True)
                raise DatabaseInitializationError(str(exc)) from exc

            if is_sqlite:
                event.listen(engine.sync_engine, "connect", _sqlite_foreign_keys)

            cls._engine = engine
            cls._sessions = async_sessionmaker(engine, expire_on_commit=False)
            cls._is_postgres = engine.dialect.name == "postgresql"
            logger.info(
                "Progression store ready",
                extra={"dialect": engine.dialect.name, "pooled": "poolclass" not in options},
            )

    @classmethod
    async def shutdown(cls) -> None:
        async with cls._lock:
            if cls._engine is None:
                return
            try:
                await cls._engine.dispose()
            finally:
                cls._engine = None
                cls._sessions = None
                cls._is_postgres = False

    @classmethod
    def _require_engine(cls) -> AsyncEngine:
        if cls._engine is None or cls._sessions is None:
            raise DatabaseNotInitializedError(
                "DatabaseService.initialize() must run before any session is opened"
            )
        return cls._engine

    @classmethod
    async def create_all(cls) -> None:
        from missionflow.database.models import Base

        async with cls._require_engine().begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Schema created", extra={"tables": len(Base.metadata.tables)})

    @classmethod
    async def drop_all(cls) -> None:
        from missionflow.database.models import Base

        async with cls._require_engine().begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        logger.warning("Schema dropped")

    @classmethod
    async def health_check(cls) -> bool:
        """True when the store answers `SELECT 1`; never raises."""
        if cls._engine is None:
            return False
        try:
            async with cls._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (OperationalError, DBAPIError) as exc:
            logger.warning("Store health check failed", extra={"error": str(exc)})
            return False
        return True

    @classmethod
    async def _open(cls, session: AsyncSession) -> None:
        if cls._is_postgres:
            await session.execute(
                text(f"SET LOCAL statement_timeout = {Config.DATABASE_STATEMENT_TIMEOUT_MS}")
            )

    @classmethod
    @asynccontextmanager
    async def get_session(cls) -> AsyncGenerator[AsyncSession, None]:
        """Session for reads; nothing is committed."""
        cls._require_engine()
        assert cls._sessions is not None
        async with cls._sessions() as session:
            await cls._open(session)
            yield session

    @classmethod
    @asynccontextmanager
    async def get_transaction(cls) -> AsyncGenerator[AsyncSession, None]:
        """
        Session wrapped in one atomic transaction.

        Raises:
            TransientError: the store dropped the connection or a lock timed out
        """
        cls._require_engine()
        assert cls._sessions is not None
        async with cls._sessions() as session:
            try:
                await cls._open(session)
                yield session
                await session.commit()
            except OperationalError as exc:
                await session.rollback()
                logger.warning("Transaction rolled back on store error", extra={"error": str(exc)})
                raise TransientError("database.transaction", exc) from exc
            except BaseException:
                await session.rollback()
                raise
