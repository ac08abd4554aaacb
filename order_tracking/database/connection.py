"""
Database connection management with SQLAlchemy async engine.

This module builds async engines configured for strict isolation, session
factories, and the UnitOfWork transaction scope that every core operation
runs in. The unit of work retries transactions the store aborted because of
a conflicting writer and classifies every other store failure, so callers
never see raw driver exceptions.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Awaitable, Callable, Optional, TypeVar

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.pool import NullPool
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from order_tracking.core.config import Settings, get_settings
from order_tracking.core.errors import (
    ConcurrencyConflictError,
    StoreUnavailableError,
    TrackingError,
)
from order_tracking.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# serialization_failure, deadlock_detected, lock_not_available
RETRYABLE_SQLSTATES = frozenset({"40001", "40P01", "55P03"})

SQLITE_CONFLICT_MARKERS = ("database is locked", "database is busy")

READ_ONLY_OPTION = "order_tracking_read_only"
READ_ONLY_OPTIONS = {READ_ONLY_OPTION: True, "postgresql_readonly": True}


def _convert_database_url_to_async(url: str) -> str:
    """
    Convert PostgreSQL URL to async format.

    Args:
        url: Database connection URL

    Returns:
        Async-compatible database URL with asyncpg driver
    """
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def _install_sqlite_serialization(engine: AsyncEngine) -> None:
    """
    Make SQLite transactions take the write lock when they begin.

    pysqlite's implicit transaction handling is disabled and every writing
    transaction starts with BEGIN IMMEDIATE, so concurrent writers run one at
    a time and a transaction always reads the state left by the previous
    commit. Connections marked read-only start with a deferred BEGIN and
    only take a shared lock.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_implicit_transactions(dbapi_connection, connection_record) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn) -> None:
        if conn.get_execution_options().get(READ_ONLY_OPTION):
            conn.exec_driver_sql("BEGIN")
        else:
            conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_engine(
    database_url: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> AsyncEngine:
    """
    Create async SQLAlchemy engine configured for serializable writes.

    Args:
        database_url: Override for the configured database URL
        settings: Settings to read pool and isolation options from

    Returns:
        Configured async SQLAlchemy engine
    """
    settings = settings or get_settings()
    url = make_url(_convert_database_url_to_async(database_url or settings.database_url))

    if url.get_backend_name() == "sqlite":
        engine = create_async_engine(
            url,
            echo=settings.debug,
            poolclass=NullPool if settings.environment == "test" else None,
            connect_args={"timeout": settings.sqlite_busy_timeout},
        )
        _install_sqlite_serialization(engine)
    else:
        engine = create_async_engine(
            url,
            echo=settings.debug,
            isolation_level=settings.db_isolation_level,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=True,
            pool_recycle=3600,
            connect_args={
                "server_settings": {
                    "application_name": settings.app_name,
                    "lock_timeout": str(settings.db_lock_timeout_ms),
                },
                "command_timeout": 60,
                "timeout": 10,
            },
        )

    logger.info(
        "Database engine created",
        backend=url.get_backend_name(),
        isolation_level=(
            "BEGIN IMMEDIATE"
            if url.get_backend_name() == "sqlite"
            else settings.db_isolation_level
        ),
        environment=settings.environment,
    )

    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    Create a session factory bound to an engine.

    Args:
        engine: Async engine to bind sessions to

    Returns:
        Configured async session factory
    """
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def is_serialization_conflict(exc: BaseException) -> bool:
    """
    Check if a store error means "a concurrent writer won, try again".

    Args:
        exc: Exception raised by SQLAlchemy or the driver

    Returns:
        True for serialization failures, deadlocks, lock timeouts, busy
        SQLite databases and stale optimistic-lock reads
    """
    if isinstance(exc, StaleDataError):
        return True

    if not isinstance(exc, DBAPIError):
        return False

    orig = exc.orig
    for candidate in (orig, getattr(orig, "__cause__", None)):
        sqlstate = getattr(candidate, "sqlstate", None) or getattr(
            candidate, "pgcode", None
        )
        if sqlstate in RETRYABLE_SQLSTATES:
            return True

    if isinstance(exc, OperationalError):
        message = str(orig).lower()
        return any(marker in message for marker in SQLITE_CONFLICT_MARKERS)

    return False


class UnitOfWork:
    """
    Transaction scope for one core operation.

    Each call to run() opens a fresh session, begins exactly one transaction,
    hands the session to the operation, and commits. Serialization conflicts
    roll back and re-run the whole operation with a fresh read; other store
    failures, including connection errors and driver timeouts, become
    StoreUnavailableError. Domain errors raised by the operation roll back and
    propagate unchanged.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        max_attempts: Optional[int] = None,
        backoff_base: Optional[float] = None,
        backoff_max: Optional[float] = None,
    ):
        settings = get_settings()
        self.session_factory = session_factory
        self.max_attempts = max_attempts or settings.transaction_max_attempts
        self.backoff_base = (
            settings.retry_backoff_base if backoff_base is None else backoff_base
        )
        self.backoff_max = (
            settings.retry_backoff_max if backoff_max is None else backoff_max
        )

    @asynccontextmanager
    async def transaction(
        self, read_only: bool = False
    ) -> AsyncGenerator[AsyncSession, None]:
        """
        Open a session with one transaction, committing on success.

        Args:
            read_only: Begin a reader transaction that does not take the
                SQLite write lock

        Yields:
            Session bound to the open transaction
        """
        async with self.session_factory() as session:
            async with session.begin():
                if read_only:
                    await session.connection(execution_options=READ_ONLY_OPTIONS)
                yield session

    def _retrying(self, name: str) -> AsyncRetrying:
        def log_retry(retry_state: RetryCallState) -> None:
            logger.info(
                "Serialization conflict, retrying",
                operation=name,
                attempt=retry_state.attempt_number,
                delay_s=retry_state.next_action.sleep if retry_state.next_action else 0,
            )

        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_base, max=self.backoff_max),
            retry=retry_if_exception(is_serialization_conflict),
            before_sleep=log_retry,
            reraise=True,
        )

    async def run(
        self,
        operation: Callable[[AsyncSession], Awaitable[T]],
        name: str = "operation",
        read_only: bool = False,
    ) -> T:
        """
        Run an operation in a transaction, retrying serialization conflicts.

        Args:
            operation: Coroutine function receiving the transaction's session
            name: Operation name for logging
            read_only: Operation only reads; on SQLite it begins with a plain
                BEGIN so it does not contend with writers

        Returns:
            Whatever the operation returned, after a successful commit

        Raises:
            ConcurrencyConflictError: If every attempt hit a conflict
            StoreUnavailableError: If the store failed for another reason
            TrackingError: Domain errors raised by the operation
        """
        retrying = self._retrying(name)
        try:
            async for attempt in retrying:
                with attempt:
                    async with self.transaction(read_only=read_only) as session:
                        return await operation(session)
        except TrackingError:
            raise
        except (SQLAlchemyError, StaleDataError, OSError, asyncio.TimeoutError) as e:
            attempts = retrying.statistics.get("attempt_number", 1)
            if is_serialization_conflict(e):
                logger.warning(
                    "Serialization conflict persisted after retries",
                    operation=name,
                    attempts=attempts,
                )
                raise ConcurrencyConflictError(
                    f"Concurrent update conflict during {name}",
                    operation=name,
                    attempts=attempts,
                ) from e

            logger.error(
                "Store failure",
                operation=name,
                attempt=attempts,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise StoreUnavailableError(
                f"Store failure during {name}",
                operation=name,
                error_type=type(e).__name__,
            ) from e
