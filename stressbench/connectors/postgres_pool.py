"""
Postgres Session Pool

Backs the harness's pool/connection/transaction/command contracts with an
asyncpg pool, and supplies a Postgres-aware transient fault classifier.
"""

import asyncio
import logging
import random
import socket
import ssl as ssl_module
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import asyncpg
from asyncpg import Pool
from asyncpg.exceptions import (
    CannotConnectNowError,
    DeadlockDetectedError,
    LockNotAvailableError,
    QueryCanceledError,
    SerializationError,
    TooManyConnectionsError,
    UniqueViolationError,
)

from stressbench.config import Settings
from stressbench.connectors.base import (
    DuplicateKeyError,
    FatalBackendError,
    InsertCommand,
    PoolOptions,
)
from stressbench.core.faults import is_transient_fault
from stressbench.models import PoolStats

logger = logging.getLogger(__name__)

_TRANSIENT_PG_ERRORS = (
    SerializationError,
    DeadlockDetectedError,
    TooManyConnectionsError,
    CannotConnectNowError,
    LockNotAvailableError,
    QueryCanceledError,
)


def is_transient_postgres_error(exc: BaseException) -> bool:
    """Fault classifier for the Postgres backend."""
    if isinstance(exc, _TRANSIENT_PG_ERRORS):
        return True
    # asyncpg raises asyncio.TimeoutError when command_timeout expires while
    # the statement waits on locks or connections.
    if isinstance(exc, asyncio.TimeoutError):
        return True
    return is_transient_fault(exc)


def _quote_ident(name: str) -> str:
    """Quote identifier for Postgres SQL."""
    return '"' + str(name).replace('"', '""') + '"'


def build_insert_sql(table: str, columns: List[str]) -> str:
    cols = ", ".join(_quote_ident(c) for c in columns)
    placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 1))
    return f"INSERT INTO {_quote_ident(table)} ({cols}) VALUES ({placeholders})"


def _rowcount_from_status(status: Optional[str]) -> int:
    # Parse rowcount from status string (e.g., "INSERT 0 1")
    if status:
        parts = str(status).split()
        if len(parts) >= 2:
            try:
                return int(parts[-1])
            except ValueError:
                pass
    return 0


class PostgresTransaction:
    """Explicit transaction on one PostgresConnection."""

    def __init__(self, connection: "PostgresConnection") -> None:
        self._connection = connection
        self._tx = connection.raw.transaction()
        self.committed = False
        self._finished = False

    async def start(self) -> None:
        async with self._connection.lock:
            await self._tx.start()

    async def commit(self) -> None:
        # A failed COMMIT leaves the asyncpg transaction in its error state,
        # where rollback() raises; the server has already aborted it.
        try:
            async with self._connection.lock:
                await self._tx.commit()
            self.committed = True
        finally:
            self._finished = True

    async def rollback(self) -> None:
        if self._finished:
            return
        try:
            async with self._connection.lock:
                await self._tx.rollback()
        finally:
            self._finished = True


class PostgresConnection:
    """
    One asyncpg connection checked out of a PostgresSessionPool.

    asyncpg runs one statement at a time per connection, so concurrent
    dispatches on a shared command are serialized by ``lock``.
    """

    def __init__(self, raw: asyncpg.Connection, *, command_timeout: Optional[float] = None):
        self.raw = raw
        self.lock = asyncio.Lock()
        self.command_timeout = command_timeout
        self._transaction: Optional[PostgresTransaction] = None

    @asynccontextmanager
    async def begin_transaction(self) -> AsyncIterator[PostgresTransaction]:
        tx = PostgresTransaction(self)
        await tx.start()
        self._transaction = tx
        try:
            yield tx
        finally:
            self._transaction = None
            if not tx.committed:
                await tx.rollback()

    def create_insert_command(self, table: str) -> InsertCommand:
        return InsertCommand(self, table)

    async def execute_insert(
        self,
        table: str,
        values: Dict[str, Any],
        transaction: Optional[PostgresTransaction],
    ) -> int:
        if transaction is not None and transaction is not self._transaction:
            raise FatalBackendError(
                "Transaction does not belong to this connection", code="FAILED_PRECONDITION"
            )

        query = build_insert_sql(table, list(values))
        try:
            async with self.lock:
                status = await self.raw.execute(
                    query, *values.values(), timeout=self.command_timeout
                )
        except UniqueViolationError as e:
            raise DuplicateKeyError(str(e), code="ALREADY_EXISTS") from e
        return _rowcount_from_status(status)


class PostgresSessionPool:
    """
    Async session pool for Postgres with lazy (re)creation.

    The underlying asyncpg pool is created on first use with the current
    ``options``; ``release_all`` closes it, so the next run recreates it
    with whatever limits were set in between.
    """

    def __init__(
        self,
        host: str,
        port: int,
        database: str,
        user: str,
        password: str,
        *,
        options: Optional[PoolOptions] = None,
        shutdown_timeout: float = 30.0,
        command_timeout: float = 60.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        pool_name: str = "stress",
        ssl: bool | ssl_module.SSLContext | None = None,
    ):
        """
        Initialize Postgres session pool.

        Args:
            host: Database host
            port: Database port
            database: Database name
            user: Username
            password: Password
            options: Pool sizing options (max_active_sessions bounds the pool)
            shutdown_timeout: Deadline callers should give release_all()
            command_timeout: Statement timeout in seconds
            max_retries: Max attempts when creating the pool
            retry_delay: Base delay between pool creation attempts in seconds
            pool_name: Descriptive name for logging
            ssl: SSL context or True/False
        """
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.options = options or PoolOptions()
        self.shutdown_timeout = float(shutdown_timeout)
        self.command_timeout = command_timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.pool_name = pool_name
        self.ssl = ssl

        self._pool: Optional[Pool] = None
        self._create_lock = asyncio.Lock()
        self.created_total = 0

        logger.info(
            f"[{pool_name}] Postgres pool configured: {user}@{host}:{port}/{database}"
        )

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "PostgresSessionPool":
        return cls(
            host=settings.POSTGRES_HOST,
            port=settings.POSTGRES_PORT,
            database=settings.POSTGRES_DATABASE,
            user=settings.POSTGRES_USER,
            password=settings.POSTGRES_PASSWORD,
            shutdown_timeout=settings.STRESS_POOL_SHUTDOWN_TIMEOUT_SECONDS,
            command_timeout=settings.POSTGRES_COMMAND_TIMEOUT,
            **kwargs,
        )

    async def _on_connection_created(self, conn: asyncpg.Connection) -> None:
        self.created_total += 1

    async def _ensure_pool(self) -> Pool:
        if self._pool is not None:
            return self._pool

        async with self._create_lock:
            if self._pool is not None:
                return self._pool

            max_size = max(1, int(self.options.max_active_sessions))
            logger.info(
                "[%s] Creating Postgres pool (max_size=%d)...", self.pool_name, max_size
            )
            for attempt in range(self.max_retries):
                try:
                    self._pool = await asyncpg.create_pool(
                        host=self.host,
                        port=self.port,
                        database=self.database,
                        user=self.user,
                        password=self.password,
                        min_size=0,
                        max_size=max_size,
                        command_timeout=self.command_timeout,
                        init=self._on_connection_created,
                        ssl=self.ssl,
                    )
                    return self._pool
                except (CannotConnectNowError, TooManyConnectionsError) as e:
                    if attempt < self.max_retries - 1:
                        logger.warning(
                            f"Pool creation attempt {attempt + 1} failed, retrying: {e}"
                        )
                        await asyncio.sleep(self.retry_delay * (attempt + 1))
                    else:
                        logger.error(
                            f"Failed to create pool after {self.max_retries} attempts"
                        )
                        raise
                except (socket.gaierror, OSError) as e:
                    if attempt < self.max_retries - 1:
                        # Add jitter to avoid thundering herd on DNS
                        jitter = random.uniform(0, 0.5)
                        delay = self.retry_delay * (attempt + 1) + jitter
                        logger.warning(
                            f"[{self.pool_name}] Pool creation attempt {attempt + 1} failed "
                            f"(DNS/network error: {e}), retrying in {delay:.1f}s..."
                        )
                        await asyncio.sleep(delay)
                    else:
                        logger.error(
                            f"[{self.pool_name}] DNS/network error creating pool after "
                            f"{self.max_retries} attempts: {e}. Host: {self.host!r}, Port: {self.port}"
                        )
                        raise

        raise RuntimeError("Failed to create Postgres pool")

    async def acquire(self) -> PostgresConnection:
        pool = await self._ensure_pool()
        raw = await pool.acquire()
        return PostgresConnection(raw, command_timeout=self.command_timeout)

    async def release(self, conn: PostgresConnection) -> None:
        if self._pool is None:
            # Pool was closed by release_all(); the connection went with it.
            return
        await self._pool.release(conn.raw)

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[PostgresConnection]:
        """
        Get a connection from the pool (async context manager).

        Usage:
            async with pool.connection() as conn:
                cmd = conn.create_insert_command("stress_test")
        """
        conn = await self.acquire()
        try:
            yield conn
        finally:
            await self.release(conn)

    async def release_all(self) -> None:
        """Close every pooled connection; waits for checked-out ones to come back."""
        pool = self._pool
        if pool is None:
            return
        logger.info("[%s] Releasing all Postgres sessions...", self.pool_name)
        await pool.close()
        self._pool = None
        logger.info("[%s] All Postgres sessions released", self.pool_name)

    async def get_pool_stats(self) -> PoolStats:
        if self._pool is None:
            size = idle = 0
        else:
            size = self._pool.get_size()
            idle = self._pool.get_idle_size()
        return PoolStats(
            active_count=max(0, size - idle),
            pooled_count=idle,
            created_total=self.created_total,
            max_active_sessions=self.options.max_active_sessions,
            max_pooled_sessions=self.options.max_pooled_sessions,
            max_channels=self.options.max_channels,
        )

    async def close(self) -> None:
        await self.release_all()


async def ensure_stress_table(pool: PostgresSessionPool, table: str) -> None:
    """Create the stress table (string ID primary key, Title) if it is missing."""
    async with pool.connection() as conn:
        async with conn.lock:
            await conn.raw.execute(
                f"CREATE TABLE IF NOT EXISTS {_quote_ident(table)} "
                f"({_quote_ident('ID')} TEXT PRIMARY KEY, {_quote_ident('Title')} TEXT)"
            )
    logger.info("[%s] Stress table %s ready", pool.pool_name, table)
