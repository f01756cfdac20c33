from unittest.mock import AsyncMock

import pytest
from asyncpg.exceptions import InterfaceError, SerializationError, UniqueViolationError

from stressbench.connectors import postgres_pool
from stressbench.connectors.base import (
    DuplicateKeyError,
    FatalBackendError,
    ParameterType,
    PoolOptions,
)
from stressbench.connectors.postgres_pool import (
    PostgresConnection,
    PostgresSessionPool,
    _rowcount_from_status,
    build_insert_sql,
    is_transient_postgres_error,
)
from stressbench.core.retry import RetryExecutor


class _FakeTransaction:
    """Follows asyncpg's Transaction states: a failed commit cannot be rolled back."""

    def __init__(self, commit_fault: BaseException | None = None) -> None:
        self.commit_fault = commit_fault
        self.started = False
        self.committed = False
        self.rolled_back = False
        self.failed = False

    async def start(self) -> None:
        self.started = True

    async def commit(self) -> None:
        if self.commit_fault is not None:
            self.failed = True
            raise self.commit_fault
        self.committed = True

    async def rollback(self) -> None:
        if self.failed:
            raise InterfaceError("cannot rollback; the transaction is in error state")
        self.rolled_back = True


class _FakeRawConnection:
    def __init__(self, commit_faults: list[BaseException] | None = None) -> None:
        self.execute = AsyncMock(return_value="INSERT 0 1")
        self.transactions: list[_FakeTransaction] = []
        self.commit_faults = list(commit_faults or [])

    def transaction(self) -> _FakeTransaction:
        fault = self.commit_faults.pop(0) if self.commit_faults else None
        tx = _FakeTransaction(fault)
        self.transactions.append(tx)
        return tx


class _FakeAsyncpgPool:
    def __init__(self) -> None:
        self.idle: list[_FakeRawConnection] = []
        self.size = 0
        self.closed = False

    async def acquire(self) -> _FakeRawConnection:
        if self.idle:
            return self.idle.pop()
        self.size += 1
        return _FakeRawConnection()

    async def release(self, conn: _FakeRawConnection) -> None:
        self.idle.append(conn)

    async def close(self) -> None:
        self.closed = True
        self.idle.clear()
        self.size = 0

    def get_size(self) -> int:
        return self.size

    def get_idle_size(self) -> int:
        return len(self.idle)


def _pool(**kwargs) -> PostgresSessionPool:
    return PostgresSessionPool(
        host="localhost",
        port=5432,
        database="postgres",
        user="postgres",
        password="",
        **kwargs,
    )


def test_build_insert_sql_quotes_identifiers():
    assert build_insert_sql("stress_test", ["ID", "Title"]) == (
        'INSERT INTO "stress_test" ("ID", "Title") VALUES ($1, $2)'
    )
    assert build_insert_sql('we"ird', ["a"]) == 'INSERT INTO "we""ird" ("a") VALUES ($1)'


def test_rowcount_from_status():
    assert _rowcount_from_status("INSERT 0 1") == 1
    assert _rowcount_from_status("INSERT 0 5") == 5
    assert _rowcount_from_status(None) == 0
    assert _rowcount_from_status("BEGIN") == 0


@pytest.mark.asyncio
async def test_insert_command_executes_parameterized_statement():
    raw = _FakeRawConnection()
    conn = PostgresConnection(raw, command_timeout=5)
    cmd = conn.create_insert_command("stress_test")
    cmd.parameters.add("ID", ParameterType.STRING, "abc1")
    cmd.parameters.add("Title", ParameterType.STRING, "Title")

    assert await cmd.execute_non_query() == 1
    raw.execute.assert_awaited_once_with(
        'INSERT INTO "stress_test" ("ID", "Title") VALUES ($1, $2)',
        "abc1",
        "Title",
        timeout=5,
    )


@pytest.mark.asyncio
async def test_unique_violation_maps_to_duplicate_key():
    raw = _FakeRawConnection()
    raw.execute.side_effect = UniqueViolationError("duplicate key value")
    conn = PostgresConnection(raw)

    with pytest.raises(DuplicateKeyError):
        await conn.execute_insert("stress_test", {"ID": "x"}, None)


@pytest.mark.asyncio
async def test_transaction_rolls_back_unless_committed():
    raw = _FakeRawConnection()
    conn = PostgresConnection(raw)

    async with conn.begin_transaction() as tx:
        await conn.execute_insert("stress_test", {"ID": "x"}, tx)
    assert raw.transactions[0].started
    assert raw.transactions[0].rolled_back

    async with conn.begin_transaction() as tx:
        await tx.commit()
    assert raw.transactions[1].committed
    assert not raw.transactions[1].rolled_back


@pytest.mark.asyncio
async def test_foreign_transaction_is_rejected():
    conn = PostgresConnection(_FakeRawConnection())
    other = PostgresConnection(_FakeRawConnection())

    async with other.begin_transaction() as tx:
        with pytest.raises(FatalBackendError):
            await conn.execute_insert("stress_test", {"ID": "x"}, tx)


@pytest.mark.asyncio
async def test_failed_commit_surfaces_original_fault():
    raw = _FakeRawConnection(commit_faults=[SerializationError("could not serialize access")])
    conn = PostgresConnection(raw)

    with pytest.raises(SerializationError):
        async with conn.begin_transaction() as tx:
            await conn.execute_insert("stress_test", {"ID": "x"}, tx)
            await tx.commit()

    assert raw.transactions[0].failed
    assert not raw.transactions[0].rolled_back


@pytest.mark.asyncio
async def test_transient_commit_fault_retried_in_fresh_transaction():
    async def _no_sleep(_: float) -> None:
        return None

    raw = _FakeRawConnection(commit_faults=[SerializationError("could not serialize access")])
    conn = PostgresConnection(raw)
    executor = RetryExecutor(classifier=is_transient_postgres_error, sleep=_no_sleep)
    attempts = 0

    async def _attempt() -> int:
        nonlocal attempts
        attempts += 1
        async with conn.begin_transaction() as tx:
            cmd = conn.create_insert_command("stress_test")
            cmd.parameters.add("ID", ParameterType.STRING, f"row{attempts}")
            await cmd.execute_non_query(tx)
            await tx.commit()
        return attempts

    assert await executor.execute(_attempt) == 2
    assert executor.retry_counts["SQLSTATE_40001"] == 1
    assert len(raw.transactions) == 2
    assert raw.transactions[1].committed


@pytest.mark.asyncio
async def test_pool_created_lazily_with_current_limits(monkeypatch):
    created: list[dict] = []
    fake = _FakeAsyncpgPool()

    async def _fake_create_pool(**kwargs):
        created.append(kwargs)
        return fake

    monkeypatch.setattr(postgres_pool.asyncpg, "create_pool", _fake_create_pool)
    pool = _pool(options=PoolOptions(max_active_sessions=450))

    stats = await pool.get_pool_stats()
    assert stats.active_count == 0 and stats.pooled_count == 0
    assert created == []

    conns = [await pool.acquire() for _ in range(3)]
    assert len(created) == 1
    assert created[0]["min_size"] == 0
    assert created[0]["max_size"] == 450

    stats = await pool.get_pool_stats()
    assert stats.active_count == 3
    assert stats.max_active_sessions == 450

    for conn in conns:
        await pool.release(conn)
    stats = await pool.get_pool_stats()
    assert stats.active_count == 0
    assert stats.pooled_count == 3


@pytest.mark.asyncio
async def test_release_all_closes_and_is_idempotent(monkeypatch):
    pools: list[_FakeAsyncpgPool] = []

    async def _fake_create_pool(**kwargs):
        pools.append(_FakeAsyncpgPool())
        return pools[-1]

    monkeypatch.setattr(postgres_pool.asyncpg, "create_pool", _fake_create_pool)
    pool = _pool()

    async with pool.connection():
        pass
    await pool.release_all()
    first = await pool.get_pool_stats()
    await pool.release_all()
    second = await pool.get_pool_stats()

    assert pools[0].closed
    assert first == second
    assert first.pooled_count == 0

    # The next checkout builds a new pool.
    async with pool.connection():
        pass
    assert len(pools) == 2


def test_from_settings_reads_postgres_keys():
    from stressbench.config import Settings

    settings = Settings(
        POSTGRES_HOST="db.internal",
        POSTGRES_PORT=6543,
        STRESS_POOL_SHUTDOWN_TIMEOUT_SECONDS=12,
    )
    pool = PostgresSessionPool.from_settings(settings)
    assert pool.host == "db.internal"
    assert pool.port == 6543
    assert pool.shutdown_timeout == 12
