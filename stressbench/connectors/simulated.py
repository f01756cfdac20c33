"""
Simulated Backend

In-process stand-in for a stateful write backend. Every call takes a fixed
response time, writes are checked against a primary key, the pool enforces
its session limits, and faults can be injected per operation.

Used by the test suite and by dry runs of the stress scripts.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from itertools import count
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple

from stressbench.connectors.base import (
    DuplicateKeyError,
    FatalBackendError,
    InsertCommand,
    PoolOptions,
    TransientBackendError,
)
from stressbench.models import PoolStats

logger = logging.getLogger(__name__)

# Returns an exception to raise for the named operation ("open", "insert",
# "commit"), or None to let it proceed.
FaultInjector = Callable[[str], Optional[BaseException]]


class SimulatedBackend:
    """Shared row store behind every simulated session."""

    def __init__(
        self,
        *,
        latency_ms: float = 75.0,
        primary_key: str = "ID",
        fault_injector: Optional[FaultInjector] = None,
    ) -> None:
        self.latency_seconds = max(0.0, float(latency_ms)) / 1000.0
        self.primary_key = primary_key
        self.fault_injector = fault_injector
        self._tables: Dict[str, Dict[Any, Dict[str, Any]]] = {}
        self.insert_calls = 0
        self.commit_calls = 0

    def rows(self, table: str) -> Dict[Any, Dict[str, Any]]:
        return self._tables.setdefault(table, {})

    def maybe_fail(self, operation: str) -> None:
        if self.fault_injector is None:
            return
        exc = self.fault_injector(operation)
        if exc is not None:
            raise exc

    async def respond(self) -> None:
        if self.latency_seconds > 0:
            await asyncio.sleep(self.latency_seconds)

    def key_of(self, table: str, values: Dict[str, Any]) -> Any:
        if self.primary_key not in values:
            raise FatalBackendError(
                f"Insert into {table!r} is missing primary key {self.primary_key!r}",
                code="INVALID_ARGUMENT",
            )
        return values[self.primary_key]

    def check_unique(self, table: str, key: Any) -> None:
        if key in self.rows(table):
            raise DuplicateKeyError(
                f"Row {key!r} already exists in {table!r}", code="ALREADY_EXISTS"
            )


class SimulatedTransaction:
    """Buffers writes until commit."""

    def __init__(self, backend: SimulatedBackend) -> None:
        self._backend = backend
        self._pending: Dict[Tuple[str, Any], Dict[str, Any]] = {}
        self.committed = False
        self.rolled_back = False

    def stage(self, table: str, key: Any, values: Dict[str, Any]) -> None:
        if (table, key) in self._pending:
            raise DuplicateKeyError(
                f"Row {key!r} written twice in one transaction on {table!r}",
                code="ALREADY_EXISTS",
            )
        self._pending[(table, key)] = dict(values)

    async def commit(self) -> None:
        if self.committed or self.rolled_back:
            raise FatalBackendError("Transaction already finished", code="FAILED_PRECONDITION")
        await self._backend.respond()
        self._backend.commit_calls += 1
        self._backend.maybe_fail("commit")
        for (table, key), _ in self._pending.items():
            self._backend.check_unique(table, key)
        for (table, key), values in self._pending.items():
            self._backend.rows(table)[key] = values
        self._pending.clear()
        self.committed = True

    async def rollback(self) -> None:
        self._pending.clear()
        self.rolled_back = True


class SimulatedConnection:
    """One simulated session."""

    def __init__(self, backend: SimulatedBackend, session_id: int, generation: int) -> None:
        self._backend = backend
        self.session_id = session_id
        self.generation = generation

    @asynccontextmanager
    async def begin_transaction(self) -> AsyncIterator[SimulatedTransaction]:
        tx = SimulatedTransaction(self._backend)
        try:
            yield tx
        finally:
            if not tx.committed:
                await tx.rollback()

    def create_insert_command(self, table: str) -> InsertCommand:
        return InsertCommand(self, table)

    async def execute_insert(
        self,
        table: str,
        values: Dict[str, Any],
        transaction: Optional[SimulatedTransaction],
    ) -> int:
        backend = self._backend
        await backend.respond()
        backend.insert_calls += 1
        backend.maybe_fail("insert")

        key = backend.key_of(table, values)
        backend.check_unique(table, key)
        if transaction is None:
            backend.rows(table)[key] = dict(values)
        else:
            transaction.stage(table, key, values)
        return 1


class SimulatedPool:
    """
    Session pool over a SimulatedBackend.

    Checking out more than ``options.max_active_sessions`` sessions raises a
    transient resource-exhausted fault. Sessions returned after
    ``release_all`` are discarded rather than pooled.
    """

    def __init__(
        self,
        backend: Optional[SimulatedBackend] = None,
        *,
        options: Optional[PoolOptions] = None,
        shutdown_timeout: float = 30.0,
        open_latency_ms: float = 0.0,
        release_delay_ms: float = 0.0,
        pool_name: str = "simulated",
    ) -> None:
        self.backend = backend or SimulatedBackend()
        self.options = options or PoolOptions()
        self.shutdown_timeout = float(shutdown_timeout)
        self._open_latency = max(0.0, float(open_latency_ms)) / 1000.0
        self._release_delay = max(0.0, float(release_delay_ms)) / 1000.0
        self.pool_name = pool_name

        self._idle: List[SimulatedConnection] = []
        self._in_use: Dict[int, SimulatedConnection] = {}
        self._pending_creates = 0
        self._generation = 0
        self._session_ids = count(1)
        self.created_total = 0
        self._lock = asyncio.Lock()

    async def acquire(self) -> SimulatedConnection:
        async with self._lock:
            if self._idle:
                conn = self._idle.pop()
                self._in_use[conn.session_id] = conn
                return conn
            total = len(self._idle) + len(self._in_use) + self._pending_creates
            if total >= self.options.max_active_sessions:
                raise TransientBackendError(
                    f"Session pool exhausted (max: {self.options.max_active_sessions})",
                    code="RESOURCE_EXHAUSTED",
                )
            self._pending_creates += 1

        try:
            if self._open_latency > 0:
                await asyncio.sleep(self._open_latency)
            self.backend.maybe_fail("open")
        except BaseException:
            async with self._lock:
                self._pending_creates -= 1
            raise

        async with self._lock:
            self._pending_creates -= 1
            conn = SimulatedConnection(
                self.backend, next(self._session_ids), self._generation
            )
            self.created_total += 1
            self._in_use[conn.session_id] = conn
        logger.debug("[%s] Created session %d", self.pool_name, conn.session_id)
        return conn

    async def release(self, conn: SimulatedConnection) -> None:
        async with self._lock:
            self._in_use.pop(conn.session_id, None)
            if conn.generation != self._generation:
                return
            if len(self._idle) < self.options.max_pooled_sessions:
                self._idle.append(conn)

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[SimulatedConnection]:
        conn = await self.acquire()
        try:
            yield conn
        finally:
            await self.release(conn)

    async def release_all(self) -> None:
        if self._release_delay > 0:
            await asyncio.sleep(self._release_delay)
        async with self._lock:
            dropped = len(self._idle)
            self._idle.clear()
            self._generation += 1
        logger.info("[%s] Released all sessions (%d pooled dropped)", self.pool_name, dropped)

    async def get_pool_stats(self) -> PoolStats:
        async with self._lock:
            return PoolStats(
                active_count=len(self._in_use),
                pooled_count=len(self._idle),
                created_total=self.created_total,
                max_active_sessions=self.options.max_active_sessions,
                max_pooled_sessions=self.options.max_pooled_sessions,
                max_channels=self.options.max_channels,
            )

    async def close(self) -> None:
        await self.release_all()
