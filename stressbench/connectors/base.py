"""
Backend collaborator contracts.

The harness drives a backend only through these interfaces. Implementations
live next to this module (Postgres via asyncpg, and an in-process simulated
backend). Pools and connections use Protocol for structural typing, so an
adapter does not need to inherit from anything here.
"""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Dict, Iterator, List, Optional, Protocol

from stressbench.models import PoolStats


# ============================================================================
# Backend faults
# ============================================================================


class BackendError(Exception):
    """Error raised by a backend collaborator.

    ``transient`` tells the fault classifier whether retrying the same
    operation later can succeed.
    """

    transient: bool = False

    def __init__(self, message: str, *, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


class TransientBackendError(BackendError):
    """Contention, deadline exceeded while contending, or resource exhaustion."""

    transient = True


class FatalBackendError(BackendError):
    """Malformed request, permission denied or any other non-retryable fault."""

    transient = False


class DuplicateKeyError(FatalBackendError):
    """A write collided with an existing primary key."""


# ============================================================================
# Pool options
# ============================================================================


@dataclass
class PoolOptions:
    """Mutable pool sizing options, set before a run starts."""

    max_active_sessions: int = 400
    max_pooled_sessions: int = 400
    max_channels: int = 4


# ============================================================================
# Commands
# ============================================================================


class ParameterType(str, Enum):
    """Supported insert parameter types."""

    STRING = "string"
    INT64 = "int64"
    FLOAT64 = "float64"
    BOOL = "bool"
    TIMESTAMP = "timestamp"


class Parameter:
    """A named, typed command parameter whose value may change between executions."""

    __slots__ = ("name", "param_type", "value")

    def __init__(self, name: str, param_type: ParameterType, value: Any = None):
        self.name = name
        self.param_type = ParameterType(param_type)
        self.value = value

    def __repr__(self) -> str:
        return f"Parameter({self.name!r}, {self.param_type.value}, {self.value!r})"


class ParameterCollection:
    """Ordered set of parameters keyed by column name."""

    def __init__(self) -> None:
        self._params: Dict[str, Parameter] = {}

    def add(
        self, name: str, param_type: ParameterType, value: Any = None
    ) -> Parameter:
        if name in self._params:
            raise ValueError(f"Parameter {name!r} already added")
        param = Parameter(name, param_type, value)
        self._params[name] = param
        return param

    def __getitem__(self, name: str) -> Parameter:
        return self._params[name]

    def __iter__(self) -> Iterator[Parameter]:
        return iter(self._params.values())

    def __len__(self) -> int:
        return len(self._params)

    def names(self) -> List[str]:
        return list(self._params)

    def snapshot(self) -> Dict[str, Any]:
        """Copy of the current parameter values, in insertion order."""
        return {name: p.value for name, p in self._params.items()}


class InsertCommand:
    """
    Parameterized single-row insert bound to one connection.

    A command object may be shared by concurrent dispatches inside one
    transaction. ``execute_non_query`` reads the parameter values at call
    time, before anything is awaited, so each dispatch must set its
    parameters immediately before calling it.
    """

    def __init__(self, connection: "Connection", table: str):
        self.connection = connection
        self.table = table
        self.parameters = ParameterCollection()
        self.transaction: Optional["Transaction"] = None

    def execute_non_query(
        self, transaction: Optional["Transaction"] = None
    ) -> Awaitable[int]:
        """
        Insert one row using the current parameter values.

        Args:
            transaction: Transaction to write under. Defaults to
                ``self.transaction``; None means an ephemeral write.

        Returns:
            Awaitable resolving to the number of rows affected.
        """
        if not len(self.parameters):
            raise ValueError(f"Insert into {self.table!r} has no parameters")
        values = self.parameters.snapshot()
        tx = transaction if transaction is not None else self.transaction
        return self.connection.execute_insert(self.table, values, tx)


# ============================================================================
# Collaborator protocols
# ============================================================================


class Transaction(Protocol):
    """An explicit read-write transaction on one connection."""

    committed: bool

    async def commit(self) -> None:
        ...

    async def rollback(self) -> None:
        ...


class Connection(Protocol):
    """One backend session checked out of a pool."""

    def begin_transaction(self) -> AbstractAsyncContextManager[Transaction]:
        """Start a transaction; rolled back on exit unless committed."""
        ...

    def create_insert_command(self, table: str) -> InsertCommand:
        ...

    async def execute_insert(
        self,
        table: str,
        values: Dict[str, Any],
        transaction: Optional[Transaction],
    ) -> int:
        """Write one row; raises BackendError (or a backend-native fault) on failure."""
        ...


class ResourcePool(Protocol):
    """
    Shared, size-limited pool of backend sessions.

    All mutation goes through these operations; the harness never touches
    pool internals.
    """

    options: PoolOptions
    shutdown_timeout: float

    async def acquire(self) -> Connection:
        ...

    async def release(self, conn: Connection) -> None:
        ...

    def connection(self) -> AbstractAsyncContextManager[Connection]:
        """Check out a connection, returning it to the pool on every exit path."""
        ...

    async def release_all(self) -> None:
        """Drop every pooled session, leaving the pool empty."""
        ...

    async def get_pool_stats(self) -> PoolStats:
        ...

    async def close(self) -> None:
        ...
