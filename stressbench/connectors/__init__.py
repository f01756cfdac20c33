"""
Backend collaborators (connection pools, connections, transactions).
"""

from .base import (
    BackendError,
    Connection,
    DuplicateKeyError,
    FatalBackendError,
    InsertCommand,
    Parameter,
    ParameterType,
    PoolOptions,
    ResourcePool,
    Transaction,
    TransientBackendError,
)

__all__ = [
    "BackendError",
    "Connection",
    "DuplicateKeyError",
    "FatalBackendError",
    "InsertCommand",
    "Parameter",
    "ParameterType",
    "PoolOptions",
    "ResourcePool",
    "Transaction",
    "TransientBackendError",
]
