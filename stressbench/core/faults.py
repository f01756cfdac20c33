"""
Backend fault classification.

Splits backend errors into transient faults (contention, deadline exceeded
while contending, resource exhaustion), which are safe to retry, and fatal
errors, which must propagate. The classifier is a plain predicate so a
backend collaborator can supply its own.
"""

from __future__ import annotations

import asyncio
import re
from typing import Callable

from stressbench.connectors.base import BackendError

FaultClassifier = Callable[[BaseException], bool]

_SQLSTATE_RE = re.compile(r"\(\s*([0-9A-Z]{5})\s*\)")

# SQLSTATE codes that clear up when the same statement is retried later.
TRANSIENT_SQLSTATES = frozenset(
    {
        "40001",  # serialization_failure (aborted due to contention)
        "40P01",  # deadlock_detected
        "53000",  # insufficient_resources
        "53100",  # disk_full
        "53200",  # out_of_memory
        "53300",  # too_many_connections
        "55P03",  # lock_not_available
        "57014",  # query_canceled (statement timeout)
        "57P03",  # cannot_connect_now
    }
)


def _sqlstate_of(exc: BaseException) -> str | None:
    sqlstate = getattr(exc, "sqlstate", None)
    if sqlstate:
        return str(sqlstate).upper()
    m = _SQLSTATE_RE.search(str(exc or ""))
    if m:
        return m.group(1)
    return None


def is_transient_fault(exc: BaseException) -> bool:
    """
    Return True if ``exc`` is a transient backend fault.

    Backend-native exception types decide for themselves via
    ``BackendError.transient``. Anything else is transient only when it
    carries a retryable SQLSTATE. Programming errors never are.
    """
    if isinstance(exc, BackendError):
        return bool(exc.transient)
    if isinstance(exc, (TypeError, ValueError, AttributeError, KeyError)):
        return False
    sqlstate = _sqlstate_of(exc)
    return sqlstate in TRANSIENT_SQLSTATES


def classify_fault(exc: BaseException) -> str:
    """
    Return a stable, low-cardinality category for a backend fault.

    These faults are expected under load, so retries are counted per
    category rather than logged with full detail.
    """
    msg_l = str(exc or "").lower()

    if "number of waiters for this lock exceeds" in msg_l:
        return "LOCK_WAITER_LIMIT"

    code = getattr(exc, "code", None)
    if isinstance(exc, BackendError) and code:
        return f"BACKEND_{str(code).upper()}"

    sqlstate = _sqlstate_of(exc)
    if sqlstate:
        return f"SQLSTATE_{sqlstate}"

    if isinstance(exc, asyncio.TimeoutError):
        return "TIMEOUT"

    return type(exc).__name__
