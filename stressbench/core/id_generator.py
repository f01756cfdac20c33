"""Collision-free row identifiers for concurrent writers."""

from __future__ import annotations

from itertools import count
from uuid import uuid4


class UniqueIdGenerator:
    """Generates ``prefix + counter`` identifiers.

    The prefix is fixed per generator and the counter is an
    ``itertools.count``, whose ``next()`` is a single atomic step, so
    concurrent tasks and threads never observe the same value.
    """

    def __init__(self, prefix: str | None = None, *, start: int = 1) -> None:
        self.prefix = prefix if prefix is not None else uuid4().hex
        self._counter = count(start)

    def next_int(self) -> int:
        return next(self._counter)

    def next_id(self) -> str:
        return f"{self.prefix}{next(self._counter)}"
