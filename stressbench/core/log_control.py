"""Temporary logging level changes around latency measurement."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Sequence

# Loggers quieted during measurement. The harness keeps INFO so retry
# diagnostics stay visible; driver internals are pushed to WARNING.
HARNESS_LOGGER = "stressbench"
NOISY_LOGGERS: tuple[str, ...] = ("asyncpg",)


def _resolve_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown logging level: {level!r}")
    return resolved


@contextmanager
def measurement_log_level(
    level: int | str = logging.INFO,
    *,
    logger_name: str = HARNESS_LOGGER,
    noisy_loggers: Sequence[str] = NOISY_LOGGERS,
) -> Iterator[int]:
    """
    Set the harness logger to ``level`` for the duration of the block.

    Previous levels are restored on exit, including when the block raises.

    Yields:
        The level that was replaced on the harness logger.
    """
    harness = logging.getLogger(logger_name)
    prev_level = harness.level
    prev_noisy = {name: logging.getLogger(name).level for name in noisy_loggers}

    harness.setLevel(_resolve_level(level))
    for name in noisy_loggers:
        logging.getLogger(name).setLevel(logging.WARNING)
    try:
        yield prev_level
    finally:
        harness.setLevel(prev_level)
        for name, lvl in prev_noisy.items():
            logging.getLogger(name).setLevel(lvl)
