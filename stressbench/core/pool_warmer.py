"""
Resource pool warm-up.

Opens a target number of pooled sessions in bounded batches, then hands them
all back to the pool, so measurement starts against a pool that is already
at its steady-state size.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, List

from stressbench.connectors.base import Connection, ResourcePool

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 25
DEFAULT_SETTLE_SECONDS = 0.25


class PoolWarmer:
    """
    Pre-sizes a pool by opening sessions in concurrent batches.

    All opens in a batch run in parallel and the batch is awaited as a whole
    before a short settle pause and the next batch.
    """

    def __init__(
        self,
        pool: ResourcePool,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        settle_seconds: float = DEFAULT_SETTLE_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.pool = pool
        self.batch_size = max(1, int(batch_size))
        self.settle_seconds = max(0.0, float(settle_seconds))
        self._sleep = sleep

    async def warm_pool(self, target_count: int) -> int:
        """
        Open ``target_count`` sessions, then release them all back to the pool.

        Args:
            target_count: Number of sessions to open

        Returns:
            Number of sessions opened and released

        Raises:
            The first open failure. Sessions opened before the failure are
            still released; warm-up is not retried.
        """
        remaining = max(0, int(target_count))
        if remaining == 0:
            return 0

        opened: List[Connection] = []
        t0 = asyncio.get_running_loop().time()
        try:
            while remaining > 0:
                batch_n = min(self.batch_size, remaining)
                logger.info("prewarming %d sessions", batch_n)

                batch = await asyncio.gather(
                    *[self.pool.acquire() for _ in range(batch_n)],
                    return_exceptions=True,
                )
                errors = [c for c in batch if isinstance(c, BaseException)]
                opened.extend(c for c in batch if not isinstance(c, BaseException))
                if errors:
                    logger.error(
                        "Warm-up aborted: %d/%d opens failed in batch. First error: %s",
                        len(errors),
                        batch_n,
                        errors[0],
                    )
                    raise errors[0]

                remaining -= batch_n
                await self._sleep(self.settle_seconds)
        finally:
            await self._release_all(opened)

        elapsed = asyncio.get_running_loop().time() - t0
        logger.info(
            "Warm-up complete: opened and released %d sessions in %.2fs",
            len(opened),
            elapsed,
        )
        return len(opened)

    async def _release_all(self, conns: List[Connection]) -> None:
        for conn in conns:
            await self.pool.release(conn)
