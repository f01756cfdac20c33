"""
Stress run context.

Everything a scenario needs (pool, id generator, retry executor, target
table, randomness) is built once at start-up and passed in explicitly.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from typing import Optional

from stressbench.config import Settings
from stressbench.connectors.base import ResourcePool
from stressbench.core.faults import FaultClassifier, is_transient_fault
from stressbench.core.id_generator import UniqueIdGenerator
from stressbench.core.pool_warmer import PoolWarmer
from stressbench.core.retry import BackoffPolicy, RetryExecutor
from stressbench.core.workload_driver import WorkloadDriver

logger = logging.getLogger(__name__)


@dataclass
class StressContext:
    """Collaborators shared by every tick of a run."""

    pool: ResourcePool
    ids: UniqueIdGenerator
    retry: RetryExecutor
    table_name: str = "stress_test"
    rng: random.Random = field(default_factory=random.Random)

    async def close(self) -> None:
        await self.pool.close()


def create_pool(settings: Settings) -> tuple[ResourcePool, FaultClassifier]:
    """Build the configured backend pool and the fault classifier that goes with it."""
    if settings.STRESS_BACKEND == "simulated":
        from stressbench.connectors.simulated import SimulatedBackend, SimulatedPool

        pool = SimulatedPool(
            SimulatedBackend(latency_ms=settings.SIMULATED_LATENCY_MS),
            shutdown_timeout=settings.STRESS_POOL_SHUTDOWN_TIMEOUT_SECONDS,
        )
        return pool, is_transient_fault

    from stressbench.connectors.postgres_pool import (
        PostgresSessionPool,
        is_transient_postgres_error,
    )

    return PostgresSessionPool.from_settings(settings), is_transient_postgres_error


def create_context(
    settings: Settings,
    *,
    pool: Optional[ResourcePool] = None,
    classifier: Optional[FaultClassifier] = None,
    rng: Optional[random.Random] = None,
) -> StressContext:
    """
    Build a StressContext from settings.

    Args:
        settings: Harness settings
        pool: Use this pool instead of the configured backend
        classifier: Fault classifier override
        rng: Random source shared by retry jitter and row-count selection
    """
    default_classifier: FaultClassifier = is_transient_fault
    if pool is None:
        pool, default_classifier = create_pool(settings)

    rng = rng or random.Random()
    retry = RetryExecutor(
        classifier=classifier or default_classifier,
        policy=BackoffPolicy.from_settings(settings),
        rng=rng,
    )
    logger.info(
        "Stress context ready: backend=%s, table=%s",
        settings.STRESS_BACKEND,
        settings.STRESS_TABLE_NAME,
    )
    return StressContext(
        pool=pool,
        ids=UniqueIdGenerator(),
        retry=retry,
        table_name=settings.STRESS_TABLE_NAME,
        rng=rng,
    )


def create_driver(ctx: StressContext, settings: Settings) -> WorkloadDriver:
    """Workload driver configured with the warm-up and logging settings."""
    warmer = PoolWarmer(
        ctx.pool,
        batch_size=settings.STRESS_PREWARM_BATCH_SIZE,
        settle_seconds=settings.STRESS_PREWARM_SETTLE_MS / 1000.0,
    )
    return WorkloadDriver(
        ctx.pool,
        warmer=warmer,
        shutdown_timeout=settings.STRESS_POOL_SHUTDOWN_TIMEOUT_SECONDS,
        measurement_log_level=settings.STRESS_MEASUREMENT_LOG_LEVEL,
    )
