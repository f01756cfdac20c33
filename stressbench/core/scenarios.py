"""
Stress scenarios.

Two independent entry points:

- Write stress: every tick inserts one row as an ephemeral write.
- Parallel-transaction stress: every tick opens a transaction and inserts
  1-5 rows through one shared command, dispatching the inserts concurrently.

Both run inside the retry executor and return a validated StressRunResult.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from stressbench.connectors.base import InsertCommand, Parameter, ParameterType
from stressbench.core.context import StressContext
from stressbench.core.validator import ResultValidator
from stressbench.core.workload_driver import WorkloadDriver
from stressbench.models import StressRunConfig, StressRunResult

logger = logging.getLogger(__name__)

TITLE = "Title"
MIN_ROWS_PER_TRANSACTION = 1
MAX_ROWS_PER_TRANSACTION = 5


async def write_one_row(ctx: StressContext) -> int:
    """Insert a single row with a fresh ID, retrying transient faults."""

    async def _attempt() -> int:
        async with ctx.pool.connection() as conn:
            cmd = conn.create_insert_command(ctx.table_name)
            cmd.parameters.add("ID", ParameterType.STRING, ctx.ids.next_id())
            cmd.parameters.add("Title", ParameterType.STRING, TITLE)
            return await cmd.execute_non_query()

    return await ctx.retry.execute(_attempt)


def _dispatch(cmd: InsertCommand, id_param: Parameter, row_id: str) -> Awaitable[int]:
    # The command snapshots its parameters inside execute_non_query, so nothing
    # may be awaited between setting the ID and the call.
    id_param.value = row_id
    return cmd.execute_non_query()


async def write_transaction(
    ctx: StressContext,
    *,
    row_count: Optional[int] = None,
) -> int:
    """
    Insert 1-5 rows in one transaction through a shared insert command.

    Args:
        ctx: Run context
        row_count: Rows to insert (random in [1, 5] when omitted)

    Returns:
        Number of rows committed
    """

    async def _attempt() -> int:
        n = row_count or ctx.rng.randint(MIN_ROWS_PER_TRANSACTION, MAX_ROWS_PER_TRANSACTION)
        row_ids = [ctx.ids.next_id() for _ in range(n)]

        async with ctx.pool.connection() as conn:
            async with conn.begin_transaction() as tx:
                cmd = conn.create_insert_command(ctx.table_name)
                cmd.transaction = tx
                id_param = cmd.parameters.add("ID", ParameterType.STRING)
                cmd.parameters.add("Title", ParameterType.STRING, TITLE)

                results = await asyncio.gather(
                    *[_dispatch(cmd, id_param, row_id) for row_id in row_ids],
                    return_exceptions=True,
                )
                for r in results:
                    if isinstance(r, BaseException):
                        raise r

                await tx.commit()
        return n

    return await ctx.retry.execute(_attempt)


async def _run_scenario(
    ctx: StressContext,
    config: StressRunConfig,
    work_fn: Callable[[], Awaitable[int]],
    *,
    scenario_name: str,
    driver: Optional[WorkloadDriver],
    validator: Optional[ResultValidator],
) -> StressRunResult:
    driver = driver or WorkloadDriver(ctx.pool)
    validator = validator or ResultValidator(
        min_latency_ms=config.min_latency_ms, max_latency_ms=config.max_latency_ms
    )

    ctx.retry.reset_counts()
    result = await driver.run_stress(work_fn, config, scenario_name=scenario_name)
    validation = validator.validate(result)

    if ctx.retry.retry_counts:
        logger.info("%s retries: %s", scenario_name, dict(ctx.retry.retry_counts))
    return result.model_copy(
        update={"retry_counts": dict(ctx.retry.retry_counts), "validation": validation}
    )


async def run_write_stress(
    ctx: StressContext,
    config: StressRunConfig,
    *,
    driver: Optional[WorkloadDriver] = None,
    validator: Optional[ResultValidator] = None,
) -> StressRunResult:
    """Sustain ``config.target_qps`` single-row ephemeral writes."""
    return await _run_scenario(
        ctx,
        config,
        lambda: write_one_row(ctx),
        scenario_name="write_stress",
        driver=driver,
        validator=validator,
    )


async def run_parallel_transaction_stress(
    ctx: StressContext,
    config: StressRunConfig,
    *,
    driver: Optional[WorkloadDriver] = None,
    validator: Optional[ResultValidator] = None,
) -> StressRunResult:
    """Sustain ``config.target_qps`` transactions of 1-5 concurrently dispatched inserts."""
    return await _run_scenario(
        ctx,
        config,
        lambda: write_transaction(ctx),
        scenario_name="parallel_transaction_stress",
        driver=driver,
        validator=validator,
    )
