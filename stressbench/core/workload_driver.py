"""
Workload Driver

Runs a caller-supplied work function at a target rate for a fixed duration
and collects per-invocation latency.

Each tick is dispatched as its own asyncio task on an absolute schedule
(``t0 + i / target_qps``), so ticks overlap whenever a call takes longer
than the inter-tick interval. That overlap is how sustained throughput is
reached.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Awaitable, Callable, Deque, Optional

from stressbench.connectors.base import ResourcePool
from stressbench.core import log_control
from stressbench.core.errors import PoolResetTimeoutError, StressRunError
from stressbench.core.pool_sizing import PoolSizeConfig, apply_pool_limits
from stressbench.core.pool_warmer import PoolWarmer
from stressbench.models import (
    LatencySummary,
    MeasurementResult,
    StressRunConfig,
    StressRunResult,
)

logger = logging.getLogger(__name__)

WorkFn = Callable[[], Awaitable[Any]]


@dataclass
class _TickState:
    dispatched: int = 0
    in_flight: int = 0
    max_in_flight: int = 0


class WorkloadDriver:
    """
    Drives a work function at a target QPS against a shared pool.

    Manages:
    - Pool reset with a bounded shutdown deadline
    - Pool sizing and warm-up
    - Tick scheduling and latency collection
    - Logging level during measurement
    """

    def __init__(
        self,
        pool: ResourcePool,
        *,
        warmer: Optional[PoolWarmer] = None,
        shutdown_timeout: Optional[float] = None,
        measurement_log_level: int | str = logging.INFO,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        """
        Initialize the driver.

        Args:
            pool: Pool the work function draws sessions from
            warmer: Warm-up strategy (defaults to PoolWarmer over ``pool``)
            shutdown_timeout: Deadline for pool reset; defaults to the pool's own
            measurement_log_level: Harness log level while measuring
            clock: Monotonic clock in seconds
        """
        self.pool = pool
        self.warmer = warmer or PoolWarmer(pool)
        self.shutdown_timeout = shutdown_timeout
        self.measurement_log_level = measurement_log_level
        self._clock = clock

    async def reset_pool(self) -> None:
        """
        Release every pooled session before a run.

        A previous run can leave the pool in any state, and the pool is
        validated after this run, so measurement must start from empty.

        Raises:
            PoolResetTimeoutError: if release does not finish within the deadline.
        """
        timeout = (
            self.shutdown_timeout
            if self.shutdown_timeout is not None
            else self.pool.shutdown_timeout
        )
        try:
            await asyncio.wait_for(self.pool.release_all(), timeout=timeout)
        except asyncio.TimeoutError as e:
            logger.error("Pool reset did not finish within %.1fs", timeout)
            raise PoolResetTimeoutError(
                "Deadline exceeded while releasing all sessions"
            ) from e

    async def measure(
        self, work_fn: WorkFn, target_qps: int, duration_seconds: float
    ) -> MeasurementResult:
        """
        Invoke ``work_fn`` about ``target_qps`` times per second for ``duration_seconds``.

        Returns:
            MeasurementResult with the latency of every successful tick

        Raises:
            StressRunError: if any tick failed; chained to the first failure.
        """
        if target_qps <= 0:
            raise ValueError(f"target_qps must be positive, got {target_qps}")
        if duration_seconds <= 0:
            raise ValueError(f"duration_seconds must be positive, got {duration_seconds}")

        interval = 1.0 / float(target_qps)
        samples: Deque[float] = deque()
        state = _TickState()
        tasks: list[asyncio.Task] = []

        t0 = self._clock()
        deadline = t0 + float(duration_seconds)
        while True:
            scheduled = t0 + state.dispatched * interval
            if scheduled >= deadline:
                break
            now = self._clock()
            if scheduled > now:
                await asyncio.sleep(scheduled - now)
            tasks.append(
                asyncio.create_task(
                    self._run_tick(work_fn, samples, state, dispatched_at=self._clock())
                )
            )
            state.dispatched += 1

        results = await asyncio.gather(*tasks, return_exceptions=True)
        elapsed = self._clock() - t0

        failures = [r for r in results if isinstance(r, BaseException)]
        if failures:
            logger.error(
                "%d of %d ticks failed. First error: %s: %s",
                len(failures),
                state.dispatched,
                type(failures[0]).__name__,
                failures[0],
            )
            raise StressRunError(
                f"{len(failures)} of {state.dispatched} ticks failed",
                failures=len(failures),
            ) from failures[0]

        return MeasurementResult(
            latency=LatencySummary.from_samples(
                list(samples), duration_seconds=float(duration_seconds)
            ),
            ticks_dispatched=state.dispatched,
            ticks_completed=len(samples),
            max_in_flight=state.max_in_flight,
            elapsed_seconds=elapsed,
        )

    async def _run_tick(
        self,
        work_fn: WorkFn,
        samples: Deque[float],
        state: _TickState,
        *,
        dispatched_at: float,
    ) -> None:
        state.in_flight += 1
        state.max_in_flight = max(state.max_in_flight, state.in_flight)
        try:
            await work_fn()
        finally:
            state.in_flight -= 1
        samples.append((self._clock() - dispatched_at) * 1000.0)

    async def run_stress(
        self,
        work_fn: WorkFn,
        config: StressRunConfig,
        *,
        scenario_name: str = "stress",
    ) -> StressRunResult:
        """
        Reset, size and warm the pool, then measure ``work_fn`` at the configured rate.

        Returns:
            StressRunResult without a validation outcome (see ResultValidator)
        """
        start_time = datetime.now(UTC)
        logger.info(
            "Starting %s: target_qps=%d, duration=%.1fs",
            scenario_name,
            config.target_qps,
            config.duration_seconds,
        )

        await self.reset_pool()

        limits = PoolSizeConfig.for_target_qps(
            config.target_qps, prewarm_cap=config.prewarm_cap
        ).calculate()
        apply_pool_limits(self.pool, limits)

        prewarmed = await self.warmer.warm_pool(limits.prewarm_count)
        pool_after_warmup = await self.pool.get_pool_stats()

        with log_control.measurement_log_level(self.measurement_log_level):
            measurement = await self.measure(
                work_fn, config.target_qps, config.duration_seconds
            )
        logger.info("%s latency = %.1fms", scenario_name, measurement.latency.mean_ms)

        pool_after_run = await self.pool.get_pool_stats()
        return StressRunResult(
            scenario_name=scenario_name,
            config=config,
            start_time=start_time,
            end_time=datetime.now(UTC),
            prewarmed=prewarmed,
            measurement=measurement,
            pool_after_warmup=pool_after_warmup,
            pool_after_run=pool_after_run,
        )
