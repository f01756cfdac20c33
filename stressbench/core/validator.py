"""
Post-run acceptance checks.

Inspects the pool once every tick has finished and compares the mean
latency against the accepted range. A failed check is reported and never
retried.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from stressbench.models import LatencySummary, PoolStats, StressRunResult, ValidationResult

logger = logging.getLogger(__name__)


class ResultValidator:
    """Checks pool consistency and latency for a completed run."""

    def __init__(
        self,
        *,
        min_latency_ms: float = 0.0,
        max_latency_ms: float = 150.0,
        max_pooled: Optional[int] = None,
        max_active: Optional[int] = None,
    ):
        """
        Args:
            min_latency_ms: Lower bound for the mean latency
            max_latency_ms: Upper bound for the mean latency
            max_pooled: Pooled limit to enforce (defaults to the pool's own)
            max_active: Total limit to enforce (defaults to the pool's own)
        """
        self.min_latency_ms = float(min_latency_ms)
        self.max_latency_ms = float(max_latency_ms)
        self.max_pooled = max_pooled
        self.max_active = max_active

    def validate_pool(
        self, stats: PoolStats, *, after_warmup: Optional[PoolStats] = None
    ) -> tuple[List[str], List[str]]:
        """
        Check the pool after every tick has completed.

        Returns:
            (failures, warnings)
        """
        failures: List[str] = []
        warnings: List[str] = []

        if stats.active_count != 0:
            failures.append(
                f"{stats.active_count} sessions still checked out after the run"
            )
        max_pooled = self.max_pooled if self.max_pooled is not None else stats.max_pooled_sessions
        max_active = self.max_active if self.max_active is not None else stats.max_active_sessions
        if max_pooled and stats.pooled_count > max_pooled:
            failures.append(f"pooled sessions {stats.pooled_count} exceed limit {max_pooled}")
        if max_active and stats.total_count > max_active:
            failures.append(f"total sessions {stats.total_count} exceed limit {max_active}")

        if after_warmup is not None:
            grown = stats.created_total - after_warmup.created_total
            if grown > 0:
                warnings.append(
                    f"pool created {grown} sessions during measurement; warm-up was undersized"
                )

        return failures, warnings

    def validate_latency(self, latency: LatencySummary) -> List[str]:
        if latency.count == 0:
            return ["no latency samples were collected"]
        if not (self.min_latency_ms <= latency.mean_ms <= self.max_latency_ms):
            return [
                f"mean latency {latency.mean_ms:.1f}ms outside "
                f"[{self.min_latency_ms:g}, {self.max_latency_ms:g}]ms"
            ]
        return []

    def validate(self, result: StressRunResult) -> ValidationResult:
        failures: List[str] = []
        warnings: List[str] = []

        if result.pool_after_run is None:
            failures.append("pool state after the run was not captured")
        else:
            pool_failures, pool_warnings = self.validate_pool(
                result.pool_after_run, after_warmup=result.pool_after_warmup
            )
            failures.extend(pool_failures)
            warnings.extend(pool_warnings)

        failures.extend(self.validate_latency(result.measurement.latency))

        for w in warnings:
            logger.warning("%s: %s", result.scenario_name, w)
        for f in failures:
            logger.error("%s: validation failed: %s", result.scenario_name, f)

        return ValidationResult(passed=not failures, failures=failures, warnings=warnings)
