"""
Stress Result Models

Defines Pydantic models for pool snapshots, latency aggregates and run results.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from stressbench.core.errors import StressValidationError
from stressbench.models.stress_config import StressRunConfig


class PoolStats(BaseModel):
    """Point-in-time snapshot of a resource pool."""

    active_count: int = Field(0, ge=0, description="Resources checked out of the pool")
    pooled_count: int = Field(0, ge=0, description="Idle resources held by the pool")
    created_total: int = Field(0, ge=0, description="Resources created since start-up")
    max_active_sessions: int = Field(0, ge=0, description="Configured active limit")
    max_pooled_sessions: int = Field(0, ge=0, description="Configured pooled limit")
    max_channels: int = Field(0, ge=0, description="Configured channel fan-out")

    @property
    def total_count(self) -> int:
        return self.active_count + self.pooled_count


class LatencySummary(BaseModel):
    """Aggregate of per-tick elapsed times (milliseconds)."""

    count: int = Field(0, ge=0, description="Completed ticks")
    mean_ms: float = Field(0.0, description="Mean elapsed time")
    min_ms: float = Field(0.0, description="Fastest tick")
    max_ms: float = Field(0.0, description="Slowest tick")
    p50_ms: float = Field(0.0, description="Median elapsed time")
    p95_ms: float = Field(0.0, description="95th percentile")
    p99_ms: float = Field(0.0, description="99th percentile")
    achieved_qps: float = Field(0.0, description="Completed ticks per second of run time")

    @classmethod
    def from_samples(
        cls, samples: List[float], *, duration_seconds: float
    ) -> "LatencySummary":
        if not samples:
            return cls()

        sorted_lat = sorted(samples)

        def _pctile(pct: float) -> float:
            idx = int(len(sorted_lat) * (float(pct) / 100.0))
            idx = min(max(0, idx), len(sorted_lat) - 1)
            return float(sorted_lat[idx])

        count = len(sorted_lat)
        return cls(
            count=count,
            mean_ms=sum(sorted_lat) / count,
            min_ms=float(sorted_lat[0]),
            max_ms=float(sorted_lat[-1]),
            p50_ms=_pctile(50),
            p95_ms=_pctile(95),
            p99_ms=_pctile(99),
            achieved_qps=(count / duration_seconds) if duration_seconds > 0 else 0.0,
        )


class MeasurementResult(BaseModel):
    """Outcome of the measured phase of a run."""

    latency: LatencySummary = Field(..., description="Latency aggregate")
    ticks_dispatched: int = Field(0, ge=0, description="Ticks scheduled")
    ticks_completed: int = Field(0, ge=0, description="Ticks that succeeded")
    max_in_flight: int = Field(0, ge=0, description="Peak overlapping ticks")
    elapsed_seconds: float = Field(0.0, ge=0, description="Wall-clock run time")


class ValidationResult(BaseModel):
    """Post-run acceptance check outcome."""

    passed: bool = Field(True, description="All checks passed")
    failures: List[str] = Field(default_factory=list, description="Failed checks")
    warnings: List[str] = Field(default_factory=list, description="Non-fatal findings")

    def raise_for_failures(self) -> None:
        if self.failures:
            raise StressValidationError(self.failures)


class StressRunResult(BaseModel):
    """
    Results from a single stress run.

    Contains the measurement, pool snapshots and the validation outcome.
    """

    scenario_name: str = Field(..., description="Scenario that was executed")
    config: StressRunConfig = Field(..., description="Run configuration")
    start_time: datetime = Field(..., description="Run start time")
    end_time: Optional[datetime] = Field(None, description="Run end time")

    prewarmed: int = Field(0, ge=0, description="Sessions opened during warm-up")
    measurement: MeasurementResult = Field(..., description="Measured phase")
    retry_counts: Dict[str, int] = Field(
        default_factory=dict, description="Retries by fault category"
    )

    pool_after_warmup: Optional[PoolStats] = Field(
        None, description="Pool snapshot once warm-up completed"
    )
    pool_after_run: Optional[PoolStats] = Field(
        None, description="Pool snapshot once all ticks completed"
    )
    validation: Optional[ValidationResult] = Field(
        None, description="Acceptance check outcome"
    )

    @property
    def latency_ms(self) -> float:
        return self.measurement.latency.mean_ms

    @property
    def passed(self) -> bool:
        return bool(self.validation is not None and self.validation.passed)
