"""
Stress Run Configuration Models

Defines the immutable per-run configuration:
- target throughput and duration
- warm-up sizing cap
- latency acceptance range
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field, model_validator

from stressbench.core.pool_sizing import PoolSizeConfig

if TYPE_CHECKING:
    from stressbench.config import Settings


class StressRunConfig(BaseModel):
    """
    Configuration for a single stress run.

    Read-only for the lifetime of the run.
    """

    model_config = ConfigDict(frozen=True)

    target_qps: int = Field(..., gt=0, description="Target ticks per second")
    duration_seconds: float = Field(..., gt=0, description="Measured run duration")
    prewarm_cap: int = Field(800, gt=0, description="Upper bound on warmed sessions")
    min_latency_ms: float = Field(0.0, ge=0, description="Lowest accepted mean latency")
    max_latency_ms: float = Field(150.0, ge=0, description="Highest accepted mean latency")

    @model_validator(mode="after")
    def validate_latency_range(self):
        if self.min_latency_ms > self.max_latency_ms:
            raise ValueError(
                f"min_latency_ms ({self.min_latency_ms}) exceeds "
                f"max_latency_ms ({self.max_latency_ms})"
            )
        return self

    @property
    def prewarm_count(self) -> int:
        """Sessions to open before measuring: min(target_qps / 4, prewarm_cap)."""
        return (
            PoolSizeConfig.for_target_qps(self.target_qps, prewarm_cap=self.prewarm_cap)
            .calculate()
            .prewarm_count
        )

    @classmethod
    def from_settings(cls, settings: "Settings", **overrides) -> "StressRunConfig":
        values = {
            "target_qps": settings.STRESS_TARGET_QPS,
            "duration_seconds": settings.STRESS_DURATION_SECONDS,
            "prewarm_cap": settings.STRESS_PREWARM_CAP,
            "min_latency_ms": settings.STRESS_MIN_LATENCY_MS,
            "max_latency_ms": settings.STRESS_MAX_LATENCY_MS,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
