"""
Data models for stress runs.
"""

from .stress_config import StressRunConfig
from .stress_result import (
    LatencySummary,
    MeasurementResult,
    PoolStats,
    StressRunResult,
    ValidationResult,
)

__all__ = [
    "StressRunConfig",
    "LatencySummary",
    "MeasurementResult",
    "PoolStats",
    "StressRunResult",
    "ValidationResult",
]
