"""Harness exception hierarchy.

All harness-level errors inherit from StressError so callers can separate
run failures from backend faults raised by a collaborator.
"""

from __future__ import annotations


class StressError(Exception):
    """Base exception for all harness errors."""


class PoolResetTimeoutError(StressError, TimeoutError):
    """Releasing every pooled session did not finish within the shutdown deadline."""


class RetryBudgetExhaustedError(StressError):
    """A transient fault persisted past the configured attempt or time budget."""

    def __init__(self, message: str, *, attempts: int, elapsed_seconds: float):
        super().__init__(message)
        self.attempts = attempts
        self.elapsed_seconds = elapsed_seconds


class StressRunError(StressError):
    """One or more ticks failed with a non-retryable error during measurement."""

    def __init__(self, message: str, *, failures: int):
        super().__init__(message)
        self.failures = failures


class StressValidationError(StressError, AssertionError):
    """Post-run acceptance check failed."""

    def __init__(self, failures: list[str]):
        super().__init__("Stress validation failed: " + "; ".join(failures))
        self.failures = list(failures)
