"""
Retry with capped exponential backoff and jitter.

Reissues an asynchronous unit of work while it fails with a transient
backend fault. Each retry waits ``previous * 2 + jitter`` milliseconds,
capped at ``max_delay_ms``. The first retry waits only the jitter. Fatal
faults propagate on the first failure.

Only pass actions that are safe to run again: single ephemeral statements,
or actions that open their own fresh transaction per attempt.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections import Counter
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

from stressbench.core.errors import RetryBudgetExhaustedError
from stressbench.core.faults import FaultClassifier, classify_fault, is_transient_fault

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class BackoffPolicy:
    """Backoff parameters for RetryExecutor.

    Attributes:
        multiplier: Factor applied to the previous delay
        jitter_ms: Random delay added per retry, drawn from [0, jitter_ms)
        max_delay_ms: Cap on any single delay
        max_attempts: Total invocations allowed (None = unbounded)
        max_elapsed_seconds: Wall-clock budget across attempts (None = unbounded)
    """

    multiplier: int = 2
    jitter_ms: int = 100
    max_delay_ms: int = 5000
    max_attempts: Optional[int] = None
    max_elapsed_seconds: Optional[float] = None

    @classmethod
    def from_settings(cls, settings: Any) -> "BackoffPolicy":
        max_attempts = int(settings.RETRY_MAX_ATTEMPTS)
        max_elapsed = float(settings.RETRY_MAX_ELAPSED_SECONDS)
        return cls(
            jitter_ms=int(settings.RETRY_JITTER_MS),
            max_delay_ms=int(settings.RETRY_MAX_DELAY_MS),
            max_attempts=max_attempts if max_attempts > 0 else None,
            max_elapsed_seconds=max_elapsed if max_elapsed > 0 else None,
        )


class RetryExecutor:
    """
    Runs actions until they succeed or fail with a non-transient fault.

    The fault classifier and backoff policy are injected so backends and
    scenarios can swap either without touching the workload driver.
    """

    def __init__(
        self,
        *,
        classifier: FaultClassifier = is_transient_fault,
        policy: Optional[BackoffPolicy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.classifier = classifier
        self.policy = policy or BackoffPolicy()
        self._sleep = sleep
        self._rng = rng or random.Random()
        self.retry_counts: Counter[str] = Counter()

    def next_delay_ms(self, previous_ms: int) -> int:
        """Delay before the next attempt, given the delay before this one."""
        jitter = self._rng.randrange(self.policy.jitter_ms) if self.policy.jitter_ms > 0 else 0
        delay = previous_ms * self.policy.multiplier + jitter
        return min(delay, self.policy.max_delay_ms)

    async def execute(self, action: Callable[[], Awaitable[T]]) -> T:
        """
        Invoke ``action`` until it succeeds.

        Args:
            action: Zero-argument callable returning a fresh awaitable per attempt

        Returns:
            Whatever the successful attempt returned

        Raises:
            The first non-transient fault, unchanged.
            RetryBudgetExhaustedError: if a configured budget runs out.
        """
        delay_ms = 0
        attempts = 0
        started = time.monotonic()

        while True:
            attempts += 1
            try:
                return await action()
            except Exception as e:
                if not self.classifier(e):
                    raise

                category = classify_fault(e)
                self.retry_counts[category] += 1
                delay_ms = self.next_delay_ms(delay_ms)
                self._check_budget(e, attempts=attempts, started=started, delay_ms=delay_ms)

                logger.info(
                    "retrying due to %s: %s (attempt %d, delay %dms)",
                    category,
                    e,
                    attempts,
                    delay_ms,
                )
                await self._sleep(delay_ms / 1000.0)

    def _check_budget(
        self, exc: Exception, *, attempts: int, started: float, delay_ms: int
    ) -> None:
        policy = self.policy
        elapsed = time.monotonic() - started
        if policy.max_attempts is not None and attempts >= policy.max_attempts:
            raise RetryBudgetExhaustedError(
                f"Gave up after {attempts} attempts: {exc}",
                attempts=attempts,
                elapsed_seconds=elapsed,
            ) from exc
        if (
            policy.max_elapsed_seconds is not None
            and elapsed + delay_ms / 1000.0 > policy.max_elapsed_seconds
        ):
            raise RetryBudgetExhaustedError(
                f"Gave up after {elapsed:.1f}s ({attempts} attempts): {exc}",
                attempts=attempts,
                elapsed_seconds=elapsed,
            ) from exc

    def reset_counts(self) -> None:
        self.retry_counts.clear()
