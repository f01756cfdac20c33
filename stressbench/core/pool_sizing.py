"""Pool sizing policy for a stress run.

Pre-sizes the pool generously above the expected steady-state need so that
no pool growth happens during measurement.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from stressbench.connectors.base import ResourcePool

logger = logging.getLogger(__name__)


# The maximum write round trip is about 200ms, so target_qps / 4 sessions
# sustain the target rate without creating more sessions mid-run.
PREWARM_QPS_DIVISOR = 4
PREWARM_CAP = 800
SESSION_HEADROOM = 50
MIN_SESSION_LIMIT = 400
MIN_CHANNELS = 4
CHANNELS_PER_2000_QPS = 8


@dataclass(frozen=True, slots=True)
class PoolLimits:
    """Derived pool limits.

    Attributes:
        prewarm_count: Sessions to open before measurement
        max_active_sessions: Upper bound on checked-out sessions
        max_pooled_sessions: Upper bound on idle sessions
        max_channels: Connection fan-out
    """

    prewarm_count: int
    max_active_sessions: int
    max_pooled_sessions: int
    max_channels: int


@dataclass(frozen=True, slots=True)
class PoolSizeConfig:
    """Configuration for pool sizing.

    Attributes:
        target_qps: Target ticks per second
        prewarm_cap: Upper bound on warmed sessions
    """

    target_qps: int
    prewarm_cap: int = PREWARM_CAP

    def calculate(self) -> PoolLimits:
        """Calculate pool limits.

        Returns:
            PoolLimits where:
            - prewarm_count = min(target_qps / 4, prewarm_cap)
            - active and pooled limits = max(prewarm_count + 50, 400)
            - channels = max(4, 8 * target_qps / 2000)
        """
        target_qps = max(0, int(self.target_qps))
        prewarm = min(target_qps // PREWARM_QPS_DIVISOR, int(self.prewarm_cap))
        sessions = max(prewarm + SESSION_HEADROOM, MIN_SESSION_LIMIT)
        channels = max(MIN_CHANNELS, CHANNELS_PER_2000_QPS * target_qps // 2000)
        return PoolLimits(
            prewarm_count=prewarm,
            max_active_sessions=sessions,
            max_pooled_sessions=sessions,
            max_channels=channels,
        )

    @classmethod
    def for_target_qps(
        cls, target_qps: int, prewarm_cap: int = PREWARM_CAP
    ) -> "PoolSizeConfig":
        """Create config for a run at ``target_qps``."""
        return cls(target_qps=target_qps, prewarm_cap=prewarm_cap)


def apply_pool_limits(pool: ResourcePool, limits: PoolLimits) -> None:
    """Write limits onto the pool's options before a run."""
    pool.options.max_active_sessions = limits.max_active_sessions
    pool.options.max_pooled_sessions = limits.max_pooled_sessions
    pool.options.max_channels = limits.max_channels

    logger.info("Pool max_active_sessions: %d", limits.max_active_sessions)
    logger.info("Pool max_pooled_sessions: %d", limits.max_pooled_sessions)
    logger.info("Pool max_channels: %d", limits.max_channels)
