import pytest

from stressbench.connectors.base import TransientBackendError
from stressbench.connectors.simulated import SimulatedBackend, SimulatedPool
from stressbench.core.pool_warmer import PoolWarmer

pytestmark = pytest.mark.asyncio


class _TrackingPool(SimulatedPool):
    """SimulatedPool that records how many opens overlap."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.opening = 0
        self.max_opening = 0

    async def acquire(self):
        self.opening += 1
        self.max_opening = max(self.max_opening, self.opening)
        try:
            return await super().acquire()
        finally:
            self.opening -= 1


def _recording_sleep():
    delays: list[float] = []

    async def _sleep(seconds: float) -> None:
        delays.append(seconds)

    return delays, _sleep


def _fail_nth_open(n: int):
    calls = {"open": 0}

    def _inject(operation: str):
        if operation != "open":
            return None
        calls["open"] += 1
        if calls["open"] == n:
            return TransientBackendError("session create rejected", code="UNAVAILABLE")
        return None

    return _inject


async def test_warm_pool_leaves_sessions_pooled_not_active():
    pool = _TrackingPool(backend=SimulatedBackend(latency_ms=0), open_latency_ms=1)
    delays, sleep = _recording_sleep()
    warmer = PoolWarmer(pool, sleep=sleep)

    opened = await warmer.warm_pool(60)

    stats = await pool.get_pool_stats()
    assert opened == 60
    assert stats.pooled_count >= 60
    assert stats.active_count == 0
    assert stats.created_total == 60
    assert delays == [0.25, 0.25, 0.25]


async def test_warm_pool_batches_are_bounded():
    pool = _TrackingPool(backend=SimulatedBackend(latency_ms=0), open_latency_ms=1)
    _, sleep = _recording_sleep()
    warmer = PoolWarmer(pool, batch_size=25, sleep=sleep)

    await warmer.warm_pool(100)

    assert pool.max_opening == 25


async def test_warm_pool_zero_is_noop():
    pool = SimulatedPool(backend=SimulatedBackend(latency_ms=0))
    _, sleep = _recording_sleep()

    assert await PoolWarmer(pool, sleep=sleep).warm_pool(0) == 0
    assert (await pool.get_pool_stats()).created_total == 0


async def test_warm_pool_failure_releases_opened_sessions():
    backend = SimulatedBackend(latency_ms=0, fault_injector=_fail_nth_open(30))
    pool = SimulatedPool(backend=backend)
    delays, sleep = _recording_sleep()
    warmer = PoolWarmer(pool, sleep=sleep)

    with pytest.raises(TransientBackendError):
        await warmer.warm_pool(60)

    stats = await pool.get_pool_stats()
    assert stats.active_count == 0
    assert stats.pooled_count == 49
    # Only the first, complete batch settles.
    assert delays == [0.25]
