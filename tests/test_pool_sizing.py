from stressbench.connectors.base import PoolOptions
from stressbench.connectors.simulated import SimulatedPool
from stressbench.core.pool_sizing import PoolSizeConfig, apply_pool_limits
from stressbench.models import StressRunConfig


def test_low_qps_uses_floor_limits():
    limits = PoolSizeConfig.for_target_qps(100).calculate()
    assert limits.prewarm_count == 25
    assert limits.max_active_sessions == 400
    assert limits.max_pooled_sessions == 400
    assert limits.max_channels == 4


def test_mid_qps_scales_sessions_and_channels():
    limits = PoolSizeConfig.for_target_qps(2000).calculate()
    assert limits.prewarm_count == 500
    assert limits.max_active_sessions == 550
    assert limits.max_pooled_sessions == 550
    assert limits.max_channels == 8


def test_prewarm_is_capped():
    limits = PoolSizeConfig.for_target_qps(10000).calculate()
    assert limits.prewarm_count == 800
    assert limits.max_active_sessions == 850
    assert limits.max_channels == 40

    limits = PoolSizeConfig.for_target_qps(10000, prewarm_cap=100).calculate()
    assert limits.prewarm_count == 100
    assert limits.max_active_sessions == 400


def test_prewarm_matches_run_config():
    for qps in (1, 100, 2000, 10000):
        config = StressRunConfig(target_qps=qps, duration_seconds=1)
        limits = PoolSizeConfig.for_target_qps(qps, prewarm_cap=config.prewarm_cap).calculate()
        assert limits.prewarm_count == config.prewarm_count


def test_apply_pool_limits_writes_options():
    pool = SimulatedPool(options=PoolOptions(max_active_sessions=1, max_pooled_sessions=1))
    apply_pool_limits(pool, PoolSizeConfig.for_target_qps(2000).calculate())
    assert pool.options == PoolOptions(
        max_active_sessions=550, max_pooled_sessions=550, max_channels=8
    )
