"""
Tests for scripts/run_stress.py against the simulated backend.
"""

import importlib.util
from pathlib import Path

import pytest

from stressbench.connectors.simulated import SimulatedBackend, SimulatedPool
from stressbench.core.context import StressContext
from stressbench.core.id_generator import UniqueIdGenerator
from stressbench.core.retry import RetryExecutor
from stressbench.core.workload_driver import WorkloadDriver

_SCRIPT = Path(__file__).parent.parent / "scripts" / "run_stress.py"


def _load_script():
    module_spec = importlib.util.spec_from_file_location("run_stress", _SCRIPT)
    module = importlib.util.module_from_spec(module_spec)
    module_spec.loader.exec_module(module)
    return module


run_stress = _load_script()


def _args(*argv: str):
    return run_stress._build_parser().parse_args(list(argv))


def test_parser_accepts_both_scenarios():
    args = _args("write", "--qps", "200", "--duration", "2.5", "--backend", "simulated")
    assert args.scenario == "write"
    assert args.qps == 200
    assert args.duration == 2.5
    assert args.backend == "simulated"
    assert args.max_latency_ms is None

    assert _args("parallel-tx").scenario == "parallel-tx"


def test_parser_rejects_unknown_scenario():
    with pytest.raises(SystemExit):
        _args("read")


@pytest.mark.asyncio
async def test_simulated_run_passes():
    code = await run_stress._run(
        _args("write", "--qps", "20", "--duration", "0.3", "--backend", "simulated")
    )
    assert code == run_stress.EXIT_PASSED


@pytest.mark.asyncio
async def test_validation_failure_exit_code():
    code = await run_stress._run(
        _args(
            "parallel-tx",
            "--qps",
            "20",
            "--duration",
            "0.3",
            "--backend",
            "simulated",
            "--max-latency-ms",
            "1",
        )
    )
    assert code == run_stress.EXIT_VALIDATION_FAILED


@pytest.mark.asyncio
async def test_run_failure_exit_code(monkeypatch):
    pool = SimulatedPool(SimulatedBackend(latency_ms=0), release_delay_ms=500)

    def _fake_context(settings):
        return StressContext(pool=pool, ids=UniqueIdGenerator(), retry=RetryExecutor())

    def _fake_driver(ctx, settings):
        return WorkloadDriver(ctx.pool, shutdown_timeout=0.05)

    monkeypatch.setattr(run_stress, "create_context", _fake_context)
    monkeypatch.setattr(run_stress, "create_driver", _fake_driver)

    code = await run_stress._run(_args("write", "--backend", "simulated"))
    assert code == run_stress.EXIT_RUN_FAILED
