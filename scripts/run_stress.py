#!/usr/bin/env python3
"""Run a write stress scenario against the configured backend."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from stressbench.config import settings
from stressbench.core.context import create_context, create_driver
from stressbench.core.errors import StressError
from stressbench.core.scenarios import run_parallel_transaction_stress, run_write_stress
from stressbench.models import StressRunConfig, StressRunResult

logger = logging.getLogger(__name__)

SCENARIOS = {
    "write": run_write_stress,
    "parallel-tx": run_parallel_transaction_stress,
}

EXIT_PASSED = 0
EXIT_VALIDATION_FAILED = 1
EXIT_RUN_FAILED = 2


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Run a write stress scenario and validate latency and pool state."
    )
    parser.add_argument("scenario", choices=sorted(SCENARIOS), help="Scenario to run.")
    parser.add_argument(
        "--qps", type=int, default=None, help="Target operations per second."
    )
    parser.add_argument(
        "--duration", type=float, default=None, help="Measured duration in seconds."
    )
    parser.add_argument(
        "--backend",
        choices=["postgres", "simulated"],
        default=None,
        help="Backend to drive (defaults to STRESS_BACKEND).",
    )
    parser.add_argument(
        "--max-latency-ms",
        type=float,
        default=None,
        help="Upper bound for the mean latency.",
    )
    return parser


def _print_summary(result: StressRunResult) -> None:
    lat = result.measurement.latency
    print(
        f"[{result.scenario_name}] ticks={result.measurement.ticks_completed}"
        f"/{result.measurement.ticks_dispatched} "
        f"mean={lat.mean_ms:.1f}ms p95={lat.p95_ms:.1f}ms p99={lat.p99_ms:.1f}ms "
        f"qps={lat.achieved_qps:.1f} retries={sum(result.retry_counts.values())}"
    )
    if result.validation is not None:
        for w in result.validation.warnings:
            print(f"[{result.scenario_name}] warning: {w}")
        for f in result.validation.failures:
            print(f"[{result.scenario_name}] FAILED: {f}", file=sys.stderr)


async def _run(args: argparse.Namespace) -> int:
    run_settings = settings
    if args.backend:
        run_settings = settings.model_copy(update={"STRESS_BACKEND": args.backend})

    config = StressRunConfig.from_settings(
        run_settings,
        target_qps=args.qps,
        duration_seconds=args.duration,
        max_latency_ms=args.max_latency_ms,
    )
    ctx = create_context(run_settings)
    try:
        if run_settings.STRESS_BACKEND == "postgres":
            from stressbench.connectors.postgres_pool import ensure_stress_table

            await ensure_stress_table(ctx.pool, ctx.table_name)

        result = await SCENARIOS[args.scenario](
            ctx, config, driver=create_driver(ctx, run_settings)
        )
    except StressError as e:
        logger.error("%s run failed: %s", args.scenario, e)
        return EXIT_RUN_FAILED
    except Exception:
        logger.exception("%s run failed", args.scenario)
        return EXIT_RUN_FAILED
    finally:
        await ctx.close()

    _print_summary(result)
    return EXIT_PASSED if result.passed else EXIT_VALIDATION_FAILED


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    logging.basicConfig(level=settings.LOG_LEVEL, format=settings.LOG_FORMAT)
    logging.getLogger("asyncpg").setLevel(logging.WARNING)
    try:
        return asyncio.run(_run(args))
    except KeyboardInterrupt:
        print("[stress] interrupted", file=sys.stderr)
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
