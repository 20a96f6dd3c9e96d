"""
Engine maintenance -- Prefect @flows.

One flow per periodic cycle, plus engine_maintenance_flow, which runs each
cycle once, in dependency order:

    1. Weight learning (new weights feed every later score)
    2. Provider performance scoring
    3. Proactive match optimization
    4. Market intelligence refresh

A failing step is logged and recorded in the result; the remaining steps
still run.

Usage (CLI):
    python -m advisor_matching.flows.engine_maintenance
    python -m advisor_matching.flows.engine_maintenance --force-learning --skip market

Usage (Prefect -- e.g. Prefect cron deployment):
    from advisor_matching.flows.engine_maintenance import engine_maintenance_flow
    engine_maintenance_flow()
"""

from __future__ import annotations

import argparse
import asyncio
import os
import time
from dataclasses import dataclass, field
from typing import Any

from prefect import flow, get_run_logger

from advisor_matching.flows.engine_tasks import (
    optimize_active_matches,
    refresh_market_intelligence,
    run_learning_cycle,
    score_provider_performance,
)

STEPS = ("learning", "performance", "optimization", "market")


# ---------------------------------------------------------------------------
# Single-cycle flows (one Prefect deployment per schedule)
# ---------------------------------------------------------------------------

@flow(name="learning-cycle", description="Learn factor weights from recorded outcomes")
async def learning_cycle_flow(force: bool = False) -> dict[str, Any]:
    return await run_learning_cycle(force=force)


@flow(name="performance-batch", description="Rescore recently active providers")
async def performance_batch_flow() -> dict[str, Any]:
    return await score_provider_performance()


@flow(name="optimization-batch", description="Optimize undetermined, actionable matches")
async def optimization_batch_flow() -> dict[str, Any]:
    return await optimize_active_matches()


# ---------------------------------------------------------------------------
# Full maintenance pass
# ---------------------------------------------------------------------------

@dataclass
class MaintenanceResult:
    """Aggregate stats from one maintenance pass."""

    learning_status: str = "not_run"
    weight_updates: int = 0
    providers_scored: int = 0
    matches_optimized: int = 0
    interventions_executed: int = 0
    market_health: float | None = None
    failed_steps: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0


@flow(
    name="engine-maintenance",
    description="Learning, performance, optimization and market cycles in one pass",
)
async def engine_maintenance_flow(
    force_learning: bool = False,
    skip: list[str] | None = None,
) -> MaintenanceResult:
    """Run every engine cycle once.

    Parameters
    ----------
    force_learning:
        Run the learning cycle even below the minimum sample size.
    skip:
        Step names from STEPS to leave out.
    """
    logger = get_run_logger()
    skip = set(skip or ())
    unknown = skip - set(STEPS)
    if unknown:
        raise ValueError(f"Unknown steps: {', '.join(sorted(unknown))}")

    start_time = time.time()
    result = MaintenanceResult()

    async def step(name: str, coro) -> Any:
        try:
            return await coro
        except Exception as e:
            logger.error("Step %s failed: %s", name, e)
            result.failed_steps.append(name)
            return None

    if "learning" not in skip:
        logger.info("Step 1/4: Learning factor weights")
        report = await step("learning", run_learning_cycle(force=force_learning))
        if report is not None:
            result.learning_status = report["status"]
            result.weight_updates = report["updates_applied"]

    if "performance" not in skip:
        logger.info("Step 2/4: Scoring provider performance")
        perf = await step("performance", score_provider_performance())
        if perf is not None:
            result.providers_scored = perf["scored"]

    if "optimization" not in skip:
        logger.info("Step 3/4: Optimizing active matches")
        opt = await step("optimization", optimize_active_matches())
        if opt is not None:
            result.matches_optimized = opt["optimized"]
            result.interventions_executed = opt["interventions_executed"]

    if "market" not in skip:
        logger.info("Step 4/4: Refreshing market intelligence")
        snapshot = await step("market", refresh_market_intelligence())
        if snapshot is not None:
            result.market_health = snapshot["market_health"]["overall_score"]

    result.duration_seconds = round(time.time() - start_time, 2)
    logger.info(
        "Engine maintenance complete in %.1fs: learning=%s (%d updates), "
        "scored=%d, optimized=%d, interventions=%d, failed=%s",
        result.duration_seconds,
        result.learning_status,
        result.weight_updates,
        result.providers_scored,
        result.matches_optimized,
        result.interventions_executed,
        result.failed_steps or "none",
    )
    return result


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

def main() -> None:
    import django

    parser = argparse.ArgumentParser(description="Run every engine cycle once")
    parser.add_argument("--force-learning", action="store_true")
    parser.add_argument("--skip", action="append", choices=STEPS, default=[])
    args = parser.parse_args()

    os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")
    django.setup()
    result = asyncio.run(engine_maintenance_flow(force_learning=args.force_learning, skip=args.skip))
    print(result)


if __name__ == "__main__":
    main()
