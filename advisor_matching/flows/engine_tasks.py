"""
Prefect @task wrappers around the matching engine's batch operations.

Each task builds its own engine from Django settings, tags its logs with a
fresh correlation id and returns a plain dict so results serialize cleanly
into the Prefect UI.

Usage (Prefect):
    from advisor_matching.flows.engine_tasks import run_learning_cycle
    run_learning_cycle(force=True)
"""

from __future__ import annotations

from typing import Any

from prefect import get_run_logger, task

from config.logging_filters import new_correlation_id


def get_engine():
    """Engine on the Django ORM. Imported lazily so the module loads before django.setup()."""
    from advisor_matching.engine import MatchingEngine

    return MatchingEngine.from_settings()


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------

@task(name="run-learning-cycle", retries=1, retry_delay_seconds=60)
async def run_learning_cycle(force: bool = False) -> dict[str, Any]:
    """Learn new factor weights from recorded outcomes.

    A ``failed`` report raises so Prefect retries the task; ``skipped`` and
    ``insufficient_data`` are normal results.
    """
    logger = get_run_logger()
    cid = new_correlation_id("learning")
    report = await get_engine().run_learning_cycle(force=force)

    if report.status == "failed":
        logger.error("Learning cycle failed [%s]: %s", cid, report.error)
        raise RuntimeError(f"learning cycle failed: {report.error}")

    logger.info(
        "Learning cycle %s [%s]: sample=%d/%d, updates applied=%d",
        report.status,
        cid,
        report.sample_size,
        report.required_sample,
        report.updates_applied,
    )
    return report.to_dict()


@task(name="score-provider-performance", retries=1, retry_delay_seconds=30)
async def score_provider_performance() -> dict[str, Any]:
    """Rescore every provider active in the recent window."""
    logger = get_run_logger()
    cid = new_correlation_id("performance")
    results = await get_engine().run_performance_batch()
    logger.info(
        "Performance batch [%s]: scored=%d/%d, failed=%d",
        cid, results["scored"], results["processed"], results["failed"],
    )
    for error in results["errors"][:10]:
        logger.warning("  %s", error)
    return results


@task(name="optimize-active-matches", retries=1, retry_delay_seconds=30)
async def optimize_active_matches() -> dict[str, Any]:
    """Run the proactive optimizer over undetermined, actionable matches."""
    logger = get_run_logger()
    cid = new_correlation_id("optimization")
    results = await get_engine().run_optimization_batch()
    logger.info(
        "Optimization batch [%s]: optimized=%d/%d, interventions=%d, failed=%d",
        cid,
        results["optimized"],
        results["processed"],
        results["interventions_executed"],
        results["failed"],
    )
    for error in results["errors"][:10]:
        logger.warning("  %s", error)
    return results


@task(name="refresh-market-intelligence", retries=2, retry_delay_seconds=10)
async def refresh_market_intelligence() -> dict[str, Any]:
    logger = get_run_logger()
    cid = new_correlation_id("market")
    snapshot = await get_engine().refresh_market_intelligence()
    health = snapshot["market_health"]
    logger.info(
        "Market snapshot [%s]: health=%.3f, momentum=%s, weeks=%d",
        cid, health["overall_score"], health["market_momentum"], health["weeks_observed"],
    )
    return snapshot
